import asyncio
import base64
import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import httpx

from renterd_client.client import RenterdClient
from renterd_client.controller import NotConnectedError, RenterdController, TransferCancelledError
from renterd_client.models import ObjectDirectory
from renterd_client.profiles import ConnectionProfile
from renterd_client.settings import AppSettings
from renterd_client.transport import AuthenticationError, NotFoundError

CONTENT = b"0123456789"

STATE = {
    "startTime": "2023-09-21T08:25:18.542303234Z",
    "network": "Mainnet",
    "version": "v0.5.0",
    "commit": "aaf22529",
    "os": "linux",
    "buildTime": "2023-09-20T14:03:05Z",
}


def entry(name):
    return {"health": 1, "modTime": "2024-07-05T12:37:58Z", "name": name, "size": 10}


class FakeNode:
    """A tiny in-memory renterd node."""

    def __init__(self, *, password="secret"):
        self.password = password
        self.requests = []
        self.uploads = {}

    def __call__(self, request):
        self.requests.append(request)
        expected = "Basic " + base64.b64encode(f"api:{self.password}".encode()).decode("ascii")
        if request.headers.get("authorization") != expected:
            return httpx.Response(401)
        path = request.url.path.removeprefix("/api/")
        if path == "bus/state":
            return httpx.Response(200, json=STATE)
        if path == "bus/objects/list":
            body = json.loads(request.content)
            if body.get("marker") is None:
                return httpx.Response(200, json={"hasMore": True, "nextMarker": "m1", "objects": [entry("/a"), entry("/b")]})
            return httpx.Response(200, json={"hasMore": False, "objects": [entry("/c")]})
        if path == "bus/objects/dir/":
            return httpx.Response(200, json={"hasMore": False, "entries": [entry("/dir/a")]})
        if path == "worker/objects/missing":
            return httpx.Response(404)
        if path.startswith("worker/objects/"):
            if request.method == "HEAD":
                return httpx.Response(200, headers={"content-length": str(len(CONTENT)), "accept-ranges": "bytes"})
            if request.method == "GET":
                header = request.headers.get("range")
                if header:
                    start = int(header.removeprefix("bytes=").split("-")[0])
                    return httpx.Response(206, content=CONTENT[start:])
                return httpx.Response(200, content=CONTENT)
            if request.method == "PUT":
                self.uploads[path] = (request.content, request.headers.get("content-type"))
                return httpx.Response(200)
            if request.method == "DELETE":
                return httpx.Response(200)
        return httpx.Response(404)


class FakeProfileStorage:
    def __init__(self, profiles=None):
        self._profiles = list(profiles or [])
        self.saved_snapshots: list[list[ConnectionProfile]] = []

    def load(self):
        return list(self._profiles)

    def save(self, profiles):
        snapshot = [ConnectionProfile(**profile.__dict__) for profile in profiles]
        self.saved_snapshots.append(snapshot)
        self._profiles = snapshot


class RenterdControllerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.node = FakeNode()
        self.clients = []
        self.factory_calls = []
        self.storage = FakeProfileStorage(
            [ConnectionProfile(name="local", endpoint_url="http://localhost:9980/api", password="secret")]
        )
        self.controller = RenterdController(
            client_factory=self._make_client,
            storage=self.storage,
            settings=AppSettings(batch_size=2, chunk_size=4, default_bucket="default"),
        )

    async def asyncTearDown(self):
        await self.controller.disconnect()

    def _make_client(self, endpoint_url, password, **kwargs):
        self.factory_calls.append((endpoint_url, password, kwargs))
        client = RenterdClient(endpoint_url, password, http_transport=httpx.MockTransport(self.node), **kwargs)
        self.clients.append(client)
        return client

    async def test_operations_require_connection(self):
        with self.assertRaises(NotConnectedError):
            await self.controller.browse("/")
        with self.assertRaises(NotConnectedError):
            await self.controller.delete_object("/a")

    async def test_connect_with_profile(self):
        state = await self.controller.connect_with_profile("local")

        self.assertTrue(self.controller.is_connected)
        self.assertEqual("local", self.controller.selected_profile)
        self.assertEqual("Mainnet", state.network)
        self.assertEqual(
            [("http://localhost:9980/api", "secret", {"accept_invalid_certs": False, "timeout": 30.0})],
            self.factory_calls,
        )

    async def test_failed_connect_closes_client(self):
        with self.assertRaises(AuthenticationError):
            await self.controller.connect(endpoint_url="http://localhost:9980/api", password="wrong")

        self.assertFalse(self.controller.is_connected)
        self.assertTrue(self.clients[0].transport.is_closed)

    async def test_reconnect_closes_previous_client(self):
        await self.controller.connect_with_profile("local")
        await self.controller.connect_with_profile("local")

        self.assertTrue(self.clients[0].transport.is_closed)
        self.assertFalse(self.clients[1].transport.is_closed)

    async def test_browse_uses_default_bucket(self):
        await self.controller.connect_with_profile("local")

        resolved = await self.controller.browse("/dir/")

        self.assertIsInstance(resolved, ObjectDirectory)
        self.assertEqual(["/dir/a"], [e.name for e in resolved.entries])
        self.assertEqual("bucket=default", self.node.requests[-1].url.query.decode())

    async def test_iter_objects_flattens_pages(self):
        await self.controller.connect_with_profile("local")

        names = [e.name async for e in self.controller.iter_objects(prefix="/")]

        self.assertEqual(["/a", "/b", "/c"], names)
        bodies = [json.loads(r.content) for r in self.node.requests if r.url.path.endswith("/list")]
        self.assertEqual([2, 2], [body["limit"] for body in bodies])
        self.assertEqual(["default", "default"], [body["bucket"] for body in bodies])

    async def test_download_object_reports_progress(self):
        await self.controller.connect_with_profile("local")
        progress = []
        with tempfile.TemporaryDirectory() as tmp:
            destination = Path(tmp) / "file.bin"

            written = await self.controller.download_object(
                "/file.bin",
                destination,
                progress_callback=progress.append,
            )

            self.assertEqual(CONTENT, destination.read_bytes())
        self.assertEqual(10, written)
        self.assertEqual([4, 8, 10], progress)

    async def test_download_object_writes_off_the_event_loop(self):
        await self.controller.connect_with_profile("local")
        calls = []
        real_to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            calls.append(func.__name__)
            return await real_to_thread(func, *args, **kwargs)

        with tempfile.TemporaryDirectory() as tmp:
            destination = Path(tmp) / "file.bin"
            with mock.patch("renterd_client.controller.asyncio.to_thread", recording_to_thread):
                await self.controller.download_object("/file.bin", destination)

            self.assertEqual(CONTENT, destination.read_bytes())
        self.assertEqual(["open", "write", "write", "write", "close"], calls)


    async def test_download_object_resumes_at_offset(self):
        await self.controller.connect_with_profile("local")
        with tempfile.TemporaryDirectory() as tmp:
            destination = Path(tmp) / "file.bin"
            destination.write_bytes(CONTENT[:6])

            written = await self.controller.download_object("/file.bin", destination, offset=6)

            self.assertEqual(CONTENT, destination.read_bytes())
        self.assertEqual(4, written)
        gets = [r for r in self.node.requests if r.method == "GET"]
        self.assertEqual("bytes=6-9", gets[0].headers["range"])

    async def test_download_object_can_be_cancelled(self):
        await self.controller.connect_with_profile("local")
        with tempfile.TemporaryDirectory() as tmp:
            destination = Path(tmp) / "file.bin"

            with self.assertRaises(TransferCancelledError):
                await self.controller.download_object(
                    "/file.bin",
                    destination,
                    cancel_requested=lambda: True,
                )

    async def test_stat_missing_object_raises(self):
        await self.controller.connect_with_profile("local")

        with self.assertRaises(NotFoundError):
            await self.controller.stat("/missing")

    async def test_upload_object_streams_file(self):
        await self.controller.connect_with_profile("local")
        progress = []
        with tempfile.TemporaryDirectory() as tmp:
            source = Path(tmp) / "notes.txt"
            source.write_bytes(b"hello world")

            await self.controller.upload_object(
                source,
                "/docs/notes.txt",
                bucket="docs",
                progress_callback=progress.append,
            )

        self.assertEqual((b"hello world", "text/plain"), self.node.uploads["worker/objects/docs/notes.txt"])
        self.assertEqual([4, 8, 11], progress)
        put = [r for r in self.node.requests if r.method == "PUT"][0]
        self.assertEqual("bucket=docs", put.url.query.decode())

    async def test_delete_object(self):
        await self.controller.connect_with_profile("local")

        await self.controller.delete_object("/file.bin")

        delete = self.node.requests[-1]
        self.assertEqual(("DELETE", "/api/worker/objects/file.bin"), (delete.method, delete.url.path))


class ProfileManagementTests(unittest.TestCase):
    def setUp(self):
        self.storage = FakeProfileStorage()
        self.controller = RenterdController(storage=self.storage)

    def test_save_profile_persists_and_updates(self):
        profile = ConnectionProfile(name="local", endpoint_url="http://localhost:9980/api", password="one")
        self.controller.save_profile(profile)
        updated = ConnectionProfile(name="local", endpoint_url="http://127.0.0.1:9980/api", password="two")
        self.controller.save_profile(updated)

        self.assertEqual([updated], self.controller.list_profiles())
        self.assertEqual(2, len(self.storage.saved_snapshots))

    def test_rename_profile_replaces_original(self):
        self.controller.save_profile(ConnectionProfile(name="old", endpoint_url="http://a/api", password="x"))
        self.controller.save_profile(
            ConnectionProfile(name="new", endpoint_url="http://a/api", password="x"),
            original_name="old",
        )

        self.assertEqual(["new"], [p.name for p in self.controller.list_profiles()])

    def test_delete_profile(self):
        self.controller.save_profile(ConnectionProfile(name="local", endpoint_url="http://a/api", password="x"))

        self.controller.delete_profile("local")

        self.assertEqual([], self.controller.list_profiles())
        with self.assertRaises(ValueError):
            self.controller.delete_profile("local")
        with self.assertRaises(ValueError):
            self.controller.get_profile("local")


if __name__ == "__main__":
    unittest.main()
