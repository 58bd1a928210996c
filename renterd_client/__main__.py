from __future__ import annotations
"""Command line entry point for browsing and transferring renterd objects."""
import argparse
import asyncio
from dataclasses import asdict, fields
import getpass
import logging
import os
import sys
from pathlib import Path

import httpx

from .controller import RenterdController, TransferCancelledError
from .formatting import compose_object_path, format_entry, format_size, load_package_info, suggest_local_filename
from .models import ObjectDirectory, ObjectFile
from .profiles import ConnectionProfile, ProfileStorage
from .settings import AppSettings, SettingsStorage, update_setting
from .transport import RenterdError

LOGGER = logging.getLogger(__name__)

ENV_URL = "RENTERD_API_URL"
ENV_PASSWORD = "RENTERD_API_PASSWORD"


def build_parser() -> argparse.ArgumentParser:
    info = load_package_info()
    parser = argparse.ArgumentParser(prog="pyrenterd", description=info.summary)
    parser.add_argument("--version", action="version", version=info.version or "unknown")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    parser.add_argument("-p", "--profile", help="saved connection profile to use")
    parser.add_argument("-b", "--bucket", help="bucket to operate on")
    parser.add_argument("--settings", type=Path, help="path to the settings file")
    parser.add_argument("--profiles-file", type=Path, help="path to the connection profiles file")
    commands = parser.add_subparsers(dest="command", required=True)

    profiles = commands.add_parser("profiles", help="manage saved connections")
    profile_commands = profiles.add_subparsers(dest="profile_command", required=True)
    profile_commands.add_parser("list", help="show saved profiles")
    add = profile_commands.add_parser("add", help="save or update a profile")
    add.add_argument("name")
    add.add_argument("endpoint_url")
    add.add_argument("--password", help="API password (prompted when omitted)")
    add.add_argument("--insecure", action="store_true", help="accept invalid TLS certificates")
    remove = profile_commands.add_parser("remove", help="delete a profile")
    remove.add_argument("name")

    ls = commands.add_parser("ls", help="show a file or one page of a directory")
    ls.add_argument("path", nargs="?", default="/")
    ls.add_argument("--limit", type=int)
    ls.add_argument("--marker", help="continue a directory listing after this entry name")

    find = commands.add_parser("find", help="list every object under a prefix")
    find.add_argument("prefix", nargs="?", default="/")

    get = commands.add_parser("get", help="download an object")
    get.add_argument("path")
    get.add_argument("destination", nargs="?")
    get.add_argument("--offset", type=int, default=0, help="resume from this byte offset")

    put = commands.add_parser("put", help="upload a local file")
    put.add_argument("source", type=Path)
    put.add_argument("path", help="object path; a trailing slash keeps the local file name")
    put.add_argument("--content-type")

    rm = commands.add_parser("rm", help="delete an object")
    rm.add_argument("path")

    config = commands.add_parser("config", help="show or change persistent settings")
    config_commands = config.add_subparsers(dest="config_command", required=True)
    config_commands.add_parser("show", help="print the current settings")
    set_command = config_commands.add_parser("set", help="change one setting")
    set_command.add_argument("key", choices=[item.name for item in fields(AppSettings)])
    set_command.add_argument("value")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings_storage = SettingsStorage(args.settings)
    settings = settings_storage.load()
    controller = RenterdController(storage=ProfileStorage(args.profiles_file), settings=settings)
    try:
        if args.command == "profiles":
            return run_profiles_command(controller, args)
        if args.command == "config":
            return run_config_command(settings_storage, settings, args)
        return asyncio.run(run_object_command(controller, args))
    except (RenterdError, httpx.HTTPError, TransferCancelledError, ValueError, OSError) as exc:
        LOGGER.debug("Command '%s' failed", args.command, exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1


def run_profiles_command(controller: RenterdController, args: argparse.Namespace) -> int:
    if args.profile_command == "list":
        for profile in controller.list_profiles():
            print(f"{profile.name}\t{profile.endpoint_url}")
        return 0
    if args.profile_command == "add":
        password = args.password or getpass.getpass(f"API password for {args.name}: ")
        controller.save_profile(
            ConnectionProfile(
                name=args.name,
                endpoint_url=args.endpoint_url,
                password=password,
                accept_invalid_certs=args.insecure,
            )
        )
        return 0
    controller.delete_profile(args.name)
    return 0


def run_config_command(storage: SettingsStorage, settings: AppSettings, args: argparse.Namespace) -> int:
    if args.config_command == "set":
        settings = update_setting(settings, args.key, args.value)
        storage.save(settings)
        LOGGER.debug("Saved %s to %s", args.key, storage.path)
    for key, value in asdict(settings).items():
        print(f"{key} = {value}")
    return 0


async def run_object_command(controller: RenterdController, args: argparse.Namespace) -> int:
    if args.profile:
        await controller.connect_with_profile(args.profile)
    else:
        await controller.connect(
            endpoint_url=os.environ.get(ENV_URL, ""),
            password=os.environ.get(ENV_PASSWORD, ""),
            accept_invalid_certs=controller.settings.accept_invalid_certs,
        )
    try:
        if args.command == "ls":
            return await _ls(controller, args)
        if args.command == "find":
            async for entry in controller.iter_objects(prefix=args.prefix, bucket=args.bucket):
                print(format_entry(entry))
            return 0
        if args.command == "get":
            destination = args.destination or suggest_local_filename(args.path)
            written = await controller.download_object(
                args.path,
                destination,
                bucket=args.bucket,
                offset=args.offset,
            )
            print(f"{args.path} -> {destination} ({format_size(written)})")
            return 0
        if args.command == "put":
            target = args.path
            if target.endswith("/"):
                target = compose_object_path(target, args.source.name)
            await controller.upload_object(
                args.source,
                target,
                bucket=args.bucket,
                content_type=args.content_type,
            )
            return 0
        await controller.delete_object(args.path, bucket=args.bucket)
        return 0
    finally:
        await controller.disconnect()


async def _ls(controller: RenterdController, args: argparse.Namespace) -> int:
    resolved = await controller.browse(args.path, bucket=args.bucket, marker=args.marker, limit=args.limit)
    if resolved is None:
        print(f"{args.path}: not found", file=sys.stderr)
        return 1
    if isinstance(resolved, ObjectFile):
        print(format_entry(resolved.object))
        return 0
    assert isinstance(resolved, ObjectDirectory)
    for entry in resolved.entries:
        print(format_entry(entry))
    if resolved.has_more and resolved.entries:
        # the server pages directories by entry name
        print(f"(more entries available; continue with --marker {resolved.entries[-1].name})")
    elif resolved.has_more:
        print("(more entries available)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
