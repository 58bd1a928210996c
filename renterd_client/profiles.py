from __future__ import annotations
"""Connection profile models and persistence."""
from dataclasses import dataclass
import json
import logging
from pathlib import Path

import keyring
from keyring.errors import KeyringError

LOGGER = logging.getLogger(__name__)


@dataclass
class ConnectionProfile:
    """Represents a saved renterd connection."""

    name: str
    endpoint_url: str
    password: str
    accept_invalid_certs: bool = False


def keychain_account(profile_name: str, endpoint_url: str) -> str:
    """Keychain user name for a profile, scoped to the node it connects to."""

    return f"{profile_name}@{endpoint_url.strip().rstrip('/')}"


class KeychainStore:
    """OS keychain access for API passwords.

    Entries are keyed by profile name and endpoint URL, so two profiles with
    the same name on different machines, or a profile whose endpoint changes,
    never hand a password to the wrong node.
    """

    def __init__(self, service_name: str = "pyrenterd"):
        self._service_name = service_name

    def get_secret(self, profile_name: str, endpoint_url: str) -> str:
        if not profile_name:
            return ""
        account = keychain_account(profile_name, endpoint_url)
        secret = self._read(account)
        if secret:
            return secret
        # entries written before passwords were scoped by endpoint
        legacy = self._read(profile_name)
        if legacy:
            self._write(account, legacy)
            self._remove(profile_name)
        return legacy

    def set_secret(self, profile_name: str, endpoint_url: str, secret: str) -> None:
        if not profile_name:
            return
        if not secret:
            self.delete_secret(profile_name, endpoint_url)
            return
        self._write(keychain_account(profile_name, endpoint_url), secret)

    def delete_secret(self, profile_name: str, endpoint_url: str) -> None:
        if not profile_name:
            return
        self._remove(keychain_account(profile_name, endpoint_url))

    def _read(self, account: str) -> str:
        try:
            return keyring.get_password(self._service_name, account) or ""
        except KeyringError:
            return ""

    def _write(self, account: str, secret: str) -> None:
        try:
            keyring.set_password(self._service_name, account, secret)
        except KeyringError:
            LOGGER.warning("Could not store the API password for '%s' in the keychain", account)

    def _remove(self, account: str) -> None:
        try:
            keyring.delete_password(self._service_name, account)
        except KeyringError:
            return



class ProfileStorage:
    """JSON-backed store for connection profiles; passwords live in the keychain."""

    def __init__(self, storage_path: str | Path | None = None, keychain: KeychainStore | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".pyrenterd_connections.json"
        self._path = Path(storage_path)
        self._keychain = keychain or KeychainStore()

    def load(self) -> list[ConnectionProfile]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return []
        if not isinstance(data, list):
            return []

        profiles: list[ConnectionProfile] = []
        sanitized: list[dict[str, object]] = []
        saw_plaintext = False
        for entry in data:
            try:
                name = entry["name"]
                endpoint_url = entry["endpoint_url"]
            except (KeyError, TypeError):
                continue
            accept_invalid_certs = bool(entry.get("accept_invalid_certs", False))
            password = entry.get("password", "")
            if password:
                saw_plaintext = True
                self._keychain.set_secret(name, endpoint_url, password)
            else:
                password = self._keychain.get_secret(name, endpoint_url)
            profiles.append(
                ConnectionProfile(
                    name=name,
                    endpoint_url=endpoint_url,
                    password=password,
                    accept_invalid_certs=accept_invalid_certs,
                )
            )
            sanitized.append(_profile_record(name, endpoint_url, accept_invalid_certs))
        if saw_plaintext:
            self._write_data(sanitized)
        return profiles

    def save(self, profiles: list[ConnectionProfile]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = []
        for profile in profiles:
            self._keychain.set_secret(profile.name, profile.endpoint_url, profile.password)
            data.append(_profile_record(profile.name, profile.endpoint_url, profile.accept_invalid_certs))
        current = {keychain_account(profile.name, profile.endpoint_url) for profile in profiles}
        for name, endpoint_url in self._load_profile_keys():
            if keychain_account(name, endpoint_url) not in current:
                self._keychain.delete_secret(name, endpoint_url)
        self._write_data(data)

    def _load_profile_keys(self) -> set[tuple[str, str]]:
        if not self._path.exists():
            return set()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return set()
        keys = set()
        for entry in data if isinstance(data, list) else []:
            if not isinstance(entry, dict):
                continue
            name, endpoint_url = entry.get("name"), entry.get("endpoint_url")
            if isinstance(name, str) and name and isinstance(endpoint_url, str):
                keys.add((name, endpoint_url))
        return keys

    def _write_data(self, data: list[dict[str, object]]) -> None:
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _profile_record(name: str, endpoint_url: str, accept_invalid_certs: bool) -> dict[str, object]:
    record: dict[str, object] = {"name": name, "endpoint_url": endpoint_url}
    if accept_invalid_certs:
        record["accept_invalid_certs"] = True
    return record
