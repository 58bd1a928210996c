from __future__ import annotations
"""Application settings persistence helpers."""

from dataclasses import dataclass, fields, replace
import json
from pathlib import Path


@dataclass
class AppSettings:
    """Simple container for persistent client settings."""

    batch_size: int = 100
    chunk_size: int = 64 * 1024
    request_timeout: float = 30.0
    default_bucket: str = ""
    accept_invalid_certs: bool = False


_BOOLEAN_WORDS = {"true": True, "yes": True, "on": True, "1": True, "false": False, "no": False, "off": False, "0": False}


class SettingsStorage:
    """JSON-backed persistence for :class:`AppSettings`."""

    def __init__(self, storage_path: str | Path | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".pyrenterd_settings.json"
        self._path = Path(storage_path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> AppSettings:
        if not self._path.exists():
            return AppSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return AppSettings()
        if not isinstance(data, dict):
            return AppSettings()
        default_bucket = data.get("default_bucket", AppSettings.default_bucket)
        accept_invalid_certs = data.get("accept_invalid_certs", AppSettings.accept_invalid_certs)
        return AppSettings(
            batch_size=_positive_int(data.get("batch_size"), AppSettings.batch_size),
            chunk_size=_positive_int(data.get("chunk_size"), AppSettings.chunk_size),
            request_timeout=_positive_float(data.get("request_timeout"), AppSettings.request_timeout),
            default_bucket=default_bucket if isinstance(default_bucket, str) else "",
            accept_invalid_certs=accept_invalid_certs if isinstance(accept_invalid_certs, bool) else False,
        )

    def save(self, settings: AppSettings) -> None:
        payload = {
            "batch_size": max(int(settings.batch_size), 1),
            "chunk_size": max(int(settings.chunk_size), 1),
            "request_timeout": max(float(settings.request_timeout), 1.0),
            "default_bucket": settings.default_bucket or "",
            "accept_invalid_certs": bool(settings.accept_invalid_certs),
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError:
            # Persist best-effort; ignore filesystem issues.
            return


def update_setting(settings: AppSettings, key: str, raw: str) -> AppSettings:
    """Return a copy of ``settings`` with ``key`` parsed from its command line text."""

    known = {item.name: item for item in fields(AppSettings)}
    if key not in known:
        raise ValueError(f"Unknown setting '{key}'")
    current = getattr(settings, key)
    value: object
    if isinstance(current, bool):
        lowered = raw.strip().lower()
        if lowered not in _BOOLEAN_WORDS:
            raise ValueError(f"Setting '{key}' expects true or false")
        value = _BOOLEAN_WORDS[lowered]
    elif isinstance(current, int):
        value = _positive_int(raw, 0)
        if not value:
            raise ValueError(f"Setting '{key}' expects a positive integer")
    elif isinstance(current, float):
        value = _positive_float(raw, 0.0)
        if not value:
            raise ValueError(f"Setting '{key}' expects a positive number")
    else:
        value = raw.strip()
    return replace(settings, **{key: value})



def _positive_int(value: object, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _positive_float(value: object, default: float) -> float:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default
