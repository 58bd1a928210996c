from __future__ import annotations
"""Presentation helpers for listings and transfers."""
from dataclasses import dataclass
from datetime import datetime
from importlib.metadata import PackageNotFoundError, metadata, version

from .models import ObjectMetadata

DIST_NAME = "pyrenterd"


@dataclass(frozen=True)
class PackageInfo:
    version: str
    summary: str


def load_package_info(dist_name: str = DIST_NAME) -> PackageInfo:
    try:
        distribution_metadata = metadata(dist_name)
        package_version = version(dist_name)
    except PackageNotFoundError:
        return PackageInfo(version="", summary="Typed client for the renterd storage API.")
    return PackageInfo(version=package_version, summary=distribution_metadata.get("Summary") or "")


def format_size(size: int | None) -> str:
    if size is None:
        return "-"
    suffixes = ["B", "KB", "MB", "GB", "TB"]
    value = float(max(size, 0))
    for suffix in suffixes:
        if value < 1024 or suffix == suffixes[-1]:
            return f"{value:.1f} {suffix}" if suffix != "B" else f"{int(value)} {suffix}"
        value /= 1024
    return f"{size} B"


def format_last_modified(last_modified: datetime | None) -> str:
    if not last_modified:
        return "-"
    return last_modified.strftime("%Y-%m-%d %H:%M:%S %Z").strip() or last_modified.isoformat()


def format_entry(entry: ObjectMetadata) -> str:
    size = "-" if entry.is_directory else format_size(entry.size)
    return f"{format_last_modified(entry.mod_time):<24} {size:>10} {str(entry.health):>7}  {entry.name}"


def compose_object_path(prefix: str, name: str) -> str:
    """Join a directory prefix and an object name into an absolute object path."""

    object_name = name.strip().lstrip("/")
    if not object_name:
        raise ValueError("Object name cannot be empty")
    cleaned_prefix = prefix.strip().strip("/")
    if cleaned_prefix:
        return f"/{cleaned_prefix}/{object_name}"
    return f"/{object_name}"


def suggest_local_filename(path: str) -> str:
    cleaned = path.strip().rstrip("/")
    if not cleaned:
        return "local-file"
    name = cleaned.rsplit("/", 1)[-1]
    return name or "local-file"
