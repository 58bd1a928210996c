from __future__ import annotations
"""Data models for renterd API payloads."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    TypeAdapter,
    ValidationError,
    field_serializer,
    field_validator,
)
from pydantic.alias_generators import to_camel

from .transport import RenterdError


class InvalidDataError(RenterdError):
    """Raised when a response body or header does not have the expected shape."""


def decode(target: Any, data: Any) -> Any:
    """Validate decoded JSON against ``target`` (a model or any type pydantic understands)."""

    try:
        return TypeAdapter(target).validate_python(data)
    except ValidationError as exc:
        name = getattr(target, "__name__", str(target))
        raise InvalidDataError(f"unexpected {name} payload: {exc}") from exc


@dataclass(frozen=True)
class Percentage:
    """A percentage stored as a fraction, e.g. ``Decimal("0.2")`` for 20%."""

    value: Decimal

    @classmethod
    def from_whole(cls, value: Decimal) -> Percentage:
        return cls(value / 100)

    @classmethod
    def from_decimal(cls, value: Decimal) -> Percentage:
        return cls(value)

    @classmethod
    def parse(cls, raw: Any, *, from_whole: bool = False) -> Percentage:
        """Decode a wire value.

        Numbers are interpreted according to ``from_whole``; strings ending
        in ``%`` are always whole values.
        """

        if isinstance(raw, bool):
            raise InvalidDataError(f"invalid percentage {raw!r}")
        if isinstance(raw, str):
            text = raw.strip()
            if text.endswith("%"):
                from_whole = True
                text = text.rstrip("%")
        elif isinstance(raw, (int, float, Decimal)):
            text = str(raw)
        else:
            raise InvalidDataError(f"invalid percentage {raw!r}")
        try:
            number = Decimal(text)
        except InvalidOperation as exc:
            raise InvalidDataError(f"invalid percentage {raw!r}") from exc
        if not number.is_finite():
            raise InvalidDataError(f"invalid percentage {raw!r}")
        return cls.from_whole(number) if from_whole else cls.from_decimal(number)

    def as_decimal(self) -> Decimal:
        return self.value

    def to_whole(self) -> Decimal:
        return self.value * 100

    def __str__(self) -> str:
        whole = self.to_whole().normalize()
        return f"{whole:f}%"


def _percentage(value: Any, *, from_whole: bool = False) -> Percentage:
    if isinstance(value, Percentage):
        return value
    try:
        return Percentage.parse(value, from_whole=from_whole)
    except InvalidDataError as exc:
        raise ValueError(str(exc)) from exc


class WireModel(BaseModel):
    """Base for JSON payloads: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
        arbitrary_types_allowed=True,
    )

    @classmethod
    def from_json(cls, data: Any):
        return decode(cls, data)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ObjectMetadata(WireModel):
    """Listing entry for an object or directory."""

    name: str
    size: int = Field(ge=0, strict=True)
    health: Percentage
    mod_time: datetime
    etag: Optional[str] = Field(default=None, alias="eTag")
    mime_type: Optional[str] = None

    @field_validator("health", mode="before")
    @classmethod
    def _parse_health(cls, value: Any) -> Percentage:
        return _percentage(value)

    @property
    def is_directory(self) -> bool:
        return self.name.endswith("/")


class ObjectInfo(ObjectMetadata):
    """Full object record returned when a path denotes a single file."""

    user_metadata: Optional[dict[str, str]] = Field(default=None, alias="metadata")
    key: Optional[str] = None
    slabs: Optional[list[Any]] = None


@dataclass(frozen=True)
class ObjectFile:
    """Resolver result: the path names a single object."""

    object: ObjectInfo


@dataclass(frozen=True)
class ObjectDirectory:
    """Resolver result: the path names a directory; holds one page of children."""

    entries: list[ObjectMetadata] = field(default_factory=list)
    has_more: bool = False


ResolvedPath = Union[ObjectFile, ObjectDirectory]


class ObjectsResponse(WireModel):
    """Raw body of ``GET bus/objects/<path>``."""

    has_more: StrictBool
    object: Optional[ObjectInfo] = None
    entries: list[ObjectMetadata] = Field(default_factory=list)

    @field_validator("entries", mode="before")
    @classmethod
    def _null_entries(cls, value: Any) -> Any:
        return [] if value is None else value


def parse_resolved_path(data: Any) -> ResolvedPath:
    """Decide, once, whether a ``bus/objects`` response is a file or a directory."""

    response = ObjectsResponse.from_json(data)
    if response.object is not None:
        return ObjectFile(object=response.object)
    return ObjectDirectory(entries=response.entries, has_more=response.has_more)


def parse_metadata_list(data: Any) -> list[ObjectMetadata]:
    """Parse a list of metadata entries; ``null`` means an empty list."""

    return decode(Optional[list[ObjectMetadata]], data) or []


class PageRequest(WireModel):
    """One query against the object listing endpoint."""

    bucket: Optional[str] = None
    limit: int = Field(gt=0, strict=True)
    prefix: Optional[str] = None
    marker: Optional[str] = None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PageResult(WireModel):
    """One page of listing results. ``next_marker`` is opaque and echoed back verbatim."""

    entries: list[ObjectMetadata] = Field(default_factory=list, alias="objects")
    has_more: StrictBool
    next_marker: Optional[str] = None

    @field_validator("entries", mode="before")
    @classmethod
    def _null_objects(cls, value: Any) -> Any:
        return [] if value is None else value


class RenameMode(str, Enum):
    SINGLE = "single"
    MULTI = "multi"


class BucketPolicy(WireModel):
    public_read_access: StrictBool = False


class Bucket(WireModel):
    name: str
    created_at: datetime
    policy: BucketPolicy = Field(default_factory=BucketPolicy)

    @field_validator("policy", mode="before")
    @classmethod
    def _null_policy(cls, value: Any) -> Any:
        return {} if value is None else value


class State(WireModel):
    """Build and runtime information reported by a renterd component."""

    start_time: datetime
    network: str
    version: str
    commit: str
    os: str
    build_time: datetime


class WorkerState(State):
    id: str


class AutopilotState(State):
    """Autopilot loop status on top of the common build information."""

    configured: StrictBool
    migrating: StrictBool
    migrating_last_start: datetime
    pruning: StrictBool
    pruning_last_start: datetime
    scanning: StrictBool
    scanning_last_start: datetime
    uptime_ms: int = Field(ge=0)

    @property
    def uptime(self) -> timedelta:
        return timedelta(milliseconds=self.uptime_ms)


class ContractsConfig(WireModel):
    set: str
    amount: int
    # hastings; sent as a decimal string since it overflows 64 bits
    allowance: int
    period: int
    renew_window: int
    download: int
    upload: int
    storage: int
    prune: StrictBool = False

    @field_serializer("allowance")
    def _allowance_as_string(self, value: int) -> str:
        return str(value)


class HostsConfig(WireModel):
    allow_redundant_ips: StrictBool = Field(alias="allowRedundantIPs")
    max_downtime_hours: int
    min_protocol_version: str
    min_recent_scan_failures: int
    score_overrides: Optional[dict[str, float]] = None


class AutopilotConfig(WireModel):
    contracts: ContractsConfig
    hosts: HostsConfig


class TriggerResponse(WireModel):
    triggered: StrictBool


class MemoryStatus(WireModel):
    available: int
    total: int


class WorkerMemory(WireModel):
    download: MemoryStatus
    upload: MemoryStatus


class DownloaderStats(WireModel):
    host_key: str
    avg_sector_download_speed_mbps: float
    num_downloads: int


class DownloadStats(WireModel):
    avg_download_speed_mbps: float
    avg_overdrive: Percentage = Field(alias="avgOverdrivePct")
    healthy_downloaders: int
    num_downloaders: int
    downloaders: list[DownloaderStats] = Field(default_factory=list, alias="downloadersStats")

    @field_validator("avg_overdrive", mode="before")
    @classmethod
    def _parse_overdrive(cls, value: Any) -> Percentage:
        return _percentage(value, from_whole=True)

    @field_validator("downloaders", mode="before")
    @classmethod
    def _null_downloaders(cls, value: Any) -> Any:
        return [] if value is None else value


class UploaderStats(WireModel):
    host_key: str
    avg_sector_upload_speed_mbps: float


class UploadStats(WireModel):
    avg_slab_upload_speed_mbps: float
    avg_overdrive: Percentage = Field(alias="avgOverdrivePct")
    healthy_uploaders: int
    num_uploaders: int
    uploaders: list[UploaderStats] = Field(default_factory=list, alias="uploadersStats")

    @field_validator("avg_overdrive", mode="before")
    @classmethod
    def _parse_overdrive(cls, value: Any) -> Percentage:
        return _percentage(value, from_whole=True)

    @field_validator("uploaders", mode="before")
    @classmethod
    def _null_uploaders(cls, value: Any) -> Any:
        return [] if value is None else value


class ConsensusState(WireModel):
    block_height: int = Field(ge=0)
    last_block_time: datetime
    synced: StrictBool


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Alert(WireModel):
    id: str
    severity: Severity
    message: str
    timestamp: datetime
    data: Optional[dict[str, Any]] = None


class AlertPage(WireModel):
    alerts: list[Alert] = Field(default_factory=list)
    has_more: StrictBool
    totals: dict[str, int] = Field(default_factory=dict)

    @field_validator("alerts", mode="before")
    @classmethod
    def _null_alerts(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("totals", mode="before")
    @classmethod
    def _null_totals(cls, value: Any) -> Any:
        return {} if value is None else value
