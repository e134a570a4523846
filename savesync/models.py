"""Records passed between the scanner, resolver, planner and executor.

Everything here lives for a single reconciliation pass; only the identity
cache (see identity_cache.py) is persisted.
"""
import enum
import os
import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import List, Optional

# Suffix RomM save uploads carry: " [YYYY-MM-DD HH-MM-SS-mmm]"
SAVE_TIMESTAMP_RE = re.compile(r" \[\d{4}-\d{2}-\d{2} \d{2}-\d{2}-\d{2}-\d{3}\]$")

BACKUP_TIMESTAMP_FORMAT = "%Y-%m-%d %H-%M-%S"


def strip_extension(filename):
    return os.path.splitext(filename)[0]


def extract_save_base_name(file_name_no_ext):
    """Strip the upload timestamp suffix from a save name.

    "Pokemon Red [2024-01-02 15-04-05-000]" -> "Pokemon Red"
    """
    return SAVE_TIMESTAMP_RE.sub("", file_name_no_ext)


def parse_api_datetime(value):
    """Parse a RomM ISO-8601 timestamp into an aware UTC datetime.

    Returns None for empty or malformed values.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def mtime_to_datetime(mtime):
    return datetime.fromtimestamp(mtime, tz=timezone.utc)


def upload_timestamp(dt):
    """Format a modification time as "[YYYY-MM-DD HH-MM-SS-mmm]" in device-local time."""
    dt = dt.astimezone()
    return f"[{dt.strftime('%Y-%m-%d %H-%M-%S')}-{dt.microsecond // 1000:03d}]"


class SyncAction(str, enum.Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    SKIP = "skip"


class ResolutionStatus(str, enum.Enum):
    RESOLVED = "resolved"
    PENDING = "pending"
    UNMATCHED = "unmatched"
    SKIPPED = "skipped"


@dataclass
class LocalSave:
    platform_key: str
    path: str
    last_modified: datetime

    @classmethod
    def from_path(cls, platform_key, path):
        return cls(
            platform_key=platform_key,
            path=path,
            last_modified=mtime_to_datetime(os.path.getmtime(path)),
        )

    @property
    def base_name(self):
        return strip_extension(os.path.basename(self.path))

    def timestamped_filename(self):
        """Backup name: "<base> [YYYY-MM-DD HH-MM-SS]<ext>", local time."""
        name = os.path.basename(self.path)
        base, ext = os.path.splitext(name)
        stamp = self.last_modified.astimezone().strftime(BACKUP_TIMESTAMP_FORMAT)
        return f"{base} [{stamp}]{ext}"


@dataclass
class RemoteSave:
    id: int
    rom_id: int
    file_name: str
    file_extension: str = ""
    download_path: str = ""
    updated_at: Optional[datetime] = None
    emulator: str = ""
    file_name_no_ext: str = ""

    @classmethod
    def from_api(cls, data):
        file_name = data.get("file_name") or ""
        return cls(
            id=int(data.get("id") or 0),
            rom_id=int(data.get("rom_id") or 0),
            file_name=file_name,
            file_extension=data.get("file_extension") or "",
            download_path=data.get("download_path") or "",
            updated_at=parse_api_datetime(data.get("updated_at")),
            emulator=data.get("emulator") or "",
            file_name_no_ext=data.get("file_name_no_ext") or strip_extension(file_name),
        )

    @property
    def base_name(self):
        return extract_save_base_name(self.file_name_no_ext or strip_extension(self.file_name))


@dataclass
class Platform:
    id: int
    slug: str
    fs_slug: str = ""
    name: str = ""

    @classmethod
    def from_api(cls, data):
        return cls(
            id=int(data.get("id") or 0),
            slug=data.get("slug") or "",
            fs_slug=data.get("fs_slug") or "",
            name=data.get("name") or data.get("display_name") or "",
        )

    def to_dict(self):
        return asdict(self)


@dataclass
class PendingFuzzyMatch:
    local_file_name: str
    local_path: str
    platform_key: str
    candidate_rom_id: int
    candidate_name: str
    similarity: float
    save_path: str = ""

    def to_dict(self):
        return asdict(self)


@dataclass
class UnmatchedSave:
    save_path: str
    platform_key: str

    def to_dict(self):
        return asdict(self)


@dataclass
class LocalRomFile:
    platform_key: str
    file_name: str
    file_path: str
    rom_id: Optional[int] = None
    rom_name: Optional[str] = None
    local_save: Optional[LocalSave] = None
    remote_saves: List[RemoteSave] = field(default_factory=list)
    pending_fuzzy_match: bool = False

    @property
    def base_name(self):
        return strip_extension(self.file_name)


@dataclass
class IdentityResolution:
    status: ResolutionStatus
    rom_id: Optional[int] = None
    rom_name: Optional[str] = None
    source: Optional[str] = None
    pending: Optional[PendingFuzzyMatch] = None
    unmatched: Optional[UnmatchedSave] = None


@dataclass
class SaveSync:
    rom_id: int
    platform_key: str
    game_base_name: str
    action: SyncAction
    local: Optional[LocalSave] = None
    remote: Optional[RemoteSave] = None
    rom_name: str = ""
    selected_emulator: Optional[str] = None

    @property
    def needs_emulator_selection(self):
        return self.action == SyncAction.DOWNLOAD and self.local is None


@dataclass
class SyncResult:
    game_name: str
    action: SyncAction
    success: bool
    error_message: Optional[str] = None
    file_path: Optional[str] = None
    rom_display_name: str = ""

    def to_dict(self):
        d = asdict(self)
        d["action"] = self.action.value
        return d


@dataclass
class ReconcileReport:
    results: List[SyncResult] = field(default_factory=list)
    unmatched: List[UnmatchedSave] = field(default_factory=list)
    pending_fuzzy: List[PendingFuzzyMatch] = field(default_factory=list)
    scan_errors: List[str] = field(default_factory=list)
    fetch_errors: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self):
        return [r for r in self.results if r.success]

    @property
    def failed(self):
        return [r for r in self.results if not r.success]

    def to_dict(self):
        return {
            "results": [r.to_dict() for r in self.results],
            "unmatched": [u.to_dict() for u in self.unmatched],
            "pending_fuzzy": [p.to_dict() for p in self.pending_fuzzy],
            "scan_errors": list(self.scan_errors),
            "fetch_errors": list(self.fetch_errors),
            "error": self.error,
        }
