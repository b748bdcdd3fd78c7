"""Install record store.

The record set is the only mutable state that survives between CLI
invocations. It lives in ``<install_root>/installed_plugins.json`` and every
read-modify-write happens under an exclusive lock on ``<install_root>/.lock``.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, ContextManager, Iterator

from pydantic import BaseModel, Field, ValidationError

from plugins.errors import InvalidFormat

logger = logging.getLogger(__name__)

RECORDS_FILENAME = "installed_plugins.json"
LOCK_FILENAME = ".lock"
RECORDS_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InstallRecord(BaseModel):
    """Persisted metadata for one installed plugin."""

    plugin_name: str
    installed_version: str
    install_path: str
    installed_at: datetime
    source: str = Field("", description="Locator the bundle was fetched from")
    marketplace: str | None = None
    fingerprint: str = Field("", description="sha256 over the installed tree")
    updated_at: datetime | None = None

    @property
    def path(self) -> Path:
        return Path(self.install_path)


@contextmanager
def exclusive_lock(lock_path: Path) -> Iterator[None]:
    """Exclusive advisory lock shared by every process using ``lock_path``."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a+") as handle:
        logger.debug("Waiting for lock %s", lock_path)
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON next to ``path`` and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class InstallRecordStore:
    """JSON-backed set of InstallRecords with an exclusive file lock.

    Example:
        >>> store = InstallRecordStore(Path("~/.skillmarket").expanduser())
        >>> with store.lock():
        ...     records = store.load()
        ...     records.pop("ui-polish", None)
        ...     store.save(records)
    """

    def __init__(self, install_root: Path):
        """Initialize the store.

        Args:
            install_root: Root directory holding the record file and lock.
        """
        self.install_root = Path(install_root)
        self.path = self.install_root / RECORDS_FILENAME
        self.lock_path = self.install_root / LOCK_FILENAME

    def lock(self) -> ContextManager[None]:
        """Hold the exclusive install lock for a read-modify-write."""
        return exclusive_lock(self.lock_path)

    def load(self) -> dict[str, InstallRecord]:
        """Read all records, keyed by plugin name.

        Raises:
            InvalidFormat: The record file is corrupt.
        """
        if not self.path.exists():
            return {}

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise InvalidFormat(f"install records are unreadable: {e}", str(self.path))

        if not isinstance(data, dict) or not isinstance(data.get("plugins", {}), dict):
            raise InvalidFormat("install records must be a JSON object", str(self.path))

        records: dict[str, InstallRecord] = {}
        for name, raw in data.get("plugins", {}).items():
            try:
                records[name] = InstallRecord.model_validate(raw)
            except ValidationError as e:
                raise InvalidFormat(f"install record {name!r} is invalid: {e}", name)
        return records

    def save(self, records: dict[str, InstallRecord]) -> None:
        """Replace the record file atomically."""
        payload = {
            "version": RECORDS_VERSION,
            "plugins": {
                name: record.model_dump(mode="json")
                for name, record in sorted(records.items())
            },
        }
        write_json_atomic(self.path, payload)

    def get(self, name: str) -> InstallRecord | None:
        return self.load().get(name)

    def put(self, record: InstallRecord) -> None:
        with self.lock():
            records = self.load()
            records[record.plugin_name] = record
            self.save(records)

    def delete(self, name: str) -> InstallRecord | None:
        with self.lock():
            records = self.load()
            removed = records.pop(name, None)
            if removed is not None:
                self.save(records)
            return removed

    def list_records(self) -> list[InstallRecord]:
        return sorted(self.load().values(), key=lambda r: r.plugin_name)
