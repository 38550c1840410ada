from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from .errors import LocalFileError, LockfileCorrupt
from .manifest import DIRECTIONS, ArtifactRef

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"
SCHEMA_VERSION = 1


def content_fingerprint(content: bytes) -> str:
    return "sha256:" + hashlib.sha256(content).hexdigest()


def lockfile_path_for(manifest_path: Path) -> Path:
    return manifest_path.with_suffix(LOCK_SUFFIX)


@dataclass(frozen=True)
class LockEntry:
    ref: ArtifactRef
    direction: str
    version: str
    fingerprint: str | None = None

    @property
    def key(self) -> tuple[ArtifactRef, str]:
        return (self.ref, self.direction)

    def to_json(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            "group": self.ref.group,
            "artifact_id": self.ref.artifact_id,
            "direction": self.direction,
            "version": self.version,
        }
        if self.fingerprint:
            item["fingerprint"] = self.fingerprint
        return item


class Lockfile:
    """Recorded state of every artifact synced so far, one entry per (ref, direction)."""

    def __init__(self, entries: Iterable[LockEntry] = ()) -> None:
        self._entries: dict[tuple[ArtifactRef, str], LockEntry] = {}
        for entry in entries:
            self._entries[entry.key] = entry

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Lockfile):
            return NotImplemented
        return self._entries == other._entries

    def get(self, ref: ArtifactRef, direction: str) -> LockEntry | None:
        return self._entries.get((ref, direction))

    def upsert(self, entry: LockEntry) -> bool:
        """Store ``entry``; returns True when the lockfile changed."""
        if self._entries.get(entry.key) == entry:
            return False
        self._entries[entry.key] = entry
        return True

    def retain(self, keys: set[tuple[ArtifactRef, str]]) -> list[LockEntry]:
        removed = [e for k, e in self._entries.items() if k not in keys]
        for entry in removed:
            del self._entries[entry.key]
        return sorted(removed, key=lambda e: (e.ref, e.direction))

    def entries(self) -> list[LockEntry]:
        return [self._entries[k] for k in sorted(self._entries)]

    def copy(self) -> "Lockfile":
        return Lockfile(self._entries.values())

    def to_json(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "entries": [e.to_json() for e in self.entries()],
        }


def _corrupt(path: Path, reason: str) -> LockfileCorrupt:
    return LockfileCorrupt(
        f"Lockfile {path} is corrupt ({reason}). Inspect it, or delete it to re-resolve all pull versions."
    )


def _parse_entry(raw: Any, *, path: Path, index: int) -> LockEntry:
    if not isinstance(raw, dict):
        raise _corrupt(path, f"entry {index} is not an object")
    fields: dict[str, str] = {}
    for name in ("group", "artifact_id", "direction", "version"):
        value = raw.get(name)
        if not isinstance(value, str) or not value.strip():
            raise _corrupt(path, f"entry {index} has no valid '{name}'")
        fields[name] = value
    if fields["direction"] not in DIRECTIONS:
        raise _corrupt(path, f"entry {index} has unknown direction {fields['direction']!r}")
    fingerprint = raw.get("fingerprint")
    if fingerprint is not None and not isinstance(fingerprint, str):
        raise _corrupt(path, f"entry {index} has an invalid 'fingerprint'")
    return LockEntry(
        ref=ArtifactRef(group=fields["group"], artifact_id=fields["artifact_id"]),
        direction=fields["direction"],
        version=fields["version"],
        fingerprint=fingerprint or None,
    )


def load_lockfile(path: Path) -> Lockfile:
    if not path.exists():
        logger.debug("No lockfile at %s, starting empty", path)
        return Lockfile()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise _corrupt(path, f"invalid JSON: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise _corrupt(path, f"unreadable: {e}") from e
    if not isinstance(raw, dict) or not isinstance(raw.get("entries"), list):
        raise _corrupt(path, "expected an object with an 'entries' list")
    if raw.get("schema_version", SCHEMA_VERSION) != SCHEMA_VERSION:
        raise _corrupt(path, f"unsupported schema_version {raw.get('schema_version')!r}")

    lockfile = Lockfile()
    for i, item in enumerate(raw["entries"]):
        entry = _parse_entry(item, path=path, index=i)
        if lockfile.get(entry.ref, entry.direction) is not None:
            raise _corrupt(path, f"duplicate entry for {entry.ref.key} ({entry.direction})")
        lockfile.upsert(entry)
    return lockfile


def _write_json_atomic(path: Path, data: Any) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        tmp.replace(path)
    except OSError as e:
        try:
            tmp.unlink()
        except OSError:
            pass
        raise LocalFileError(f"Could not write lockfile {path}: {e}") from e


def save_lockfile(lockfile: Lockfile, path: Path) -> None:
    _write_json_atomic(path, lockfile.to_json())
    logger.debug("Saved lockfile %s (%d entries)", path, len(lockfile))
