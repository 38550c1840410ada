from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, Union

from .client import ArtifactMetadata, content_type_for
from .errors import ApicurioSyncError, LocalFileError, RegistryError
from .lockfile import LockEntry, Lockfile, content_fingerprint, save_lockfile
from .manifest import PULL, PUSH, ArtifactRef, Manifest, PullEntry, PushEntry

logger = logging.getLogger(__name__)

ACTION_PUSH = "push"
ACTION_PULL_VERSION = "pull_version"
ACTION_SKIP_UP_TO_DATE = "skip_up_to_date"
ACTION_PIN_ONLY = "pin_only"

Entry = Union[PushEntry, PullEntry]
LockKey = tuple[ArtifactRef, str]


class Registry(Protocol):
    def get_latest_version(self, group: str, artifact_id: str) -> str:
        ...

    def get_version(self, group: str, artifact_id: str, version: str) -> str:
        ...

    def get_version_content(self, group: str, artifact_id: str, version: str) -> bytes:
        ...

    def upload_artifact(
        self,
        group: str,
        artifact_id: str,
        content: bytes,
        metadata: ArtifactMetadata | None = None,
    ) -> str:
        ...


@dataclass(frozen=True)
class Action:
    kind: str
    version: str | None = None

    def __str__(self) -> str:
        return f"{self.kind}({self.version})" if self.version else self.kind


@dataclass(frozen=True)
class PlanItem:
    direction: str
    entry: Entry
    action: Action | None
    error: ApicurioSyncError | None = None

    @property
    def ref(self) -> ArtifactRef:
        return self.entry.ref


@dataclass(frozen=True)
class SyncPlan:
    items: tuple[PlanItem, ...]
    # Every (ref, direction) the manifest declares; lock entries outside it are stale.
    declared: frozenset[LockKey] = field(default_factory=frozenset)


@dataclass(frozen=True)
class EntryOutcome:
    ref: ArtifactRef
    direction: str
    action: str | None
    version: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class SyncResult:
    outcomes: tuple[EntryOutcome, ...]
    lock_path: Path
    lock_changed: bool
    pruned: tuple[str, ...] = ()

    @property
    def failed(self) -> bool:
        return any(not o.ok for o in self.outcomes)

    @property
    def failures(self) -> tuple[EntryOutcome, ...]:
        return tuple(o for o in self.outcomes if not o.ok)


def _declared_keys(manifest: Manifest) -> frozenset[LockKey]:
    keys = {(e.ref, PUSH) for e in manifest.push}
    keys.update((e.ref, PULL) for e in manifest.pull)
    return frozenset(keys)


def _write_bytes_atomic(path: Path, content: bytes) -> None:
    tmp = path.with_name(path.name + ".apicurio-sync.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_bytes(content)
        os.replace(tmp, path)
    except OSError as e:
        try:
            tmp.unlink()
        except OSError:
            pass
        raise LocalFileError(f"Could not write {path}: {e}") from e


class ReconciliationEngine:
    """
    Decides per manifest entry whether to push, pull, skip or re-pin, and applies
    the decisions against the registry and the working tree.

    Planning only reads (registry metadata and local digests). Applying mutates
    files, the registry and the given lockfile, which is saved after every
    entry that changes it.
    """

    def __init__(self, *, registry: Registry, workdir: Path) -> None:
        self.registry = registry
        self.workdir = workdir

    def _local_path(self, entry: Entry) -> Path:
        return self.workdir / entry.path

    def _resolve_version(self, entry: PullEntry) -> str:
        ref = entry.ref
        if entry.version is not None:
            return self.registry.get_version(ref.group, ref.artifact_id, entry.version)
        return self.registry.get_latest_version(ref.group, ref.artifact_id)

    def _matches_lock(self, entry: PullEntry, locked: LockEntry) -> bool:
        if not locked.fingerprint:
            return False
        dest = self._local_path(entry)
        try:
            content = dest.read_bytes()
        except OSError:
            return False
        return content_fingerprint(content) == locked.fingerprint

    def _plan_pull(self, entry: PullEntry, lockfile: Lockfile) -> PlanItem:
        locked = lockfile.get(entry.ref, PULL)
        if locked is not None:
            if self._matches_lock(entry, locked):
                return PlanItem(PULL, entry, Action(ACTION_SKIP_UP_TO_DATE, locked.version))
            return PlanItem(PULL, entry, Action(ACTION_PULL_VERSION, locked.version))

        try:
            version = self._resolve_version(entry)
        except RegistryError as e:
            return PlanItem(PULL, entry, None, error=e)
        return PlanItem(PULL, entry, Action(ACTION_PULL_VERSION, version))

    def plan(self, manifest: Manifest, lockfile: Lockfile) -> SyncPlan:
        manifest.validate()
        items: list[PlanItem] = [PlanItem(PUSH, e, Action(ACTION_PUSH)) for e in manifest.push]
        items.extend(self._plan_pull(e, lockfile) for e in manifest.pull)
        return SyncPlan(items=tuple(items), declared=_declared_keys(manifest))

    def plan_update(self, manifest: Manifest, lockfile: Lockfile) -> SyncPlan:
        """Re-resolve every pull pin, ignoring the lockfile's current versions."""
        manifest.validate()
        items: list[PlanItem] = []
        for entry in manifest.pull:
            try:
                version = self._resolve_version(entry)
            except RegistryError as e:
                items.append(PlanItem(PULL, entry, None, error=e))
                continue
            items.append(PlanItem(PULL, entry, Action(ACTION_PIN_ONLY, version)))
        return SyncPlan(items=tuple(items), declared=_declared_keys(manifest))

    def _push(self, entry: PushEntry) -> LockEntry:
        source = self._local_path(entry)
        try:
            content = source.read_bytes()
        except OSError as e:
            raise LocalFileError(f"Could not read {source}: {e}") from e
        metadata = ArtifactMetadata(
            name=entry.name,
            description=entry.description,
            artifact_type=entry.artifact_type,
            labels=entry.labels,
            properties=dict(entry.properties),
            content_type=content_type_for(entry.path),
        )
        version = self.registry.upload_artifact(entry.ref.group, entry.ref.artifact_id, content, metadata)
        return LockEntry(ref=entry.ref, direction=PUSH, version=version, fingerprint=content_fingerprint(content))

    def _pull(self, entry: PullEntry, version: str) -> LockEntry:
        content = self.registry.get_version_content(entry.ref.group, entry.ref.artifact_id, version)
        _write_bytes_atomic(self._local_path(entry), content)
        return LockEntry(ref=entry.ref, direction=PULL, version=version, fingerprint=content_fingerprint(content))

    @staticmethod
    def _pin(entry: PullEntry, version: str, lockfile: Lockfile) -> LockEntry:
        previous = lockfile.get(entry.ref, PULL)
        fingerprint = previous.fingerprint if previous is not None and previous.version == version else None
        return LockEntry(ref=entry.ref, direction=PULL, version=version, fingerprint=fingerprint)

    def _execute(self, item: PlanItem, lockfile: Lockfile) -> LockEntry | None:
        action = item.action
        entry = item.entry
        if action is None:
            raise AssertionError("unreachable")
        if action.kind == ACTION_PUSH and isinstance(entry, PushEntry):
            return self._push(entry)
        if not isinstance(entry, PullEntry) or action.version is None:
            raise AssertionError(f"unreachable: {action} for {item.direction} entry")
        if action.kind == ACTION_PULL_VERSION:
            return self._pull(entry, action.version)
        if action.kind == ACTION_PIN_ONLY:
            return self._pin(entry, action.version, lockfile)
        if action.kind == ACTION_SKIP_UP_TO_DATE:
            return None
        raise AssertionError(f"unknown action: {action.kind}")

    def apply(self, plan: SyncPlan, lockfile: Lockfile, lock_path: Path) -> SyncResult:
        original = lockfile.copy()
        outcomes: list[EntryOutcome] = []

        for item in plan.items:
            label = f"{item.ref.key} ({item.direction})"
            if item.error is not None:
                logger.warning("Skipping %s: %s", label, item.error)
                outcomes.append(EntryOutcome(item.ref, item.direction, None, error=str(item.error)))
                continue

            if item.action is None:
                raise AssertionError("unreachable")
            try:
                lock_entry = self._execute(item, lockfile)
            except (LocalFileError, RegistryError) as e:
                logger.warning("Failed %s %s: %s", item.action, label, e)
                outcomes.append(EntryOutcome(item.ref, item.direction, item.action.kind, item.action.version, error=str(e)))
                continue

            version = lock_entry.version if lock_entry is not None else item.action.version
            logger.info("%s %s -> %s", item.action.kind, label, version)
            if lock_entry is not None and lockfile.upsert(lock_entry):
                save_lockfile(lockfile, lock_path)
            outcomes.append(EntryOutcome(item.ref, item.direction, item.action.kind, version))

        pruned = lockfile.retain(set(plan.declared))
        for stale in pruned:
            logger.info("Dropping stale lock entry %s (%s)", stale.ref.key, stale.direction)
        changed = lockfile != original
        if pruned or not lock_path.exists():
            save_lockfile(lockfile, lock_path)

        return SyncResult(
            outcomes=tuple(outcomes),
            lock_path=lock_path,
            lock_changed=changed,
            pruned=tuple(f"{e.ref.key} ({e.direction})" for e in pruned),
        )

    def sync(self, manifest: Manifest, lockfile: Lockfile, lock_path: Path) -> SyncResult:
        return self.apply(self.plan(manifest, lockfile), lockfile, lock_path)

    def update(self, manifest: Manifest, lockfile: Lockfile, lock_path: Path) -> SyncResult:
        return self.apply(self.plan_update(manifest, lockfile), lockfile, lock_path)
