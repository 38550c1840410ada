from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError, DuplicateArtifactError

MANIFEST_FILENAME = "apicurio-sync.yaml"
DEFAULT_GROUP = "default"

ARTIFACT_TYPES = (
    "AVRO",
    "PROTOBUF",
    "JSON",
    "KCONNECT",
    "OPENAPI",
    "ASYNCAPI",
    "GRAPHQL",
    "WSDL",
    "XSD",
)

PUSH = "push"
PULL = "pull"
DIRECTIONS = (PUSH, PULL)


@dataclass(frozen=True, order=True)
class ArtifactRef:
    group: str
    artifact_id: str

    @property
    def key(self) -> str:
        return f"{self.group}/{self.artifact_id}"


def make_ref(group: str | None, artifact_id: str) -> ArtifactRef:
    group_s = (group or "").strip() or DEFAULT_GROUP
    artifact_s = (artifact_id or "").strip()
    if not artifact_s:
        raise ConfigError("Artifact id must not be empty.")
    return ArtifactRef(group=group_s, artifact_id=artifact_s)


@dataclass(frozen=True)
class PushEntry:
    ref: ArtifactRef
    path: Path
    artifact_type: str | None = None
    name: str | None = None
    description: str | None = None
    labels: tuple[str, ...] = ()
    properties: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PullEntry:
    ref: ArtifactRef
    path: Path
    version: str | None = None


@dataclass(frozen=True)
class Manifest:
    push: tuple[PushEntry, ...] = ()
    pull: tuple[PullEntry, ...] = ()
    path: Path | None = None

    def validate(self) -> None:
        """Reject entries sharing an ArtifactRef within one direction."""
        for direction, entries in ((PUSH, self.push), (PULL, self.pull)):
            seen: set[ArtifactRef] = set()
            for entry in entries:
                if entry.ref in seen:
                    raise DuplicateArtifactError(
                        f"Duplicate {direction} entry for artifact {entry.ref.key} in manifest."
                    )
                seen.add(entry.ref)


def _optional_str(raw: dict[str, Any], key: str, *, where: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ConfigError(f"{where}: '{key}' must be a string.")
    if key == "version" and isinstance(value, float):
        # YAML has already collapsed e.g. 1.10 to 1.1.
        raise ConfigError(f"{where}: 'version' was read as the number {value!r}. Quote it, e.g. version: \"1.10\".")
    value_s = str(value).strip()
    return value_s or None


def _required_str(raw: dict[str, Any], key: str, *, where: str) -> str:
    value = _optional_str(raw, key, where=where)
    if value is None:
        raise ConfigError(f"{where}: missing required field '{key}'.")
    return value


def _parse_artifact_type(raw: dict[str, Any], *, where: str) -> str | None:
    value = _optional_str(raw, "type", where=where)
    if value is None:
        return None
    upper = value.upper()
    if upper not in ARTIFACT_TYPES:
        raise ConfigError(f"{where}: unsupported artifact type {value!r}. Expected one of: {', '.join(ARTIFACT_TYPES)}.")
    return upper


def _parse_labels(raw: dict[str, Any], *, where: str) -> tuple[str, ...]:
    value = raw.get("labels")
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ConfigError(f"{where}: 'labels' must be a list of strings.")
    labels: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"{where}: 'labels' must be a list of strings.")
        labels.append(item)
    return tuple(labels)


def _parse_properties(raw: dict[str, Any], *, where: str) -> dict[str, str]:
    value = raw.get("properties")
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{where}: 'properties' must be a mapping.")
    return {str(k): "" if v is None else str(v) for k, v in value.items()}


def _parse_push_entry(raw: Any, *, index: int) -> PushEntry:
    where = f"push[{index}]"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: expected a mapping.")
    ref = make_ref(_optional_str(raw, "group", where=where), _required_str(raw, "artifact", where=where))
    return PushEntry(
        ref=ref,
        path=Path(_required_str(raw, "path", where=where)),
        artifact_type=_parse_artifact_type(raw, where=where),
        name=_optional_str(raw, "name", where=where),
        description=_optional_str(raw, "description", where=where),
        labels=_parse_labels(raw, where=where),
        properties=_parse_properties(raw, where=where),
    )


def _parse_pull_entry(raw: Any, *, index: int) -> PullEntry:
    where = f"pull[{index}]"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: expected a mapping.")
    ref = make_ref(_optional_str(raw, "group", where=where), _required_str(raw, "artifact", where=where))
    return PullEntry(
        ref=ref,
        path=Path(_required_str(raw, "path", where=where)),
        version=_optional_str(raw, "version", where=where),
    )


def parse_manifest(raw: Any, *, path: Path | None = None) -> Manifest:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("Manifest must be a mapping with 'push' and/or 'pull' lists.")

    push_raw = raw.get("push") or []
    pull_raw = raw.get("pull") or []
    if not isinstance(push_raw, list):
        raise ConfigError("Manifest field 'push' must be a list.")
    if not isinstance(pull_raw, list):
        raise ConfigError("Manifest field 'pull' must be a list.")

    manifest = Manifest(
        push=tuple(_parse_push_entry(item, index=i) for i, item in enumerate(push_raw)),
        pull=tuple(_parse_pull_entry(item, index=i) for i, item in enumerate(pull_raw)),
        path=path,
    )
    manifest.validate()
    return manifest


def load_manifest(path: Path) -> Manifest:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}. Run `apicurio-sync init` to create one.") from e
    except OSError as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return parse_manifest(raw, path=path)


def write_empty_manifest(path: Path) -> Manifest:
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with path.open("x", encoding="utf-8") as f:
            yaml.safe_dump({"push": [], "pull": []}, f, sort_keys=False)
    except FileExistsError as e:
        raise ConfigError(f"Config file already exists: {path}") from e
    return Manifest(path=path)
