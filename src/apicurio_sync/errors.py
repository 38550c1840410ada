from __future__ import annotations

from dataclasses import dataclass


class ApicurioSyncError(RuntimeError):
    pass


class ConfigError(ApicurioSyncError):
    pass


class DuplicateArtifactError(ConfigError):
    pass


class LocalFileError(ApicurioSyncError):
    pass


class LockfileCorrupt(ApicurioSyncError):
    pass


class RegistryError(ApicurioSyncError):
    pass


class RegistryNotFound(RegistryError):
    pass


class RegistryUnavailable(RegistryError):
    pass


@dataclass(frozen=True)
class RegistryHTTPError(RegistryError):
    status_code: int
    body: str

    def __str__(self) -> str:
        return f"HTTP {self.status_code}: {self.body}"
