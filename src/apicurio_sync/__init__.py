from ._version import __version__
from .client import ArtifactMetadata, RegistryClient
from .errors import (
    ApicurioSyncError,
    ConfigError,
    DuplicateArtifactError,
    LocalFileError,
    LockfileCorrupt,
    RegistryError,
    RegistryHTTPError,
    RegistryNotFound,
    RegistryUnavailable,
)
from .lockfile import LockEntry, Lockfile, load_lockfile, save_lockfile
from .manifest import ArtifactRef, Manifest, PullEntry, PushEntry, load_manifest
from .reconcile import ReconciliationEngine, SyncPlan, SyncResult

__all__ = [
    "__version__",
    "ApicurioSyncError",
    "ArtifactMetadata",
    "ArtifactRef",
    "ConfigError",
    "DuplicateArtifactError",
    "LocalFileError",
    "LockEntry",
    "Lockfile",
    "LockfileCorrupt",
    "Manifest",
    "PullEntry",
    "PushEntry",
    "ReconciliationEngine",
    "RegistryClient",
    "RegistryError",
    "RegistryHTTPError",
    "RegistryNotFound",
    "RegistryUnavailable",
    "SyncPlan",
    "SyncResult",
    "load_lockfile",
    "load_manifest",
    "save_lockfile",
]
