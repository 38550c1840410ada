from __future__ import annotations

import json
import os
import stat
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any

from platformdirs import user_config_path

from .errors import ConfigError

DEFAULT_TIMEOUT_S = 30.0

CONTEXT_FILE_ENVAR = "APICURIO_SYNC_CONTEXT_FILE"
CONTEXT_NAME_ENVAR = "APICURIO_SYNC_CONTEXT_NAME"
REGISTRY_URL_ENVAR = "APICURIO_SYNC_REGISTRY_URL"
TIMEOUT_ENVAR = "APICURIO_SYNC_TIMEOUT_S"

AUTH_KINDS = ("none", "basic", "token")


@dataclass(frozen=True)
class Auth:
    kind: str = "none"  # "none" | "basic" | "token"
    username: str | None = None
    password: str | None = None
    token: str | None = None


@dataclass(frozen=True)
class RegistryContext:
    name: str
    registry_url: str
    auth: Auth = field(default_factory=Auth)


@dataclass(frozen=True)
class ContextFile:
    current_context: str | None = None
    contexts: dict[str, RegistryContext] = field(default_factory=dict)


def context_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv(CONTEXT_FILE_ENVAR):
        return Path(env).expanduser()
    return user_config_path("apicurio-sync") / "context.json"


def _parse_auth(raw: Any) -> Auth:
    if not isinstance(raw, dict):
        return Auth()
    kind = raw.get("kind") or raw.get("type") or "none"
    if kind not in AUTH_KINDS:
        return Auth()
    allowed = {f for f in Auth.__dataclass_fields__}  # type: ignore[attr-defined]
    filtered = {k: v for k, v in raw.items() if k in allowed and (v is None or isinstance(v, str))}
    filtered["kind"] = kind
    return Auth(**filtered)


def load_context_file(path_override: str | Path | None = None) -> ContextFile:
    path = context_path(path_override)
    if not path.exists():
        return ContextFile()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Context file {path} is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        return ContextFile()

    contexts: dict[str, RegistryContext] = {}
    raw_contexts = raw.get("contexts")
    if isinstance(raw_contexts, dict):
        for name, item in raw_contexts.items():
            if not isinstance(name, str) or not isinstance(item, dict):
                continue
            url = item.get("url")
            if not isinstance(url, str) or not url.strip():
                continue
            contexts[name] = RegistryContext(name=name, registry_url=url.strip(), auth=_parse_auth(item.get("auth")))

    current = raw.get("current_context")
    return ContextFile(current_context=current if isinstance(current, str) else None, contexts=contexts)


def save_context_file(ctx_file: ContextFile, path_override: str | Path | None = None) -> Path:
    path = context_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = {
        "current_context": ctx_file.current_context,
        "contexts": {
            name: {"url": ctx.registry_url, "auth": asdict(ctx.auth)}
            for name, ctx in sorted(ctx_file.contexts.items())
        },
    }
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)

    # Best-effort permissions hardening (credentials live here).
    try:
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    except OSError:
        pass

    return path


def init_context_file(path_override: str | Path | None = None) -> Path:
    path = context_path(path_override)
    if path.exists():
        raise ConfigError(f"Context file already exists: {path}")
    return save_context_file(ContextFile(), path_override)


def upsert_context(
    name: str,
    *,
    url: str | None = None,
    auth: Auth | None = None,
    make_current: bool = False,
    path_override: str | Path | None = None,
) -> RegistryContext:
    ctx_file = load_context_file(path_override)
    existing = ctx_file.contexts.get(name)
    if existing is None:
        if not url:
            raise ConfigError("URL is required to create a new context.")
        ctx = RegistryContext(name=name, registry_url=url.rstrip("/"), auth=auth or Auth())
    else:
        ctx = existing
        if url:
            ctx = replace(ctx, registry_url=url.rstrip("/"))
        if auth is not None:
            ctx = replace(ctx, auth=auth)

    contexts = dict(ctx_file.contexts)
    contexts[name] = ctx
    current = name if make_current else ctx_file.current_context
    save_context_file(ContextFile(current_context=current, contexts=contexts), path_override)
    return ctx


def resolve_context(
    name: str | None = None,
    *,
    path_override: str | Path | None = None,
) -> RegistryContext:
    """
    Pick the registry a run targets.

    The file context is chosen by ``name`` or the file's current context. The
    registry URL env var overrides the file's URL, or defines a context on its
    own when the file has none.
    """
    ctx_file = load_context_file(path_override)
    selected = name or ctx_file.current_context
    file_ctx = ctx_file.contexts.get(selected) if selected else None
    if name and file_ctx is None:
        raise ConfigError(f"Unknown context: {name}")

    env_url = os.getenv(REGISTRY_URL_ENVAR)
    if env_url:
        if file_ctx is not None:
            return replace(file_ctx, registry_url=env_url.rstrip("/"))
        env_name = os.getenv(CONTEXT_NAME_ENVAR) or env_url
        return RegistryContext(name=env_name, registry_url=env_url.rstrip("/"))

    if file_ctx is None:
        raise ConfigError(
            "No registry context configured. Run `apicurio-sync context set <name> --url <url> --current` "
            f"or set {REGISTRY_URL_ENVAR}."
        )
    return file_ctx


def timeout_from_env(default: float = DEFAULT_TIMEOUT_S) -> float:
    raw = os.getenv(TIMEOUT_ENVAR)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def redact_secret(secret: str | None) -> str | None:
    if not secret:
        return secret
    if len(secret) <= 10:
        return secret[:2] + "..." + secret[-2:]
    return secret[:6] + "..." + secret[-4:]
