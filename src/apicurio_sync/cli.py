from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import textwrap
from dataclasses import asdict
from pathlib import Path
from typing import Any

from ._version import __version__
from .client import RegistryClient
from .config import (
    Auth,
    context_path,
    init_context_file,
    load_context_file,
    redact_secret,
    resolve_context,
    timeout_from_env,
    upsert_context,
)
from .errors import ApicurioSyncError, ConfigError, RegistryHTTPError
from .lockfile import Lockfile, load_lockfile, lockfile_path_for, save_lockfile
from .manifest import MANIFEST_FILENAME, load_manifest, write_empty_manifest
from .reconcile import ReconciliationEngine, SyncPlan, SyncResult

logger = logging.getLogger(__name__)

CONFIG_FILE_ENVAR = "APICURIO_SYNC_CONFIG_FILE"
WORKDIR_ENVAR = "APICURIO_SYNC_WORKDIR"


def _print_table(rows: list[list[str]]) -> None:
    if not rows:
        return
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    for r in rows:
        line = "  ".join(c.ljust(widths[i]) for i, c in enumerate(r))
        print(line.rstrip())


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="apicurio-sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Synchronize schemas and API definitions with an Apicurio registry.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              APICURIO_SYNC_CONFIG_FILE, APICURIO_SYNC_CONTEXT_FILE, APICURIO_SYNC_WORKDIR,
              APICURIO_SYNC_REGISTRY_URL, APICURIO_SYNC_CONTEXT_NAME, APICURIO_SYNC_TIMEOUT_S
            """
        ),
    )
    p.add_argument(
        "-f",
        "--config-file",
        default=os.getenv(CONFIG_FILE_ENVAR, MANIFEST_FILENAME),
        help=f"Manifest file to use (default: {MANIFEST_FILENAME})",
    )
    p.add_argument("--context-file", help="Context file to use (default: user config dir)")
    p.add_argument("--context", dest="context_name", help="Registry context to use instead of the current one")
    p.add_argument("--cwd", default=os.getenv(WORKDIR_ENVAR), help="Working directory (default: current directory)")
    p.add_argument("--timeout-s", type=float, help="HTTP timeout in seconds")
    p.add_argument("-d", "--debug", action="store_true", help="Print debug logs")
    p.add_argument("--version", action="version", version=f"apicurio-sync {__version__}")

    sub = p.add_subparsers(dest="cmd")

    sub.add_parser("init", help="Initialize an empty manifest and lockfile")

    sync = sub.add_parser(
        "sync",
        help="Synchronize artifacts with the registry",
        description=(
            "Push uploads local files to the registry; pull downloads the locked versions "
            "into the configured paths."
        ),
    )
    sync.add_argument("--dry-run", action="store_true", help="Print the plan without applying it")
    sync.add_argument("--json", action="store_true", help="Output JSON")

    update = sub.add_parser(
        "update",
        help="Update lockfile pins without downloading artifacts",
        description=(
            "Re-resolve pull entries to their requested (or latest) version and record them in the "
            "lockfile. Files are not touched; rerun `sync` to download them."
        ),
    )
    update.add_argument("--json", action="store_true", help="Output JSON")

    sub.add_parser("info", help="Print registry system information")

    ctx = sub.add_parser("context", help="Manage registry contexts")
    ctx_sub = ctx.add_subparsers(dest="subcmd", required=True)
    ctx_sub.add_parser("current", help="Print the current context name")
    ctx_sub.add_parser("init", help="Create an empty context file")
    ctx_sub.add_parser("show", help="Show all contexts (secrets redacted)")
    ctx_set = ctx_sub.add_parser("set", help="Create or update a context")
    ctx_set.add_argument("name", help="Context name")
    ctx_set.add_argument("-u", "--url", help="Registry URL")
    ctx_set.add_argument("-c", "--current", action="store_true", help="Make this the current context")

    login = ctx_sub.add_parser("login", help="Store credentials for the current context")
    login_sub = login.add_subparsers(dest="method", required=True)
    basic = login_sub.add_parser("basic", help="HTTP basic auth")
    basic.add_argument("-u", "--username", required=True)
    basic.add_argument("--password-stdin", action="store_true", help="Read the password from stdin")
    token = login_sub.add_parser("token", help="Bearer token (e.g. obtained from your identity provider)")
    token.add_argument("token", nargs="?", help="Token value")
    token.add_argument("--token-stdin", action="store_true", help="Read the token from stdin")
    login_sub.add_parser("none", help="Remove stored credentials")

    return p


def _workdir(args: argparse.Namespace) -> Path:
    return Path(args.cwd).expanduser() if args.cwd else Path.cwd()


def _manifest_path(args: argparse.Namespace) -> Path:
    path = Path(args.config_file).expanduser()
    if path.is_absolute():
        return path
    return _workdir(args) / path


def _make_registry_client(args: argparse.Namespace) -> RegistryClient:
    ctx = resolve_context(args.context_name, path_override=args.context_file)
    timeout_s = args.timeout_s or timeout_from_env()
    logger.debug("Using context %s (%s)", ctx.name, ctx.registry_url)
    return RegistryClient.from_context(ctx, timeout_s=timeout_s)


def _plan_payload(plan: SyncPlan) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for item in plan.items:
        rows.append(
            {
                "group": item.ref.group,
                "artifact_id": item.ref.artifact_id,
                "direction": item.direction,
                "path": str(item.entry.path),
                "action": item.action.kind if item.action else None,
                "version": item.action.version if item.action else None,
                "error": str(item.error) if item.error else None,
            }
        )
    return rows


def _print_plan(plan: SyncPlan, *, as_json: bool) -> int:
    rows = _plan_payload(plan)
    if as_json:
        print(json.dumps({"plan": rows}, indent=2, sort_keys=True))
    else:
        table = [["ARTIFACT", "DIRECTION", "ACTION", "VERSION", "PATH"]]
        for r in rows:
            table.append(
                [
                    f"{r['group']}/{r['artifact_id']}",
                    r["direction"],
                    r["action"] or "error",
                    r["version"] or "-",
                    r["path"],
                ]
            )
        _print_table(table)
        for r in rows:
            if r["error"]:
                print(f"failed: {r['group']}/{r['artifact_id']} ({r['direction']}): {r['error']}", file=sys.stderr)
    return 1 if any(r["error"] for r in rows) else 0


def _print_result(result: SyncResult, *, as_json: bool) -> int:
    if as_json:
        payload = {
            "lock_path": str(result.lock_path),
            "lock_changed": result.lock_changed,
            "pruned": list(result.pruned),
            "failed": result.failed,
            "entries": [
                {
                    "group": o.ref.group,
                    "artifact_id": o.ref.artifact_id,
                    "direction": o.direction,
                    "action": o.action,
                    "version": o.version,
                    "ok": o.ok,
                    "error": o.error,
                }
                for o in result.outcomes
            ],
        }
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 1 if result.failed else 0

    print(f"lock: {result.lock_path}")
    table = [["ARTIFACT", "DIRECTION", "ACTION", "VERSION", "STATUS"]]
    for o in result.outcomes:
        table.append([o.ref.key, o.direction, o.action or "-", o.version or "-", "ok" if o.ok else "failed"])
    _print_table(table)
    for key in result.pruned:
        print(f"pruned: {key}")
    for o in result.failures:
        print(f"failed: {o.ref.key} ({o.direction}): {o.error}", file=sys.stderr)
    return 1 if result.failed else 0


def cmd_init(args: argparse.Namespace) -> int:
    manifest_path = _manifest_path(args)
    write_empty_manifest(manifest_path)
    lock_path = lockfile_path_for(manifest_path)
    if not lock_path.exists():
        save_lockfile(Lockfile(), lock_path)
    print(f"config: {manifest_path}")
    print(f"lock: {lock_path}")
    return 0


def cmd_sync(args: argparse.Namespace) -> int:
    manifest_path = _manifest_path(args)
    manifest = load_manifest(manifest_path)
    lock_path = lockfile_path_for(manifest_path)
    lockfile = load_lockfile(lock_path)
    as_json = bool(getattr(args, "json", False))

    client = _make_registry_client(args)
    try:
        engine = ReconciliationEngine(registry=client, workdir=_workdir(args))
        if getattr(args, "dry_run", False):
            return _print_plan(engine.plan(manifest, lockfile), as_json=as_json)
        logger.info("Syncing artifacts with remote registry")
        result = engine.sync(manifest, lockfile, lock_path)
    finally:
        client.close()
    logger.info("Sync completed")
    return _print_result(result, as_json=as_json)


def cmd_update(args: argparse.Namespace) -> int:
    manifest_path = _manifest_path(args)
    manifest = load_manifest(manifest_path)
    lock_path = lockfile_path_for(manifest_path)
    lockfile = load_lockfile(lock_path)

    client = _make_registry_client(args)
    try:
        engine = ReconciliationEngine(registry=client, workdir=_workdir(args))
        logger.info("Updating lockfile with remote registry")
        result = engine.update(manifest, lockfile, lock_path)
    finally:
        client.close()
    logger.info("Lockfile update completed. Rerun sync to update the artifacts")
    return _print_result(result, as_json=bool(args.json))


def cmd_info(args: argparse.Namespace) -> int:
    client = _make_registry_client(args)
    try:
        info = client.system_info()
    finally:
        client.close()
    print(json.dumps(info, indent=2, sort_keys=True))
    return 0


def _read_stdin_line() -> str:
    return sys.stdin.readline().rstrip("\r\n")


def cmd_context(args: argparse.Namespace) -> int:
    path_override = args.context_file

    if args.subcmd == "current":
        ctx = resolve_context(args.context_name, path_override=path_override)
        print(ctx.name)
        return 0

    if args.subcmd == "init":
        path = init_context_file(path_override)
        print(f"Initialized empty context file: {path}")
        return 0

    if args.subcmd == "show":
        ctx_file = load_context_file(path_override)
        contexts: dict[str, Any] = {}
        for name, ctx in ctx_file.contexts.items():
            auth = asdict(ctx.auth)
            auth["password"] = redact_secret(ctx.auth.password)
            auth["token"] = redact_secret(ctx.auth.token)
            contexts[name] = {"url": ctx.registry_url, "auth": auth}
        print(json.dumps({"current_context": ctx_file.current_context, "contexts": contexts}, indent=2, sort_keys=True))
        return 0

    if args.subcmd == "set":
        upsert_context(args.name, url=args.url, make_current=args.current, path_override=path_override)
        print(f"Updated context {args.name}")
        return 0

    if args.subcmd == "login":
        ctx_file = load_context_file(path_override)
        name = args.context_name or ctx_file.current_context
        if not name or name not in ctx_file.contexts:
            raise ConfigError("No current context configured!")

        if args.method == "basic":
            password = _read_stdin_line() if args.password_stdin else None
            auth = Auth(kind="basic", username=args.username, password=password)
        elif args.method == "token":
            value = _read_stdin_line() if args.token_stdin else args.token
            if not value:
                raise ConfigError("Provide a token argument or --token-stdin.")
            auth = Auth(kind="token", token=value.strip())
        else:
            auth = Auth()

        upsert_context(name, auth=auth, make_current=True, path_override=path_override)
        print(f"Updated auth for context {name} in {context_path(path_override)}")
        return 0

    raise AssertionError("unreachable")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.cmd == "init":
            return cmd_init(args)
        if args.cmd in (None, "sync"):
            return cmd_sync(args)
        if args.cmd == "update":
            return cmd_update(args)
        if args.cmd == "info":
            return cmd_info(args)
        if args.cmd == "context":
            return cmd_context(args)
        raise AssertionError("unreachable")
    except RegistryHTTPError as e:
        print(f"error: HTTP {e.status_code} from registry. {e.body}".rstrip(), file=sys.stderr)
        return 1
    except ApicurioSyncError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
