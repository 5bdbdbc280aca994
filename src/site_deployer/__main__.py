"""CLI entrypoints for Site Deployer (serve, deploy, delete, purge)."""

from __future__ import annotations

import argparse
import os
import sys
import tempfile
from pathlib import Path

from site_deployer.core.config import Settings
from site_deployer.core.exceptions import DeployError, FetchError
from site_deployer.utils.logging import setup_logging
from site_deployer.utils.paths import sanitized_path_join


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="site-deployer", description="Transactional site deployer")
    parser.add_argument("--root", help="Site root (defaults to SITE_DEPLOYER_ROOT or ./site)")
    sub = parser.add_subparsers(dest="cmd")

    cmd_serve = sub.add_parser("serve", help="Run the HTTP deployer")
    cmd_serve.add_argument("--host", help="Bind address")
    cmd_serve.add_argument("--port", type=int, help="Bind port")

    cmd_deploy = sub.add_parser("deploy", help="Deploy a local file or URL to a path below the root")
    cmd_deploy.add_argument("target", help="Path below the root; a trailing '/' deploys a tar archive as a directory")
    cmd_deploy.add_argument("source", help="Local file or http(s) URL")
    cmd_deploy.add_argument("--content-type", help="Archive content-type for directory targets")
    cmd_deploy.add_argument("--sha256", help="Expected SHA256 of a downloaded artifact")

    cmd_delete = sub.add_parser("delete", help="Delete a path below the root")
    cmd_delete.add_argument("target", help="Path below the root")

    cmd_purge = sub.add_parser("purge", help="Remove staging leftovers of crashed deployments")
    cmd_purge.add_argument(
        "directory",
        nargs="?",
        help="Remove everything named like an artifact directly inside this directory, journaled or not",
    )
    cmd_purge.add_argument("--include-backups", action="store_true", help="Also remove backups whose target exists")

    return parser


def _guess_content_type(source: str) -> str | None:
    if source.endswith((".tar.gz", ".tgz")):
        return "application/x-tar+gzip"
    if source.endswith(".tar"):
        return "application/x-tar"
    return None


def _deploy(settings: Settings, args: argparse.Namespace) -> int:
    from site_deployer.deploy.fetch import fetch_artifact, is_remote_source
    from site_deployer.deploy.manager import DeploymentManager

    manager = DeploymentManager(settings.root, history_size=settings.history_size)
    target = sanitized_path_join(settings.root, args.target)
    content_type = args.content_type

    with tempfile.TemporaryDirectory(prefix="site-deployer-") as tmp:
        source = args.source
        if is_remote_source(source):
            local = Path(tmp) / "artifact"
            served_type = fetch_artifact(
                source,
                local,
                max_size_bytes=settings.max_size_bytes,
                sha256=args.sha256,
            )
            content_type = content_type or served_type
            source = str(local)
        content_type = content_type or _guess_content_type(args.source)

        reader = open(source, "rb")
        record = manager.deploy(target, reader, content_type, args.target.endswith("/"))

    print(f"{record.status.value} {record.transaction_id} {args.target}")
    return 0


def _delete(settings: Settings, args: argparse.Namespace) -> int:
    from site_deployer.deploy.manager import DeploymentManager

    manager = DeploymentManager(settings.root, history_size=settings.history_size)
    target = sanitized_path_join(settings.root, args.target)
    record = manager.delete(target, args.target.endswith("/"))
    print(f"{record.status.value} {record.transaction_id} {args.target}")
    return 0


def _purge(settings: Settings, args: argparse.Namespace) -> int:
    from site_deployer.deploy.cleanup import purge_stale_artifacts
    from site_deployer.deploy.manager import DEPLOY_LOCK, DeploymentManager

    if args.directory:
        with DEPLOY_LOCK:
            removed = purge_stale_artifacts(args.directory, include_backups=args.include_backups)
    else:
        manager = DeploymentManager(settings.root, history_size=settings.history_size)
        removed = manager.purge_stale(include_backups=args.include_backups)

    for path in removed:
        print(f"removed {path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    overrides = {}
    if args.root:
        overrides["root"] = args.root
    if args.cmd == "serve":
        if args.host:
            overrides["host"] = args.host
        if args.port:
            overrides["port"] = args.port
    settings = Settings(**overrides)

    if args.cmd in (None, "serve"):
        from site_deployer.main import run

        if args.root:
            # Reloaded or forked workers rebuild settings from the environment
            os.environ["SITE_DEPLOYER_ROOT"] = settings.root
        run(settings)
        return 0

    setup_logging(settings.log_level, settings.log_format)
    os.makedirs(settings.root, exist_ok=True)

    handlers = {"deploy": _deploy, "delete": _delete, "purge": _purge}
    try:
        return handlers[args.cmd](settings, args)
    except DeployError as e:
        print(f"ERROR: {e.kind.value}: {e.public_detail or e}", file=sys.stderr)
        return 1
    except (FetchError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
