"""Command-line interface for site-deployer."""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass
from typing import Optional

from .config import AppConfig, load_config
from .orchestrator import DeploymentInProgress, DeploymentOutcome, DeploymentPipeline
from .paths import get_configs_file, get_history_dir
from .security import MissingEncryptionKey, SecretCipher
from .store import ConfigStore, DeploymentConfig, DeploymentHistory, HistoryStore
from .utils.logging import set_verbosity

STATUS_EMOJI = {
    "success": "✅",
    "warning": "⚠️",
    "failed": "❌",
    "uploading": "🔄",
    "pending": "⏳",
}


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    data_dir: str


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="site-deployer",
        description="Build a static site export and publish it over FTP.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Directory holding stored configurations, history and locks.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser("deploy", help="Run the deployment pipeline")
    deploy_parser.add_argument("--name", default=None, help="Deployment configuration name (default: Production)")
    deploy_parser.add_argument("--actor", default=None, help="Who triggered the run")
    deploy_parser.add_argument("--project-dir", default=None, help="Project working tree to build")
    deploy_parser.add_argument("--json", action="store_true", help="Print the outcome as JSON")

    history_parser = subparsers.add_parser("history", help="View deployment history")
    history_parser.add_argument(
        "--list", "-l", action="store_true", dest="list_runs",
        help="List recent deployments"
    )
    history_parser.add_argument("--latest", action="store_true", help="Show the latest deployment")
    history_parser.add_argument("--show", type=str, metavar="ID", help="Show a specific deployment")
    history_parser.add_argument(
        "--summary", "-s", action="store_true",
        help="Show summary only (no build output)"
    )
    history_parser.add_argument("--limit", type=int, default=20, help="Rows shown by --list")

    config_parser = subparsers.add_parser("config", help="Manage deployment configurations")
    config_sub = config_parser.add_subparsers(dest="config_command", required=True)

    show_parser = config_sub.add_parser("show", help="Show stored configurations (secrets masked)")
    show_parser.add_argument("--name", default=None, help="Only show this configuration")

    set_parser = config_sub.add_parser("set", help="Create or update a configuration")
    set_parser.add_argument("--name", required=True)
    set_parser.add_argument("--ftp-server")
    set_parser.add_argument("--ftp-username")
    set_parser.add_argument("--ftp-password", help="Stored encrypted")
    set_parser.add_argument("--ftp-server-dir")
    set_parser.add_argument("--protocol", choices=["ftp", "ftps", "sftp"])
    set_parser.add_argument("--ftp-port", type=int)
    set_parser.add_argument("--build-output-dir")
    set_parser.add_argument("--server-url")
    set_parser.add_argument("--db-host")
    set_parser.add_argument("--db-username")
    set_parser.add_argument("--db-password", help="Stored encrypted")
    set_parser.add_argument("--db-name")
    set_parser.add_argument("--db-port", type=int)

    subparsers.add_parser("encrypt", help="Encrypt a secret read from stdin")

    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.config)
    if args.data_dir:
        config.storage.data_dir = args.data_dir
    if getattr(args, "project_dir", None):
        config.project_dir = args.project_dir
    return CLIContext(config=config, data_dir=config.storage.data_dir)


def handle_deploy_command(args: argparse.Namespace, context: CLIContext) -> int:
    try:
        cipher = SecretCipher.from_env()
    except MissingEncryptionKey as exc:
        print(f"❌ {exc}")
        return 1

    pipeline = DeploymentPipeline.from_config(context.config, cipher)
    try:
        outcome = pipeline.run(args.name, actor=args.actor)
    except DeploymentInProgress as exc:
        print(f"⏳ {exc}")
        return 1

    if args.json:
        print(json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False))
    else:
        show_outcome(outcome)
    return 0 if outcome.success else 1


def show_outcome(outcome: DeploymentOutcome) -> None:
    data = outcome.to_dict()
    status = data["status"]

    print(f"\n{'='*60}")
    print(f"{STATUS_EMOJI.get(status, '❓')} Deployment {data['deploymentId']}: {status}")
    print(f"{'='*60}")
    if data["error"]:
        print(f"💥 Error ({data['step']}): {data['error']}")
    if data["url"]:
        print(f"🔗 URL:        {data['url']}")
    if data["buildDuration"] is not None:
        print(f"📦 Build:      {data['buildDuration']:.1f}s")
    if data["ftpDuration"] is not None:
        print(f"📤 Upload:     {data['ftpDuration']:.1f}s ({data['filesUploaded'] or 0} files)")
    if data["dbSyncDuration"] is not None:
        print(f"🗃️  Database:   {data['dbSyncDuration']:.1f}s {data['dbDumpFile'] or ''}")
    health = data["healthCheck"]
    if health:
        state = "up" if health["success"] else health.get("error") or "down"
        print(f"🩺 Health:     {state} ({health.get('response_time') or 0} ms)")
    if data["canRollback"]:
        print(f"🗄️  Rollback:   {data['backupPath']}")
    print(f"{'='*60}")

    if outcome.db_import_instructions:
        print("\n📋 Import the database dump manually:")
        for line in outcome.db_import_instructions:
            print(f"   {line}")
    print()


def handle_history_command(args: argparse.Namespace, context: CLIContext) -> int:
    """Handle the history subcommand."""
    store = HistoryStore(get_history_dir(context.data_dir))

    if args.show:
        record = store.get(args.show)
        if record is None:
            print(f"❌ Deployment not found: {args.show}")
            return 1
        show_history_record(record, summary_only=args.summary)
        return 0

    records = store.list_recent(limit=None if args.latest else args.limit)
    if not records:
        print("📁 No deployments recorded. Run a deployment first.")
        return 0

    if args.list_runs:
        print(f"📁 Deployment history in: {store.directory}\n")
        print(f"{'#':<4} {'Status':<12} {'Step':<14} {'Started':<20} {'Files':<7} {'ID'}")
        print("-" * 100)
        for i, record in enumerate(records, 1):
            status = record.status.value
            started = (record.started_at or "")[:19].replace("T", " ")
            files = record.files_uploaded if record.files_uploaded is not None else "-"
            print(
                f"{i:<4} {STATUS_EMOJI.get(status, '❓')} {status:<10} {record.step.value:<14} "
                f"{started:<20} {files!s:<7} {record.id}"
            )
        return 0

    # Default: latest run
    show_history_record(records[0], summary_only=args.summary)
    return 0


def show_history_record(record: DeploymentHistory, summary_only: bool = False) -> None:
    """Display one deployment record."""
    status = record.status.value

    print(f"\n{'='*60}")
    print(f"📄 Deployment: {record.id}")
    print(f"{'='*60}")
    print(f"⚙️  Config:     {record.config_id or 'environment'}")
    print(f"👤 Actor:      {record.created_by or 'N/A'}")
    print(f"⏰ Started:    {record.started_at or 'N/A'}")
    print(f"⏱️  Completed:  {record.completed_at or 'N/A'}")
    print(f"{STATUS_EMOJI.get(status, '❓')} Status:     {status} (step: {record.step.value})")
    if record.error:
        print(f"💥 Error:      {record.error}")
    if record.deployed_url:
        print(f"🔗 URL:        {record.deployed_url}")
    print(f"{'='*60}\n")

    if summary_only:
        return

    for key, value in record.to_dict().items():
        if key in ("id", "configId", "createdById", "status", "step", "error", "startedAt", "completedAt"):
            continue
        if value in (None, {}, []):
            continue
        if isinstance(value, (dict, list)):
            value = json.dumps(value, ensure_ascii=False)
        text = str(value)
        lines = text.splitlines() or [""]
        print(f"    {key}: {lines[0][:100]}")
        for line in lines[1:10]:
            print(f"    │ {line[:100]}")
        if len(lines) > 10:
            print(f"    │ ... ({len(lines)} lines total)")
    print()


def handle_config_command(args: argparse.Namespace, context: CLIContext) -> int:
    store = ConfigStore(get_configs_file(context.data_dir))

    if args.config_command == "show":
        configs = store.list()
        if args.name:
            configs = [c for c in configs if c.name == args.name]
        if not configs:
            print("📁 No stored configurations.")
            return 0 if not args.name else 1
        print(json.dumps([c.to_public_dict() for c in configs], indent=2, ensure_ascii=False))
        return 0

    if args.config_command == "set":
        return _set_config(args, store)

    raise ValueError(f"Unsupported config command: {args.config_command}")


def _set_config(args: argparse.Namespace, store: ConfigStore) -> int:
    config = store.get_by_name(args.name) or DeploymentConfig(name=args.name)

    plain_fields = (
        "ftp_server", "ftp_username", "ftp_server_dir", "protocol", "ftp_port",
        "build_output_dir", "server_url", "db_host", "db_username", "db_name", "db_port",
    )
    for field_name in plain_fields:
        value = getattr(args, field_name)
        if value is not None:
            setattr(config, field_name, value)

    secrets = {k: getattr(args, k) for k in ("ftp_password", "db_password") if getattr(args, k)}
    if secrets:
        try:
            cipher = SecretCipher.from_env()
        except MissingEncryptionKey as exc:
            print(f"❌ {exc}")
            return 1
        for field_name, value in secrets.items():
            setattr(config, field_name, cipher.encrypt(value))

    saved = store.save(config)
    print(f"✅ Saved configuration {saved.name!r} ({saved.id})")
    return 0


def handle_encrypt_command(args: argparse.Namespace) -> int:
    try:
        cipher = SecretCipher.from_env()
    except MissingEncryptionKey as exc:
        print(f"❌ {exc}")
        return 1
    secret = sys.stdin.readline().rstrip("\r\n")
    if not secret:
        print("❌ No secret provided on stdin")
        return 1
    print(cipher.encrypt(secret))
    return 0


def dispatch_command(args: argparse.Namespace) -> int:
    set_verbosity(args.verbose)

    if args.command == "encrypt":
        return handle_encrypt_command(args)

    context = _build_context(args)

    if args.command == "deploy":
        return handle_deploy_command(args, context)
    if args.command == "history":
        return handle_history_command(args, context)
    if args.command == "config":
        return handle_config_command(args, context)

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return dispatch_command(args)
