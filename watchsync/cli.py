"""CLI interface for WatchSync."""

import logging
from pathlib import Path
from typing import Any, Optional

import click

from .api import UploadClient
from .config import config
from .crypto import list_methods
from .exceptions import StateError, WatchConfigError, WatchSyncError
from .output import OutputFormatter
from .sync.fingerprint import FingerprintMode
from .sync.registry import WatchRegistry, run_until_interrupted

logger = logging.getLogger(__name__)


def _get_registry(ctx: Any) -> WatchRegistry:
    """Build the registry for the selected state file once per invocation."""
    registry = ctx.obj.get("registry")
    if registry is None:
        uploader = UploadClient()
        ctx.obj["uploader"] = uploader
        registry = WatchRegistry.create(ctx.obj["state_file"], uploader)
        ctx.obj["registry"] = registry
        ctx.call_on_close(uploader.close)
    return registry


def _watch_row(entry: Any, running: bool) -> dict:
    return {
        "local": entry.local,
        "remote": entry.remote,
        "interval": entry.interval,
        "mode": entry.mode.value,
        "fingerprint": entry.effective_fingerprint.value,
        "encrypted": entry.encrypted,
        "method": entry.method,
        "anonymize_names": entry.anonymize_names,
        "ignore_file": entry.ignore_file,
        "files": len(entry.files),
        "running": running,
    }


@click.group()
@click.option(
    "--state-file",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="WATCHSYNC_STATE_FILE",
    default=None,
    help="Registry file (default: ~/.config/watchsync/sync_config.json)",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pywatchsync")
@click.pass_context
def main(
    ctx: Any,
    state_file: Optional[Path],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """WatchSync - Periodically sync local directories to remote storage."""
    ctx.ensure_object(dict)
    ctx.obj["state_file"] = state_file or config.state_file
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("watchsync").setLevel(logging.DEBUG)
    elif quiet:
        logging.basicConfig(level=logging.WARNING)
    else:
        # Pass summaries and per-file decisions are INFO records
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(message)s",
            datefmt="%H:%M:%S",
        )


@main.command()
@click.argument("local", type=click.Path(file_okay=False, path_type=Path))
@click.argument("remote")
@click.option(
    "--interval",
    "-i",
    type=click.IntRange(min=1),
    default=60,
    show_default=True,
    help="Seconds between sync passes",
)
@click.option("--key", "-k", default=None, help="Encrypt uploads with this passphrase")
@click.option(
    "--method",
    "-m",
    type=click.Choice(list_methods()),
    default=None,
    help="Encryption method (default: aes-128-ctr)",
)
@click.option(
    "--ignore-file",
    default=None,
    help="Ignore file, absolute or relative to LOCAL (default: .syncignore)",
)
@click.option(
    "--anonymize",
    is_flag=True,
    help="Upload encrypted files under random names",
)
@click.option("--bundle", is_flag=True, help="Upload the directory as one zip archive")
@click.option(
    "--metadata-only",
    is_flag=True,
    help="Detect changes by size and mtime instead of content hash",
)
@click.pass_context
def add(
    ctx: Any,
    local: Path,
    remote: str,
    interval: int,
    key: Optional[str],
    method: Optional[str],
    ignore_file: Optional[str],
    anonymize: bool,
    bundle: bool,
    metadata_only: bool,
) -> None:
    """Add a watch syncing LOCAL to REMOTE.

    Examples:
        watchsync add ~/docs /backup/docs
        watchsync add ~/photos /backup/photos --key secret --anonymize
        watchsync add ~/notes /backup --bundle --interval 3600
    """
    out: OutputFormatter = ctx.obj["out"]

    if anonymize and not key:
        out.warning("--anonymize has no effect without --key")
    if method and not key:
        out.warning("--method has no effect without --key")

    try:
        entry = _get_registry(ctx).add_watch(
            local,
            remote,
            interval=interval,
            key=key,
            method=method,
            ignore_file=ignore_file,
            anonymize_names=anonymize,
            bundle=bundle,
            fingerprint=(
                FingerprintMode.METADATA if metadata_only else FingerprintMode.CONTENT
            ),
        )
    except (WatchConfigError, StateError, ValueError) as e:
        out.error(str(e))
        ctx.exit(1)

    if out.json_output:
        out.output_json(_watch_row(entry, False))
        return

    out.success(f"✓ Added watch {entry.local} -> {entry.remote}")
    if entry.effective_fingerprint != entry.fingerprint:
        out.info("Content hashing enforced for encrypted/anonymized watch")


@main.command()
@click.argument("local", type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
def rm(ctx: Any, local: Path) -> None:
    """Remove the watch for LOCAL.

    Files already uploaded stay on the remote side.
    """
    out: OutputFormatter = ctx.obj["out"]
    try:
        entry = _get_registry(ctx).delete_watch(local)
    except (WatchConfigError, StateError) as e:
        out.error(str(e))
        ctx.exit(1)

    if out.json_output:
        out.output_json({"deleted": entry.local})
        return
    out.success(f"✓ Removed watch {entry.local}")


@main.command(name="ls")
@click.pass_context
def list_watches(ctx: Any) -> None:
    """List configured watches."""
    out: OutputFormatter = ctx.obj["out"]
    registry = _get_registry(ctx)
    try:
        entries = registry.list_watches()
    except StateError as e:
        out.error(str(e))
        ctx.exit(1)

    rows = [_watch_row(entry, registry.is_running(entry.local)) for entry in entries]
    if not rows and not out.json_output:
        out.info("No watches configured.")
        return

    if out.json_output:
        out.output_json(rows)
        return

    for row in rows:
        row["encrypted"] = row["method"] if row["encrypted"] else "no"
        row["anonymize_names"] = "yes" if row["anonymize_names"] else "no"
    out.output_table(
        rows,
        ["local", "remote", "interval", "mode", "encrypted", "anonymize_names", "files"],
        {
            "local": "Local",
            "remote": "Remote",
            "interval": "Interval (s)",
            "mode": "Mode",
            "encrypted": "Encryption",
            "anonymize_names": "Anonymized",
            "files": "Files",
        },
    )


@main.command()
@click.argument(
    "local", type=click.Path(file_okay=False, path_type=Path), required=False
)
@click.option(
    "--shutdown-timeout",
    type=float,
    default=30.0,
    show_default=True,
    help="Seconds to wait for running passes after Ctrl+C",
)
@click.pass_context
def start(ctx: Any, local: Optional[Path], shutdown_timeout: float) -> None:
    """Start syncing LOCAL (or every watch) until interrupted.

    Runs one pass immediately, then one per interval. Press Ctrl+C to stop;
    passes in progress stop at the next file boundary.
    """
    out: OutputFormatter = ctx.obj["out"]
    registry = _get_registry(ctx)

    try:
        if local is None and not registry.list_watches():
            out.warning("No watches configured. Use 'watchsync add' first.")
            return
        target = str(local) if local is not None else "all watches"
        out.info(f"Syncing {target}. Press Ctrl+C to stop.")
        run_until_interrupted(registry, local, shutdown_timeout=shutdown_timeout)
    except (WatchConfigError, StateError) as e:
        out.error(str(e))
        ctx.exit(1)

    out.success("✓ Stopped")


@main.command()
@click.argument("local", type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
def sync(ctx: Any, local: Path) -> None:
    """Run a single sync pass for LOCAL and exit."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        stats = _get_registry(ctx).run_pass_now(local)
    except (WatchConfigError, StateError) as e:
        out.error(str(e))
        ctx.exit(1)
    except WatchSyncError as e:
        out.error(f"Sync failed: {e}")
        ctx.exit(1)

    if out.json_output:
        out.output_json(stats)
    else:
        out.print_summary(
            "Sync Complete",
            [
                ("Uploaded", str(stats["uploads"])),
                ("Unchanged", str(stats["skips"])),
                ("Ignored", str(stats["ignored"])),
                ("Failed", str(stats["failures"])),
            ],
        )

    if stats["failures"] > 0:
        ctx.exit(1)


@main.command()
@click.pass_context
def methods(ctx: Any) -> None:
    """List supported encryption methods."""
    out: OutputFormatter = ctx.obj["out"]
    names = list_methods()
    if out.json_output:
        out.output_json(names)
        return
    for name in names:
        marker = " (default)" if name == config.default_method else ""
        out.print(f"{name}{marker}")


if __name__ == "__main__":
    main()
