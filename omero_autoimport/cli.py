"""CLI entry point for the OMERO auto-import pipeline.

Commands:
    omero-autoimport run    — import new files and annotate their datasets
    omero-autoimport scan   — dry run: list what the next run would import
"""

import logging
import sys
from datetime import UTC, datetime, timedelta

import click

from omero_autoimport.config import (
    ADMIN_CRED_FILE,
    DATASET_ID_KEY,
    LOG_FILE,
    METADATA_FILE,
    OMERO_BIN,
    OMERO_CLIENT_DIR,
    OMERO_COMMAND_TIMEOUT,
    OMERO_DEPTH,
    OMERO_HOST,
    OMERO_IMPORT_TIMEOUT,
    OMERO_PARALLEL_UPLOAD,
    OMERO_RUN_AS,
    OMERO_WORKDIR,
    README_GLOB,
    SUFFIX_FILE,
    TIME_SPAN_SECONDS,
    USER_NAME_KEY,
    WATCH_LIST_FILE,
)
from omero_autoimport.integrations.omero_cli import OmeroCli
from omero_autoimport.pipeline.run import ScanSettings
from omero_autoimport.scanner.descriptor import DescriptorFields

logger = logging.getLogger("omero_autoimport")

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _settings(window_hours: float) -> ScanSettings:
    return ScanSettings(
        window=timedelta(hours=window_hours),
        suffix_file=SUFFIX_FILE,
        descriptor_name=METADATA_FILE,
        companion_glob=README_GLOB,
        fields=DescriptorFields(container_id=DATASET_ID_KEY, identity_name=USER_NAME_KEY),
    )


def _build_omero_cli(host: str) -> OmeroCli:
    return OmeroCli(
        OMERO_BIN,
        host,
        client_dir=OMERO_CLIENT_DIR,
        run_as=OMERO_RUN_AS,
        workdir=OMERO_WORKDIR,
        parallel_upload=OMERO_PARALLEL_UPLOAD,
        depth=OMERO_DEPTH,
        import_timeout=OMERO_IMPORT_TIMEOUT,
        command_timeout=OMERO_COMMAND_TIMEOUT,
    )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option(
    "--log-file",
    default=LOG_FILE,
    show_default=True,
    help="Append the run log to this file (empty to log to stderr only).",
)
def cli(verbose: bool, log_file: str) -> None:
    """OMERO auto-import: in-place import of new files from watched directories."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
        except OSError as exc:
            click.echo(f"Warning: cannot open log file {log_file}: {exc}", err=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )


# ------------------------------------------------------------------
# omero-autoimport run
# ------------------------------------------------------------------


@cli.command()
@click.option(
    "--watch-list",
    default=WATCH_LIST_FILE,
    show_default=True,
    help="JSON file with the list of watch directories.",
)
@click.option(
    "--credentials",
    default=ADMIN_CRED_FILE,
    show_default=True,
    help="JSON file with the OMERO admin user and password.",
)
@click.option(
    "--window-hours",
    type=float,
    default=TIME_SPAN_SECONDS / 3600,
    show_default=True,
    help="Only files created within this many hours are imported.",
)
@click.option("--host", default=OMERO_HOST, show_default=True, help="OMERO server host.")
def run(watch_list: str, credentials: str, window_hours: float, host: str) -> None:
    """Import new files from every watch directory into OMERO."""
    from omero_autoimport.pipeline.run import run as run_pipeline
    from omero_autoimport.scanner.watchlist import (
        ConfigFatal,
        load_admin_credential,
        load_watch_list,
    )

    try:
        watch_dirs = load_watch_list(watch_list)
        credential = load_admin_credential(credentials)
        report = run_pipeline(
            watch_dirs,
            credential,
            cli=_build_omero_cli(host),
            settings=_settings(window_hours),
        )
    except ConfigFatal as exc:
        logger.error("Aborting run: %s", exc)
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    click.echo(
        f"Done. Imported: {report.imported}, Annotated: {report.annotated}, "
        f"Skipped: {report.skipped}, Failed: {report.failed}"
    )


# ------------------------------------------------------------------
# omero-autoimport scan
# ------------------------------------------------------------------


@cli.command()
@click.option(
    "--watch-list",
    default=WATCH_LIST_FILE,
    show_default=True,
    help="JSON file with the list of watch directories.",
)
@click.option(
    "--window-hours",
    type=float,
    default=TIME_SPAN_SECONDS / 3600,
    show_default=True,
    help="Only files created within this many hours are listed.",
)
def scan(watch_list: str, window_hours: float) -> None:
    """List new files and their target dataset/user without importing."""
    from pathlib import Path

    from omero_autoimport.scanner.descriptor import Invalid, resolve
    from omero_autoimport.scanner.locator import locate
    from omero_autoimport.scanner.watchlist import (
        ConfigFatal,
        SuffixListError,
        load_suffixes,
        load_watch_list,
    )

    try:
        watch_dirs = load_watch_list(watch_list)
    except ConfigFatal as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    settings = _settings(window_hours)
    now = datetime.now(UTC)
    for root in watch_dirs:
        click.echo(f"{root}:")
        if not Path(root).is_dir():
            click.echo("  (not a directory)")
            continue
        try:
            suffixes = load_suffixes(root, settings.suffix_file)
        except SuffixListError as exc:
            click.echo(f"  ({exc})")
            continue

        found = locate(root, suffixes, settings.window, now)
        if found.misconfigured:
            click.echo(f"  ({found.misconfigured})")
            continue
        if not found.candidates:
            click.echo("  no new files")
        for candidate in found.candidates:
            identity = resolve(candidate.path.parent / settings.descriptor_name, settings.fields)
            if isinstance(identity, Invalid):
                target = f"SKIP ({identity.reason})"
            else:
                target = f"user={identity.identity_name} dataset={identity.container_id}"
            click.echo(f"  {candidate.path}  {target}")
        for skipped in found.skipped:
            click.echo(f"  {skipped.path}  SKIP ({skipped.reason})")
