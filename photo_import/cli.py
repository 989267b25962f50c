"""CLI entry point for importing a photo manifest into OneDrive."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
import uuid
from datetime import datetime

from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

from photo_import.auth import MsalTokenProvider
from photo_import.content import ContentResolver, LocalJobStore
from photo_import.errors import PhotoImportError
from photo_import.graph_client import GRAPH_BASE, GraphPhotosClient
from photo_import.idempotent import IdempotentImportExecutor, JsonFileIdempotentExecutor
from photo_import.importer import ImportResult, PhotosImporter
from photo_import.models import PhotosContainerResource

LOG_DIR = "logs"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Import albums and photos described by a JSON manifest into OneDrive."
    )
    parser.add_argument("manifest", help="Path to the JSON manifest of albums and photos")
    parser.add_argument(
        "--client-id",
        default=os.getenv("ONEDRIVE_CLIENT_ID"),
        help="Azure application (client) ID",
    )
    parser.add_argument(
        "--tenant-id",
        default=os.getenv("ONEDRIVE_TENANT_ID", "common"),
        help="Azure tenant (default: common)",
    )
    parser.add_argument(
        "--token-cache",
        default=os.getenv("ONEDRIVE_TOKEN_CACHE", "onedrive_token_cache.bin"),
        help="File the MSAL token cache is persisted to",
    )
    parser.add_argument(
        "--graph-base-url",
        default=os.getenv("GRAPH_BASE_URL", GRAPH_BASE),
        help="Microsoft Graph base URL",
    )
    parser.add_argument(
        "--job-id",
        default=os.getenv("IMPORT_JOB_ID"),
        help="Job identifier (default: a new UUID)",
    )
    parser.add_argument(
        "--temp-store",
        default=os.getenv("TEMP_STORE_DIR", ".import_temp"),
        help="Directory holding staged photo content, one sub-directory per job",
    )
    parser.add_argument(
        "--state-file",
        default=os.getenv("IMPORT_STATE_FILE"),
        help="JSON file recording completed steps so reruns skip them",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output and progress bars",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List albums and photos that would be imported without contacting OneDrive",
    )
    return parser


def _setup_logging(verbose: bool, console: Console, log_filename: str) -> None:
    """Configure dual logging: rich console + plain-text log file."""
    log_level = logging.DEBUG if verbose else logging.INFO
    plain_format = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"

    root = logging.getLogger()
    root.setLevel(log_level)

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    rich_handler.setLevel(log_level)
    root.addHandler(rich_handler)

    file_handler = logging.FileHandler(log_filename, encoding="utf-8")
    file_handler.setLevel(log_level)
    file_handler.setFormatter(logging.Formatter(plain_format, datefmt="%H:%M:%S"))
    root.addHandler(file_handler)


def _print_summary(console: Console, result: ImportResult, elapsed: float, log_filename: str) -> None:
    """Print a rich summary panel at the end of an import run."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Folders created", f"[green]{len(result.created_folders)}[/green]")
    table.add_row("Photos uploaded", f"[green]{len(result.uploaded)}[/green]")
    table.add_row("Already imported", str(len(result.skipped)))
    failed_style = "red bold" if result.failed else "green"
    table.add_row("Failed", f"[{failed_style}]{len(result.failed)}[/{failed_style}]")
    table.add_row("Elapsed", f"{elapsed:.1f}s")

    panel_style = "green" if result.all_ok else "red"
    title = "Import Complete" if result.all_ok else "Import Complete (with errors)"
    console.print()
    console.print(Panel(table, title=title, border_style=panel_style, padding=(1, 2)))

    if result.failed:
        console.print()
        console.print(Text("Failed items:", style="red bold"))
        for outcome in result.failed:
            console.print(f"  - {outcome.label} ({outcome.key}): {outcome.error}", style="red")

    console.print(f"\nFull log saved to: {log_filename}", style="dim")


def _print_dry_run(console: Console, resource: PhotosContainerResource) -> None:
    """Print the albums and photos a run would import."""
    table = Table(title="Items to import (dry run)", show_lines=False)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Kind")
    table.add_column("Name", style="cyan")
    table.add_column("Album", style="dim")
    table.add_column("Source", style="dim")

    i = 0
    for album in resource.albums:
        i += 1
        table.add_row(str(i), "album", album.name, album.id, "")
    for photo in resource.photos:
        i += 1
        source = "staged" if photo.in_temp_store else (photo.fetchable_url or "?")
        table.add_row(str(i), "photo", photo.title, photo.album_id or "(Pictures)", source)

    console.print()
    console.print(table)
    console.print(
        f"\n[bold]{len(resource.albums)}[/bold] album(s), "
        f"[bold]{len(resource.photos)}[/bold] photo(s)"
    )


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = _build_parser().parse_args(argv)

    # ── console setup ────────────────────────────────────────────────
    use_color = sys.stdout.isatty() and not args.no_color and not os.getenv("NO_COLOR")
    console = Console(force_terminal=use_color, no_color=not use_color)

    # ── logging setup ────────────────────────────────────────────────
    os.makedirs(LOG_DIR, exist_ok=True)
    log_filename = os.path.join(
        LOG_DIR, f"import_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    )
    _setup_logging(args.verbose, console, log_filename)
    logging.info("Log file: %s", log_filename)

    try:
        resource = PhotosContainerResource.from_file(args.manifest)
    except PhotoImportError as exc:
        logging.error("%s", exc)
        return 1

    # ── dry-run mode ─────────────────────────────────────────────────
    if args.dry_run:
        logging.info("Dry-run mode: listing manifest without importing.")
        _print_dry_run(console, resource)
        return 0

    if not args.client_id:
        logging.error("ONEDRIVE_CLIENT_ID (or --client-id) must be set.")
        return 1

    job_id = args.job_id or str(uuid.uuid4())
    tokens = MsalTokenProvider(args.client_id, args.tenant_id, args.token_cache)
    client = GraphPhotosClient(tokens, base_url=args.graph_base_url)
    importer = PhotosImporter(client, ContentResolver(LocalJobStore(args.temp_store)))
    executor = (
        JsonFileIdempotentExecutor(args.state_file)
        if args.state_file
        else IdempotentImportExecutor()
    )

    # ── run import ───────────────────────────────────────────────────
    console.print(Panel(f"OneDrive photo import – job {job_id}", style="bold blue", padding=(0, 2)))
    logging.info("Manifest: %s", args.manifest)

    start = time.monotonic()
    if use_color:
        progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
        )
        with progress:
            task = progress.add_task(
                "Importing", total=len(resource.albums) + len(resource.photos)
            )
            result = importer.import_item(
                job_id, executor, resource,
                on_step=lambda outcome: progress.advance(task),
            )
    else:
        result = importer.import_item(job_id, executor, resource)
    elapsed = time.monotonic() - start

    _print_summary(console, result, elapsed, log_filename)

    return 0 if result.all_ok else 1


if __name__ == "__main__":
    sys.exit(main())
