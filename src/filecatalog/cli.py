from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeElapsedColumn

from .actions import MoveRequest, RefreshRequest
from .config import ORIGIN_DIR, Settings, load_settings, require_path
from .errors import ConfigurationError, FileCatalogError, ValidationError
from .jobs import Job, JobState
from .logging_utils import configure_logging
from .models import FileFilter, MoveOutcome, MoveRequestItem, MoveStatus
from .run_summary import log_job_recap
from .runtime import CatalogRuntime, build_runtime
from .summary_table import SummaryTableRenderer
from .utils import env_bool, load_yaml_file
from .version import __version__
from .watcher import OriginWatcher

LOGGER = logging.getLogger(__name__)
CONSOLE = Console()

DEFAULT_CONFIG_PATH = Path("filecatalog.yaml")
POLL_INTERVAL = 0.2

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _default_config_path() -> Path:
    return Path(os.environ.get("FILECATALOG_CONFIG", str(DEFAULT_CONFIG_PATH)))


def parse_move_item(raw: str) -> MoveRequestItem:
    """Parse ``ID:CATEGORY`` into a move item."""
    file_id, separator, category = raw.partition(":")
    if not separator:
        raise argparse.ArgumentTypeError(f"Expected ID:CATEGORY, got {raw!r}")
    try:
        return MoveRequestItem(file_id=int(file_id), target_category=category)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"File id must be an integer in {raw!r}") from exc


def load_move_items(path: Path) -> list[MoveRequestItem]:
    """Read move items from a YAML file with an ``items`` list of ``{id, category}`` mappings."""
    data = load_yaml_file(path)
    raw_items = data.get("items")
    if not isinstance(raw_items, list):
        raise ValueError(f"'{path}' must define an 'items' list")
    items: list[MoveRequestItem] = []
    for index, entry in enumerate(raw_items):
        if not isinstance(entry, dict) or "id" not in entry or "category" not in entry:
            raise ValueError(f"'items[{index}]' must be a mapping with 'id' and 'category'")
        try:
            file_id = int(entry["id"])
        except (TypeError, ValueError) as exc:
            raise ValueError(f"'items[{index}].id' must be an integer") from exc
        items.append(MoveRequestItem(file_id=file_id, target_category=str(entry["category"])))
    return items


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="filecatalog", description="Categorize and file away incoming files.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=Path,
        default=_default_config_path(),
        help="Path to the YAML configuration (default: $FILECATALOG_CONFIG or ./filecatalog.yaml)",
    )
    parser.add_argument("--verbose", action="store_true", default=None, help="Enable debug logging")
    parser.add_argument("--log-level", default=None, help="Console log level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    refresh = subparsers.add_parser("refresh", help="Catalogue new files from the origin directory")
    refresh.add_argument("--batch-size", type=int, default=None)
    refresh.add_argument(
        "--ext", dest="extensions", action="append", default=None, help="Only files with this extension"
    )
    refresh.add_argument("--force-recategorization", action="store_true")
    refresh.add_argument("--no-wait", action="store_true", help="Print the job id and return immediately")
    refresh.set_defaults(handler=run_refresh)

    move = subparsers.add_parser("move", help="Move files into their category folders")
    move.add_argument("items", nargs="*", type=parse_move_item, metavar="ID:CATEGORY")
    move.add_argument("--from-file", type=Path, default=None, help="YAML file with an 'items' list")
    move.add_argument("--stop-on-error", action="store_true", help="Reject the batch when any id is unknown")
    move.add_argument("--no-create-dirs", action="store_true", help="Fail items whose category folder is missing")
    move.add_argument("--validate-categories", action="store_true", help="Only allow categories already in use")
    move.add_argument("--no-wait", action="store_true")
    move.set_defaults(handler=run_move)

    categorize = subparsers.add_parser("categorize", help="Classify every file still waiting for a category")
    categorize.add_argument("--batch-size", type=int, default=None)
    categorize.add_argument("--no-wait", action="store_true")
    categorize.set_defaults(handler=run_categorize)

    train = subparsers.add_parser("train", help="Retrain the classifier from the training log")
    train.add_argument("--no-wait", action="store_true")
    train.set_defaults(handler=run_train)

    model_info = subparsers.add_parser("model-info", help="Show the classifier artifact status")
    model_info.set_defaults(handler=run_model_info)

    files = subparsers.add_parser("files", help="List tracked files")
    files.add_argument("--filter", choices=[item.value for item in FileFilter], default=FileFilter.ALL.value)
    files.set_defaults(handler=run_files)

    set_config = subparsers.add_parser("set-config", help="Store a configuration value in the database")
    set_config.add_argument("key")
    set_config.add_argument("value")
    set_config.set_defaults(handler=run_set_config)

    watch = subparsers.add_parser("watch", help="Queue a refresh whenever files arrive in the origin directory")
    watch.add_argument("--batch-size", type=int, default=None)
    watch.set_defaults(handler=run_watch)

    return parser


def _resolve_level(args: argparse.Namespace) -> int | str:
    if args.log_level:
        return args.log_level
    verbose = args.verbose if args.verbose is not None else env_bool("FILECATALOG_VERBOSE")
    return logging.DEBUG if verbose else logging.INFO


def _prepare(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.config)
    configure_logging(_resolve_level(args), log_file=args.log_file or settings.log_file, console=CONSOLE)
    return settings


def _with_runtime(args: argparse.Namespace, action: Callable[[CatalogRuntime], int]) -> int:
    try:
        settings = _prepare(args)
    except (OSError, ValueError) as exc:
        CONSOLE.print(f"[red]Invalid configuration:[/red] {exc}")
        return EXIT_USAGE

    runtime = build_runtime(settings)
    try:
        return action(runtime)
    except (ConfigurationError, ValidationError) as exc:
        CONSOLE.print(f"[red]{exc}[/red]")
        return EXIT_USAGE
    except FileCatalogError as exc:
        CONSOLE.print(f"[red]{exc}[/red]")
        return EXIT_FAILED
    finally:
        runtime.close(wait=True)


def follow_job(runtime: CatalogRuntime, job_id: str, *, poll_interval: float = POLL_INTERVAL) -> Job:
    """Show a progress bar until the job reaches a terminal state."""
    with Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=CONSOLE,
        transient=True,
    ) as progress:
        job = runtime.orchestrator.get_status(job_id)
        task = progress.add_task(f"{job.kind.value} {job.state.value}", total=None)
        while True:
            job = runtime.orchestrator.get_status(job_id)
            progress.update(
                task,
                description=f"{job.kind.value} {job.state.value}",
                total=job.total_items or None,
                completed=job.processed_items,
            )
            if job.state.is_terminal:
                return job
            time.sleep(poll_interval)


def _report(runtime: CatalogRuntime, job_id: str, *, no_wait: bool) -> int:
    if no_wait:
        CONSOLE.print(job_id)
        return EXIT_OK
    job = follow_job(runtime, job_id)
    log_job_recap(job)
    renderer = SummaryTableRenderer(CONSOLE)
    renderer.print_table(renderer.render_job_table(job))
    outcomes = job.metadata.get("outcomes")
    if outcomes:
        renderer.print_table(
            renderer.render_outcome_table(
                MoveOutcome(
                    file_id=entry["file_id"],
                    file_name=entry.get("file_name"),
                    status=MoveStatus(entry["status"]),
                    message=entry.get("message", ""),
                    elapsed=entry.get("elapsed", 0.0),
                    category=entry.get("category"),
                )
                for entry in outcomes
            )
        )
    return EXIT_OK if job.state is JobState.SUCCEEDED else EXIT_FAILED


def run_refresh(args: argparse.Namespace) -> int:
    def action(runtime: CatalogRuntime) -> int:
        request = RefreshRequest(
            batch_size=args.batch_size or runtime.settings.batch_size,
            extensions=args.extensions,
            force_recategorization=args.force_recategorization,
        )
        ticket = runtime.actions.enqueue_refresh(request)
        return _report(runtime, ticket.job_id, no_wait=args.no_wait)

    return _with_runtime(args, action)


def run_move(args: argparse.Namespace) -> int:
    items: list[MoveRequestItem] = list(args.items or [])
    if args.from_file is not None:
        try:
            items.extend(load_move_items(args.from_file))
        except (OSError, ValueError) as exc:
            CONSOLE.print(f"[red]Invalid move file:[/red] {exc}")
            return EXIT_USAGE

    def action(runtime: CatalogRuntime) -> int:
        request = MoveRequest(
            items=items,
            continue_on_error=not args.stop_on_error,
            create_missing_directories=not args.no_create_dirs,
            validate_categories=args.validate_categories,
        )
        ticket = runtime.actions.enqueue_move(request)
        return _report(runtime, ticket.job_id, no_wait=args.no_wait)

    return _with_runtime(args, action)


def run_categorize(args: argparse.Namespace) -> int:
    def action(runtime: CatalogRuntime) -> int:
        ticket = runtime.actions.enqueue_force_categorize(args.batch_size or runtime.settings.batch_size)
        return _report(runtime, ticket.job_id, no_wait=args.no_wait)

    return _with_runtime(args, action)


def run_train(args: argparse.Namespace) -> int:
    def action(runtime: CatalogRuntime) -> int:
        ticket = runtime.actions.enqueue_train()
        return _report(runtime, ticket.job_id, no_wait=args.no_wait)

    return _with_runtime(args, action)


def run_model_info(args: argparse.Namespace) -> int:
    def action(runtime: CatalogRuntime) -> int:
        renderer = SummaryTableRenderer(CONSOLE)
        renderer.print_table(renderer.render_model_table(runtime.classifier.get_info()))
        return EXIT_OK

    return _with_runtime(args, action)


def run_files(args: argparse.Namespace) -> int:
    def action(runtime: CatalogRuntime) -> int:
        file_filter = FileFilter(args.filter)
        records = runtime.store.list_files(file_filter)
        renderer = SummaryTableRenderer(CONSOLE)
        renderer.print_table(renderer.render_files_table(records, title=f"Files ({file_filter.value})"))
        stats = runtime.store.get_stats()
        CONSOLE.print(f"{stats['total']} tracked, {stats['to_categorize']} waiting for a category")
        return EXIT_OK

    return _with_runtime(args, action)


def run_set_config(args: argparse.Namespace) -> int:
    def action(runtime: CatalogRuntime) -> int:
        try:
            runtime.config_store.set_value(args.key, args.value)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        CONSOLE.print(f"Stored [cyan]{args.key}[/cyan]")
        return EXIT_OK

    return _with_runtime(args, action)


def run_watch(args: argparse.Namespace) -> int:
    def action(runtime: CatalogRuntime) -> int:
        if not runtime.settings.file_watcher.enabled:
            CONSOLE.print("[red]File watcher is disabled;[/red] set settings.file_watcher.enabled to true")
            return EXIT_USAGE
        origin_dir = require_path(runtime.config, ORIGIN_DIR)
        request = RefreshRequest(batch_size=args.batch_size or runtime.settings.batch_size)
        watcher = OriginWatcher(runtime.actions, origin_dir, runtime.settings.file_watcher, refresh_request=request)
        try:
            watcher.run_forever()
        except KeyboardInterrupt:
            LOGGER.info("Watcher stopped")
        return EXIT_OK

    return _with_runtime(args, action)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler: Callable[[argparse.Namespace], int] = args.handler
    return handler(args)


def entrypoint(argv: Optional[Sequence[str]] = None) -> Any:
    sys.exit(main(argv))


if __name__ == "__main__":  # pragma: no cover
    entrypoint()
