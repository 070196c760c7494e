"""CLI interface for PyAIPLib."""

import logging
from pathlib import Path
from typing import Any, Optional

import click

from .api import AIPLibraryClient
from .config import LibrarySettings, config
from .exceptions import (
    AIPLibAPIError,
    AIPLibConfigError,
    AIPLibError,
    AIPLibNotFoundError,
    NotFoundError,
    NotSyncableError,
)
from .output import OutputFormatter
from .sync import MappingStore, SyncEngine, Vault, VaultWatcher, default_mapping_path
from .utils import (
    DEFAULT_PAGE_SIZE,
    format_size,
    format_timestamp_ms,
    normalize_vault_path,
    parse_iso_timestamp,
)

logger = logging.getLogger(__name__)


def _settings(ctx: Any, workers: int = 1) -> LibrarySettings:
    """Build library settings from global options and the config file."""
    return config.library_settings(
        api_key=ctx.obj.get("api_key"),
        library_id=ctx.obj.get("library_id"),
        max_workers=workers,
    )


def _client(settings: LibrarySettings) -> AIPLibraryClient:
    return AIPLibraryClient(api_key=settings.api_key, api_url=settings.api_url)


def _build_engine(
    ctx: Any, vault_path: str, workers: int = 1, quiet: Optional[bool] = None
) -> SyncEngine:
    """Create a sync engine for a vault directory.

    Raises:
        AIPLibConfigError: If API key or library id is not configured
    """
    out: OutputFormatter = ctx.obj["out"]
    settings = _settings(ctx, workers)
    vault = Vault(Path(vault_path))
    store = MappingStore(default_mapping_path(vault.root))
    engine_out = OutputFormatter(
        json_output=out.json_output, quiet=out.quiet if quiet is None else quiet
    )
    return SyncEngine(_client(settings), vault, store, settings, engine_out)


vault_argument = click.argument(
    "vault", type=click.Path(exists=True, file_okay=False, dir_okay=True)
)


@click.group()
@click.option("--api-key", "-k", envvar="AIPLIB_API_KEY", help="Library API key")
@click.option(
    "--library",
    "-l",
    "library_id",
    type=int,
    envvar="AIPLIB_LIBRARY_ID",
    help="ID of the knowledge library",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pyaiplib")
@click.pass_context
def main(
    ctx: Any,
    api_key: Optional[str],
    library_id: Optional[int],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """PyAIPLib - Sync a folder of Markdown notes with an AI knowledge library."""
    ctx.ensure_object(dict)
    ctx.obj["api_key"] = api_key
    ctx.obj["library_id"] = library_id
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pyaiplib").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.option(
    "--api-key",
    "-k",
    prompt="Enter your library API key",
    help="Library API key",
)
@click.option(
    "--library",
    "-l",
    "library_id",
    type=int,
    default=None,
    help="ID of an existing library",
)
@click.option(
    "--create",
    "library_name",
    default=None,
    help="Create a new library with this name instead of using an existing one",
)
@click.option(
    "--ignore-folders",
    default=None,
    help="Comma-separated folder names excluded from sync",
)
@click.option("--model", default=None, help="Chat model used by 'ask'")
@click.option(
    "--interval",
    type=int,
    default=None,
    help="Minutes between scheduled syncs in 'watch'",
)
@click.pass_context
def init(
    ctx: Any,
    api_key: str,
    library_id: Optional[int],
    library_name: Optional[str],
    ignore_folders: Optional[str],
    model: Optional[str],
    interval: Optional[int],
) -> None:
    """Initialize PyAIPLib configuration.

    Validates the API key and library, then stores the settings in
    ~/.config/pyaiplib/config for future use.

    Examples:
        pyaiplib init -l 1234
        pyaiplib init --create "My notes" --ignore-folders archive,drafts
    """
    out: OutputFormatter = ctx.obj["out"]

    if library_id is None and not library_name:
        out.error("Pass either --library or --create")
        ctx.exit(1)

    try:
        client = AIPLibraryClient(api_key=api_key, api_url=config.api_url)
        with client:
            if library_name:
                out.info(f"Creating library '{library_name}'...")
                library_id = client.create_library(library_name)
                out.success(f"✓ Created library {library_id}")
            elif library_id is not None:
                out.info("Validating API key and library...")
                try:
                    library = client.get_library(library_id)
                    out.success(f"✓ Library {library_id}: {library.library_name}")
                except AIPLibAPIError as e:
                    out.error(f"Library validation failed: {e}")
                    if not click.confirm("Save settings anyway?", default=False):
                        out.warning("Configuration cancelled.")
                        ctx.exit(1)
                        return

        settings: dict[str, Optional[str]] = {
            "api_key": api_key,
            "library_id": str(library_id),
        }
        if ignore_folders is not None:
            settings["ignore_folders"] = ignore_folders
        if model:
            settings["model"] = model
        if interval is not None:
            settings["sync_interval"] = str(interval)
        config.save_settings(**settings)

        if out.json_output:
            out.output_json(
                {"library_id": library_id, "config_file": str(config.get_config_path())}
            )
        else:
            out.print_summary(
                "Initialization Complete",
                [
                    ("Status", "✓ Configuration saved successfully"),
                    ("Library", str(library_id)),
                    ("Config file", str(config.get_config_path())),
                ],
            )
    except AIPLibError as e:
        out.error(f"Initialization failed: {e}")
        ctx.exit(1)
    except OSError as e:
        out.error(f"Failed to save configuration: {e}")
        ctx.exit(1)


@main.command()
@vault_argument
@click.option(
    "--incremental",
    is_flag=True,
    help="Only upload files without a remote document (no size check)",
)
@click.option(
    "--dry-run", is_flag=True, help="Show what would be synced without syncing"
)
@click.option(
    "--workers",
    "-j",
    type=int,
    default=1,
    help="Number of parallel uploads (default: 1)",
)
@click.option("--no-progress", is_flag=True, help="Disable progress bars")
@click.pass_context
def sync(
    ctx: Any,
    vault: str,
    incremental: bool,
    dry_run: bool,
    workers: int,
    no_progress: bool,
) -> None:
    """Sync a vault with the knowledge library.

    Uploads every note without a remote document. Unless --incremental is
    given, notes that grew since their last upload are uploaded again and
    their old document is replaced.

    VAULT: Local directory holding the notes

    Examples:
        pyaiplib sync ./notes
        pyaiplib sync ./notes --incremental -j 4
        pyaiplib sync ./notes --dry-run
    """
    out: OutputFormatter = ctx.obj["out"]

    if workers < 1:
        out.error("Workers must be at least 1")
        ctx.exit(1)

    try:
        if dry_run:
            out.info("Dry run: nothing will be uploaded or saved")
        with _build_engine(
            ctx, vault, workers, quiet=no_progress or out.quiet
        ) as engine:
            if incremental:
                stats = engine.incremental_sync(dry_run=dry_run)
            else:
                stats = engine.smart_sync(dry_run=dry_run)

        if out.json_output:
            out.output_json(stats)
        else:
            verb = "Would upload" if dry_run else "Uploaded"
            items = [(verb, str(stats["uploads"]))]
            if not incremental:
                verb = "Would re-upload" if dry_run else "Re-uploaded"
                items.append((verb, str(stats["reuploads"])))
            items.append(("Skipped (empty)", str(stats["skipped"])))
            items.append(("Failed", str(stats["failed"])))
            out.print_summary("Sync Complete", items)

        if stats["failed"]:
            out.warning(
                f"{stats['failed']} file(s) failed and will be retried on the next sync"
            )
    except KeyboardInterrupt:
        out.warning("\nSync cancelled by user")
        ctx.exit(130)
    except AIPLibConfigError as e:
        out.error(str(e))
        ctx.exit(1)
    except AIPLibError as e:
        out.error(f"Sync failed: {e}")
        ctx.exit(1)
    except OSError as e:
        out.error(f"Cannot read vault: {e}")
        ctx.exit(1)


@main.command()
@vault_argument
@click.pass_context
def rebuild(ctx: Any, vault: str) -> None:
    """Rebuild the mapping file from the vault and the remote library.

    Each note is matched to the remote document titled with its vault
    path. Nothing is uploaded or deleted.

    VAULT: Local directory holding the notes
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        with _build_engine(ctx, vault) as engine:
            stats = engine.rebuild_mapping()
        if out.json_output:
            out.output_json({"mapped": stats["mapped"], "unmapped": stats["unmapped"]})
        else:
            out.print_summary(
                "Mapping Rebuilt",
                [
                    ("Mapped", str(stats["mapped"])),
                    ("Without remote document", str(stats["unmapped"])),
                    ("Mapping file", str(engine.store.path)),
                ],
            )
    except AIPLibConfigError as e:
        out.error(str(e))
        ctx.exit(1)
    except AIPLibError as e:
        out.error(f"Rebuild failed: {e}")
        ctx.exit(1)
    except OSError as e:
        out.error(f"Cannot read vault: {e}")
        ctx.exit(1)


@main.command()
@vault_argument
@click.argument("file", type=str)
@click.pass_context
def upload(ctx: Any, vault: str, file: str) -> None:
    """Upload one note now, replacing its previous remote document.

    VAULT: Local directory holding the notes
    FILE: Path of the note relative to VAULT
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        with _build_engine(ctx, vault) as engine:
            mapping = engine.manual_upload_one(normalize_vault_path(file))
        if out.json_output:
            out.output_json(mapping.to_dict())
        else:
            out.success(f"✓ Uploaded {mapping.file_full_path} ({mapping.remote_doc_id})")
    except (NotFoundError, NotSyncableError) as e:
        out.error(str(e))
        ctx.exit(1)
    except AIPLibConfigError as e:
        out.error(str(e))
        ctx.exit(1)
    except AIPLibError as e:
        out.error(f"Upload failed: {e}")
        ctx.exit(1)


@main.command()
@vault_argument
@click.argument("path", type=str)
@click.option("--folder", is_flag=True, help="PATH was a folder")
@click.pass_context
def delete(ctx: Any, vault: str, path: str, folder: bool) -> None:
    """Remove the remote documents of a note or folder deleted locally.

    VAULT: Local directory holding the notes
    PATH: Vault-relative path of the deleted note or folder

    Examples:
        pyaiplib delete ./notes old/idea.md
        pyaiplib delete ./notes archive --folder
    """
    out: OutputFormatter = ctx.obj["out"]
    relative_path = normalize_vault_path(path)

    if not relative_path:
        out.error("PATH must name a note or folder inside the vault")
        ctx.exit(1)

    if (Path(vault) / relative_path).exists():
        out.error(f"{relative_path} still exists in the vault; delete it first")
        ctx.exit(1)

    try:
        with _build_engine(ctx, vault) as engine:
            if folder:
                stats = engine.on_folder_deleted(relative_path)
            else:
                stats = engine.on_file_deleted(relative_path)

        if out.json_output:
            out.output_json(stats)
        else:
            out.print_summary(
                "Delete Complete",
                [
                    ("Remote documents deleted", str(stats["deletes_remote"])),
                    ("Mapping entries removed", str(stats["removed"])),
                    ("Failed", str(stats["failed"])),
                ],
            )
        if stats["failed"]:
            ctx.exit(1)
    except AIPLibConfigError as e:
        out.error(str(e))
        ctx.exit(1)
    except AIPLibError as e:
        out.error(f"Delete failed: {e}")
        ctx.exit(1)


@main.command()
@vault_argument
@click.option("--files", "show_files", is_flag=True, help="List every mapping entry")
@click.pass_context
def status(ctx: Any, vault: str, show_files: bool) -> None:
    """Show the mapping state of a vault.

    Works offline: only the mapping file and the local notes are read.

    VAULT: Local directory holding the notes
    """
    out: OutputFormatter = ctx.obj["out"]
    vault_obj = Vault(Path(vault))
    store = MappingStore(default_mapping_path(vault_obj.root))

    try:
        mappings = store.load()
        local_files = {f.path for f in vault_obj.get_markdown_files()}
    except AIPLibError as e:
        out.error(str(e))
        ctx.exit(1)
        return
    except OSError as e:
        out.error(f"Cannot read vault: {e}")
        ctx.exit(1)
        return

    uploaded = [m for m in mappings if m.is_uploaded]
    mapped_paths = {m.file_full_path for m in mappings}
    summary = {
        "mapping_file": str(store.path),
        "entries": len(mappings),
        "uploaded": len(uploaded),
        "pending": len(mappings) - len(uploaded),
        "local_files": len(local_files),
        "untracked": len(local_files - mapped_paths),
        "missing_locally": len(mapped_paths - local_files),
        "uploaded_size": sum(m.size for m in uploaded),
    }

    if out.json_output:
        summary["files"] = [m.to_dict() for m in mappings] if show_files else []
        out.output_json(summary)
        return

    out.print_summary(
        "Mapping Status",
        [
            ("Mapping file", summary["mapping_file"]),
            ("Entries", str(summary["entries"])),
            ("Uploaded", f"{summary['uploaded']} ({format_size(summary['uploaded_size'])})"),
            ("Pending upload", str(summary["pending"])),
            ("Local notes", str(summary["local_files"])),
            ("Not in mapping", str(summary["untracked"])),
            ("Missing locally", str(summary["missing_locally"])),
        ],
    )
    if show_files and mappings:
        rows = [
            [
                m.file_full_path,
                m.remote_doc_id or "-",
                format_size(m.size),
                format_timestamp_ms(m.file_stat.mtime),
            ]
            for m in sorted(mappings, key=lambda m: m.file_full_path)
        ]
        out.print_table(["Path", "Document", "Size", "Modified"], rows)


@main.command()
@click.option("--page", type=int, default=1, help="Page number (default: 1)")
@click.option(
    "--page-size",
    type=int,
    default=DEFAULT_PAGE_SIZE,
    help=f"Documents per page (default: {DEFAULT_PAGE_SIZE})",
)
@click.option(
    "--order-by",
    type=click.Choice(["gmtCreate", "gmtModified"]),
    default="gmtCreate",
    help="Field to order by (default: gmtCreate)",
)
@click.option(
    "--order",
    type=click.Choice(["asc", "desc"]),
    default="desc",
    help="Order direction (default: desc)",
)
@click.pass_context
def docs(ctx: Any, page: int, page_size: int, order_by: str, order: str) -> None:
    """List documents in the knowledge library."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        settings = _settings(ctx)
        with _client(settings) as client:
            result = client.list_docs(
                settings.library_id,
                page=page,
                page_size=page_size,
                order=order,  # type: ignore[arg-type]
                order_by=order_by,  # type: ignore[arg-type]
            )
    except AIPLibConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        return
    except AIPLibError as e:
        out.error(f"Failed to list documents: {e}")
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(
            {
                "page": result.page,
                "total_pages": result.total_pages,
                "total": result.total,
                "records": [
                    {
                        "doc_id": d.doc_id,
                        "title": d.title,
                        "status": d.status_code,
                        "tokens": d.total_tokens,
                        "created": d.gmt_create,
                    }
                    for d in result.records
                ],
            }
        )
        return

    if not result.records:
        out.info("No documents found")
        return

    rows = []
    for doc in result.records:
        created = parse_iso_timestamp(doc.gmt_create)
        rows.append(
            [
                doc.doc_id,
                doc.title,
                doc.status_code or "-",
                str(doc.total_tokens),
                created.strftime("%Y-%m-%d %H:%M:%S") if created else "-",
            ]
        )
    out.print_table(
        ["ID", "Title", "Status", "Tokens", "Created"],
        rows,
        title=f"Page {result.page} of {max(result.total_pages, 1)}",
    )


@main.command()
@click.argument("query", type=str)
@click.option("--model", "-m", default=None, help="Chat model (default from config)")
@click.pass_context
def ask(ctx: Any, query: str, model: Optional[str]) -> None:
    """Ask a question against the knowledge library.

    QUERY: The question
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        settings = _settings(ctx)
        client = AIPLibraryClient(
            api_key=settings.api_key, api_url=settings.api_url, ask_url=config.ask_url
        )
        with client:
            answer = client.ask(settings.library_id, query, model=model or config.model)
    except AIPLibConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        return
    except AIPLibNotFoundError as e:
        out.error(f"Library not found: {e}")
        ctx.exit(1)
        return
    except AIPLibError as e:
        out.error(f"Ask failed: {e}")
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json({"answer": answer.answer, "references": answer.references})
    else:
        click.echo(answer.answer)


@main.command()
@vault_argument
@click.option(
    "--interval",
    type=int,
    default=None,
    help="Minutes between smart syncs (default from config, 30)",
)
@click.option(
    "--poll",
    "poll_seconds",
    type=float,
    default=5.0,
    help="Seconds between checks for deleted notes (default: 5)",
)
@click.option(
    "--workers",
    "-j",
    type=int,
    default=1,
    help="Number of parallel uploads (default: 1)",
)
@click.pass_context
def watch(
    ctx: Any,
    vault: str,
    interval: Optional[int],
    poll_seconds: float,
    workers: int,
) -> None:
    """Keep a vault in sync until interrupted.

    Runs a smart sync now and then every INTERVAL minutes. Notes and folders
    deleted in the meantime have their remote documents deleted.

    VAULT: Local directory holding the notes
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        engine = _build_engine(ctx, vault, workers, quiet=True)
    except AIPLibConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    minutes = interval or config.sync_interval
    watcher = VaultWatcher(engine, interval_minutes=minutes, poll_seconds=poll_seconds)
    out.info(f"Watching {vault}, syncing every {minutes} minute(s). Press Ctrl+C to stop.")
    try:
        with engine:
            syncs = watcher.run()
    except KeyboardInterrupt:
        out.warning("\nStopped watching")
        return
    except OSError as e:
        out.error(f"Cannot read vault: {e}")
        ctx.exit(1)
        return
    out.info(f"Stopped after {syncs} sync(s)")


if __name__ == "__main__":
    main()
