"""rawscan CLI entry point."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from sqlmodel import Session

from rawscan.config import DEFAULT_CONFIG_PATH, RawScanConfig, get_config, write_default_config
from rawscan.database import get_engine, init_db, reset_database
from rawscan.errors import ConfigurationError, RawScanError
from rawscan.logging_config import setup_logging
from rawscan.migrations import get_status, run_migrations, stamp_if_needed
from rawscan.recon import run_reconstruction
from rawscan.repository import Repository
from rawscan.scanner import datasets_in_directory, scan_and_store, scan_tree
from rawscan.staging import provision_directory
from rawscan.thumbnails import DicomThumbnailRenderer
from rawscan.utils import delete_thumbnails


__version__ = "0.1.0"

app = typer.Typer(add_completion=False, help="rawscan raw MRI data CLI")
logger = logging.getLogger("rawscan")


def _ensure_config() -> RawScanConfig:
    try:
        return get_config()
    except ConfigurationError:
        typer.echo("[ERROR] config.ini not found. Run: rawscan init --root /path/to/raw")
        raise typer.Exit(code=1)


def _renderer(config: RawScanConfig) -> DicomThumbnailRenderer:
    return DicomThumbnailRenderer(config.thumbnails_dir, config.thumbnails, config.staging)


@app.command()
def init(
    root: Path = typer.Option(..., "--root", help="Path to the raw data tree"),
) -> None:
    """Initialize config.ini with default settings."""
    path = write_default_config(root, DEFAULT_CONFIG_PATH)
    typer.echo(f"[OK] Config created at {path}")


@app.command()
def scan(
    path: Optional[Path] = typer.Option(None, "--path", help="Scan a subfolder"),
    visit_id: Optional[int] = typer.Option(None, "--visit-id", help="Visit the datasets belong to"),
    thumbnails: bool = typer.Option(False, "--thumbnails", help="Render dataset thumbnails"),
    log_level: str = typer.Option("INFO", "--log-level"),
) -> None:
    """Scan the raw data tree and sync datasets to the database."""
    setup_logging(log_level)

    config = _ensure_config()
    renderer = _renderer(config) if thumbnails else None
    try:
        stats = scan_and_store(config, root=path, visit_id=visit_id, renderer=renderer)
    except RawScanError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)

    typer.echo(
        "✓ Scan completed: "
        f"{stats['added']} datasets added, "
        f"{stats['updated']} updated, "
        f"{stats['thumbnails']} thumbnails, "
        f"{stats['errors']} directories failed."
    )


@app.command()
def show(
    directory: Path = typer.Argument(..., help="Visit or series directory"),
    log_level: str = typer.Option("WARNING", "--log-level"),
) -> None:
    """List the datasets found under a directory without touching the database."""
    setup_logging(log_level)
    config = _ensure_config()

    try:
        result = scan_tree(directory, config)
    except RawScanError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)

    datasets = sorted(result.datasets, key=lambda ds: (ds.timestamp, ds.directory.name))
    for ds in datasets:
        typer.echo(
            f"{ds.relative_dataset_path(directory):<40} "
            f"{ds.series_details:<40} {ds.file_count:>6}  {ds.glob or '-'}"
        )
    for failed, reason in result.errors.items():
        typer.echo(f"[WARN] {failed}: {reason}")


@app.command()
def nifti(
    directory: Path = typer.Argument(..., help="Directory holding one DICOM series"),
    name: str = typer.Option(..., "--name", help="Output filename (without .nii)"),
    output: Optional[Path] = typer.Option(None, "--output", help="Output directory"),
    run: bool = typer.Option(False, "--run", help="Execute the command"),
) -> None:
    """Print (or run) the to3d command that reconstructs a DICOM series."""
    setup_logging()
    config = _ensure_config()
    output_dir = output or config.recon.output_dir or Path.cwd()

    try:
        datasets = datasets_in_directory(directory, config)
        if not datasets:
            typer.echo(f"[ERROR] No dataset found in {directory}")
            raise typer.Exit(code=1)
        dataset = datasets[0]
        if run:
            command, output_file = run_reconstruction(
                dataset,
                output_dir,
                name,
                append_modality_directory=config.recon.append_modality_directory,
                command=config.recon.command,
            )
        else:
            command, output_file = dataset.to_nifti(
                output_dir,
                name,
                append_modality_directory=config.recon.append_modality_directory,
                command=config.recon.command,
            )
    except RawScanError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)

    typer.echo(command)
    typer.echo(f"# -> {output_file}")


@app.command()
def thumbnail(
    directory: Path = typer.Argument(..., help="Directory holding one DICOM series"),
) -> None:
    """Render the PNG thumbnail of a DICOM series."""
    setup_logging()
    config = _ensure_config()

    try:
        datasets = datasets_in_directory(directory, config)
        if not datasets:
            typer.echo(f"[ERROR] No dataset found in {directory}")
            raise typer.Exit(code=1)
        thumb = datasets[0].thumbnail_path(_renderer(config))
    except (RawScanError, OSError) as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)

    typer.echo(str(thumb))


@app.command()
def provision(
    directory: Path = typer.Argument(..., help="Directory to copy locally"),
) -> None:
    """Stage a decompressed, read-only local copy of a directory's files."""
    setup_logging()
    config = _ensure_config()
    try:
        tempdir = provision_directory(directory, config.scan.ignore_patterns, config.staging)
    except RawScanError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)
    typer.echo(str(tempdir))


@app.command()
def stats() -> None:
    """Show database statistics."""
    _ensure_config()
    init_db()

    with Session(get_engine()) as session:
        datasets = Repository(session).get_all_datasets()

    subjects = {ds.rmr for ds in datasets}
    globbed = len([ds for ds in datasets if ds.glob])
    thumbs = len([ds for ds in datasets if ds.thumbnail])

    typer.echo("Dataset Statistics:")
    typer.echo(f"  Total datasets: {len(datasets)}")
    typer.echo(f"  Subjects (rmr): {len(subjects)}")
    typer.echo(f"  Reconstructable (glob): {globbed}")
    typer.echo(f"  Thumbnails: {thumbs}")


@app.command()
def migrate(
    check: bool = typer.Option(False, "--check", help="Print status and exit (1 if not at head)"),
) -> None:
    """Run pending database migrations (or check status with --check)."""
    setup_logging()
    _ensure_config()
    init_db()
    stamp_if_needed()

    current, head = get_status()

    if check:
        if current == head:
            typer.echo(f"[OK] Database at {head} (head).")
            raise typer.Exit(code=0)
        typer.echo(f"[WARN] Database behind, current: {current}, head: {head}")
        raise typer.Exit(code=1)

    if current == head:
        logger.info(f"Database already at {head} (head). Nothing to do.")
        raise typer.Exit(code=0)

    logger.info(f"Migrating database {current} -> {head} ...")
    run_migrations(backup=True)
    logger.info("Migration complete.")


@app.command()
def reset(
    confirm: bool = typer.Option(False, "--confirm", help="Confirm destructive reset"),
) -> None:
    """Reset the database and remove rendered thumbnails."""
    if not confirm:
        typer.echo("[ERROR] This will delete your database and thumbnails. Use --confirm.")
        raise typer.Exit(code=1)

    config = _ensure_config()
    thumbnails_dir = config.thumbnails_dir
    removed = 0
    if thumbnails_dir.exists():
        removed = delete_thumbnails(thumbnails_dir.glob("*.png"), thumbnails_dir)

    reset_database()
    typer.echo(f"[INFO] Database reset, {removed} thumbnails removed.")


if __name__ == "__main__":
    app()
