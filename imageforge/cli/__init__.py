"""
ImageForge CLI.

Command-line interface for incremental image builds and manifest inspection.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from imageforge import __version__


def _setup_logging(verbose: bool) -> None:
    """Route package logs through rich on stderr."""
    from rich.console import Console
    from rich.logging import RichHandler

    pkg_logger = logging.getLogger("imageforge")
    pkg_logger.handlers.clear()
    pkg_logger.addHandler(
        RichHandler(console=Console(stderr=True), show_path=False, show_time=False)
    )
    pkg_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    pkg_logger.propagate = False


def _load_config(
    config: str | None,
    source: str | None,
    output: str | None,
    manifest: str | None,
    **overrides,
):
    """Build a PipelineConfig from an optional YAML file plus CLI overrides."""
    from imageforge.core.config import PipelineConfig

    base = PipelineConfig.from_yaml(config) if config else PipelineConfig()
    return base.with_overrides(
        source_dir=Path(source) if source else None,
        output_dir=Path(output) if output else None,
        manifest_path=Path(manifest) if manifest else None,
        **overrides,
    )


def _layout_options(f):
    """Options shared by commands that need the project layout."""
    f = click.option("--manifest", "-m", help="Manifest file (default .image-cache.json)")(f)
    f = click.option("--output", "-o", help="Output image root (default images)")(f)
    f = click.option("--source", "-s", help="Source image root (default src/images)")(f)
    f = click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False),
                     help="Path to pipeline config YAML")(f)
    return f


@click.command()
@click.argument("paths", nargs=-1)
@_layout_options
@click.option("--hash", "hash_algorithm", type=click.Choice(["sha1", "sha256", "xxh64"]),
              help="Content hash algorithm")
@click.option("--workers", "-j", type=click.IntRange(min=1), help="Worker threads")
@click.option("--verify-content", is_flag=True, help="Always hash; do not trust size+mtime")
@click.option("--force", is_flag=True, help="Reprocess every target")
@click.option("--dry-run", is_flag=True, help="Report what would change without writing")
@click.option("--verbose", "-v", is_flag=True, help="Log per-file decisions")
def build(
    paths: tuple[str, ...],
    config: str | None,
    source: str | None,
    output: str | None,
    manifest: str | None,
    hash_algorithm: str | None,
    workers: int | None,
    verify_content: bool,
    force: bool,
    dry_run: bool,
    verbose: bool,
) -> None:
    """
    Optimize images under the source root.

    With no PATHS the whole source tree is processed. Otherwise only the
    given files are, and any path outside the source root is ignored.
    """
    from rich.console import Console

    from imageforge.pipelines.runner import create_driver

    _setup_logging(verbose)
    console = Console()

    try:
        run_config = _load_config(
            config,
            source,
            output,
            manifest,
            hash_algorithm=hash_algorithm,
            workers=workers,
            verify_content=True if verify_content else None,
            force=True if force else None,
        )
        driver = create_driver(run_config)
        result = driver.run(paths, dry_run=dry_run)
    except Exception as e:
        click.echo(f"Error processing images: {e}", err=True)
        raise SystemExit(1)

    if result.nothing_to_do:
        console.print("No images to process.")
        return

    if dry_run:
        console.print(
            f"[yellow]Dry run[/yellow] - {result.processed} file(s) would be updated, "
            f"{result.cached} cached."
        )
        return

    console.print(
        f"[green]✓[/green] Image processing complete! Updated {result.processed} file(s)."
    )


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """ImageForge: incremental image optimization."""
    pass


main.add_command(build)


@main.command()
@_layout_options
def status(
    config: str | None,
    source: str | None,
    output: str | None,
    manifest: str | None,
) -> None:
    """Show cached records and whether their outputs still exist."""
    from rich.console import Console
    from rich.markup import escape
    from rich.table import Table

    from imageforge.cache.paths import PathResolver
    from imageforge.manifest.store import JsonManifestStore

    console = Console()

    try:
        run_config = _load_config(config, source, output, manifest).resolved()
    except Exception as e:
        click.echo(f"Error loading config: {e}", err=True)
        raise SystemExit(1)

    store = JsonManifestStore(run_config.manifest_path)
    result = store.read()
    if result.error:
        console.print(f"[yellow]Manifest unusable:[/yellow] {escape(result.error)}")
        console.print("Next build is a full rebuild.")
        return

    cached = result.unwrap_or_empty()
    resolver = PathResolver(run_config.source_dir, run_config.output_dir)

    console.print(f"\n[bold]Manifest:[/bold] {run_config.manifest_path}")
    console.print(f"Records: [cyan]{len(cached)}[/cyan]")
    if result.dropped_keys:
        console.print(f"Malformed records: [red]{len(result.dropped_keys)}[/red]")

    if not len(cached):
        return

    table = Table(title="Cached Images")
    table.add_column("Path", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("WebP")
    table.add_column("Outputs")

    missing = 0
    for key in sorted(cached.files):
        record = cached.files[key]
        outputs = [resolver.output_path(key)]
        derivative = resolver.derivative_path(key)
        if record.has_derivative and derivative is not None:
            outputs.append(derivative)
        present = all(p.exists() for p in outputs)
        if not present:
            missing += 1
        table.add_row(
            key,
            str(record.size),
            "yes" if record.has_derivative else "no",
            "[green]ok[/green]" if present else "[red]missing[/red]",
        )

    console.print(table)
    if missing:
        console.print(f"\n[yellow]{missing} record(s) will be regenerated on the next build[/yellow]")


if __name__ == "__main__":
    main()
