"""
CLI Interface
=============
Command-line interface for the SVG book bundler.

Usage:
    python -m svgbook info <inputs...>
    python -m svgbook bundle <inputs...> -o book.zip [--include-pool]
    python -m svgbook pdf <inputs...> -o book.pdf [--pixel-scale N]
    python -m svgbook tag <inputs...> --tag T --category image -o DIR --yes
    python -m svgbook clear <inputs...> -o DIR

INPUTS are files or directories: .svg files become pages, everything
else joins the asset pool.
"""

from __future__ import annotations

import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from .engine import BookConfig, BookEngine
from .markup import MarkupError, get_href, iter_named
from .models import BundleReport, ElementCategory, ExportResult
from .paginate import ExportError, compute_layout, measure
from .storage import write_pages
from .tagging import find_tagged

console = Console()


_COMMON_OPTIONS = [
    click.option(
        "--log-level",
        default="WARNING",
        type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
        help="Logging level",
    ),
    click.option("--log-file", default=None, help="Path to log file"),
    click.option(
        "--timeout",
        default=30.0,
        type=float,
        help="Per-request network timeout (seconds)",
    ),
    click.option(
        "--no-network",
        is_flag=True,
        default=False,
        help="Never fetch remote assets",
    ),
]


def common_options(func):
    """Logging and network options shared by every command."""
    for option in reversed(_COMMON_OPTIONS):
        func = option(func)
    return func


def _build_engine(inputs, log_level, log_file, timeout, no_network, **overrides) -> BookEngine:
    config = BookConfig(
        log_level=log_level,
        log_file=log_file,
        fetch_timeout=timeout,
        allow_network=not no_network,
        **overrides,
    )
    engine = BookEngine(config)
    rejected = engine.load(inputs)
    for name, reason in rejected:
        console.print(f"[yellow]Skipped {name}:[/] {reason}")
    if not len(engine.collection):
        raise click.ClickException("No valid SVG pages found in the given inputs")
    return engine


def _fail(e: Exception, log_level: str):
    console.print(f"[red]Error:[/] {e}")
    if log_level == "DEBUG":
        console.print_exception()
    sys.exit(1)


def _bundle_with_progress(engine: BookEngine) -> BundleReport:
    pending = engine.collection.pending()
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Bundling pages...", total=len(pending))
        for document in pending:
            progress.update(task, description=f"Bundling: {document.name}")
            engine.bundle(document.id)
            progress.advance(task)
    return engine.validate()


@click.group()
@click.version_option(version=__version__, prog_name="svgbook")
def cli():
    """SVG Book Bundler: tag, redact and export collections of SVG pages."""
    pass


@cli.command()
@click.argument("inputs", nargs=-1, required=True, type=click.Path(exists=True))
@common_options
def info(inputs, log_level, log_file, timeout, no_network):
    """Display pages and pool assets found in the inputs."""
    try:
        engine = _build_engine(inputs, log_level, log_file, timeout, no_network)
    except (FileNotFoundError, click.ClickException) as e:
        _fail(e, log_level)

    console.print()
    table = Table(title="Pages", border_style="cyan")
    table.add_column("#", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Size (mm)", justify="right")
    table.add_column("Orientation")
    table.add_column("References", justify="right")
    table.add_column("Tags")

    for position, document in enumerate(engine.collection, start=1):
        root = document.tree()
        layout = compute_layout(measure(root, engine.config.default_page_size),
                                engine.config.page_width_mm)
        references = sum(1 for image in iter_named(root, "image") if get_href(image))
        tags = sorted({tag for item in find_tagged(root) for tag in item.tags})
        table.add_row(
            str(position),
            document.name,
            f"{layout.width_mm:.0f} x {layout.height_mm:.0f}",
            layout.orientation.value,
            str(references),
            ", ".join(tags) or "[dim]-[/]",
        )
    console.print(table)
    console.print()

    if len(engine.pool):
        pool_table = Table(title="Asset Pool", border_style="green")
        pool_table.add_column("File", style="bold")
        pool_table.add_column("Size", justify="right")
        for name, data in engine.pool.items():
            pool_table.add_row(name, f"{len(data) / 1024:.1f} KB")
        console.print(pool_table)
        console.print()


@cli.command()
@click.argument("inputs", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--output", "-o", default=None, help="Archive path")
@click.option(
    "--include-pool",
    is_flag=True,
    default=False,
    help="Also write every pool asset into the archive",
)
@common_options
def bundle(inputs, output, include_pool, log_level, log_file, timeout, no_network):
    """Resolve assets and write a tagged zip bundle."""
    try:
        engine = _build_engine(
            inputs, log_level, log_file, timeout, no_network,
            include_pool_assets=include_pool,
        )
        output = output or engine.config.archive_name

        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]SVG Book Bundler v{__version__}[/]\n"
                f"[dim]Bundling {len(engine.collection)} page(s) → {output}[/]",
                border_style="cyan",
            )
        )
        console.print()

        report = _bundle_with_progress(engine)
        engine.export_archive(output)
    except (FileNotFoundError, ExportError, click.ClickException) as e:
        _fail(e, log_level)

    _display_bundle_report(report)
    console.print(f"[green]Saved:[/] {output}")


@cli.command()
@click.argument("inputs", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--output", "-o", default=None, help="PDF path")
@click.option(
    "--pixel-scale",
    default=12.0,
    type=float,
    help="Rasterization density in pixels per millimetre",
)
@click.option(
    "--quality",
    default=95,
    type=click.IntRange(1, 100),
    help="JPEG quality of rasterized pages",
)
@click.option(
    "--page-width",
    default=210.0,
    type=float,
    help="Physical page width in millimetres",
)
@common_options
def pdf(inputs, output, pixel_scale, quality, page_width, log_level, log_file, timeout, no_network):
    """Resolve assets and write a paginated, redacted PDF."""
    try:
        engine = _build_engine(
            inputs, log_level, log_file, timeout, no_network,
            pixel_scale=pixel_scale,
            jpeg_quality=quality,
            page_width_mm=page_width,
        )
        output = output or engine.config.pdf_name

        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]SVG Book Bundler v{__version__}[/]\n"
                f"[dim]Exporting {len(engine.collection)} page(s) → {output}[/]",
                border_style="cyan",
            )
        )
        console.print()

        _bundle_with_progress(engine)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task(
                "Rendering pages...", total=len(engine.collection.exportable())
            )
            result = engine.export_pdf(
                output,
                progress_callback=lambda current, total: progress.update(task, completed=current),
            )
    except (FileNotFoundError, ExportError, click.ClickException) as e:
        _fail(e, log_level)

    _display_export_result(result)
    console.print(f"[green]Saved:[/] {output}")


@cli.command()
@click.argument("inputs", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--tag", "-t", "tags", multiple=True, required=True, help="Tag to apply (repeatable)")
@click.option(
    "--category", "-c",
    required=True,
    type=click.Choice([c.value for c in ElementCategory]),
    help="Element category to tag",
)
@click.option("--output", "-o", required=True, help="Directory for the tagged SVGs")
@click.option("--yes", "-y", is_flag=True, default=False, help="Confirm the bulk change")
@common_options
def tag(inputs, tags, category, output, yes, log_level, log_file, timeout, no_network):
    """Apply tags to every element of a category across all pages."""
    try:
        engine = _build_engine(inputs, log_level, log_file, timeout, no_network)
        result = engine.apply_tags_to_book(ElementCategory(category), tags, confirmed=yes)
    except (FileNotFoundError, MarkupError, click.ClickException) as e:
        _fail(e, log_level)

    if result.requires_confirmation:
        console.print(
            f"[yellow]This adds {', '.join(result.tags)} to every {category} element "
            f"in {len(engine.collection)} page(s). Re-run with --yes to confirm.[/]"
        )
        sys.exit(1)

    written = write_pages(engine.collection, output)
    console.print(
        f"[green]Tagged {len(result.updated_ids)} page(s);[/] "
        f"wrote {len(written)} file(s) to {output}"
    )


@cli.command()
@click.argument("inputs", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--output", "-o", required=True, help="Directory for the cleaned SVGs")
@common_options
def clear(inputs, output, log_level, log_file, timeout, no_network):
    """Remove every tag annotation from all pages."""
    try:
        engine = _build_engine(inputs, log_level, log_file, timeout, no_network)
        cleared = engine.clear_all_tags()
    except (FileNotFoundError, MarkupError, click.ClickException) as e:
        _fail(e, log_level)

    written = write_pages(engine.collection, output)
    console.print(
        f"[green]Cleared {cleared} annotation(s);[/] "
        f"wrote {len(written)} file(s) to {output}"
    )


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_bundle_report(report: BundleReport):
    """Display the post-bundle report as a rich table."""
    table = Table(title="Bundle Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    def status_icon(count, threshold=0):
        if count <= threshold:
            return "[green]✓[/]"
        return "[red]✗[/]"

    table.add_row(
        "Total Pages",
        str(report.total_documents),
        "[green]✓[/]" if report.total_documents > 0 else "[red]✗[/]",
    )
    table.add_row(
        "Bundled Cleanly",
        f"{report.clean_documents} ({report.success_rate}%)",
        "[green]✓[/]" if report.success_rate >= 100 else "[yellow]⚠[/]",
    )
    table.add_row(
        "Pages With Errors",
        str(len(report.documents_with_errors)),
        status_icon(len(report.documents_with_errors)),
    )
    table.add_row("Unique Assets", str(report.unique_assets), "")
    table.add_row("Redaction Targets", str(report.redaction_targets), "")

    console.print(table)
    console.print()

    if report.tag_usage:
        tag_table = Table(title="Tag Usage", border_style="cyan")
        tag_table.add_column("Tag", style="bold")
        tag_table.add_column("Elements", justify="right")
        for name, count in report.tag_usage.items():
            tag_table.add_row(name, str(count))
        console.print(tag_table)
        console.print()


def _display_export_result(result: ExportResult):
    """Display per-page export outcomes."""
    table = Table(title="Paginated Export", border_style="cyan")
    table.add_column("Page", justify="right")
    table.add_column("Source", style="bold")
    table.add_column("Size (mm)", justify="right")
    table.add_column("Status", justify="center")

    for page in result.pages:
        if page.inside_cover:
            source = "[dim](inside cover)[/]"
        else:
            source = page.document_name or ""
        size = (
            f"{page.layout.width_mm:.0f} x {page.layout.height_mm:.0f}"
            if page.layout else "-"
        )
        if page.succeeded:
            status = "[green]✓[/]"
        else:
            stage = page.failed_stage.value if page.failed_stage else "?"
            status = f"[red]✗ {stage}[/]"
        table.add_row(str(page.index + 1), source, size, status)

    console.print(table)
    console.print(
        f"[dim]Pages: {result.page_count} | Failed: {result.failed_pages} | "
        f"Size: {len(result.data) / 1024:.1f} KB[/]"
    )
    console.print()


if __name__ == "__main__":
    cli()
