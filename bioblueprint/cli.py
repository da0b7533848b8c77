"""Command-line interface for BioBlueprint.

Runs the analysis pipeline against named datasets and manages the API key.

Built with Click for commands and Rich for terminal output.

Usage:
    bioblueprint datasets
    bioblueprint run alice --interactive -o ./alice_blueprint.json
    bioblueprint config set-key
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Callable

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from bioblueprint import __version__
from bioblueprint.ai.client import AIClientError
from bioblueprint.analysis.known_info import apply_known_info, missing_identity_fields
from bioblueprint.config import APIKeyManager, AppConfig, ConfigurationError, get_config
from bioblueprint.datasets import (
    DatasetCatalog,
    DatasetNotFoundError,
    MetaFileError,
    context_summary_line,
    update_meta_context,
    update_meta_known,
)
from bioblueprint.models import Blueprint, KnownInfo
from bioblueprint.pipeline import AnalysisError, JobOrchestrator
from bioblueprint.preprocess import preprocess_directory
from bioblueprint.utils.logging import setup_logging

logger = logging.getLogger(__name__)

# Rich console for output
console = Console()


# =============================================================================
# Helper Functions
# =============================================================================


def print_header(text: str) -> None:
    console.print()
    console.print(Panel(text, style="bold blue", expand=False))
    console.print()


def print_success(text: str) -> None:
    console.print(f"[green]✓[/green] {text}")


def print_warning(text: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {text}")


def print_error(text: str) -> None:
    console.print(f"[red]✗[/red] {text}")


def print_info(text: str) -> None:
    console.print(f"[blue]ℹ[/blue] {text}")


def parse_known_options(pairs: tuple[str, ...]) -> KnownInfo | None:
    """Parse repeated ``key=value`` options into KnownInfo.

    Keys may use wire (``ageRange``) or attribute (``age_range``) names.

    Raises:
        click.BadParameter: If a pair has no ``=``.
    """
    values = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint="--known")
        values[key.strip()] = value.strip()
    return KnownInfo.model_validate(values) if values else None


def prompt_for_missing_fields(
    known: KnownInfo | None,
    blueprint: Blueprint | None,
    only_required: bool = False,
    ask: Callable[[str], str] | None = None,
) -> KnownInfo:
    """Ask the user for identity fields the analysis could not settle.

    Empty answers skip a field.

    Args:
        known: Facts already declared.
        blueprint: Synthesized blueprint, used to see what was inferred.
        only_required: Only ask for required fields.
        ask: Prompt function. Defaults to ``rich.prompt.Prompt.ask``.

    Returns:
        ``known`` extended with the answers.
    """
    ask = ask or (lambda label: Prompt.ask(escape(label), default="", show_default=False))
    values = dict(known.populated()) if known else {}

    fields = missing_identity_fields(known, blueprint)
    if only_required:
        fields = [f for f in fields if f.required]

    if not fields:
        print_success("All required fields are available.")
        return KnownInfo.model_validate(values)

    print_header("Interactive Input")
    console.print("Please provide the following information:\n")

    for field in fields:
        examples = f" (e.g., {', '.join(field.examples)})" if field.examples else ""
        hint = " [required]" if field.required else " [optional, press Enter to skip]"
        answer = ask(f"{field.label}{examples}{hint}").strip()
        if answer:
            values[field.key] = answer

    return KnownInfo.model_validate(values)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="BioBlueprint")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--config", "-c", type=click.Path(path_type=Path), help="Path to config file")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: Path | None) -> None:
    """BioBlueprint - Build an evidence-backed profile from a set of images.

    Quick start:
        bioblueprint config set-key
        bioblueprint datasets
        bioblueprint run DATASET -o blueprint.json
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config

    setup_logging("DEBUG" if verbose else "INFO")


def _load_config(ctx: click.Context) -> AppConfig:
    try:
        return get_config(ctx.obj.get("config_path"))
    except ConfigurationError as e:
        print_error(str(e))
        sys.exit(1)


# =============================================================================
# Dataset Commands
# =============================================================================


@cli.command()
@click.option("--root", type=click.Path(path_type=Path), help="Datasets directory")
@click.pass_context
def datasets(ctx: click.Context, root: Path | None) -> None:
    """List the datasets available for analysis."""
    app_config = _load_config(ctx)
    catalog = DatasetCatalog(root or app_config.datasets_root)
    found = catalog.list()

    if not found:
        print_warning(f"No datasets found in {catalog.root}")
        return

    table = Table(title="Datasets", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Images", justify="right")
    table.add_column("Sidecar")
    table.add_column("Context")

    for dataset in found:
        summary = context_summary_line(dataset.read_meta()) if dataset.has_meta else "-"
        table.add_row(
            dataset.name,
            str(dataset.image_count),
            "yes" if dataset.has_meta else "no",
            summary,
        )

    console.print(table)


@cli.command()
@click.argument("name")
@click.option("--root", type=click.Path(path_type=Path), help="Datasets directory")
@click.option("--skip-context", is_flag=True, help="Skip context detection")
@click.option("--interactive", "-i", is_flag=True, help="Ask for missing identity fields")
@click.option(
    "--known",
    "-k",
    multiple=True,
    metavar="KEY=VALUE",
    help="Known fact about the subject (repeatable), e.g. -k gender=female",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the blueprint JSON here instead of printing it",
)
@click.pass_context
def run(
    ctx: click.Context,
    name: str,
    root: Path | None,
    skip_context: bool,
    interactive: bool,
    known: tuple[str, ...],
    output: Path | None,
) -> None:
    """Analyze dataset NAME and produce its blueprint."""
    app_config = _load_config(ctx)
    catalog = DatasetCatalog(root or app_config.datasets_root)

    try:
        dataset = catalog.get(name)
        meta = dataset.read_meta()
    except (DatasetNotFoundError, MetaFileError) as e:
        print_error(str(e))
        sys.exit(1)

    seeded = dict(meta.known.populated()) if meta.known else {}
    declared = parse_known_options(known)
    if declared:
        seeded.update(declared.populated())
    known_info = KnownInfo.model_validate(seeded) if seeded else None

    print_header(f"Analyzing dataset: {dataset.name}")
    if meta.has_context:
        print_info(f"Stored context: {context_summary_line(meta)}")

    images = preprocess_directory(dataset.path, app_config.preprocess)
    if not images:
        print_error("No images could be preprocessed.")
        sys.exit(1)

    try:
        orchestrator = JobOrchestrator(config=app_config)
        with console.status("[bold cyan]Running analysis..."):
            result = orchestrator.run(
                images,
                skip_context=skip_context,
                known=known_info,
                context=meta.context if meta.has_context else None,
                meta=meta,
            )
    except (AnalysisError, AIClientError) as e:
        print_error(f"Analysis failed: {e}")
        sys.exit(1)

    if result.context is not None and not meta.has_context:
        update_meta_context(dataset.path, result.context)
        print_success("Saved detected context to sidecar")

    blueprint = result.blueprint
    if interactive:
        answered = prompt_for_missing_fields(known_info, blueprint)
        if not answered.is_empty:
            update_meta_known(dataset.path, answered)
            apply_known_info(blueprint, answered)
            print_success("Saved known info to sidecar")

    document = json.dumps(blueprint, indent=2, ensure_ascii=False)
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(document, encoding="utf-8")
        print_success(f"Blueprint written to {output}")
    else:
        console.print_json(document)


# =============================================================================
# Config Commands
# =============================================================================


@cli.group()
def config() -> None:
    """Manage configuration and API keys."""
    pass


@config.command("set-key")
@click.pass_context
def config_set_key(ctx: click.Context) -> None:
    """Store your Gemini API key."""
    api_key = Prompt.ask("Enter your Gemini API key", password=True)
    if not api_key:
        print_error("No API key provided.")
        return

    app_config = _load_config(ctx)
    manager = APIKeyManager.from_config(app_config)
    try:
        manager.store_key(api_key)
    except ConfigurationError as e:
        print_error(f"Failed to store API key: {e}")
        sys.exit(1)

    print_success("API key stored successfully!")
    console.print(f"  Storage: {app_config.key_storage_backend.value}")


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration (API key is never shown)."""
    app_config = _load_config(ctx)

    table = Table(show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("AI Model", app_config.ai.model_name)
    table.add_row("Temperature", str(app_config.ai.temperature))
    table.add_row("Synthesis Threshold", str(app_config.pipeline.synthesis_confidence_threshold))
    table.add_row("Focus Topic Threshold", str(app_config.pipeline.focus_topic_threshold))
    table.add_row("Max Image Dimension", str(app_config.preprocess.max_dimension))
    table.add_row("Datasets Root", str(app_config.datasets_root))
    table.add_row("Key Storage", app_config.key_storage_backend.value)
    console.print(table)

    manager = APIKeyManager.from_config(app_config)
    if manager.is_key_configured():
        print_success("API key is configured")
    else:
        print_warning("API key not configured")
        console.print("  Run: [bold]bioblueprint config set-key[/bold]")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print()
        print_info("Interrupted.")
        sys.exit(130)
    except Exception as e:
        error_msg = str(e).replace("[", "\\[").replace("]", "\\]")
        print_error(f"Unexpected error: {error_msg}")
        logger.exception("Unexpected error")
        sys.exit(1)


if __name__ == "__main__":
    main()
