"""AEM LLM connector - command line entry point."""

from __future__ import annotations

import json
import logging

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from aem_llm_connector import __version__
from aem_llm_connector.config import ConnectorConfig, load_config
from aem_llm_connector.service import CloudComponentGenerator, ComponentGenerator
from aem_llm_connector.types import GenerationResult, ImagePayload

console = Console()


def _load(ctx: click.Context) -> ConnectorConfig:
    config, config_file = load_config(ctx.obj["config_path"])
    if config_file:
        console.print(f"[dim]Config: {config_file}[/dim]")
    else:
        console.print("[dim]Config: defaults (no llm_connector.yaml found)[/dim]")
    return config


def _print_result(result: GenerationResult) -> None:
    if not result.ok:
        err = result.error
        body = err.summary if err else "Unknown error"
        if err and err.technical_detail:
            body += f"\n[dim]{err.technical_detail}[/dim]"
        if err and err.suggestion:
            body += f"\n\n[yellow]{err.suggestion}[/yellow]"
        console.print(Panel(body, title="Generation failed", border_style="red"))
        return

    spec = result.payload
    assert spec is not None
    via = f"{result.model} (fallback)" if result.fallback_used else result.model
    console.print(Panel(
        f"[bold]{spec.name}[/bold]\n{spec.description}\n\n"
        f"[dim]Model: {via} | attempts: {result.attempts}[/dim]",
        title="Component generated",
        border_style="green",
    ))
    table = Table(title="Generated files", show_lines=False, border_style="dim")
    table.add_column("File", style="bold")
    table.add_column("Size", justify="right", width=8)
    for name, source in result.payload.generated_files().items():
        table.add_row(name, f"{len(source)}")
    console.print(table)


@click.group()
@click.version_option(__version__, prog_name="aem-llm")
@click.option("--config", "-c", "config_path", default=None,
              help="Path to llm_connector.yaml (auto-detected from CWD or ~/.llm_connector/)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """AEM LLM connector - generate AEM components with a local LLM."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.command()
@click.argument("prompt")
@click.option("--image", "-i", "image_path", default=None,
              type=click.Path(exists=True, dir_okay=False),
              help="Image to analyse (switches to the vision model)")
@click.option("--requirements", "-r", default="", help="Additional requirements")
@click.option("--type", "-t", "component_type", default="component", help="Component type")
@click.option("--cloud", is_flag=True, help="Use the cloud provider instead of the local model")
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON")
@click.pass_context
def generate(ctx: click.Context, prompt: str, image_path: str | None, requirements: str,
             component_type: str, cloud: bool, as_json: bool):
    """Generate a component from PROMPT."""
    config = _load(ctx)
    image = ImagePayload.from_path(image_path) if image_path else None
    generator = CloudComponentGenerator(config) if cloud else ComponentGenerator(config)
    try:
        with console.status("[bold cyan]Generating component...[/bold cyan]"):
            result = generator.generate(
                prompt,
                image=image,
                requirements=requirements,
                component_type=component_type,
            )
    finally:
        generator.close()

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _print_result(result)
    if not result.ok:
        ctx.exit(1)


@main.command("test-connection")
@click.pass_context
def test_connection(ctx: click.Context):
    """Send a short generation to check the model responds."""
    generator = ComponentGenerator(_load(ctx))
    try:
        ok = generator.test_connection()
    finally:
        generator.close()
    if ok:
        console.print("[green]Connection OK[/green]")
    else:
        console.print("[red]Connection FAILED[/red]")
        ctx.exit(1)


@main.command()
@click.pass_context
def info(ctx: click.Context):
    """Show the active LLM configuration."""
    config = _load(ctx)
    generator = ComponentGenerator(config)
    try:
        console.print(generator.describe_configuration())
        console.print(CloudComponentGenerator(config).describe_configuration())
    finally:
        generator.close()


@main.command()
@click.pass_context
def health(ctx: click.Context):
    """Check whether the model server is reachable."""
    generator = ComponentGenerator(_load(ctx))
    try:
        report = generator.health_check()
    finally:
        generator.close()
    style = "green" if report["connected"] else "red"
    console.print(Panel(
        f"{report['message']}\n\n[dim]{report['llm_info']} ({report['duration_ms']}ms)[/dim]",
        title=report["status"],
        border_style=style,
    ))
    if not report["connected"]:
        ctx.exit(1)


@main.command()
@click.pass_context
def models(ctx: click.Context):
    """List models installed on the model server."""
    config = _load(ctx)
    generator = ComponentGenerator(config)
    try:
        names = generator.list_models()
    finally:
        generator.close()
    if not names:
        console.print("[yellow]No models found (server unreachable or empty catalog)[/yellow]")
        return
    table = Table(title="Installed models", show_lines=False, border_style="dim")
    table.add_column("Model", style="bold")
    table.add_column("Default", width=8)
    for name in names:
        is_default = name in (config.local.model, f"{config.local.model}:latest")
        table.add_row(name, "[green]*[/green]" if is_default else "")
    console.print(table)


if __name__ == "__main__":
    main()
