"""Command-line interface for topicspaces."""

import json
import logging
from pathlib import Path

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import (
    USER_CONFIG_FILE,
    ConfigError,
    Settings,
    get_user_config,
    load_settings,
    save_user_config,
)
from .label_normalizer import LabelNormalizer
from .topic_cap import apply_topic_cap

console = Console()


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Show pipeline log messages")
def main(verbose: bool):
    """topicspaces - Consolidate post topics into Topic Spaces."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _load_label_counts(path: Path) -> dict[str, int]:
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"{path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise click.BadParameter("expected a JSON object of label -> post count")
    counts = {}
    for label, count in data.items():
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise click.BadParameter(f"count for {label!r} must be a non-negative integer")
        counts[str(label)] = count
    return counts


@main.command()
@click.argument("labels_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--no-llm", is_flag=True, help="Skip LLM normalization, only apply the cap")
@click.option("--max-topics", type=int, default=None, help="Override maximum visible topics")
@click.option("--min-posts", type=int, default=None, help="Override minimum posts per topic")
@click.option("--model", "-m", default=None, help="LLM model for normalization")
def normalize(labels_file: Path, no_llm: bool, max_topics, min_posts, model):
    """Normalize and cap the label counts in LABELS_FILE (JSON object)."""
    overrides = {}
    if no_llm:
        overrides["enable_normalization"] = False
    if max_topics is not None:
        overrides["max_topics"] = max_topics
    if min_posts is not None:
        overrides["min_posts_per_topic"] = min_posts
    if model:
        overrides["model"] = model

    try:
        settings = load_settings(**overrides)
    except ConfigError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(1)

    label_counts = _load_label_counts(labels_file)

    with console.status(f"Normalizing {len(label_counts)} labels..."):
        result = LabelNormalizer(settings).normalize(label_counts)

    display = apply_topic_cap(
        label_counts,
        result.mapping,
        min_posts_per_topic=settings.min_posts_per_topic,
        max_topics=settings.max_topics,
        long_tail_label=settings.long_tail_label,
    )

    if not result.success:
        console.print(
            f"[yellow]Normalization degraded ({result.fallback_reason}); "
            "topics may be less refined than usual[/yellow]"
        )

    table = Table(title="Topic Mapping")
    table.add_column("Raw Label", style="cyan")
    table.add_column("Posts", justify="right")
    table.add_column("Canonical", style="magenta")
    table.add_column("Display", style="green")

    for raw_label, count in sorted(label_counts.items(), key=lambda x: (-x[1], x[0])):
        shown = display[raw_label]
        style = "dim" if shown == settings.long_tail_label else None
        table.add_row(
            escape(raw_label), str(count), escape(result.mapping[raw_label]), escape(shown), style=style
        )

    console.print(table)
    console.print(
        f"\n[bold]{result.stats.raw_label_count}[/bold] raw → "
        f"[bold]{result.stats.canonical_label_count}[/bold] canonical "
        f"(merged {result.stats.merged_count}), "
        f"[bold]{len(set(display.values()))}[/bold] display labels"
    )


@main.group(invoke_without_command=True)
@click.pass_context
def config(ctx):
    """Show the effective pipeline settings."""
    if ctx.invoked_subcommand is not None:
        return

    try:
        settings = load_settings()
    except ConfigError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(1)

    table = Table(title="Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for name, value in settings.model_dump().items():
        table.add_row(name, str(value))
    console.print(table)
    console.print(f"[dim]Config file: {USER_CONFIG_FILE}[/dim]")


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Persist a hyperparameter (e.g. max_topics 15) to config.yaml."""
    if key not in Settings.model_fields:
        console.print(f"[red]Unknown setting: {key}[/red]")
        raise SystemExit(1)

    parsed = yaml.safe_load(value)
    user_cfg = get_user_config()
    hyperparams = user_cfg.setdefault("hyperparams", {})
    hyperparams[key] = parsed

    try:
        load_settings(**{key: parsed})
    except ConfigError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise SystemExit(1)

    save_user_config(user_cfg)
    console.print(f"[green]Saved {key} = {value}[/green]")


if __name__ == "__main__":
    main()
