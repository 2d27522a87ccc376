"""Metadata CLI commands: validate and list entity configs."""

import os
from pathlib import Path

import click

from commun.metadata.loader import ConfigLoader
from commun.metadata.validator import validate_config_dir, validate_config_file


def _resolve_config_path() -> Path:
    """Config directory from COMMUN_CONFIG_PATH, else ./config."""
    return Path(os.environ.get("COMMUN_CONFIG_PATH", "config"))


@click.group()
def metadata():
    """Entity config commands."""
    pass


@metadata.command()
@click.option(
    "--path",
    "target_path",
    default=None,
    type=click.Path(exists=True, path_type=Path),
    help="Validate a single config file instead of the whole config directory.",
)
def validate(target_path: Path | None):
    """Validate entity config files against the JSON Schema."""
    config_path = _resolve_config_path()

    if target_path is not None:
        issues = validate_config_file(target_path)
    else:
        if not config_path.exists():
            click.echo(f"Error: Config directory not found at {config_path}", err=True)
            raise SystemExit(1)
        issues = validate_config_dir(config_path)

    for issue in issues:
        click.echo(click.style(str(issue), fg="red"))

    if issues:
        click.echo(
            click.style(f"\n{len(issues)} schema error(s) found", fg="red", bold=True)
        )
        raise SystemExit(1)

    if target_path is None:
        loader = ConfigLoader(config_path)
        loader.load_all()
        entities = loader.list_entities()
        click.echo(f"Loaded {len(entities)} entities:")
        for name in sorted(entities):
            config = loader.get_entity(name)
            click.echo(f"  ✓ {name} ({len(config.properties)} properties)")

    click.echo(click.style("\nAll entity configs are valid.", fg="green", bold=True))


@metadata.command("list")
def list_cmd():
    """List the entities defined in the config directory."""
    config_path = _resolve_config_path()
    if not config_path.exists():
        click.echo(f"Error: Config directory not found at {config_path}", err=True)
        raise SystemExit(1)

    loader = ConfigLoader(config_path)
    loader.load_all()
    entities = loader.list_entities()
    if not entities:
        click.echo("No entities found.")
        return

    for name in sorted(entities):
        config = loader.get_entity(name)
        click.echo(
            f"{name}\tcollection={config.collection_name}\tapiKey={config.api_key}"
        )
