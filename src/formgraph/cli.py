# src/formgraph/cli.py
"""formgraph Command Line Interface.

Inspect and evaluate graphs declared in importable Python modules:

    formgraph describe myforms.generation:graph
    formgraph evaluate myforms.generation:graph --seed '{"ecosystem": "SD1"}'
"""

from __future__ import annotations

import importlib
import json
from pathlib import Path
from typing import Any, Literal

import typer
import yaml
from pydantic import ValidationError as SettingsValidationError

from formgraph import __version__
from formgraph.contracts.errors import FormGraphError
from formgraph.core.config import EngineSettings, load_settings
from formgraph.core.dag.builder import CompiledGraph, ensure_compiled, is_graph_like

__all__ = ["app"]

app = typer.Typer(
    name="formgraph",
    help="formgraph: reactive parameter-dependency graphs for configuration forms.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"formgraph version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """formgraph: reactive parameter-dependency graphs for configuration forms."""
    from formgraph.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "WARNING")


def _load_target(target: str) -> CompiledGraph:
    """Import ``module:attribute`` and compile it.

    The attribute may be a DataGraph, a CompiledGraph, or a zero-argument
    callable returning one of them.

    Raises:
        typer.Exit: If the target cannot be imported or is not a graph
    """
    module_name, sep, attribute = target.partition(":")
    if not sep or not module_name or not attribute:
        typer.echo(f"Error: target must look like 'package.module:attribute', got {target!r}", err=True)
        raise typer.Exit(1)
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        typer.echo(f"Error: cannot import {module_name!r}: {e}", err=True)
        raise typer.Exit(1) from None
    try:
        value = getattr(module, attribute)
    except AttributeError:
        typer.echo(f"Error: module {module_name!r} has no attribute {attribute!r}", err=True)
        raise typer.Exit(1) from None
    if not is_graph_like(value) and callable(value):
        value = value()
    if not is_graph_like(value):
        typer.echo(f"Error: {target} is a {type(value).__name__}, expected a DataGraph or CompiledGraph", err=True)
        raise typer.Exit(1)
    try:
        return ensure_compiled(value)
    except FormGraphError as e:
        typer.echo(f"Graph error: {e}", err=True)
        raise typer.Exit(1) from None


def _load_seed(seed: str | None, seed_file: Path | None) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if seed_file is not None:
        try:
            loaded = yaml.safe_load(seed_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            typer.echo(f"Error: Seed file not found: {seed_file}", err=True)
            raise typer.Exit(1) from None
        except yaml.YAMLError as e:
            typer.echo(f"YAML syntax error in {seed_file}: {e}", err=True)
            raise typer.Exit(1) from None
        if loaded is not None and not isinstance(loaded, dict):
            typer.echo(f"Error: seed file {seed_file} must contain a mapping", err=True)
            raise typer.Exit(1)
        values.update(loaded or {})
    if seed is not None:
        try:
            parsed = json.loads(seed)
        except json.JSONDecodeError as e:
            typer.echo(f"Error: --seed is not valid JSON: {e}", err=True)
            raise typer.Exit(1) from None
        if not isinstance(parsed, dict):
            typer.echo("Error: --seed must be a JSON object", err=True)
            raise typer.Exit(1)
        values.update(parsed)
    return values


def _load_engine_settings(settings: str | None) -> EngineSettings:
    if settings is None:
        return EngineSettings()
    settings_path = Path(settings).expanduser()
    try:
        return load_settings(settings_path)
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(1) from None
    except SettingsValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


@app.command()
def describe(
    target: str = typer.Argument(..., help="Graph to describe, as 'package.module:attribute'."),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Show nodes, dependencies, discriminators and evaluation order of a graph."""
    compiled = _load_target(target)
    description = compiled.describe()
    if output_format == "json":
        typer.echo(json.dumps(description, indent=2))
        return

    typer.echo(f"Nodes ({len(description['nodes'])}):")
    for node in description["nodes"]:
        flags = [node["kind"]] + (["dynamic"] if node["dynamic"] else [])
        deps = f" <- {', '.join(node['dependencies'])}" if node["dependencies"] else ""
        typer.echo(f"  {node['key']} [{', '.join(flags)}]{deps}")
    if description["branches"]:
        typer.echo("Discriminators:")
        for branch in description["branches"]:
            kind = "grouped" if branch["grouped"] else "plain"
            typer.echo(f"  {branch['path']} on '{branch['key']}' ({kind})")
            for variant in branch["variants"]:
                typer.echo(f"    {variant['label']}: {', '.join(variant['keys']) or '-'}")
    if description["effects"]:
        typer.echo("Effects:")
        for effect in description["effects"]:
            typer.echo(f"  {effect['name']} <- {', '.join(effect['dependencies'])}")
    typer.echo(f"Root order: {' -> '.join(description['root_order'])}")


@app.command()
def evaluate(
    target: str = typer.Argument(..., help="Graph to evaluate, as 'package.module:attribute'."),
    seed: str | None = typer.Option(
        None,
        "--seed",
        help="Initial values as a JSON object.",
    ),
    seed_file: Path | None = typer.Option(
        None,
        "--seed-file",
        help="Initial values from a YAML file (--seed wins on conflicts).",
    ),
    ext: str | None = typer.Option(
        None,
        "--ext",
        help="External context as JSON, passed to factories and compute functions.",
    ),
    settings: str | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to engine settings YAML file.",
    ),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Build a graph, initialise an instance and print the settled snapshot."""
    compiled = _load_target(target)
    engine_settings = _load_engine_settings(settings)
    values = _load_seed(seed, seed_file)
    external: Any = None
    if ext is not None:
        try:
            external = json.loads(ext)
        except json.JSONDecodeError as e:
            typer.echo(f"Error: --ext is not valid JSON: {e}", err=True)
            raise typer.Exit(1) from None

    instance = compiled.create_instance(external, settings=engine_settings)
    try:
        snapshot = instance.init(values)
    except FormGraphError as e:
        if output_format == "json":
            typer.echo(json.dumps({"event": "error", "error": str(e), "error_type": type(e).__name__}), err=True)
        else:
            typer.echo(f"Evaluation error: {e}", err=True)
        raise typer.Exit(1) from None

    mounted = instance.mounted_variants()
    if output_format == "json":
        payload = {
            "version": snapshot.version,
            "values": snapshot.to_dict(),
            "mounted": mounted,
            "required_resources": sorted(str(resource) for resource in snapshot.required_resources),
        }
        typer.echo(json.dumps(payload, indent=2, default=str))
        return

    for key, value in snapshot.items():
        typer.echo(f"{key} = {value!r}")
    if mounted:
        typer.echo("Mounted: " + ", ".join(f"{path}={label}" for path, label in mounted.items()))
    if snapshot.required_resources:
        typer.echo("Requires: " + ", ".join(sorted(str(resource) for resource in snapshot.required_resources)))
