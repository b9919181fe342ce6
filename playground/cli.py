"""CLI interface for analyzing and running sandboxed scripts."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
import yaml

from analyzer import AnalysisError, run_analysis
from analyzer.schemas import SandboxConfiguration
from playground.config import config_to_dict, load_config, save_config
from playground.session import format_entry, run_source
from sandbox.executor import SandboxExecutor
from sandbox.generator import build_sandbox_unit

app = typer.Typer(help="scriptguard: static analysis and sandboxed execution of untrusted scripts")


def _load(config_path: Optional[str]) -> SandboxConfiguration:
    if config_path is None:
        return SandboxConfiguration()
    try:
        return load_config(config_path)
    except FileNotFoundError as e:
        typer.secho(f"❌ {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except ValueError as e:
        typer.secho(f"❌ Invalid config: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


def _read_script(script: str) -> str:
    path = Path(script)
    if not path.exists():
        typer.secho(f"❌ Script not found: {script}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    return path.read_text(encoding="utf-8")


def _write_or_echo(text: str, output: Optional[str]) -> None:
    if output is None:
        typer.echo(text)
        return
    output_path = Path(output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(text, encoding="utf-8")
    typer.secho(f"✅ Written to {output_path}", fg=typer.colors.GREEN, err=True)


@app.command()
def analyze(
    script: str = typer.Argument(..., help="Path to the script to analyze"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to sandbox YAML config"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Write instrumented source here"),
    show_graph: bool = typer.Option(False, "--show-graph", help="Print the call graph"),
) -> None:
    """Check a script against the policy and print the instrumented source."""
    config = _load(config_path)
    source = _read_script(script)

    try:
        analysis = run_analysis(source, config)
    except AnalysisError as e:
        typer.secho(f"❌ Rejected: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    if show_graph:
        typer.secho("📈 Call graph:", fg=typer.colors.BLUE, err=True)
        for caller, callees in analysis.call_graph.items():
            typer.echo(f"   {caller} -> {', '.join(callees) or '(none)'}", err=True)
    typer.secho(f"✅ {analysis.loops_guarded} loop(s) guarded", fg=typer.colors.GREEN, err=True)
    _write_or_echo(analysis.source, output)


@app.command()
def build(
    script: str = typer.Argument(..., help="Path to the script to build"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to sandbox YAML config"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Write the sandbox unit here"),
) -> None:
    """Analyze a script and emit a self-contained sandbox unit."""
    config = _load(config_path)
    source = _read_script(script)

    try:
        analysis = run_analysis(source, config)
    except AnalysisError as e:
        typer.secho(f"❌ Rejected: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    _write_or_echo(build_sandbox_unit(analysis.source, config), output)


@app.command()
def run(
    script: str = typer.Argument(..., help="Path to the script to run"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to sandbox YAML config"),
    hard_timeout: float = typer.Option(10.0, "--hard-timeout", help="Kill the sandbox after N seconds"),
    as_json: bool = typer.Option(False, "--json", help="Print raw log entries as JSON lines"),
) -> None:
    """Analyze, build and execute a script, printing its log stream."""
    config = _load(config_path)
    source = _read_script(script)

    result = run_source(source, config, SandboxExecutor(hard_timeout_s=hard_timeout))

    for entry in result.entries:
        if as_json:
            typer.echo(entry.to_json())
        else:
            color = typer.colors.RED if entry.type == "error" else None
            typer.secho(format_entry(entry), fg=color)

    if result.console:
        typer.secho("\n🖨  Console output:", fg=typer.colors.BLUE, err=True)
        typer.echo(result.console.rstrip(), err=True)

    if result.errors or not result.completed:
        typer.secho(f"\n❌ Execution failed ({result.runtime_ms:.0f} ms)", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.secho(f"\n✅ Execution completed ({result.runtime_ms:.0f} ms)", fg=typer.colors.GREEN, err=True)


@app.command("config")
def show_config(
    config_path: Optional[str] = typer.Option(None, "--config", help="Config to validate and print"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Save the effective config here"),
) -> None:
    """Print (or save) the effective sandbox configuration."""
    config = _load(config_path)
    if output is not None:
        save_config(config, output)
        typer.secho(f"✅ Config saved to {output}", fg=typer.colors.GREEN)
        return
    typer.echo(yaml.safe_dump(config_to_dict(config), default_flow_style=False, sort_keys=False, indent=2))


if __name__ == "__main__":
    app()
