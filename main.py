"""Game server template resolver CLI entrypoint."""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from gamehost.arm.emitter import ArmTemplateEmitter
from gamehost.resolver.parameters import (
    parse_assignments,
    parse_cli_value,
    secure_env_var,
    secure_parameters_from_environment,
)
from gamehost.resolver.resolver import TemplateResolver
from gamehost.template.parser import ParameterFileParser, TemplateParser
from gamehost.template.schema import TemplateSpec
from gamehost.template.updater import ParameterFileUpdater

app = typer.Typer(help="Game server templates - resolve and render Azure container deployments")
console = Console()


def _collect_parameters(
    template: TemplateSpec,
    parameters_file: Optional[str],
    assignments: List[str],
    prompt: bool,
) -> Dict[str, Any]:
    """Merge parameter file, command-line and secure values.

    Secure values only come from the environment or a hidden prompt.
    """
    values: Dict[str, Any] = {}
    if parameters_file:
        values.update(ParameterFileParser.load(parameters_file, template))
    values.update(parse_assignments(template, assignments or []))
    values.update(secure_parameters_from_environment(template))

    for name, spec in template.parameters.items():
        if spec.secure and spec.required and name not in values and prompt:
            values[name] = typer.prompt(
                f"{name} ({spec.description or 'secure value'})", hide_input=True
            )
    return values


def _resolve(template_ref, parameters_file, assignments, prompt, debug):
    template = TemplateParser.resolve_reference(template_ref)
    values = _collect_parameters(template, parameters_file, assignments, prompt)
    resolver = TemplateResolver(template, debug=debug)
    graph, outputs = resolver.resolve(values)
    return template, graph, outputs


def _print_resolution(graph, outputs) -> None:
    table = Table(title="Resolved Resources")
    table.add_column("Symbol", style="cyan")
    table.add_column("Type")
    table.add_column("Name", style="green")
    table.add_column("Depends On")
    for resource in graph:
        table.add_row(resource.symbol, resource.type, resource.qualified_name, "\n".join(resource.depends_on))
    console.print(table)

    if graph.excluded:
        console.print(f"[yellow]Excluded by condition: {', '.join(graph.excluded)}[/]")

    output_table = Table(title="Outputs")
    output_table.add_column("Name", style="cyan")
    output_table.add_column("Value")
    for name, value in outputs.values.items():
        output_table.add_row(name, json.dumps(value) if not isinstance(value, str) else value)
    console.print(output_table)


@app.command("templates")
def templates():
    """List the built-in templates."""
    table = Table(title="Built-in Templates")
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Description")
    for name in TemplateParser.builtin_names():
        template = TemplateParser.load_builtin(name)
        table.add_row(name, template.metadata.version, template.metadata.description or "")
    console.print(table)


@app.command("params")
def params(
    template_ref: str = typer.Option("pixelmon", "--template", "-t", help="Built-in template name or path to a template YAML file"),
):
    """Show the parameters a template declares."""
    try:
        template = TemplateParser.resolve_reference(template_ref)
    except Exception as e:
        console.print(f"[bold red]Error: {e}[/]")
        raise typer.Exit(code=1)

    table = Table(title=f"Parameters of {template.metadata.name}")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Default")
    table.add_column("Description")
    for name, spec in template.parameters.items():
        if spec.secure:
            type_label = f"{spec.type} [red](secure, {secure_env_var(name)})[/]"
            default = ""
        else:
            type_label = spec.type
            default = "[yellow]required[/]" if spec.required else json.dumps(spec.default)
        table.add_row(name, type_label, default, spec.description or "")
    console.print(table)


@app.command("resolve")
def resolve(
    template_ref: str = typer.Option("pixelmon", "--template", "-t", help="Built-in template name or path to a template YAML file"),
    parameters_file: Optional[str] = typer.Option(None, "--parameters", "-p", help="Parameter file (ARM JSON or flat YAML/JSON)"),
    assignments: Optional[List[str]] = typer.Option(None, "--param", help="Parameter assignment name=value, repeatable"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Save the resolved graph and outputs as JSON"),
    prompt: bool = typer.Option(True, "--prompt/--no-prompt", help="Prompt for missing secure parameters"),
    debug: bool = typer.Option(False, "--debug", help="Print verbose debug information"),
):
    """Resolve a template against a parameter set."""
    console.print("[bold blue]Resolving template...[/]")

    try:
        template, graph, outputs = _resolve(template_ref, parameters_file, assignments, prompt, debug)
    except Exception as e:
        console.print(f"[bold red]Error: {e}[/]")
        raise typer.Exit(code=1)

    _print_resolution(graph, outputs)

    if output:
        graph.save(output, outputs)
        console.print(f"[green]Resolved graph saved to {output}[/]")


@app.command("generate")
def generate(
    template_ref: str = typer.Option("pixelmon", "--template", "-t", help="Built-in template name or path to a template YAML file"),
    parameters_file: Optional[str] = typer.Option(None, "--parameters", "-p", help="Parameter file (ARM JSON or flat YAML/JSON)"),
    assignments: Optional[List[str]] = typer.Option(None, "--param", help="Parameter assignment name=value, repeatable"),
    output_dir: str = typer.Option(".", "--output-dir", "-o", help="Directory for the generated ARM files"),
    key_vault_id: Optional[str] = typer.Option(None, "--key-vault-id", help="Key Vault resource id that holds the secure parameters"),
    prompt: bool = typer.Option(True, "--prompt/--no-prompt", help="Prompt for missing secure parameters"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite existing ARM files"),
    debug: bool = typer.Option(False, "--debug", help="Print verbose debug information"),
):
    """Generate an ARM deployment template from a resolved template."""
    console.print("[bold blue]Generating ARM template...[/]")

    output_path = Path(output_dir)
    existing_files = [
        p for p in (output_path / "azuredeploy.json", output_path / "azuredeploy.parameters.json") if p.exists()
    ]
    if existing_files and not force:
        existing_files_str = ", ".join(str(f) for f in existing_files)
        console.print(f"[bold yellow]WARNING: ARM files already exist: {existing_files_str}[/]")
        console.print("[yellow]Use --force to overwrite existing files.[/]")
        raise typer.Exit(code=1)

    try:
        template, graph, outputs = _resolve(template_ref, parameters_file, assignments, prompt, debug)
        emitter = ArmTemplateEmitter(graph, outputs, template, output_dir, key_vault_id=key_vault_id, debug=debug)
        template_path, params_path = emitter.generate()
    except Exception as e:
        console.print(f"[bold red]Error: {e}[/]")
        raise typer.Exit(code=1)

    console.print(f"[green]ARM template generated at {template_path}[/]")
    console.print(f"[green]Parameters file generated at {params_path}[/]")
    secure = sorted(graph.secure_parameters())
    if secure and not key_vault_id:
        console.print(
            f"[yellow]Supply {', '.join(secure)} at deployment time "
            "(az deployment group create ... --parameters name=value) or pass --key-vault-id.[/]"
        )


@app.command("set-param")
def set_param(
    parameters_file: str = typer.Option(..., "--parameters", "-p", help="Parameter file to update"),
    name: str = typer.Argument(..., help="Parameter name"),
    value: str = typer.Argument(..., help="New value"),
    template_ref: str = typer.Option("pixelmon", "--template", "-t", help="Template used to type the value"),
):
    """Set one non-secure value in a parameter file."""
    try:
        template = TemplateParser.resolve_reference(template_ref)
        spec = template.parameters.get(name)
        if spec is None:
            raise KeyError(f"Template {template.metadata.name} does not declare parameter '{name}'")
        ParameterFileUpdater.update_value(parameters_file, name, parse_cli_value(name, spec, value), template)
    except Exception as e:
        console.print(f"[bold red]Error: {e}[/]")
        raise typer.Exit(code=1)

    console.print(f"[green]Set {name} in {parameters_file}[/]")


if __name__ == "__main__":
    app()
