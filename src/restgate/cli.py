from __future__ import annotations

import importlib
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from restgate.config import OpenApiDocumentOptions
from restgate.domain.models import Procedure
from restgate.errors import ConfigurationError
from restgate.http.dispatcher import Gateway
from restgate.openapi.generator import generate_openapi_document
from restgate.procedures.router import Router, as_procedures
from restgate.routing.table import RouteTable

app = typer.Typer(no_args_is_help=True, add_completion=False)

console = Console()
err_console = Console(stderr=True)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=err_console, show_path=False)],
        )


def load_procedures(target: str, app_dir: Optional[str] = None) -> list[Procedure]:
    """
    Resolve ``module:attribute`` to the procedures it exposes.

    The attribute may be a Router, a Gateway or a plain list of procedures.
    """
    if ":" not in target:
        raise typer.BadParameter(f"Expected 'module:attribute', got '{target}'")
    module_name, attribute = target.split(":", 1)

    if app_dir:
        path = str(Path(app_dir).expanduser().resolve())
        if path not in sys.path:
            sys.path.insert(0, path)

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise typer.BadParameter(f"Could not import module '{module_name}': {e}")

    obj: Any = module
    for part in attribute.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError:
            raise typer.BadParameter(f"Module '{module_name}' has no attribute '{attribute}'")

    if isinstance(obj, Gateway):
        return list(obj.procedures)
    if isinstance(obj, Router):
        return obj.flatten()
    if isinstance(obj, (list, tuple)):
        return as_procedures(obj)
    raise typer.BadParameter(f"'{target}' is not a Router, Gateway or list of procedures")


@app.command()
def openapi(
    target: str = typer.Argument(..., metavar="APP", help="module:attribute naming a Router"),
    title: str = typer.Option("API", envvar="RESTGATE_TITLE", help="info.title"),
    version: str = typer.Option("1.0.0", envvar="RESTGATE_VERSION", help="info.version"),
    base_url: str = typer.Option(
        "http://localhost:8000", envvar="RESTGATE_BASE_URL", help="servers[0].url"
    ),
    description: Optional[str] = typer.Option(None, envvar="RESTGATE_DESCRIPTION"),
    docs_url: Optional[str] = typer.Option(None, envvar="RESTGATE_DOCS_URL", help="externalDocs.url"),
    tag: list[str] = typer.Option([], "--tag", help="Document-level tag (repeatable)"),
    coerce_params: bool = typer.Option(
        False, envvar="RESTGATE_COERCE_PARAMS", help="Allow numbers/booleans/dates as parameters"
    ),
    format: str = typer.Option("json", help="Output format: json|yaml"),
    out: Optional[str] = typer.Option(None, help="Output path (default: print to stdout)"),
    app_dir: Optional[str] = typer.Option(
        None, envvar="RESTGATE_APP_DIR", help="Directory prepended to sys.path before import"
    ),
) -> None:
    fmt = format.lower().strip()
    if fmt not in ("json", "yaml"):
        raise typer.BadParameter("format must be one of: json, yaml")

    procedures = load_procedures(target, app_dir)
    options = OpenApiDocumentOptions(
        title=title,
        version=version,
        base_url=base_url,
        description=description,
        docs_url=docs_url,
        tags=tag,
        coerce_params=coerce_params,
    )
    try:
        document = generate_openapi_document(procedures, options)
    except ConfigurationError as e:
        err_console.print(f"[bold red]error:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=1)

    if fmt == "json":
        text = json.dumps(document, indent=2)
    else:
        text = yaml.safe_dump(document, sort_keys=False, allow_unicode=True)

    if out:
        out_path = Path(out).expanduser().resolve()
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(text, encoding="utf-8")
        err_console.print(f"[bold green]Wrote[/bold green] {out_path} ({len(document['paths'])} paths)")
        return

    # plain stdout so the output can be piped
    typer.echo(text)


@app.command()
def routes(
    target: str = typer.Argument(..., metavar="APP", help="module:attribute naming a Router"),
    app_dir: Optional[str] = typer.Option(None, envvar="RESTGATE_APP_DIR"),
) -> None:
    procedures = load_procedures(target, app_dir)
    try:
        table_index = RouteTable(procedures)
    except ConfigurationError as e:
        err_console.print(f"[bold red]error:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=1)

    console.print(f"[bold]Routes:[/bold] {len(table_index)}")

    table = Table(show_header=True, header_style="bold")
    table.add_column("METHOD", no_wrap=True)
    table.add_column("PATH")
    table.add_column("PROCEDURE")
    table.add_column("PROTECTED", no_wrap=True)

    for route in table_index.routes:
        d = route.procedure.descriptor
        table.add_row(route.method, route.template.path, d.label, "yes" if d.protect else "")

    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
