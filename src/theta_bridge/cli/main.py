"""
Operator CLI for the bridge.

``serve`` runs the HTTP service. The remaining commands inspect the handler
registry or talk to the terminal directly without going through the queue,
which is useful when diagnosing a single endpoint or recording fixtures.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import uvicorn

from ..adapters.api import UpstreamClient, UpstreamError, build_registry
from ..adapters.api.base import PreparedRequest, build_query, parse_body
from ..adapters.base import HandlerRequest, QueryValue
from ..config import BridgeSettings, ConfigurationError, load_settings
from ..core.logging import configure_logging
from ..core.registry import HandlerRegistry, RegistryError, normalize_path
from ..web.app import create_app

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Queueing proxy between legacy ThetaData clients and the V3 terminal.\n\n"
        "Command groups:\n"
        "- serve: run the HTTP service.\n"
        "- handlers: inspect endpoint handler registration and path resolution.\n"
        "- call / capture: issue one request against the terminal for diagnostics."
    ),
)
handlers_app = typer.Typer(help="Inspect the ordered endpoint handler registry.")
app.add_typer(handlers_app, name="handlers")


def _build_client(settings: BridgeSettings) -> UpstreamClient:
    return UpstreamClient(timeout=settings.request_timeout, connect_attempts=settings.connect_attempts)


def _parse_params(values: Optional[List[str]]) -> Dict[str, QueryValue]:
    """Parse repeated ``key=value`` options; a repeated key collects its values into a list."""

    params: Dict[str, QueryValue] = {}
    for entry in values or []:
        if "=" not in entry:
            raise typer.BadParameter(f"Parameter '{entry}' must use key=value format.")
        key, value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise typer.BadParameter(f"Parameter '{entry}' is missing a key.")
        existing = params.get(key)
        if existing is None:
            params[key] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            params[key] = [existing, value]
    return params


@app.callback(invoke_without_command=False)
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(None, "--base-url", "-u", help="Upstream terminal URL (overrides THETADATA_BASE_URL)."),
    handlers_file: Optional[Path] = typer.Option(
        None,
        "--handlers",
        help="YAML file overriding handler registration order.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level, e.g. DEBUG or INFO."),
) -> None:
    """
    Resolve settings shared by every command.

    Settings are stored in Typer's context object so child commands can build
    the registry and upstream client from the same configuration.
    """

    configure_logging(log_level, force=log_level is not None)
    try:
        settings = load_settings(base_url=base_url, handlers_file=handlers_file)
    except ConfigurationError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    state = ctx.ensure_object(dict)
    state["settings"] = settings


def _require_settings(ctx: typer.Context) -> BridgeSettings:
    settings = ctx.ensure_object(dict).get("settings")
    if not isinstance(settings, BridgeSettings):
        raise typer.Exit(code=2)
    return settings


def _require_registry(ctx: typer.Context) -> HandlerRegistry:
    state = ctx.ensure_object(dict)
    registry = state.get("registry")
    if isinstance(registry, HandlerRegistry):
        return registry
    settings = _require_settings(ctx)
    try:
        registry = build_registry(settings.base_url, client=_build_client(settings), handlers_file=settings.handlers_file)
    except RegistryError as exc:
        typer.echo(f"Failed to load handlers: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    state["registry"] = registry
    return registry


@app.command("serve")
def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind."),
    port: int = typer.Option(8080, "--port", "-p", help="Port to listen on."),
) -> None:
    """Run the bridge HTTP service."""

    settings = _require_settings(ctx)
    application = create_app(settings, registry=_require_registry(ctx))
    uvicorn.run(application, host=host, port=port, log_config=None)


@handlers_app.command("list")
def handlers_list(
    ctx: typer.Context,
    output_json: bool = typer.Option(False, "--json", help="Emit descriptors in JSON format."),
) -> None:
    """List handlers in resolution order."""

    registry = _require_registry(ctx)
    descriptors = [handler.descriptor for handler in registry]
    if output_json:
        typer.echo(json.dumps([descriptor.to_dict() for descriptor in descriptors], indent=2))
        return

    header = f"{'ID':<26} {'Version':<8} Endpoint"
    typer.echo(header)
    typer.echo("-" * len(header))
    for descriptor in descriptors:
        typer.echo(f"{descriptor.handler_id:<26} {descriptor.api_version:<8} {descriptor.endpoint}")


@handlers_app.command("resolve")
def handlers_resolve(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Request path, e.g. /v3/stock/history/eod."),
) -> None:
    """Print the id of the handler that would serve PATH."""

    registry = _require_registry(ctx)
    handler = registry.resolve(path)
    if handler is None:
        typer.echo(f"No handler registered for path '{normalize_path(path)}'.", err=True)
        raise typer.Exit(code=1)
    typer.echo(handler.handler_id)


@app.command("call")
def call(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Legacy request path."),
    param: Optional[List[str]] = typer.Option(None, "--param", "-p", help="Query parameter as key=value. Can be repeated."),
) -> None:
    """Run one request through its handler in-process and print the normalised result."""

    registry = _require_registry(ctx)
    handler = registry.resolve(path)
    if handler is None:
        typer.echo(f"No handler registered for path '{normalize_path(path)}'.", err=True)
        raise typer.Exit(code=1)

    response = handler.execute(HandlerRequest(method="GET", path=path, query_params=_parse_params(param)))
    payload = {"handler": handler.handler_id, "status_code": response.status_code, "body": response.body}
    if response.error:
        payload["error"] = response.error
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
    if response.error:
        raise typer.Exit(code=1)


@app.command("capture")
def capture(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Upstream path, e.g. /v3/stock/history/eod."),
    param: Optional[List[str]] = typer.Option(None, "--param", "-p", help="Query parameter as key=value. Can be repeated."),
    output: Path = typer.Option(..., "--output", "-o", help="Destination JSON file.", dir_okay=False),
) -> None:
    """
    Record a raw upstream exchange as a JSON fixture.

    Parameters are sent exactly as given; no handler remapping or
    normalisation is applied.
    """

    settings = _require_settings(ctx)
    params = _parse_params(param)
    query = build_query(params)
    url = f"{settings.base_url}{normalize_path(path)}"
    if query:
        url = f"{url}?{query}"
    headers = {"Accept": "application/json"}

    try:
        response = _build_client(settings).send(PreparedRequest(url=url, method="GET", headers=headers))
    except UpstreamError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    record: Dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "request": {
            "url": url,
            "method": "GET",
            "headers": headers,
            "query_params": params,
        },
        "response": {
            "status": response.status_code,
            "headers": dict(response.headers),
            "body": parse_body(response.text),
            "raw_text": response.text,
        },
    }
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(record, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    typer.echo(f"Captured {response.status_code} from {url} -> {output}")


__all__ = ["app"]
