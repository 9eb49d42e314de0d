from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_document, render_extremes, render_page, render_stats


class Resource(str, Enum):
    weathers = "weathers"
    logs = "logs"
    users = "users"


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for querying the weather readings service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


def _filter_pairs(filters: Optional[List[str]]) -> List[Tuple[str, str]]:
    pairs: List[Tuple[str, str]] = []
    for item in filters or []:
        key, separator, value = item.partition("=")
        if not separator or not key.strip():
            raise typer.BadParameter(
                f"Filter {item!r} must look like key=value, e.g. humidity[gt]=10.",
                param_hint="--filter",
            )
        pairs.append((key.strip(), value))
    return pairs


def _sort_pairs(sorts: Optional[List[str]]) -> List[Tuple[str, str]]:
    pairs: List[Tuple[str, str]] = []
    for item in sorts or []:
        field, _, direction = item.partition(":")
        direction = direction or "1"
        if not field.strip() or direction not in {"1", "-1"}:
            raise typer.BadParameter(
                f"Sort {item!r} must look like field:1 or field:-1.",
                param_hint="--sort",
            )
        pairs.append((f"sort[{field.strip()}]", direction))
    return pairs


def _scope_pairs(
    device: Optional[str],
    longitude: Optional[float],
    latitude: Optional[float],
    recent_months: Optional[int],
) -> List[Tuple[str, object]]:
    pairs: List[Tuple[str, object]] = []
    if device:
        pairs.append(("deviceName", device))
    if longitude is not None:
        pairs.append(("longitude", longitude))
    if latitude is not None:
        pairs.append(("latitude", latitude))
    if recent_months is not None:
        pairs.append(("recentMonths", recent_months))
    return pairs


FilterOption = typer.Option(
    None,
    "--filter",
    "-f",
    help="Query filter as key=value; repeatable (e.g. -f 'humidity[gt]=10').",
)


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each HTTP response.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("list")
def list_command(
    ctx: typer.Context,
    resource: Resource = typer.Argument(..., help="Collection to list."),
    filters: Optional[List[str]] = FilterOption,
    sort: Optional[List[str]] = typer.Option(
        None, "--sort", "-s", help="Sort as field:1 or field:-1; repeatable, primary key first."
    ),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Page size."),
    page: int = typer.Option(1, "--page", min=1, help="Page number."),
) -> None:
    """List records one page at a time."""
    state = _get_state(ctx)
    params: List[Tuple[str, object]] = [*_filter_pairs(filters), *_sort_pairs(sort)]
    if limit is not None:
        params.append(("limit", limit))
    params.append(("page", page))
    payload = state.client.list_documents(resource.value, params)
    render_page(payload)


@app.command("show")
def show_command(
    ctx: typer.Context,
    resource: Resource = typer.Argument(..., help="Collection holding the record."),
    document_id: str = typer.Argument(..., help="Record identifier."),
) -> None:
    """Fetch a single record."""
    state = _get_state(ctx)
    payload = state.client.get_document(resource.value, document_id)
    render_document(payload)


@app.command("stats")
def stats_command(
    ctx: typer.Context,
    agg_field: str = typer.Argument(..., help="Metric to summarize, e.g. precipitation."),
    group_by: Optional[str] = typer.Option(None, "--group-by", "-g", help="Field to group on."),
    device: Optional[str] = typer.Option(None, "--device", help="Restrict to one device."),
    longitude: Optional[float] = typer.Option(None, "--longitude", help="Point scope longitude."),
    latitude: Optional[float] = typer.Option(None, "--latitude", help="Point scope latitude."),
    recent_months: Optional[int] = typer.Option(
        None, "--recent-months", min=1, help="Window length before the latest reading."
    ),
    filters: Optional[List[str]] = FilterOption,
) -> None:
    """Summarize max, min, average and median of a metric."""
    state = _get_state(ctx)
    params: List[Tuple[str, object]] = [("aggField", agg_field)]
    if group_by:
        params.append(("groupBy", group_by))
    params.extend(_scope_pairs(device, longitude, latitude, recent_months))
    params.extend(_filter_pairs(filters))
    payload = state.client.get_stats(params)
    render_stats(payload)


@app.command("extremes")
def extremes_command(
    ctx: typer.Context,
    agg_field: str = typer.Argument(..., help="Metric to inspect, e.g. temperature."),
    minimum: bool = typer.Option(False, "--min/--max", help="Select the minimum instead of the maximum."),
    device: Optional[str] = typer.Option(None, "--device", help="Restrict to one device."),
    longitude: Optional[float] = typer.Option(None, "--longitude", help="Point scope longitude."),
    latitude: Optional[float] = typer.Option(None, "--latitude", help="Point scope latitude."),
    recent_months: Optional[int] = typer.Option(
        None, "--recent-months", min=1, help="Window length before the latest reading."
    ),
    filters: Optional[List[str]] = FilterOption,
) -> None:
    """List the readings tied at the maximum (or minimum) of a metric."""
    state = _get_state(ctx)
    params: List[Tuple[str, object]] = [
        ("aggField", agg_field),
        ("extreme", "min" if minimum else "max"),
    ]
    params.extend(_scope_pairs(device, longitude, latitude, recent_months))
    params.extend(_filter_pairs(filters))
    payload = state.client.get_extremes(params)
    render_extremes(payload)
