from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer

_SUMMARY_ORDER = ("max", "min", "avg", "median")


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _format_record(record: Dict[str, Any]) -> str:
    return ", ".join(f"{key}={value}" for key, value in record.items())


def _echo_records(records: List[Dict[str, Any]]) -> None:
    if not records:
        typer.echo("No records matched.")
        return
    for record in records:
        typer.echo(f"  - {_format_record(record)}")


def _echo_window(window: Dict[str, Any] | None) -> None:
    if window:
        typer.echo(f"window: {window.get('start')} -> {window.get('end')}")
    else:
        typer.echo("window: as filtered")


def render_page(payload: Dict[str, Any]) -> None:
    paging = payload.get("paging") or {}
    echo_heading("Paging")
    echo_key_values(
        [
            ("total_count", paging.get("totalCount")),
            ("total_pages", paging.get("totalPages")),
            ("current_page", paging.get("currentPage")),
            ("limit", paging.get("limit")),
        ]
    )
    typer.echo()
    echo_heading("Records")
    _echo_records(payload.get("result") or [])


def render_document(payload: Dict[str, Any]) -> None:
    echo_heading("Record")
    echo_key_values((payload.get("result") or {}).items())


def render_stats(payload: Dict[str, Any]) -> None:
    field = payload.get("field")
    group_by = payload.get("groupBy")
    echo_heading(f"Statistics for {field}")
    _echo_window(payload.get("window"))

    summaries = payload.get("result") or []
    if not summaries:
        typer.echo("No readings in range.")
        return

    for summary in summaries:
        typer.echo()
        if payload.get("grouped"):
            echo_heading(f"{group_by}: {summary.get(group_by)}")
        stats = summary.get(field) or {}
        for name in _SUMMARY_ORDER:
            entry = stats.get(name)
            if entry is None:
                continue
            typer.echo(f"  {name}: {_format_record(entry)}")


def render_extremes(payload: Dict[str, Any]) -> None:
    echo_heading(f"{payload.get('extreme')} {payload.get('field')}")
    _echo_window(payload.get("window"))
    _echo_records(payload.get("result") or [])
