from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

import httpx
import typer

from cli.config import CLIConfig

QueryPairs = Sequence[Tuple[str, Any]]


class ApiClient:
    """Minimal HTTP client for the weather query service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def list_documents(self, resource: str, params: QueryPairs) -> Dict[str, Any]:
        return self._get(f"/{resource}", params)

    def get_document(self, resource: str, document_id: str) -> Dict[str, Any]:
        response = self._request("GET", f"/{resource}/{document_id}")
        if response.status_code == 404:
            raise typer.BadParameter(f"{resource} record {document_id} was not found.")
        self._raise_for_status(response)
        return response.json()

    def get_stats(self, params: QueryPairs) -> Dict[str, Any]:
        return self._get("/weathers/stats", params)

    def get_extremes(self, params: QueryPairs) -> Dict[str, Any]:
        return self._get("/weathers/extremes", params)

    def _get(self, path: str, params: QueryPairs) -> Dict[str, Any]:
        response = self._request("GET", path, params=list(params))
        self._raise_for_status(response)
        return response.json()

    def _request(self, method: str, path: str, params: List[Tuple[str, Any]] | None = None) -> httpx.Response:
        try:
            return self._client.request(method, path, params=params)
        except httpx.RequestError as exc:
            typer.secho(
                f"Could not reach {self._config.base_url}: {exc}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=1) from exc

    def _raise_for_status(self, response: httpx.Response) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
