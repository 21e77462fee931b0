from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the crowd monitor service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def ingest(
        self, sensor_id: int, identifiers: List[str], at: Optional[str] = None
    ) -> Dict[str, Any]:
        if not identifiers:
            raise typer.BadParameter("At least one identifier is required.")
        body: Dict[str, Any] = {"identifiers": identifiers}
        if at is not None:
            body["at"] = at
        return self._request("POST", f"/crowd_data/{sensor_id}", json=body)

    def latest(self, sensor_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/crowd_data/{sensor_id}/latest")

    def history(self, sensor_id: int, limit: int) -> Dict[str, Any]:
        return self._request("GET", f"/crowd_data/{sensor_id}/history", params={"limit": limit})

    def trends(self, sensor_id: Optional[int], limit: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": limit}
        if sensor_id is not None:
            params["sensor_id"] = sensor_id
        return self._request("GET", "/crowd_data/analysis", params=params)

    def compare(
        self, sensor_a: int, sensor_b: int, window_seconds: Optional[int] = None
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"sensor_a": sensor_a, "sensor_b": sensor_b}
        if window_seconds is not None:
            params["window_seconds"] = window_seconds
        return self._request("GET", "/mobility/analysis", params=params)

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(
                f"Could not reach {self._config.base_url}: {exc}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=1)
        return response.json()

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
