"""HTTP client for the telemetry API (API Gateway -> Lambda -> DynamoDB).

The client raises `ApiError` on any failure; callers decide whether a failure
is fatal. `ApiTelemetrySource` wraps it into the never-raising source contract.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from dronedash.schemas import CommandAck, Telemetry
from dronedash.sources.base import FetchResult


class ApiError(Exception):
    """Transport failure or non-2xx response from the telemetry API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ApiPayloadError(ApiError):
    """The API answered 2xx but the body is not JSON."""


def unwrap_telemetry(payload: Any) -> Optional[Dict[str, Any]]:
    """Extract the telemetry object from an API response.

    Lambda proxy responses nest a JSON-encoded ``body``; direct responses carry
    ``telemetry`` at the top level. The body is looked at first.
    """
    if not isinstance(payload, dict):
        return None
    body = payload.get("body")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            body = None
    if isinstance(body, dict) and isinstance(body.get("telemetry"), dict):
        return body["telemetry"]
    telemetry = payload.get("telemetry")
    return telemetry if isinstance(telemetry, dict) else None


class ApiClient:
    """Thin requests wrapper around the dashboard REST API."""

    def __init__(self, base_url: str = "http://localhost:3000/api/v1",
                 telemetry_url: Optional[str] = None, timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        """Create client.

        Args:
            base_url: API root used for ``/command`` and ``/telemetry``.
            telemetry_url: endpoint returning the latest fused telemetry;
                defaults to ``<base_url>/telemetry/latest``.
            timeout: per-request timeout in seconds.
            session: optional session, injectable for tests.
        """
        self.base_url = base_url.rstrip("/")
        self.telemetry_url = telemetry_url or f"{self.base_url}/telemetry/latest"
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise ApiError(f"HTTP error! status: {status}", status_code=status) from e
        except requests.RequestException as e:
            raise ApiError(f"Request to {url} failed: {e}") from e
        try:
            return response.json()
        except ValueError as e:
            raise ApiPayloadError(f"Invalid JSON from {url}", status_code=response.status_code) from e

    def get_latest_telemetry(self) -> Any:
        """Raw JSON of the pre-aggregated telemetry endpoint."""
        return self._request("GET", self.telemetry_url)

    def get_telemetry_history(self, drone_id: str, start_time: Optional[int] = None,
                              end_time: Optional[int] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"droneId": drone_id}
        if start_time:
            params["startTime"] = start_time
        if end_time:
            params["endTime"] = end_time
        return self._request("GET", f"{self.base_url}/telemetry", params=params)

    def send_command(self, drone_id: str, command: str,
                     parameters: Optional[Dict[str, Any]] = None) -> CommandAck:
        payload = {"droneId": drone_id, "command": command, "parameters": parameters}
        data = self._request("POST", f"{self.base_url}/command", json=payload)
        try:
            return CommandAck.model_validate(data)
        except ValidationError as e:
            raise ApiError(f"Malformed command acknowledgment: {e.error_count()} errors") from e


class ApiTelemetrySource:
    """Pre-aggregated source: the API already returns one fused snapshot."""

    name = "API"

    def __init__(self, client: ApiClient):
        self.client = client
        self.logger = logging.getLogger(__name__)

    def fetch(self) -> FetchResult:
        try:
            payload = self.client.get_latest_telemetry()
        except ApiPayloadError as e:
            self.logger.warning("Ignoring unparseable telemetry response: %s", e)
            return FetchResult.empty()
        except ApiError as e:
            self.logger.warning("Telemetry API unreachable: %s", e)
            return FetchResult.failed(str(e))

        raw = unwrap_telemetry(payload)
        if raw is None:
            return FetchResult.empty()
        try:
            telemetry = Telemetry.model_validate(raw)
        except ValidationError as e:
            self.logger.warning("Ignoring malformed telemetry object: %s", e.errors()[0].get("msg"))
            return FetchResult.empty()
        return FetchResult(telemetry=telemetry)
