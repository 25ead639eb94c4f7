"""HTTP client for the host application's bridge API, and the HostContext built on it."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from .context import LogEntry
from .errors import HostUnavailable


@dataclass
class HostResponse:
    """Structured response from the host bridge."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    http_code: Optional[int] = None


class HostClient:
    """Client for the host bridge's JSON endpoints."""

    def __init__(self, host_url: str, timeout: float = 10.0):
        """
        Initialize host client.

        Args:
            host_url: Bridge base URL (e.g., http://127.0.0.1:8766)
            timeout: Per-request timeout in seconds
        """
        self.host_url = host_url.rstrip('/')
        self.session = requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        })
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> HostResponse:
        url = f"{self.host_url}{path}"
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.ConnectionError:
            return HostResponse(success=False, error=f"Cannot reach host at {self.host_url}. Is the host bridge running?")
        except requests.Timeout:
            return HostResponse(success=False, error=f"Host request timed out after {self.timeout}s.")
        except requests.RequestException as e:
            return HostResponse(success=False, error=f"Unexpected error: {str(e)}")

        if response.status_code == 204:
            return HostResponse(success=True, http_code=204)

        try:
            body = response.json()
        except ValueError:
            body = None

        if 200 <= response.status_code < 300:
            return HostResponse(success=True, data=body, http_code=response.status_code)

        error = None
        if isinstance(body, dict):
            error = body.get('error') or body.get('message')
        return HostResponse(
            success=False,
            error=error or f"Unexpected HTTP {response.status_code}",
            http_code=response.status_code,
        )

    def execute_script(self, script: str) -> HostResponse:
        """
        Run a script in the host.

        Returns:
            HostResponse whose data is {"result": <value>} on success
        """
        return self._request('POST', '/script', {'script': script})

    def get_status(self) -> HostResponse:
        """
        Fetch host status.

        Returns:
            HostResponse with the status mapping; 404 is reported as success with no data
        """
        response = self._request('GET', '/status')
        if response.http_code == 404:
            return HostResponse(success=True, data=None, http_code=404)
        return response

    def trigger_autoplay(self) -> HostResponse:
        return self._request('POST', '/autoplay')

    def get_logs(self) -> HostResponse:
        return self._request('GET', '/logs')

    def clear_logs(self) -> HostResponse:
        return self._request('DELETE', '/logs')

    def log(self, message: str) -> HostResponse:
        return self._request('POST', '/log', {'message': message})


class HttpHostContext:
    """HostContext implementation backed by a HostClient.

    Failed bridge requests raise HostUnavailable. requests.Session is shared
    across worker threads, which is fine for the simple request/response use
    made of it here.
    """

    def __init__(self, client: HostClient):
        self.client = client

    @staticmethod
    def _unwrap(response: HostResponse, action: str) -> Any:
        if not response.success:
            raise HostUnavailable(f"Host {action} failed: {response.error}", {"http_code": response.http_code})
        return response.data

    def execute_script(self, script: str) -> Any:
        data = self._unwrap(self.client.execute_script(script), "script execution")
        if isinstance(data, dict):
            return data.get('result')
        return data

    def get_status(self) -> Optional[Dict[str, Any]]:
        return self._unwrap(self.client.get_status(), "status query")

    def trigger_autoplay(self) -> None:
        self._unwrap(self.client.trigger_autoplay(), "autoplay")

    def get_logs(self) -> List[LogEntry]:
        data = self._unwrap(self.client.get_logs(), "log query") or []
        if isinstance(data, dict):
            data = data.get('logs') or []
        if not isinstance(data, list):
            raise HostUnavailable(
                f"Host log query returned {type(data).__name__}, expected a list of entries",
            )
        return [LogEntry.from_dict(item) if isinstance(item, dict) else LogEntry(message=str(item)) for item in data]

    def clear_logs(self) -> None:
        self._unwrap(self.client.clear_logs(), "log clearing")

    def log(self, message: str) -> None:
        self._unwrap(self.client.log(message), "logging")
