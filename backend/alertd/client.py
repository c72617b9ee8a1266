"""HTTP client for a running daemon's control API."""
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .main import parse_address

logger = logging.getLogger(__name__)


class DaemonNotFound(Exception):
    """No alertd daemon answered on any of the addresses."""


class AlertNotFound(Exception):
    """The daemon has no alert with that path."""


def base_url(address: str) -> str:
    host, port = parse_address(address)
    if ":" in host:
        host = f"[{host}]"
    return f"http://{host}:{port}"


class ControlClient:
    """Talks to the first address that answers as an alertd daemon."""

    def __init__(self, addresses: Iterable[str], timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None):
        self.addresses = list(addresses)
        self.timeout = timeout
        self.transport = transport
        self._url: Optional[str] = None

    def _client(self, url: str) -> httpx.Client:
        return httpx.Client(base_url=url, timeout=self.timeout, transport=self.transport)

    def discover(self) -> str:
        """Find the daemon's base URL, checking ``/status`` identifies alertd."""
        if self._url:
            return self._url
        for address in self.addresses:
            url = base_url(address)
            try:
                with self._client(url) as client:
                    response = client.get("/status")
            except httpx.HTTPError as e:
                logger.debug(f"No daemon at {url}: {e}")
                continue
            if response.status_code == 200 and response.json().get("name") == "alertd":
                self._url = url
                return url
            logger.debug(f"{url} is not an alertd daemon")
        raise DaemonNotFound(f"no alertd daemon found at {', '.join(self.addresses)}")

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        with self._client(self.discover()) as client:
            response = client.request(method, path, **kwargs)
        if response.status_code == 404 and path == "/alerts":
            raise AlertNotFound(response.json().get("detail", "alert not found"))
        response.raise_for_status()
        return response

    def status(self) -> Dict[str, Any]:
        return self._request("GET", "/status").json()

    def reload(self) -> None:
        self._request("POST", "/reload")

    def alerts(self, detail: bool = False) -> List[Dict[str, Any]]:
        return self._request("GET", "/alerts", params={"detail": str(detail).lower()}).json()

    def pause(self, alert: str, until: Optional[str] = None) -> Dict[str, Any]:
        body = {"alert": alert}
        if until:
            body["until"] = until
        return self._request("DELETE", "/alerts", json=body).json()

    def validate(self, path: str, content: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", "/validate", json={"path": path, "content": content}).json()

    def targets(self) -> Dict[str, List[str]]:
        return self._request("GET", "/targets").json()["targets"]

    def send_event(self, message: str, subject: Optional[str] = None, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body = dict(extra or {}, message=message)
        if subject:
            body["subject"] = subject
        return self._request("POST", "/alert", json=body).json()
