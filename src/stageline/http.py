# http.py
from __future__ import annotations

import base64
import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union


class HTTPRequestError(Exception):
    """Raised when an HTTP request cannot be completed or returns an error status."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


@dataclass(frozen=True)
class Response:
    status: int
    body: bytes

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        if not self.body:
            return {}
        return json.loads(self.body.decode("utf-8"))


def basic_auth(username: str, password: str) -> str:
    raw = f"{username}:{password}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def request(
    method: str,
    url: str,
    data: Union[bytes, Dict[str, Any], None] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = 30.0,
) -> Response:
    """
    Make an HTTP request.

    Args:
        method: HTTP method (GET, PUT, POST, ...)
        url: absolute URL
        data: raw bytes, or a dict sent as JSON
        headers: optional additional headers
        timeout: socket timeout in seconds

    Returns:
        Response with status and raw body

    Raises:
        HTTPRequestError: on network errors and on 4xx/5xx responses
    """
    req_headers: Dict[str, str] = {}
    if isinstance(data, dict):
        data = json.dumps(data).encode("utf-8")
        req_headers["Content-Type"] = "application/json"
    if headers:
        req_headers.update(headers)

    req = urllib.request.Request(url, data=data, headers=req_headers, method=method)

    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            return Response(status=response.status, body=response.read())
    except urllib.error.HTTPError as e:
        error_body = e.read().decode("utf-8", errors="replace") if e.fp else ""
        raise HTTPRequestError(f"{method} {url} failed: {e.code} {e.reason}", status=e.code, body=error_body)
    except urllib.error.URLError as e:
        raise HTTPRequestError(f"Network error: {e.reason}")
    except OSError as e:
        raise HTTPRequestError(f"Network error: {e}")
