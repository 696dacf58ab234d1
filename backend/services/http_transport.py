"""HTTP transport for web service steps.

Thin wrapper over httpx: one request per call, any non-2xx status or
transport failure surfaces as TransientCallError so callers can retry.
"""

import ipaddress
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx
import structlog

from core.constants import HTTP_METHODS_WITH_BODY, SUPPORTED_HTTP_METHODS
from core.exceptions import ConfigurationError, TransientCallError

logger = structlog.get_logger(__name__)


def _is_private_ip(ip_str: str) -> bool:
    """Check if an IP address is private, loopback or reserved."""
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_reserved


def validate_url_safety(url: str) -> None:
    """Reject URLs pointing at internal hosts.

    Blocks:
    - Non-HTTP(S) schemes
    - localhost aliases
    - Private/loopback/reserved IP literals

    Raises:
        ValueError: If URL is unsafe
    """
    parsed = urlparse(url)

    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme}. Only HTTP and HTTPS allowed.")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a valid hostname")

    if hostname.lower() in ("localhost", "127.0.0.1", "::1"):
        raise ValueError("Connections to localhost are not allowed")

    # Domain names are not resolved; only IP literals are checked
    if _is_private_ip(hostname):
        raise ValueError(f"Connections to private IP {hostname} are not allowed")


@dataclass
class HttpResponse:
    """Status and body of a successful call."""
    status_code: int
    body: str


class HttpTransport:
    """Sends HTTP requests on behalf of executors.

    Args:
        transport: Optional httpx transport (e.g. httpx.MockTransport in tests).
        block_private_networks: Apply validate_url_safety to every URL.
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        block_private_networks: bool = False,
    ):
        self._transport = transport
        self._block_private_networks = block_private_networks

    async def send(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        body: Optional[str] = None,
        timeout: float = 30.0,
    ) -> HttpResponse:
        """Issue one request.

        Raises:
            ConfigurationError: unsupported method or blocked URL.
            TransientCallError: transport failure, timeout or non-2xx status.
        """
        method = method.upper()
        if method not in SUPPORTED_HTTP_METHODS:
            raise ConfigurationError(f"Unsupported HTTP method: {method}")

        if self._block_private_networks:
            try:
                validate_url_safety(url)
            except ValueError as e:
                raise ConfigurationError(str(e))

        request_headers = httpx.Headers(headers or {})
        kwargs = {"headers": request_headers, "timeout": timeout}
        if method in HTTP_METHODS_WITH_BODY and body is not None:
            if "content-type" not in request_headers:
                request_headers["Content-Type"] = "application/json"
            kwargs["content"] = body.encode("utf-8")

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            raise TransientCallError(f"Request timed out after {timeout}s")
        except httpx.HTTPError as e:
            raise TransientCallError(f"HTTP request failed: {e}")

        if not response.is_success:
            raise TransientCallError(
                f"HTTP {response.status_code} {response.reason_phrase} from {method} {url}"
            )

        logger.debug("HTTP call completed", method=method, url=url, status_code=response.status_code)
        return HttpResponse(status_code=response.status_code, body=response.text)
