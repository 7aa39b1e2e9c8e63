# weblogon/tunnel.py
"""
HTTP CONNECT tunnel connector.

Opens a plain TCP connection to an HTTP proxy, asks it to CONNECT to the
destination, then runs a real TLS handshake with the destination over the
raw tunnel. The certificate is checked against the destination hostname,
never the proxy's.
"""
from __future__ import annotations
import asyncio
import base64
import ssl
from typing import Optional, Tuple
from urllib.parse import unquote, urlsplit

from .codec import TunnelRequest
from .errors import ProxyConnectError, ProxyTimeoutError, TunnelError, TunnelSecurityError
from .utils import LOG

Stream = Tuple[asyncio.StreamReader, asyncio.StreamWriter]


def parse_proxy_url(proxy_url: str) -> Tuple[str, int, Optional[str]]:
    """Return ``(host, port, basic_auth_header_value_or_None)``."""
    parts = urlsplit(proxy_url if "//" in proxy_url else "http://" + proxy_url)
    if parts.scheme not in ("http", ""):
        raise ValueError(f"Unsupported proxy scheme: {parts.scheme}")
    if not parts.hostname:
        raise ValueError(f"Proxy URL has no host: {proxy_url}")
    auth = None
    if parts.username is not None:
        creds = f"{unquote(parts.username)}:{unquote(parts.password or '')}"
        auth = "Basic " + base64.b64encode(creds.encode("utf-8")).decode("ascii")
    return parts.hostname, parts.port or 80, auth


def make_connect_request(host: str, port: int, auth: Optional[str]) -> bytes:
    lines = [f"CONNECT {host}:{port} HTTP/1.1", f"Host: {host}:{port}"]
    if auth:
        lines.append(f"Proxy-Authorization: {auth}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")


def parse_status_line(head: bytes) -> Tuple[int, str]:
    line = head.split(b"\r\n", 1)[0].decode("latin-1")
    parts = line.split(" ", 2)
    if len(parts) < 2 or not parts[0].startswith("HTTP/") or not parts[1].isdigit():
        raise TunnelError(f"Malformed proxy response: {line!r}")
    return int(parts[1]), parts[2] if len(parts) > 2 else ""


class _TunnelAttempt:
    """One CONNECT negotiation.

    ``finished`` is a single-assignment latch: whichever of response, error
    or timeout reaches ``_finish`` first resolves the attempt; the others
    are dropped.
    """

    def __init__(self, request: TunnelRequest, timeout: float):
        self.request = request
        self.timeout = timeout
        self.finished = False
        self._result: Optional[asyncio.Future] = None
        self._task: Optional[asyncio.Task] = None

    def _finish(self, result=None, exc: Optional[BaseException] = None) -> bool:
        if self.finished:
            return False
        self.finished = True
        if self._result.done():
            # caller went away (cancelled)
            return False
        if exc is not None:
            self._result.set_exception(exc)
        else:
            self._result.set_result(result)
        return True

    def _on_timeout(self):
        if self._finish(exc=ProxyTimeoutError(self.timeout)):
            self._task.cancel()

    def _on_negotiated(self, task: asyncio.Task):
        if task.cancelled():
            self._finish(exc=TunnelError("Proxy negotiation cancelled"))
            return
        exc = task.exception()
        if exc is not None:
            self._finish(exc=exc)
            return
        status, reason, reader, writer = task.result()
        if not self._finish((status, reason, reader, writer)):
            # lost the race against the timeout
            writer.close()

    async def _negotiate(self):
        host, port, auth = parse_proxy_url(self.request.proxy_url)
        local_addr = (self.request.local_address, 0) if self.request.local_address else None
        reader, writer = await asyncio.open_connection(host, port, local_addr=local_addr)
        try:
            writer.write(make_connect_request(self.request.host, self.request.port, auth))
            await writer.drain()
            try:
                head = await reader.readuntil(b"\r\n\r\n")
            except asyncio.IncompleteReadError as e:
                raise TunnelError("Proxy closed the connection during CONNECT") from e
            except asyncio.LimitOverrunError as e:
                raise TunnelError("Proxy response headers too large") from e
            status, reason = parse_status_line(head)
        except BaseException:
            writer.close()
            raise
        return status, reason, reader, writer

    async def run(self) -> Tuple[int, str, asyncio.StreamReader, asyncio.StreamWriter]:
        loop = asyncio.get_running_loop()
        self._result = loop.create_future()
        self._task = loop.create_task(self._negotiate())
        self._task.add_done_callback(self._on_negotiated)
        timer = loop.call_later(self.timeout, self._on_timeout)
        try:
            return await self._result
        finally:
            timer.cancel()
            if not self._task.done():
                self._task.cancel()


class ProxyTunnelConnector:
    """Connection factory: CONNECT through ``request.proxy_url`` then TLS."""

    def __init__(self, ssl_context: Optional[ssl.SSLContext] = None, connect_timeout: float = 2.0):
        self.ssl_context = ssl_context or ssl.create_default_context()
        self.connect_timeout = connect_timeout

    async def connect(self, request: TunnelRequest) -> Stream:
        if not request.proxy_url:
            raise ValueError("ProxyTunnelConnector requires a proxy URL")

        attempt = _TunnelAttempt(request, self.connect_timeout)
        status, reason, reader, writer = await attempt.run()
        if status != 200:
            writer.close()
            raise ProxyConnectError(status, reason)

        LOG.debug("CONNECT %s:%d established via proxy", request.host, request.port)
        try:
            await writer.start_tls(self.ssl_context, server_hostname=request.host)
        except ssl.SSLCertVerificationError as e:
            writer.close()
            raise TunnelSecurityError(e.verify_message or str(e)) from e
        except (ssl.SSLError, OSError) as e:
            writer.close()
            raise TunnelError(f"Secure connection failed: {e}") from e
        return reader, writer
