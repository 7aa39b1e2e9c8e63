# weblogon/transport.py
"""
HTTPS POST for the AuthenticateUser call, on top of httpx.

Each request gets its own client, so the connection is released once the
response has been read. Without a proxy httpx connects directly (bound to
the configured local address). With a proxy, connections come from
ProxyTunnelConnector through a custom httpcore network backend; those
streams are already TLS-secured for the destination host.
"""
from __future__ import annotations
import asyncio
import ssl
from typing import Dict, Optional

import httpcore
import httpx

from .codec import HttpResponse, TunnelRequest
from .config import WebLogOnConfig
from .errors import ProxyTimeoutError
from .tunnel import ProxyTunnelConnector
from .utils import LOG


class TunnelStream(httpcore.AsyncNetworkStream):
    """httpcore stream over an asyncio reader/writer pair returned by the tunnel."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._reader = reader
        self._writer = writer

    async def read(self, max_bytes: int, timeout: Optional[float] = None) -> bytes:
        try:
            return await asyncio.wait_for(self._reader.read(max_bytes), timeout)
        except asyncio.TimeoutError as e:
            raise httpcore.ReadTimeout(str(e)) from e
        except OSError as e:
            raise httpcore.ReadError(str(e)) from e

    async def write(self, buffer: bytes, timeout: Optional[float] = None) -> None:
        if not buffer:
            return
        try:
            self._writer.write(buffer)
            await asyncio.wait_for(self._writer.drain(), timeout)
        except asyncio.TimeoutError as e:
            raise httpcore.WriteTimeout(str(e)) from e
        except OSError as e:
            raise httpcore.WriteError(str(e)) from e

    async def aclose(self) -> None:
        self._writer.close()

    async def start_tls(self, ssl_context: ssl.SSLContext, server_hostname: Optional[str] = None,
                        timeout: Optional[float] = None) -> "TunnelStream":
        # the tunnel connector has already done TLS with the destination
        return self

    def get_extra_info(self, info: str):
        if info == "ssl_object":
            return self._writer.get_extra_info("ssl_object")
        if info == "client_addr":
            return self._writer.get_extra_info("sockname")
        if info == "server_addr":
            return self._writer.get_extra_info("peername")
        if info == "socket":
            return self._writer.get_extra_info("socket")
        return None


class TunnelBackend(httpcore.AsyncNetworkBackend):
    """Network backend whose TCP connections are CONNECT tunnels."""

    def __init__(self, connector: ProxyTunnelConnector, proxy_url: str):
        self.connector = connector
        self.proxy_url = proxy_url

    async def connect_tcp(self, host, port, timeout=None, local_address=None, socket_options=None):
        req = TunnelRequest(host=host, port=port, proxy_url=self.proxy_url,
                            local_address=local_address)
        try:
            reader, writer = await self.connector.connect(req)
        except ProxyTimeoutError as e:
            raise httpcore.ConnectTimeout(str(e)) from e
        except OSError as e:
            raise httpcore.ConnectError(str(e)) from e
        return TunnelStream(reader, writer)

    async def connect_unix_socket(self, path, timeout=None, socket_options=None):
        raise httpcore.UnsupportedProtocol("Unix sockets cannot be tunnelled")

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class TunnelTransport(httpx.AsyncHTTPTransport):
    """httpx transport whose connection pool dials through the CONNECT tunnel."""

    def __init__(self, connector: ProxyTunnelConnector, proxy_url: str,
                 local_address: Optional[str] = None):
        super().__init__(verify=connector.ssl_context, local_address=local_address)
        self._pool = httpcore.AsyncConnectionPool(
            ssl_context=connector.ssl_context,
            local_address=local_address,
            http1=True,
            http2=False,
            network_backend=TunnelBackend(connector, proxy_url),
        )


class HttpsSender:
    """POSTs over TLS, optionally through an HTTP CONNECT proxy."""

    def __init__(self, ssl_context: Optional[ssl.SSLContext] = None,
                 proxy_url: Optional[str] = None,
                 local_address: Optional[str] = None,
                 connect_timeout: float = 2.0,
                 request_timeout: float = 30.0,
                 port: int = 443):
        self.ssl_context = ssl_context or ssl.create_default_context()
        self.proxy_url = proxy_url
        self.local_address = local_address
        self.request_timeout = request_timeout
        self.port = port
        self.connector = ProxyTunnelConnector(self.ssl_context, connect_timeout)

    @classmethod
    def from_config(cls, cfg: WebLogOnConfig) -> "HttpsSender":
        return cls(ssl_context=cfg.ssl_context(),
                   proxy_url=cfg.http_proxy,
                   local_address=cfg.local_address,
                   connect_timeout=cfg.proxy_connect_timeout,
                   request_timeout=cfg.request_timeout,
                   port=cfg.auth_port)

    def make_transport(self) -> httpx.AsyncHTTPTransport:
        if self.proxy_url:
            return TunnelTransport(self.connector, self.proxy_url, self.local_address)
        return httpx.AsyncHTTPTransport(verify=self.ssl_context, local_address=self.local_address)

    async def post(self, host: str, path: str, body: bytes, headers: Dict[str, str]) -> HttpResponse:
        """POST ``body`` to ``https://host:port/path``; the returned body is already decoded."""
        url = f"https://{host}:{self.port}{path}"
        async with httpx.AsyncClient(transport=self.make_transport(),
                                     timeout=self.request_timeout,
                                     trust_env=False) as client:
            response = await client.post(url, content=body, headers=headers)
        LOG.debug("POST %s -> %d", url, response.status_code)
        return HttpResponse(status=response.status_code,
                            reason=response.reason_phrase,
                            headers=dict(response.headers),
                            body=response.content)
