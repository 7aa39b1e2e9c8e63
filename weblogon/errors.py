# weblogon/errors.py
"""
Exception taxonomy.

Precondition errors surface to whoever calls ``log_on()``. Tunnel and
response errors are transient: the handshake controller catches them and
backs off.
"""
from __future__ import annotations
from typing import Optional


class WebLogOnError(Exception):
    pass


class NotLoggedOnError(WebLogOnError):
    def __init__(self):
        super().__init__("Cannot log onto steamcommunity.com without first being connected to Steam network")


class AnonymousAccountError(WebLogOnError):
    def __init__(self):
        super().__init__("Must not be anonymous user to use web log on (check that valid credentials were used to log on)")


class HandshakeResponseError(WebLogOnError, ValueError):
    """AuthenticateUser body could not be decoded."""


class TunnelError(ConnectionError):
    pass


class ProxyConnectError(TunnelError):
    def __init__(self, status: int, reason: str):
        super().__init__(f"HTTP CONNECT {status} {reason}")
        self.status = status
        self.reason = reason


class ProxyTimeoutError(TunnelError, TimeoutError):
    def __init__(self, timeout: Optional[float] = None):
        msg = "Proxy connection timed out"
        if timeout is not None:
            msg += f" after {timeout:g}s"
        super().__init__(msg)
        self.timeout = timeout


class TunnelSecurityError(TunnelError):
    """TLS handshake with the destination failed certificate validation."""
