# weblogon/handshake.py
"""
Web log-on handshake.

Turns an authenticated Steam connection into steamcommunity.com cookies:

    IDLE -> NONCE_REQUESTED -> AUTHENTICATING -> ESTABLISHED
               ^   ^   \              |
               |   |    v             v
               |  NONCE_RETRY_WAIT   BACKING_OFF
               |                      |
               +----------------------+

A bad nonce result is retried after a fixed short delay. A failed
AuthenticateUser exchange backs off exponentially (base, doubling, capped)
and starts over with a fresh nonce. There is no retry limit: the loop ends
on success, or when the client loses its logged-on identity. While an
effort is under way, further log_on() calls join it.
"""
from __future__ import annotations
import asyncio
import enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set

import httpx
from cryptography.hazmat.primitives.asymmetric import rsa

from .codec import AccountType, HttpResponse, Identity, WebSession
from .config import WebLogOnConfig
from .crypto import encrypt_nonce, load_public_key_file
from .errors import AnonymousAccountError, HandshakeResponseError, NotLoggedOnError
from .protocol import make_auth_body, make_auth_headers, parse_auth_response
from .transport import HttpsSender
from .utils import LOG, random_session_id

ERESULT_OK = 1


class HandshakeState(enum.Enum):
    IDLE = "idle"
    NONCE_REQUESTED = "nonce_requested"
    NONCE_RETRY_WAIT = "nonce_retry_wait"
    AUTHENTICATING = "authenticating"
    BACKING_OFF = "backing_off"
    ESTABLISHED = "established"


# an effort is under way; another log_on() joins it instead of starting over
_BUSY_STATES = frozenset({
    HandshakeState.NONCE_REQUESTED,
    HandshakeState.NONCE_RETRY_WAIT,
    HandshakeState.AUTHENTICATING,
    HandshakeState.BACKING_OFF,
})


class SteamClient(Protocol):
    def identity(self) -> Optional[Identity]: ...
    def request_nonce(self) -> None: ...
    def web_session(self, session: WebSession) -> None: ...


class Sender(Protocol):
    async def post(self, host: str, path: str, body: bytes, headers: Dict[str, str]) -> HttpResponse: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Any: ...
    def spawn(self, coro: Awaitable[Any]) -> Any: ...


class LoopScheduler:
    """Scheduler backed by the running asyncio loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay, callback, *args):
        return self.loop.call_later(delay, callback, *args)

    def spawn(self, coro):
        task = self.loop.create_task(coro)
        # keep a strong reference until the task is done
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


class RetryBackoff:
    def __init__(self, base: float = 1.0, ceiling: float = 50.0):
        self.base = base
        self.ceiling = ceiling
        self.delay: Optional[float] = None

    def next_delay(self) -> float:
        if self.delay is None:
            self.delay = self.base
        else:
            self.delay = min(self.delay * 2, self.ceiling)
        return self.delay

    def settle_delay(self, limit: float) -> float:
        return min(self.delay or 0.0, limit)

    def reset(self):
        self.delay = None


def _identity_usable(identity: Optional[Identity]) -> bool:
    return (identity is not None and identity.logged_on
            and identity.account_type == AccountType.INDIVIDUAL)


class WebAuthenticator:
    def __init__(self, client: SteamClient,
                 public_key: Optional[rsa.RSAPublicKey] = None,
                 *,
                 config: Optional[WebLogOnConfig] = None,
                 sender: Optional[Sender] = None,
                 scheduler: Optional[Scheduler] = None):
        self.client = client
        self.config = config or WebLogOnConfig()
        if public_key is None:
            if not self.config.public_key_path:
                raise ValueError("A server public key or config.public_key_path is required")
            public_key = load_public_key_file(self.config.public_key_path)
        self.public_key = public_key
        self.sender = sender or HttpsSender.from_config(self.config)
        self.scheduler = scheduler or LoopScheduler()
        self.retry = RetryBackoff(self.config.backoff_base, self.config.backoff_ceiling)
        self.state = HandshakeState.IDLE
        self.session: Optional[WebSession] = None

    def log_on(self):
        """Start a web log-on. Raises if the client is not a logged-on individual account."""
        identity = self.client.identity()
        if identity is None or not identity.logged_on:
            raise NotLoggedOnError()
        if identity.account_type != AccountType.INDIVIDUAL:
            raise AnonymousAccountError()
        if self.state in _BUSY_STATES:
            LOG.debug("Web log-on already in progress (state=%s)", self.state.value)
            return
        self._request_nonce()

    def relog_on(self):
        # same as log_on, but quietly does nothing without a usable identity
        if _identity_usable(self.client.identity()):
            self.log_on()

    def _request_nonce(self):
        self.state = HandshakeState.NONCE_REQUESTED
        self.client.request_nonce()

    def _retry(self):
        if not _identity_usable(self.client.identity()):
            LOG.debug("Web log-on abandoned: client no longer logged on")
            self.state = HandshakeState.IDLE
            return
        self._request_nonce()

    def on_nonce_response(self, eresult: int, nonce: Optional[bytes] = None):
        if self.state != HandshakeState.NONCE_REQUESTED:
            LOG.debug("Ignoring unsolicited web API nonce (state=%s)", self.state.value)
            return
        if eresult != ERESULT_OK or not nonce:
            LOG.debug("Got response %d from web API nonce request, retrying", eresult)
            self.state = HandshakeState.NONCE_RETRY_WAIT
            self.scheduler.call_later(self.config.nonce_retry_delay, self._retry)
            return
        self._authenticate(nonce)

    def _authenticate(self, nonce: bytes):
        identity = self.client.identity()
        if not _identity_usable(identity):
            self.state = HandshakeState.IDLE
            return

        session_key, encrypted_nonce = encrypt_nonce(nonce, self.public_key)
        body = make_auth_body(identity.steam_id, session_key, encrypted_nonce)
        headers = make_auth_headers(body)
        self.state = HandshakeState.AUTHENTICATING

        # Steam has been seen rejecting nonces that are used too quickly
        delay = self.retry.settle_delay(self.config.settle_delay_max)
        self.scheduler.call_later(delay, self._dispatch, body, headers)

    def _dispatch(self, body: bytes, headers: Dict[str, str]):
        self.scheduler.spawn(self._send(body, headers))

    async def _send(self, body: bytes, headers: Dict[str, str]):
        cfg = self.config
        try:
            response = await self.sender.post(cfg.auth_host, cfg.auth_path, body, headers)
        except (OSError, ValueError, httpx.HTTPError) as e:
            # OSError covers TunnelError, ssl.SSLError and TimeoutError;
            # httpx.HTTPError covers transport and content decoding failures
            LOG.debug("Error in AuthenticateUser: %s", e)
            self._fail()
            return

        if response.status != 200:
            LOG.debug("Error in AuthenticateUser: %d %s", response.status, response.reason)
            LOG.debug("AuthenticateUser response body: %r", response.body)
            self._fail()
            return

        try:
            token, token_secure = parse_auth_response(response.body)
        except HandshakeResponseError as e:
            LOG.debug("Bad AuthenticateUser response: %s", e)
            self._fail()
            return

        self.retry.reset()
        self.session = WebSession(session_id=random_session_id(),
                                  login_token=token,
                                  secure_login_token=token_secure)
        self.state = HandshakeState.ESTABLISHED
        LOG.info("Web session established")
        self.client.web_session(self.session)

    def _fail(self):
        delay = self.retry.next_delay()
        self.state = HandshakeState.BACKING_OFF
        LOG.info("Web log-on failed, retrying in %gs", delay)
        self.scheduler.call_later(delay, self._retry)
