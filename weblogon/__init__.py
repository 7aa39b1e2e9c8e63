from .codec import AccountType, Identity, SessionKey, TunnelRequest, WebSession
from .config import WebLogOnConfig, load_config
from .crypto import decrypt_nonce, encrypt_nonce, load_public_key
from .errors import (AnonymousAccountError, HandshakeResponseError, NotLoggedOnError,
                     ProxyConnectError, ProxyTimeoutError, TunnelError, TunnelSecurityError,
                     WebLogOnError)
from .handshake import HandshakeState, LoopScheduler, RetryBackoff, WebAuthenticator
from .transport import HttpsSender
from .tunnel import ProxyTunnelConnector

__all__ = [
    "AccountType", "Identity", "SessionKey", "TunnelRequest", "WebSession",
    "WebLogOnConfig", "load_config",
    "decrypt_nonce", "encrypt_nonce", "load_public_key",
    "AnonymousAccountError", "HandshakeResponseError", "NotLoggedOnError",
    "ProxyConnectError", "ProxyTimeoutError", "TunnelError", "TunnelSecurityError",
    "WebLogOnError",
    "HandshakeState", "LoopScheduler", "RetryBackoff", "WebAuthenticator",
    "HttpsSender", "ProxyTunnelConnector",
]
