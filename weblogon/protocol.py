# weblogon/protocol.py
"""
AuthenticateUser wire helpers.

Request: a form-encoded POST whose binary fields are hex encoded with every
byte percent-escaped. Response: a VDF document, already gzip-decoded by
httpx, of the form

    "authenticateuser"
    {
        "token"        "<steamLogin cookie value>"
        "tokensecure"  "<steamLoginSecure cookie value>"
    }
"""
from __future__ import annotations
from typing import Dict, Tuple

import vdf

from .codec import SessionKey
from .errors import HandshakeResponseError
from .utils import percent_hex

BASE_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "text/html,*/*;q=0.9",
    "Accept-Encoding": "gzip,identity,*;q=0",
    "Accept-Charset": "ISO-8859-1,utf-8,*;q=0.7",
    "User-Agent": "Valve/Steam HTTP Client 1.0",
}


def make_auth_body(steam_id: int, session_key: SessionKey, encrypted_nonce: bytes) -> bytes:
    data = ("format=vdf"
            f"&steamid={steam_id:d}"
            f"&sessionkey={percent_hex(session_key.wrapped)}"
            f"&encrypted_loginkey={percent_hex(encrypted_nonce)}")
    return data.encode("ascii")


def make_auth_headers(body: bytes) -> Dict[str, str]:
    headers = dict(BASE_HEADERS)
    headers["Content-Length"] = str(len(body))
    return headers


def parse_auth_response(body: bytes) -> Tuple[str, str]:
    """Return ``(token, tokensecure)`` or raise HandshakeResponseError."""
    try:
        doc = vdf.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, SyntaxError, ValueError) as e:
        raise HandshakeResponseError("Invalid VDF in AuthenticateUser response") from e

    auth = doc.get("authenticateuser")
    if not isinstance(auth, dict):
        raise HandshakeResponseError("Missing 'authenticateuser' section")
    token = auth.get("token")
    token_secure = auth.get("tokensecure")
    if not isinstance(token, str) or not isinstance(token_secure, str):
        raise HandshakeResponseError("Missing 'token' or 'tokensecure' field")
    return token, token_secure
