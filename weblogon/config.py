# weblogon/config.py
from __future__ import annotations
import ssl
from typing import Optional

import msgspec

from .utils import read_file_bytes

AUTH_HOST = "api.steampowered.com"
AUTH_PATH = "/ISteamUserAuth/AuthenticateUser/v0001/"


class WebLogOnConfig(msgspec.Struct, forbid_unknown_fields=True):
    public_key_path: Optional[str] = None
    http_proxy: Optional[str] = None
    local_address: Optional[str] = None
    ca_file: Optional[str] = None
    auth_host: str = AUTH_HOST
    auth_path: str = AUTH_PATH
    auth_port: int = 443
    # seconds
    proxy_connect_timeout: float = 2.0
    nonce_retry_delay: float = 0.5
    backoff_base: float = 1.0
    backoff_ceiling: float = 50.0
    settle_delay_max: float = 10.0
    request_timeout: float = 30.0

    def __post_init__(self):
        for name in ("proxy_connect_timeout", "nonce_retry_delay", "backoff_base",
                     "backoff_ceiling", "settle_delay_max", "request_timeout"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.backoff_ceiling < self.backoff_base:
            raise ValueError("backoff_ceiling must be >= backoff_base")

    def ssl_context(self) -> ssl.SSLContext:
        return ssl.create_default_context(cafile=self.ca_file)


def load_config(path: str) -> WebLogOnConfig:
    try:
        return msgspec.json.decode(read_file_bytes(path), type=WebLogOnConfig)
    except msgspec.DecodeError as e:
        raise ValueError(f"Invalid config {path}: {e}") from e
