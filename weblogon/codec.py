# weblogon/codec.py
import enum
import msgspec


class AccountType(enum.IntEnum):
    INVALID = 0
    INDIVIDUAL = 1
    MULTISEAT = 2
    GAMESERVER = 3
    ANON_GAMESERVER = 4
    PENDING = 5
    CONTENT_SERVER = 6
    CLAN = 7
    CHAT = 8
    CONSOLE_USER = 9
    ANON_USER = 10


class Identity(msgspec.Struct, frozen=True):
    steam_id: int
    account_type: AccountType
    logged_on: bool = True


class SessionKey(msgspec.Struct, frozen=True):
    plain: bytes
    wrapped: bytes


class WebSession(msgspec.Struct, frozen=True):
    session_id: str
    login_token: str
    secure_login_token: str

    @property
    def cookies(self) -> list[str]:
        return [
            f"sessionid={self.session_id}",
            f"steamLogin={self.login_token}",
            f"steamLoginSecure={self.secure_login_token}",
        ]


class TunnelRequest(msgspec.Struct, frozen=True):
    host: str
    port: int
    proxy_url: str | None = None
    local_address: str | None = None


class HttpResponse(msgspec.Struct):
    status: int
    reason: str
    headers: dict[str, str]
    body: bytes
