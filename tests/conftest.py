"""Shared fixtures: keys, certificates, fakes and mock proxies."""
import asyncio
import datetime
import ipaddress
import ssl

import pytest
import pytest_asyncio
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from weblogon.codec import AccountType, HttpResponse, Identity


@pytest.fixture(scope="session")
def server_keypair():
    priv = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return priv, priv.public_key()


# --- certificates -----------------------------------------------------------

def _key_usage(cert_sign: bool) -> x509.KeyUsage:
    return x509.KeyUsage(digital_signature=True, content_commitment=False,
                         key_encipherment=False, data_encipherment=False,
                         key_agreement=False, key_cert_sign=cert_sign,
                         crl_sign=cert_sign, encipher_only=False, decipher_only=False)


class CertAuthority:
    def __init__(self):
        self.key = ec.generate_private_key(ec.SECP256R1())
        self.name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "weblogon test CA")])
        now = datetime.datetime.now(datetime.timezone.utc)
        self.cert = (
            x509.CertificateBuilder()
            .subject_name(self.name)
            .issuer_name(self.name)
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=30))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(_key_usage(True), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(self.key.public_key()), critical=False)
            .sign(self.key, hashes.SHA256())
        )

    @property
    def pem(self) -> str:
        return self.cert.public_bytes(serialization.Encoding.PEM).decode("ascii")

    def client_context(self) -> ssl.SSLContext:
        return ssl.create_default_context(cadata=self.pem)

    def server_context(self, hostname: str, directory, ip: str = "127.0.0.1") -> ssl.SSLContext:
        key = ec.generate_private_key(ec.SECP256R1())
        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)]))
            .issuer_name(self.name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=30))
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(hostname),
                                                         x509.IPAddress(ipaddress.ip_address(ip))]), critical=False)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(_key_usage(False), critical=True)
            .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(self.key.public_key()), critical=False)
            .sign(self.key, hashes.SHA256())
        )
        certfile = directory / f"{hostname}.crt"
        keyfile = directory / f"{hostname}.key"
        certfile.write_bytes(cert.public_bytes(serialization.Encoding.PEM)
                             + self.cert.public_bytes(serialization.Encoding.PEM))
        keyfile.write_bytes(key.private_bytes(serialization.Encoding.PEM,
                                              serialization.PrivateFormat.PKCS8,
                                              serialization.NoEncryption()))
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ctx.load_cert_chain(str(certfile), str(keyfile))
        return ctx




@pytest.fixture(scope="session")
def cert_authority():
    return CertAuthority()


# --- mock proxy -------------------------------------------------------------

class MockProxy:
    """CONNECT proxy stub.

    ``reply`` is the raw status block to send back, or None to stay silent.
    With a 200 reply and ``tls_context`` set, the proxy itself terminates TLS
    as if it were the destination and echoes lines back.
    """

    def __init__(self, reply, tls_context=None):
        self.reply = reply
        self.tls_context = tls_context
        self.requests = []
        self.server = None

    @property
    def port(self) -> int:
        return self.server.sockets[0].getsockname()[1]

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    async def start(self):
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self

    async def stop(self):
        self.server.close()
        await self.server.wait_closed()

    async def _handle(self, reader, writer):
        try:
            head = await reader.readuntil(b"\r\n\r\n")
            self.requests.append(head)
            if self.reply is None:
                await reader.read()  # until the client gives up
                return
            writer.write(self.reply)
            await writer.drain()
            if self.tls_context is not None:
                await writer.start_tls(self.tls_context)
                line = await reader.readline()
                writer.write(line)
                await writer.drain()
        except (OSError, ssl.SSLError, asyncio.IncompleteReadError):
            pass
        finally:
            writer.close()


@pytest_asyncio.fixture
async def mock_proxy():
    proxies = []

    async def factory(reply, tls_context=None):
        proxy = await MockProxy(reply, tls_context).start()
        proxies.append(proxy)
        return proxy

    yield factory
    for proxy in proxies:
        await proxy.stop()


# --- handshake fakes --------------------------------------------------------

class FakeScheduler:
    def __init__(self):
        self.timers = []
        self.tasks = []

    def call_later(self, delay, callback, *args):
        self.timers.append((delay, callback, args))

    def spawn(self, coro):
        self.tasks.append(coro)

    def fire(self):
        delay, callback, args = self.timers.pop(0)
        callback(*args)
        return delay

    async def run_tasks(self):
        while self.tasks:
            await self.tasks.pop(0)


class FakeClient:
    def __init__(self, identity=None):
        self.current = identity
        self.nonce_requests = 0
        self.sessions = []

    def identity(self):
        return self.current

    def request_nonce(self):
        self.nonce_requests += 1

    def web_session(self, session):
        self.sessions.append(session)


class FakeSender:
    """Replays queued responses; an exception instance in the queue is raised."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    async def post(self, host, path, body, headers):
        self.calls.append((host, path, body, headers))
        result = self.responses.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


AUTH_VDF = b'"authenticateuser"\n{\n\t"token"\t\t"LOGIN123"\n\t"tokensecure"\t\t"SECURE456"\n}\n'


def ok_response(body=AUTH_VDF, headers=None):
    return HttpResponse(status=200, reason="OK", headers=headers or {}, body=body)


STEAM_ID = 76561197960287930


@pytest.fixture
def individual():
    return Identity(steam_id=STEAM_ID, account_type=AccountType.INDIVIDUAL)
