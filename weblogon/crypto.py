# weblogon/crypto.py
from typing import Tuple
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from Crypto.Cipher import AES
from Crypto.Random import get_random_bytes
from Crypto.Util.Padding import pad, unpad

from .codec import SessionKey
from .utils import read_file_bytes

KEY_SIZE = 32
IV_SIZE = 16

# Steam unwraps session keys with RSA-OAEP over SHA-1
_OAEP = padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA1()),
                     algorithm=hashes.SHA1(),
                     label=None)


def load_public_key(pem: bytes) -> rsa.RSAPublicKey:
    key = serialization.load_pem_public_key(pem)
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("Server public key must be an RSA key")
    return key


def load_public_key_file(path: str) -> rsa.RSAPublicKey:
    return load_public_key(read_file_bytes(path))


def generate_session_key(pubkey: rsa.RSAPublicKey) -> SessionKey:
    plain = get_random_bytes(KEY_SIZE)
    return SessionKey(plain=plain, wrapped=pubkey.encrypt(plain, _OAEP))


def unwrap_session_key(privkey: rsa.RSAPrivateKey, wrapped: bytes) -> bytes:
    return privkey.decrypt(wrapped, _OAEP)


def encrypt_nonce(nonce: bytes, pubkey: rsa.RSAPublicKey) -> Tuple[SessionKey, bytes]:
    """Envelope-encrypt a web API nonce for the authentication server.

    The output is ECB(key, iv) followed by CBC(key, iv, pkcs7(nonce)). The
    ECB pass runs without padding so the wrapped IV is exactly one block.
    """
    session_key = generate_session_key(pubkey)
    iv = get_random_bytes(IV_SIZE)
    wrapped_iv = AES.new(session_key.plain, AES.MODE_ECB).encrypt(iv)
    cipher = AES.new(session_key.plain, AES.MODE_CBC, iv=iv)
    ciphertext = cipher.encrypt(pad(nonce, AES.block_size))
    return session_key, wrapped_iv + ciphertext


def decrypt_nonce(plain_key: bytes, encrypted: bytes) -> bytes:
    if len(encrypted) < 2 * IV_SIZE or len(encrypted) % AES.block_size:
        raise ValueError("Malformed encrypted nonce")
    iv = AES.new(plain_key, AES.MODE_ECB).decrypt(encrypted[:IV_SIZE])
    cipher = AES.new(plain_key, AES.MODE_CBC, iv=iv)
    return unpad(cipher.decrypt(encrypted[IV_SIZE:]), AES.block_size)
