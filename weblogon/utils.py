# weblogon/utils.py
from __future__ import annotations
import logging

from Crypto.Random import get_random_bytes

LOG = logging.getLogger("weblogon")
LOG.setLevel(logging.DEBUG)
ch = logging.StreamHandler()
ch.setLevel(logging.INFO)
formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
ch.setFormatter(formatter)
LOG.addHandler(ch)


def percent_hex(data: bytes) -> str:
    # every byte escaped, e.g. b"\x01\xab" -> "%01%ab"
    return "".join(f"%{b:02x}" for b in data)


def random_session_id() -> str:
    return get_random_bytes(12).hex()


def read_file_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()
