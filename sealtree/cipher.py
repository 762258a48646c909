"""
Cipher — the leaf transform contract and a reference AES-256-GCM cipher.

Any object with these two methods can encrypt a tree:

    encrypt(value, key, path, stash) -> ciphertext string, ending in ",type:<kind>]"
    decrypt(ciphertext, key, path)   -> (plaintext, stash value)

`path` identifies the leaf ("db:password:"). `stash` is whatever the cipher
returned as its stash value when the same leaf was last decrypted, or None.
"""

import base64
import binascii
import os
import re
from dataclasses import dataclass
from typing import Any, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from sealtree.errors import CipherError
from sealtree.kinds import ValueKind, encode_scalar, format_type_tag, read_type_tag, scalar_kind

NONCE_SIZE = 12  # AES-256-GCM standard
TAG_SIZE = 16

_ENC = re.compile(
    r"^ENC\[AES256_GCM,data:(?P<data>[A-Za-z0-9+/=]*),iv:(?P<iv>[A-Za-z0-9+/=]+),"
    r"tag:(?P<tag>[A-Za-z0-9+/=]+),type:(?P<type>[a-z]+)\]$"
)


class Cipher(Protocol):
    def encrypt(self, value: Any, key: bytes, path: str, stash: Any = None) -> str: ...

    def decrypt(self, ciphertext: str, key: bytes, path: str) -> tuple[Any, Any]: ...


@dataclass(frozen=True)
class NonceRecord:
    """What AESGCMCipher stashes for a decrypted leaf."""

    nonce: bytes
    plaintext: bytes
    kind: ValueKind


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


class AESGCMCipher:
    """
    AES-256-GCM per leaf, formatted as

        ENC[AES256_GCM,data:<b64>,iv:<b64>,tag:<b64>,type:<kind>]

    The leaf path and type tag are bound in as associated data, so a
    ciphertext moved to another key, or retagged, fails to decrypt.

    If the stash says this leaf decrypted to the same plaintext and kind
    last time, the old nonce is reused and the ciphertext comes out
    unchanged, which keeps diffs of edited documents small.
    """

    def encrypt(self, value: Any, key: bytes, path: str, stash: Any = None) -> str:
        kind = scalar_kind(value)
        plaintext = encode_scalar(value)
        if isinstance(stash, NonceRecord) and stash.kind is kind and stash.plaintext == plaintext:
            nonce = stash.nonce
        else:
            nonce = os.urandom(NONCE_SIZE)
        try:
            sealed = AESGCM(key).encrypt(nonce, plaintext, self._aad(path, kind))
        except ValueError as e:
            raise CipherError(f"Cannot encrypt with this data key: {e}") from e
        data, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return f"ENC[AES256_GCM,data:{_b64(data)},iv:{_b64(nonce)},tag:{_b64(tag)},{format_type_tag(kind)}]"

    def decrypt(self, ciphertext: str, key: bytes, path: str) -> tuple[bytes, NonceRecord]:
        match = _ENC.match(ciphertext)
        if match is None:
            raise CipherError("Value is not an AES256_GCM ciphertext")
        kind = read_type_tag(ciphertext)
        try:
            data = base64.b64decode(match.group("data"), validate=True)
            nonce = base64.b64decode(match.group("iv"), validate=True)
            tag = base64.b64decode(match.group("tag"), validate=True)
        except binascii.Error as e:
            raise CipherError(f"Malformed base64 in ciphertext: {e}") from e
        if len(tag) != TAG_SIZE:
            raise CipherError("Ciphertext has a truncated authentication tag")
        try:
            plaintext = AESGCM(key).decrypt(nonce, data + tag, self._aad(path, kind))
        except InvalidTag as e:
            raise CipherError(f"Ciphertext at {path!r} failed authentication") from e
        except ValueError as e:
            raise CipherError(f"Cannot decrypt with this data key: {e}") from e
        return plaintext, NonceRecord(nonce=nonce, plaintext=plaintext, kind=kind)

    @staticmethod
    def _aad(path: str, kind: ValueKind) -> bytes:
        return f"{path}{format_type_tag(kind)}".encode("utf-8")
