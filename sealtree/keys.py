"""
Keys — master key providers.

A master key is a reference to a key-management backend entry that can wrap
and unwrap the document's data key. Every provider type registers itself by
name, so persisted metadata can be turned back into live keys without the
engine knowing which backends exist.

Two local providers ship with sealtree:
1. LocalMasterKey — a 256-bit key-encryption key kept in a file
2. PassphraseMasterKey — a key-encryption key derived from a passphrase

Cloud KMS, PGP or Vault backends plug in the same way: subclass MasterKey,
set `provider_type`, implement `wrap`/`unwrap` (plain or async), register.
"""

import abc
import base64
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import ClassVar

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from sealtree.errors import MetadataError, SealTreeError

logger = logging.getLogger(__name__)

# Default for new passphrase keys; each key persists the count it was made with
PBKDF2_ITERATIONS = 600_000
SALT_SIZE = 16
NONCE_SIZE = 12
KEY_SIZE = 32

PASSPHRASE_ENV_PREFIX = "SEALTREE_PASSPHRASE_"


def derive_kek(passphrase: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """Stretch a passphrase into a 256-bit key-encryption key with PBKDF2-SHA256."""
    if len(salt) != SALT_SIZE:
        raise SealTreeError(f"Passphrase key salt must be {SALT_SIZE} bytes, got {len(salt)}")
    if iterations < 1:
        raise SealTreeError(f"Invalid PBKDF2 iteration count {iterations}")
    return PBKDF2HMAC(hashes.SHA256(), KEY_SIZE, salt, iterations).derive(passphrase.encode("utf-8"))


def generate_data_key() -> bytes:
    """Generate a random 256-bit data key."""
    return AESGCM.generate_key(bit_length=256)


def seal_key(data_key: bytes, kek: bytes) -> bytes:
    """Seal `data_key` under `kek`: a fresh 12-byte nonce followed by the AES-GCM output."""
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(kek).encrypt(nonce, data_key, None)


def open_key(blob: bytes, kek: bytes) -> bytes:
    """Decrypt a blob produced by seal_key."""
    if len(blob) <= NONCE_SIZE:
        raise SealTreeError("Wrapped key blob is truncated")
    try:
        return AESGCM(kek).decrypt(blob[:NONCE_SIZE], blob[NONCE_SIZE:], None)
    except InvalidTag as e:
        raise SealTreeError("Wrapped key did not authenticate under this master key") from e


def _now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


# ── Provider registry ──

PROVIDERS: dict[str, type["MasterKey"]] = {}


def register_provider(cls: type["MasterKey"]) -> type["MasterKey"]:
    """Class decorator: make a provider constructible from persisted metadata."""
    if not cls.provider_type:
        raise ValueError(f"{cls.__name__} must set provider_type")
    PROVIDERS[cls.provider_type] = cls
    return cls


def master_key_from_dict(data: dict) -> "MasterKey":
    """Rebuild a master key from its persisted form."""
    try:
        provider_type = data["type"]
        identifier = data["id"]
    except (KeyError, TypeError) as e:
        raise MetadataError(f"Master key entry is missing a field: {e}") from e
    cls = PROVIDERS.get(provider_type)
    if cls is None:
        raise MetadataError(f"Unknown master key provider {provider_type!r}")
    return cls.from_dict(identifier, data)


class MasterKey(abc.ABC):
    """
    One master key. Identity is (provider_type, identifier); two instances
    with the same identity are the same key, whatever wrapped blob they hold.

    `wrap` and `unwrap` may be plain methods or coroutines. Plain methods
    are run in a worker thread by the key group manager.
    """

    provider_type: ClassVar[str] = ""

    def __init__(self, identifier: str, encrypted_key: bytes | None = None, created_at: str | None = None):
        self.identifier = identifier
        self.encrypted_key = encrypted_key
        self.created_at = created_at or _now()

    @abc.abstractmethod
    def wrap(self, data_key: bytes) -> bytes:
        """Encrypt the data key, returning an opaque blob."""

    @abc.abstractmethod
    def unwrap(self, blob: bytes) -> bytes:
        """Recover the data key from a blob produced by `wrap`."""

    def identity(self) -> tuple[str, str]:
        return (self.provider_type, self.identifier)

    def to_dict(self) -> dict:
        data = {"type": self.provider_type, "id": self.identifier, "created_at": self.created_at}
        if self.encrypted_key is not None:
            data["enc"] = base64.b64encode(self.encrypted_key).decode()
        return data

    @classmethod
    def from_dict(cls, identifier: str, data: dict) -> "MasterKey":
        return cls(identifier, encrypted_key=_decode_blob(data), created_at=data.get("created_at"))

    def __eq__(self, other) -> bool:
        if not isinstance(other, MasterKey):
            return NotImplemented
        return self.identity() == other.identity()

    def __hash__(self) -> int:
        return hash(self.identity())

    def __repr__(self) -> str:
        return f"{self.provider_type}:{self.identifier}"


def _decode_blob(data: dict) -> bytes | None:
    enc = data.get("enc")
    if enc is None:
        return None
    try:
        return base64.b64decode(enc, validate=True)
    except ValueError as e:
        raise MetadataError(f"Wrapped key for {data.get('id')!r} is not valid base64") from e


@register_provider
class LocalMasterKey(MasterKey):
    """
    A key-encryption key stored base64-encoded in a local file.

    The identifier is the file path; the file itself never enters the
    document.
    """

    provider_type = "local"

    @classmethod
    def generate(cls, key_file: str | Path) -> "LocalMasterKey":
        """Create a new key file and return a master key pointing at it."""
        key_file = Path(key_file)
        key_file.parent.mkdir(parents=True, exist_ok=True)
        key_file.write_text(base64.b64encode(generate_data_key()).decode())
        key_file.chmod(0o600)
        logger.info("Generated local master key %s", key_file)
        return cls(str(key_file))

    def _kek(self) -> bytes:
        kek = base64.b64decode(Path(self.identifier).read_text().strip())
        if len(kek) != KEY_SIZE:
            raise SealTreeError(f"Key file {self.identifier} does not hold a 256-bit key")
        return kek

    def wrap(self, data_key: bytes) -> bytes:
        return seal_key(data_key, self._kek())

    def unwrap(self, blob: bytes) -> bytes:
        return open_key(blob, self._kek())


@register_provider
class PassphraseMasterKey(MasterKey):
    """
    A key-encryption key derived from a passphrase with PBKDF2.

    The passphrase is never stored. When it is not passed in, it is read
    from SEALTREE_PASSPHRASE_<NAME> at call time. The wrapped blob carries
    its own salt: salt + nonce + ciphertext.
    """

    provider_type = "passphrase"

    def __init__(self, identifier: str, passphrase: str | None = None, iterations: int = PBKDF2_ITERATIONS, **kwargs):
        super().__init__(identifier, **kwargs)
        self._passphrase = passphrase
        self.iterations = iterations

    @property
    def env_var(self) -> str:
        return PASSPHRASE_ENV_PREFIX + re.sub(r"[^A-Z0-9]", "_", self.identifier.upper())

    def _get_passphrase(self) -> str:
        passphrase = self._passphrase or os.environ.get(self.env_var)
        if not passphrase:
            raise SealTreeError(f"No passphrase for {self!r}; set {self.env_var}")
        return passphrase

    def wrap(self, data_key: bytes) -> bytes:
        salt = os.urandom(SALT_SIZE)
        kek = derive_kek(self._get_passphrase(), salt, self.iterations)
        return salt + seal_key(data_key, kek)

    def unwrap(self, blob: bytes) -> bytes:
        salt, sealed = blob[:SALT_SIZE], blob[SALT_SIZE:]
        kek = derive_kek(self._get_passphrase(), salt, self.iterations)
        return open_key(sealed, kek)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["iterations"] = self.iterations
        return data

    @classmethod
    def from_dict(cls, identifier: str, data: dict) -> "PassphraseMasterKey":
        return cls(
            identifier,
            iterations=int(data.get("iterations", PBKDF2_ITERATIONS)),
            encrypted_key=_decode_blob(data),
            created_at=data.get("created_at"),
        )
