"""
Kinds — the type tag scheme for leaf values.

Ciphertext is text, so the original Python type of a leaf would be lost on
the way through a cipher. Every ciphertext therefore carries an explicit tag,
`type:<kind>`, as its last field, and decryption coerces by that tag alone:

    ENC[AES256_GCM,data:...,iv:...,tag:...,type:int]
                                            ^^^^^^^^

Tags: str, int, float, bool, bytes, null.
"""

import re
from enum import Enum

from sealtree.errors import CipherError, UnsupportedValueType


class ValueKind(Enum):
    """Variant tag for every value a tree slot can hold."""

    STR = "str"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    BYTES = "bytes"
    NULL = "null"
    BRANCH = "branch"
    SEQUENCE = "sequence"

    @property
    def is_scalar(self) -> bool:
        return self not in (ValueKind.BRANCH, ValueKind.SEQUENCE)


SCALAR_KINDS = tuple(kind for kind in ValueKind if kind.is_scalar)

# Tag must be the final field of the ciphertext: "...,type:int]"
_TYPE_TAG = re.compile(r"[\[,]type:([a-z]+)\]\s*$")


def scalar_kind(value) -> ValueKind:
    """Return the tag for a scalar leaf. bool is checked before int."""
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, int):
        return ValueKind.INT
    if isinstance(value, float):
        return ValueKind.FLOAT
    if isinstance(value, str):
        return ValueKind.STR
    if isinstance(value, (bytes, bytearray)):
        return ValueKind.BYTES
    if value is None:
        return ValueKind.NULL
    raise UnsupportedValueType(f"No type tag for leaf of type {type(value).__name__}")


def format_type_tag(kind: ValueKind) -> str:
    if not kind.is_scalar:
        raise UnsupportedValueType(f"{kind.value} is not a leaf kind")
    return f"type:{kind.value}"


def read_type_tag(ciphertext: str) -> ValueKind:
    """Extract the embedded type tag from a ciphertext string."""
    if not isinstance(ciphertext, str):
        raise CipherError(
            f"Expected a ciphertext string, got {type(ciphertext).__name__}"
        )
    match = _TYPE_TAG.search(ciphertext)
    if match is None:
        raise CipherError("Ciphertext carries no type tag")
    try:
        kind = ValueKind(match.group(1))
    except ValueError:
        raise CipherError(f"Unknown type tag {match.group(1)!r}") from None
    if not kind.is_scalar:
        raise CipherError(f"Type tag {kind.value!r} is not a leaf kind")
    return kind


def encode_scalar(value) -> bytes:
    """Canonical plaintext bytes for a scalar, as handed to a cipher."""
    kind = scalar_kind(value)
    if kind is ValueKind.BYTES:
        return bytes(value)
    if kind is ValueKind.STR:
        return value.encode("utf-8")
    if kind is ValueKind.BOOL:
        return b"true" if value else b"false"
    if kind is ValueKind.INT:
        return str(value).encode("ascii")
    if kind is ValueKind.FLOAT:
        return repr(value).encode("ascii")
    return b""


def decode_scalar(raw, kind: ValueKind):
    """
    Coerce a decrypted plaintext to `kind`.

    `raw` may be bytes, text, or a value that already has the right type (a
    cipher is free to hand back typed values). Any other combination is a
    cipher failure, never a silent fallback to str.
    """
    if _already(raw, kind):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        if kind is ValueKind.BYTES:
            return bytes(raw)
        try:
            text = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise CipherError(f"Plaintext for a {kind.value} leaf is not UTF-8") from e
    elif isinstance(raw, str):
        text = raw
    else:
        raise CipherError(
            f"Cannot coerce plaintext of type {type(raw).__name__} to {kind.value}"
        )

    try:
        if kind is ValueKind.STR:
            return text
        if kind is ValueKind.BYTES:
            return text.encode("utf-8")
        if kind is ValueKind.INT:
            return int(text)
        if kind is ValueKind.FLOAT:
            return float(text)
        if kind is ValueKind.BOOL:
            lowered = text.lower()
            if lowered not in ("true", "false"):
                raise ValueError(f"not a boolean: {text!r}")
            return lowered == "true"
        if kind is ValueKind.NULL:
            if text:
                raise ValueError("null leaf with non-empty plaintext")
            return None
    except ValueError as e:
        raise CipherError(f"Plaintext does not decode as {kind.value}: {e}") from e
    raise UnsupportedValueType(f"{kind.value} is not a leaf kind")


def _already(value, kind: ValueKind) -> bool:
    if kind is ValueKind.NULL:
        return value is None
    if kind is ValueKind.BOOL:
        return isinstance(value, bool)
    if kind is ValueKind.INT:
        return isinstance(value, int) and not isinstance(value, bool)
    if kind is ValueKind.FLOAT:
        return isinstance(value, float)
    if kind is ValueKind.STR:
        return isinstance(value, str)
    return False

