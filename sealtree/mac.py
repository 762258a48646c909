"""
MAC — integrity check over the encrypted document.

The digest is HMAC-SHA512, keyed with the data key, over every leaf in walk
order: ciphertext for encrypted leaves, plaintext encoding for exempt ones.
Each leaf is framed by its type tag and byte length.
Reordering, adding, removing or editing any leaf changes it, trusted
unencrypted fields included.

The digest is stored encrypted, with `last_modified` as the cipher path, so
tampering with the timestamp breaks verification too.
"""

from cryptography.hazmat.primitives import constant_time, hashes, hmac

from sealtree.cipher import Cipher
from sealtree.errors import IntegrityError
from sealtree.kinds import ValueKind, decode_scalar, encode_scalar, format_type_tag, read_type_tag, scalar_kind
from sealtree.tree import Tree


def compute_mac(tree: Tree, data_key: bytes) -> str:
    """Hex HMAC-SHA512 of the tree's leaves, in traversal order."""
    mac = hmac.HMAC(data_key, hashes.SHA512())
    for _path, value, _exempt in tree.leaves():
        mac.update(_frame(value))
    return mac.finalize().hex()


def _frame(value) -> bytes:
    # "type:int:2:" + b"42"; tag and length keep neighbouring leaves apart
    raw = encode_scalar(value)
    return f"{format_type_tag(scalar_kind(value))}:{len(raw)}:".encode("ascii") + raw


def _mac_path(tree: Tree) -> str:
    return tree.metadata.last_modified or ""


def sign_mac(tree: Tree, data_key: bytes, cipher: Cipher) -> str:
    """Compute the MAC and store it, encrypted, in the tree's metadata."""
    digest = compute_mac(tree, data_key)
    tree.metadata.mac = cipher.encrypt(digest, data_key, _mac_path(tree), None)
    return digest


def verify_mac(tree: Tree, data_key: bytes, cipher: Cipher) -> None:
    """Raise IntegrityError unless the stored MAC matches the tree."""
    stored = tree.metadata.mac
    if not stored:
        raise IntegrityError("Document carries no MAC")
    try:
        if read_type_tag(stored) is not ValueKind.STR:
            raise IntegrityError("Stored MAC is not a string value")
        plaintext, _ = cipher.decrypt(stored, data_key, _mac_path(tree))
        expected = decode_scalar(plaintext, ValueKind.STR)
    except IntegrityError:
        raise
    except Exception as e:
        raise IntegrityError(f"Stored MAC could not be decrypted: {e}") from e

    actual = compute_mac(tree, data_key)
    if not constant_time.bytes_eq(expected.encode(), actual.encode()):
        raise IntegrityError("MAC mismatch: the document was modified after it was encrypted")
