"""
sealtree — Selective encryption for structured secrets files.

sealtree encrypts the leaf values of a parsed document while leaving its
shape, its key names and any `_unencrypted` fields readable:
1. Tree — the document model and the walk that encrypts/decrypts leaves
2. Key groups — the data key wrapped under many master keys, any one of
   which (or a quorum of groups) can recover it
3. MAC — an integrity check over the encrypted document

Every value keeps its type: an int comes back an int, a bool a bool.

Usage:
    from sealtree import Vault, LocalMasterKey, KeySource, codec
    tree = codec.loads(text)
    tree.metadata.key_sources.append(KeySource("ops", [LocalMasterKey.generate("ops.key")]))
    Vault().encrypt(tree)
"""

from sealtree import codec
from sealtree.cipher import AESGCMCipher, Cipher
from sealtree.errors import (
    CipherError,
    IndexOutOfRangeError,
    IntegrityError,
    KeyWrapError,
    MetadataError,
    NoUsableMasterKey,
    NotFoundError,
    PathError,
    PathSyntaxError,
    ProviderError,
    SealTreeError,
    TypeMismatchError,
    UnsupportedValueType,
)
from sealtree.keygroups import KeyGroupManager, RetryPolicy
from sealtree.keys import LocalMasterKey, MasterKey, PassphraseMasterKey, register_provider
from sealtree.mac import compute_mac, sign_mac, verify_mac
from sealtree.metadata import KeySource, Metadata
from sealtree.stash import Stash
from sealtree.tree import Tree, TreeBranch, TreeItem
from sealtree.vault import Vault

__version__ = "0.1.0"
__all__ = [
    "codec",
    "Vault",
    "Tree",
    "TreeBranch",
    "TreeItem",
    "Metadata",
    "KeySource",
    "Stash",
    "Cipher",
    "AESGCMCipher",
    "MasterKey",
    "LocalMasterKey",
    "PassphraseMasterKey",
    "register_provider",
    "KeyGroupManager",
    "RetryPolicy",
    "compute_mac",
    "sign_mac",
    "verify_mac",
    "SealTreeError",
    "PathError",
    "PathSyntaxError",
    "NotFoundError",
    "IndexOutOfRangeError",
    "TypeMismatchError",
    "CipherError",
    "UnsupportedValueType",
    "IntegrityError",
    "MetadataError",
    "ProviderError",
    "NoUsableMasterKey",
    "KeyWrapError",
]
