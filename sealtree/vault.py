"""
Vault — envelope encryption for structured documents.

One data key per document encrypts every leaf. The data key is wrapped by
each master key in the document's key groups and never stored in the clear.

    encrypt: recover (or create) data key -> wrap -> encrypt leaves -> sign MAC
    decrypt: recover data key -> verify MAC -> decrypt leaves
"""

import logging

from sealtree.cipher import AESGCMCipher, Cipher
from sealtree.errors import MetadataError
from sealtree.keygroups import KeyGroupManager, RetryPolicy
from sealtree.keys import generate_data_key
from sealtree.mac import sign_mac, verify_mac
from sealtree.metadata import now_timestamp
from sealtree.stash import Stash
from sealtree.tree import Tree

logger = logging.getLogger(__name__)


class Vault:
    """
    Encrypts and decrypts trees in place.

    Args:
        cipher: Leaf cipher. Defaults to AES-256-GCM.
        retry: Retry/timeout policy for master key providers.
    """

    def __init__(self, cipher: Cipher | None = None, retry: RetryPolicy | None = None):
        self.cipher = cipher or AESGCMCipher()
        self.retry = retry or RetryPolicy()

    def _manager(self, tree: Tree) -> KeyGroupManager:
        return KeyGroupManager(tree.metadata, retry=self.retry)

    def _data_key(self, tree: Tree, manager: KeyGroupManager) -> bytes:
        """
        Recover the document's data key, or create one if no master key holds
        a wrapped copy yet. Keys added since the last wrap get their copy
        here too.
        """
        keys = tree.metadata.master_keys()
        if not keys:
            raise MetadataError("No master keys configured; nobody could ever decrypt this document")
        if any(key.encrypted_key is not None for key in keys):
            data_key = manager.unwrap_data_key()
        else:
            logger.info("Generating a new data key")
            data_key = generate_data_key()
        if any(key.encrypted_key is None for key in keys):
            manager.wrap_data_key(data_key)
        return data_key

    def encrypt(self, tree: Tree, stash: Stash | None = None) -> None:
        """
        Encrypt every non-exempt leaf and sign the MAC.

        Pass the stash returned by `decrypt` to keep unchanged values'
        ciphertext stable across an edit.
        """
        manager = self._manager(tree)
        data_key = self._data_key(tree, manager)
        tree.encrypt(data_key, self.cipher, stash)
        tree.metadata.last_modified = now_timestamp()
        sign_mac(tree, data_key, self.cipher)
        logger.info("Encrypted document for %d master key(s)", len(tree.metadata.master_keys()))

    def decrypt(self, tree: Tree) -> Stash:
        """
        Verify the MAC, then decrypt every non-exempt leaf.

        Raises IntegrityError before touching any leaf if the document was
        tampered with. Returns the stash for a later re-encryption.
        """
        data_key = self._manager(tree).unwrap_data_key()
        verify_mac(tree, data_key, self.cipher)
        return tree.decrypt(data_key, self.cipher)

    def rotate(self, tree: Tree, add=(), remove=(), group: str = "default") -> None:
        """
        Change which master keys can open the document. The data key is kept;
        every remaining key gets a fresh wrapped copy.
        """
        manager = self._manager(tree)
        data_key = manager.unwrap_data_key()
        if remove:
            manager.remove_master_keys(remove)
        if add:
            tree.metadata.add_master_keys(add, group)
        if not tree.metadata.master_keys():
            raise MetadataError("Rotation would leave the document without master keys")
        manager.wrap_data_key(data_key)

    def rotate_data_key(self, tree: Tree) -> None:
        """
        Re-encrypt the whole document under a brand new data key. On failure
        the tree is left half-done and must be discarded.
        """
        manager = self._manager(tree)
        old_key = manager.unwrap_data_key()
        verify_mac(tree, old_key, self.cipher)
        tree.decrypt(old_key, self.cipher)

        data_key = generate_data_key()
        manager.wrap_data_key(data_key)
        tree.encrypt(data_key, self.cipher)
        tree.metadata.last_modified = now_timestamp()
        sign_mac(tree, data_key, self.cipher)
        logger.info("Rotated data key")
