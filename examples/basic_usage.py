"""
sealtree — Basic Usage Example

Demonstrates encrypting a secrets file, editing it, and rotating keys.
"""

import shutil
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sealtree import KeySource, LocalMasterKey, PassphraseMasterKey, Vault, codec

SECRETS = """{
  "database": {
    "host": "db.internal",
    "password": "hunter2",
    "port": 5432
  },
  "api_tokens": ["tok-123", "tok-456"],
  "comment_unencrypted": "rotated every quarter"
}"""


def main():
    workdir = Path("./example-keys")

    # ── Example 1: Encrypt with two key groups ──
    print("=" * 50)
    print("  Example 1: Encrypt")
    print("=" * 50)

    tree = codec.loads(SECRETS)
    ops_key = LocalMasterKey.generate(workdir / "ops.key")
    # The passphrase could also come from SEALTREE_PASSPHRASE_BREAK_GLASS
    break_glass = PassphraseMasterKey("break-glass", passphrase="my-secret-passphrase-change-this")
    tree.metadata.key_sources = [
        KeySource("ops", [ops_key]),
        KeySource("break-glass", [break_glass]),
    ]

    vault = Vault()
    vault.encrypt(tree)
    text = codec.dumps(tree)
    print(text)

    # ── Example 2: Decrypt, edit, re-encrypt ──
    print("=" * 50)
    print("  Example 2: Edit")
    print("=" * 50)

    tree = codec.loads(text)
    # keys rebuilt from metadata do not carry the passphrase
    tree.metadata.key_sources[1].keys = [break_glass]
    stash = vault.decrypt(tree)
    port = tree.truncate('["database"]["port"]')
    token = tree.truncate('["api_tokens"][0]')
    print(f"Port: {port!r}")
    print(f"First token: {token!r}")

    database = tree.truncate('["database"]')
    tree.branch = tree.branch.insert_or_replace_value("database", database.insert_or_replace_value("password", "correct horse"))
    vault.encrypt(tree, stash)
    print("Only the password ciphertext changed; the rest kept their ciphertext.")

    # ── Example 3: Rotate ──
    print()
    print("=" * 50)
    print("  Example 3: Rotate")
    print("=" * 50)

    new_key = LocalMasterKey.generate(workdir / "ops-2026.key")
    vault.rotate(tree, add=[new_key], remove=[ops_key], group="ops")
    print(f"Master keys now: {tree.metadata.master_keys()}")

    vault.rotate_data_key(tree)
    print("Data key rotated; every value re-encrypted.")

    # ── Cleanup example files ──
    shutil.rmtree(workdir, ignore_errors=True)
    print("\nCleaned up example files.")


if __name__ == "__main__":
    main()
