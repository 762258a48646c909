"""
Stash — per-path scratch memory for an edit cycle.

Decryption appends whatever context the cipher hands back (nonce material,
the plaintext it saw) under the leaf's path. A later re-encryption of the
same document takes those records back out, in visit order, so a cipher can
reproduce stable ciphertext for values that did not change.

A stash belongs to one decrypt/encrypt cycle and is always passed
explicitly. It never decides what type a leaf has.
"""

import threading
from collections import defaultdict


class Stash:
    """Path-keyed, append-only lists of cipher context records."""

    def __init__(self):
        self._records: defaultdict[str, list] = defaultdict(list)
        self._lock = threading.Lock()

    def record(self, path: str, value) -> None:
        """Append a context record under `path`."""
        with self._lock:
            self._records[path].append(value)

    def take(self, path: str):
        """Remove and return the oldest record under `path`, or None."""
        with self._lock:
            records = self._records.get(path)
            if not records:
                return None
            value = records.pop(0)
            if not records:
                del self._records[path]
            return value

    def get(self, path: str) -> list:
        """Records under `path`, oldest first, without consuming them."""
        with self._lock:
            return list(self._records.get(path, ()))

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def paths(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return bool(self._records.get(path))

    def __len__(self) -> int:
        with self._lock:
            return sum(len(records) for records in self._records.values())

    def __repr__(self) -> str:
        return f"Stash({len(self)} record(s) across {len(self.paths())} path(s))"
