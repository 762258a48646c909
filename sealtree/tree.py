"""
Tree — the document model and the encryption engine that walks it.

A document is parsed (elsewhere) into a Tree: an ordered TreeBranch of
TreeItems plus Metadata. Values are plain Python: str, int, float, bool,
bytes, None, a nested TreeBranch, or a list of values. `kind_of` is the one
place that decides which of those a slot holds.

Encrypt and decrypt walk the branch depth-first in stored order, list
elements in index order, skipping any item whose key carries the
unencrypted suffix along with everything beneath it. The cipher sees each
leaf together with its path, the branch keys joined as "db:password:". List
elements share their parent's path.

A walk that fails part way leaves the tree partially transformed. Discard
it; do not serialize it.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from sealtree.cipher import Cipher
from sealtree.errors import (
    CipherError,
    IndexOutOfRangeError,
    NotFoundError,
    SealTreeError,
    TypeMismatchError,
)
from sealtree.kinds import ValueKind, decode_scalar, read_type_tag, scalar_kind
from sealtree.metadata import Metadata
from sealtree.path import format_path, parse_path
from sealtree.stash import Stash


@dataclass
class TreeItem:
    key: str
    value: Any


class TreeBranch(list):
    """An ordered list of TreeItems. Duplicate keys are allowed."""

    def truncate(self, expression: str):
        """Return the value at `expression`, e.g. '["bar"]["foobar"][2]'."""
        return truncate(self, expression)

    def insert_or_replace_value(self, key: str, value) -> "TreeBranch":
        """
        Return a new branch with `key` set to `value` at the top level.

        The first item with that key keeps its position; otherwise the item
        is appended. The branch this is called on is left untouched, so
        capture the result.
        """
        updated = TreeBranch(TreeItem(item.key, item.value) for item in self)
        for item in updated:
            if item.key == key:
                item.value = value
                return updated
        updated.append(TreeItem(key, value))
        return updated

    def __repr__(self) -> str:
        return f"TreeBranch({list.__repr__(self)})"


def kind_of(value) -> ValueKind:
    """Variant tag of any tree value. Raises UnsupportedValueType."""
    if isinstance(value, TreeBranch):
        return ValueKind.BRANCH
    if isinstance(value, list):
        return ValueKind.SEQUENCE
    return scalar_kind(value)


def truncate(value, expression: str):
    """Navigate `value` (a Tree, branch or list) by a path expression."""
    if isinstance(value, Tree):
        value = value.branch
    selectors = parse_path(expression)
    current = value
    for step, selector in enumerate(selectors):
        kind = kind_of(current)
        where = format_path(selectors[:step]) or "the root"
        if selector.is_index:
            if kind is not ValueKind.SEQUENCE:
                raise TypeMismatchError(f"Index {selector} applied to a {kind.value} at {where}")
            if not 0 <= selector.index < len(current):
                raise IndexOutOfRangeError(
                    f"Index {selector} out of range for a sequence of length {len(current)} at {where}"
                )
            current = current[selector.index]
        else:
            if kind is not ValueKind.BRANCH:
                raise TypeMismatchError(f"Key {selector} applied to a {kind.value} at {where}")
            for item in current:
                if item.key == selector.key:
                    current = item.value
                    break
            else:
                raise NotFoundError(f"Key {selector} not found at {where}")
    return current


def path_string(keys: list[str]) -> str:
    return "".join(f"{key}:" for key in keys)


LeafTransform = Callable[[Any, ValueKind, str], Any]


@dataclass
class Tree:
    branch: TreeBranch = field(default_factory=TreeBranch)
    metadata: Metadata = field(default_factory=Metadata)

    def truncate(self, expression: str):
        return truncate(self.branch, expression)

    # ── Encryption engine ──

    def encrypt(self, data_key: bytes, cipher: Cipher, stash: Stash | None = None) -> None:
        """Replace every non-exempt leaf with its tagged ciphertext."""

        def encrypt_leaf(value, kind: ValueKind, path: str) -> str:
            stash_value = stash.take(path) if stash is not None else None
            try:
                ciphertext = cipher.encrypt(value, data_key, path, stash_value)
            except SealTreeError:
                raise
            except Exception as e:
                raise CipherError(f"Could not encrypt value at {path!r}: {e}") from e
            if read_type_tag(ciphertext) is not kind:
                raise CipherError(f"Cipher tagged the {kind.value} value at {path!r} with the wrong type")
            return ciphertext

        self._walk_branch(self.branch, [], encrypt_leaf)

    def decrypt(self, data_key: bytes, cipher: Cipher, stash: Stash | None = None) -> Stash:
        """
        Replace every non-exempt ciphertext with its typed plaintext.

        Returns the stash holding the cipher's context records, a fresh one
        unless a stash was passed in.
        """
        stash = Stash() if stash is None else stash

        def decrypt_leaf(value, kind: ValueKind, path: str):
            if kind is not ValueKind.STR:
                raise CipherError(f"Expected ciphertext at {path!r}, found a {kind.value} value")
            tag = read_type_tag(value)
            try:
                plaintext, stash_value = cipher.decrypt(value, data_key, path)
            except SealTreeError:
                raise
            except Exception as e:
                raise CipherError(f"Could not decrypt value at {path!r}: {e}") from e
            stash.record(path, stash_value)
            return decode_scalar(plaintext, tag)

        self._walk_branch(self.branch, [], decrypt_leaf)
        return stash

    def _walk_branch(self, branch: TreeBranch, keys: list[str], transform: LeafTransform) -> None:
        for item in branch:
            if self.metadata.is_exempt(item.key):
                continue
            item.value = self._walk_value(item.value, keys + [item.key], transform)

    def _walk_value(self, value, keys: list[str], transform: LeafTransform):
        kind = kind_of(value)
        if kind is ValueKind.BRANCH:
            self._walk_branch(value, keys, transform)
            return value
        if kind is ValueKind.SEQUENCE:
            for idx, element in enumerate(value):
                value[idx] = self._walk_value(element, keys, transform)
            return value
        return transform(value, kind, path_string(keys))

    # ── Read-only traversal ──

    def leaves(self) -> Iterator[tuple[str, Any, bool]]:
        """
        Yield (path, value, exempt) for every leaf, exempt subtrees included,
        in the same order the engine walks.
        """
        yield from self._leaves_of(self.branch, [], False)

    def _leaves_of(self, value, keys: list[str], exempt: bool):
        kind = kind_of(value)
        if kind is ValueKind.BRANCH:
            for item in value:
                yield from self._leaves_of(
                    item.value, keys + [item.key], exempt or self.metadata.is_exempt(item.key)
                )
        elif kind is ValueKind.SEQUENCE:
            for element in value:
                yield from self._leaves_of(element, keys, exempt)
        else:
            yield path_string(keys), value, exempt
