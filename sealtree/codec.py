"""
Codec — JSON documents to trees and back.

Key order and duplicate keys survive the round trip, which a dict would not
allow, so objects are read straight into TreeBranches and written by hand.
Metadata lives under the top-level "sealtree" key.
"""

import json

from sealtree.errors import MetadataError, UnsupportedValueType
from sealtree.kinds import ValueKind
from sealtree.metadata import Metadata
from sealtree.tree import Tree, TreeBranch, TreeItem, kind_of

METADATA_KEY = "sealtree"


def _branch_from_pairs(pairs) -> TreeBranch:
    return TreeBranch(TreeItem(key, value) for key, value in pairs)


def _to_plain(value):
    if isinstance(value, TreeBranch):
        return {item.key: _to_plain(item.value) for item in value}
    if isinstance(value, list):
        return [_to_plain(element) for element in value]
    return value


def _from_plain(value):
    if isinstance(value, dict):
        return TreeBranch(TreeItem(key, _from_plain(v)) for key, v in value.items())
    if isinstance(value, list):
        return [_from_plain(element) for element in value]
    return value


def loads(text: str) -> Tree:
    """Parse a JSON document. Missing metadata gives a fresh Metadata."""
    data = json.loads(text, object_pairs_hook=_branch_from_pairs)
    if not isinstance(data, TreeBranch):
        raise MetadataError("A document must be a JSON object at the top level")
    tree = Tree()
    for item in data:
        if item.key == METADATA_KEY:
            tree.metadata = Metadata.from_dict(_to_plain(item.value))
        else:
            tree.branch.append(item)
    return tree


def dumps(tree: Tree, indent: int = 2) -> str:
    """Serialize a tree, metadata last."""
    branch = TreeBranch(tree.branch)
    branch.append(TreeItem(METADATA_KEY, _from_plain(tree.metadata.to_dict())))
    return _encode(branch, 0, indent) + "\n"


def _encode(value, level: int, indent: int) -> str:
    kind = kind_of(value)
    pad = " " * indent * (level + 1)
    close = " " * indent * level
    if kind is ValueKind.BRANCH:
        if not value:
            return "{}"
        body = ",\n".join(
            f"{pad}{json.dumps(item.key)}: {_encode(item.value, level + 1, indent)}" for item in value
        )
        return "{\n" + body + "\n" + close + "}"
    if kind is ValueKind.SEQUENCE:
        if not value:
            return "[]"
        body = ",\n".join(f"{pad}{_encode(element, level + 1, indent)}" for element in value)
        return "[\n" + body + "\n" + close + "]"
    if kind is ValueKind.BYTES:
        raise UnsupportedValueType("JSON documents cannot hold raw bytes; encrypt them first")
    return json.dumps(value)
