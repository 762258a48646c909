"""
Metadata — document-level state stored next to the encrypted branch.

Holds the unencrypted suffix, the key groups with their wrapped data keys,
the encrypted MAC and version bookkeeping. Only rotation and MAC signing
change it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from sealtree.errors import MetadataError
from sealtree.keys import MasterKey, master_key_from_dict

DEFAULT_UNENCRYPTED_SUFFIX = "_unencrypted"
METADATA_VERSION = "1.0"


def now_timestamp() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


@dataclass
class KeySource:
    """A group of interchangeable master keys. Any one of them suffices."""

    name: str
    keys: list[MasterKey] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"name": self.name, "keys": [key.to_dict() for key in self.keys]}

    @classmethod
    def from_dict(cls, data: dict) -> "KeySource":
        if not isinstance(data, dict) or "name" not in data:
            raise MetadataError("Key group entry needs a name")
        return cls(name=data["name"], keys=[master_key_from_dict(k) for k in data.get("keys", [])])


@dataclass
class Metadata:
    """
    Args:
        unencrypted_suffix: Keys ending with this are never encrypted.
        key_sources: Ordered key groups.
        mac: Encrypted MAC of the document, None until signed.
        last_modified: Timestamp of the last encryption; also bound into the MAC ciphertext.
        shamir_threshold: 0 or 1 for plain redundancy; N >= 2 to require N distinct groups.
    """

    unencrypted_suffix: str = DEFAULT_UNENCRYPTED_SUFFIX
    key_sources: list[KeySource] = field(default_factory=list)
    mac: str | None = None
    last_modified: str | None = None
    version: str = METADATA_VERSION
    shamir_threshold: int = 0

    def master_keys(self) -> list[MasterKey]:
        """Every master key, group by group, in order."""
        return [key for source in self.key_sources for key in source.keys]

    @property
    def quorum(self) -> int:
        """Number of distinct key groups needed to recover the data key."""
        return max(self.shamir_threshold, 1)

    def is_exempt(self, key: str) -> bool:
        return bool(self.unencrypted_suffix) and key.endswith(self.unencrypted_suffix)

    def remove_master_keys(self, keys) -> None:
        """
        Drop `keys` (matched by identity) from every group, in place. Order of
        the remaining keys is kept and emptied groups stay. The data key is
        not re-wrapped; run a wrap afterwards to finish a rotation.
        """
        doomed = {key.identity() for key in keys}
        for source in self.key_sources:
            source.keys[:] = [key for key in source.keys if key.identity() not in doomed]

    def add_master_keys(self, keys, group: str) -> list[MasterKey]:
        """
        Append `keys` to the named group, creating it at the end if needed.
        Keys already in that group are skipped. Returns the keys that were
        added; they hold no wrapped data key until the next wrap.
        """
        source = next((s for s in self.key_sources if s.name == group), None)
        if source is None:
            source = KeySource(name=group)
            self.key_sources.append(source)
        present = {key.identity() for key in source.keys}
        added = []
        for key in keys:
            if key.identity() not in present:
                source.keys.append(key)
                present.add(key.identity())
                added.append(key)
        return added

    def to_dict(self) -> dict:
        return {
            "key_groups": [source.to_dict() for source in self.key_sources],
            "unencrypted_suffix": self.unencrypted_suffix,
            "shamir_threshold": self.shamir_threshold,
            "lastmodified": self.last_modified,
            "mac": self.mac,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Metadata":
        if not isinstance(data, dict):
            raise MetadataError("Metadata must be a mapping")
        try:
            threshold = int(data.get("shamir_threshold") or 0)
        except (TypeError, ValueError) as e:
            raise MetadataError(f"Invalid shamir_threshold: {data.get('shamir_threshold')!r}") from e
        return cls(
            unencrypted_suffix=data.get("unencrypted_suffix", DEFAULT_UNENCRYPTED_SUFFIX),
            key_sources=[KeySource.from_dict(s) for s in data.get("key_groups", [])],
            mac=data.get("mac"),
            last_modified=data.get("lastmodified"),
            version=data.get("version", METADATA_VERSION),
            shamir_threshold=threshold,
        )
