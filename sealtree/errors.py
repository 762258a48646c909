"""
Errors — everything sealtree raises.

Path errors are local to a lookup. Cipher, type and integrity errors abort a
whole tree walk. Provider errors are retried inside the key group manager and
only surface once retries are exhausted, usually folded into an aggregate.
"""


class SealTreeError(Exception):
    """Base error for sealtree."""


# ── Path addressing ──

class PathError(SealTreeError):
    """Base error for path expression lookups."""


class PathSyntaxError(PathError):
    """The path expression could not be parsed."""


class NotFoundError(PathError):
    """A branch key selector matched no item."""


class IndexOutOfRangeError(PathError):
    """A sequence index selector fell outside the sequence."""


class TypeMismatchError(PathError):
    """A selector kind did not match the value it was applied to."""


# ── Leaf transforms ──

class CipherError(SealTreeError):
    """A leaf value could not be encrypted or decrypted."""


class UnsupportedValueType(SealTreeError, TypeError):
    """A leaf holds a runtime type that has no type tag."""


class IntegrityError(SealTreeError):
    """The document MAC did not verify."""


class MetadataError(SealTreeError):
    """Persisted metadata is malformed or names an unknown provider."""


# ── Master keys ──

class ProviderError(SealTreeError):
    """A single master key call failed after every retry."""

    def __init__(self, key, operation: str, attempts: int, cause: BaseException):
        self.key = key
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"{operation} with {key} failed after {attempts} attempt(s): {cause!r}"
        )


class NoUsableMasterKey(SealTreeError):
    """
    No key group (or not enough of them, in quorum mode) could recover the
    data key. `failures` holds one (key, error) pair per provider that was
    tried, in the order they failed.
    """

    def __init__(self, failures: list, required: int = 1, recovered: int = 0):
        self.failures = list(failures)
        self.required = required
        self.recovered = recovered
        lines = [f"  {key}: {err}" for key, err in self.failures]
        detail = "\n".join(lines) if lines else "  no master keys configured"
        super().__init__(
            f"Could not recover the data key ({recovered} of {required} "
            f"key group(s) succeeded):\n{detail}"
        )


class KeyWrapError(SealTreeError):
    """
    One or more master keys failed to wrap the data key. Keys that did
    succeed keep their wrapped copy.
    """

    def __init__(self, failures: list):
        self.failures = list(failures)
        lines = "\n".join(f"  {key}: {err}" for key, err in self.failures)
        super().__init__(f"Failed to wrap the data key with {len(self.failures)} key(s):\n{lines}")
