"""Test doubles shared by the test modules."""

import asyncio
import base64
import re

from sealtree.errors import SealTreeError
from sealtree.keys import MasterKey, register_provider
from sealtree.kinds import encode_scalar, format_type_tag, scalar_kind

DATA_KEY = b"f" * 32

_REV = re.compile(r"^ENC\[REV,data:(?P<data>[^,]*),type:[a-z]+\]$")


class ReverseCipher:
    """Reverses the plaintext bytes. Tags ciphertext like a real cipher; stashes the path."""

    def encrypt(self, value, key, path, stash=None):
        data = base64.b64encode(encode_scalar(value)[::-1]).decode()
        return f"ENC[REV,data:{data},{format_type_tag(scalar_kind(value))}]"

    def decrypt(self, ciphertext, key, path):
        match = _REV.match(ciphertext)
        if match is None:
            raise ValueError(f"not a REV ciphertext: {ciphertext!r}")
        return base64.b64decode(match.group("data"))[::-1], path


class ExplodingCipher(ReverseCipher):
    """Fails on the value "boom"."""

    def __init__(self):
        self.calls = 0

    def encrypt(self, value, key, path, stash=None):
        self.calls += 1
        if value == "boom":
            raise RuntimeError("cipher backend unavailable")
        return super().encrypt(value, key, path, stash)


@register_provider
class FakeMasterKey(MasterKey):
    """
    In-memory async master key.

    Args:
        fail_times: Number of calls that raise ConnectionError before calls succeed.
        broken: Every call raises ConnectionError.
        denied: Every call raises a (non-retried) SealTreeError.
        delay: Seconds each call sleeps first.
    """

    provider_type = "fake"

    def __init__(self, identifier, fail_times=0, broken=False, denied=False, delay=0.0, **kwargs):
        super().__init__(identifier, **kwargs)
        self.fail_times = fail_times
        self.broken = broken
        self.denied = denied
        self.delay = delay
        self.calls = 0
        self.cancelled = False

    async def _enter(self):
        self.calls += 1
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.denied:
            raise SealTreeError(f"access denied to {self.identifier}")
        if self.broken or self.calls <= self.fail_times:
            raise ConnectionError(f"{self.identifier} unreachable")

    async def wrap(self, data_key):
        await self._enter()
        return self.identifier.encode() + b"|" + data_key

    async def unwrap(self, blob):
        await self._enter()
        prefix = self.identifier.encode() + b"|"
        if not blob.startswith(prefix):
            raise SealTreeError(f"blob was not wrapped by {self.identifier}")
        return blob[len(prefix):]
