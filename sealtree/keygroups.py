"""
Key groups — recovering and distributing the data key.

Every master key in every group holds its own wrapped copy of the data key.
Two modes, chosen by `Metadata.shamir_threshold`:

1. Redundancy (threshold 0 or 1): each key wraps the whole data key. Any
   one key in any one group is enough to decrypt.
2. Quorum (threshold N >= 2): the data key is split into one Shamir share
   per group and every key in a group wraps that group's share. N distinct
   groups must each give up their share before the key can be rebuilt.

Provider calls are network I/O. Groups are raced concurrently; inside a
group, keys are tried in order until one works. Every call has a timeout
and is retried with exponential backoff. A provider that raises a
SealTreeError is treated as a definite answer and not retried.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass

from sealtree.errors import KeyWrapError, MetadataError, NoUsableMasterKey, ProviderError, SealTreeError
from sealtree.keys import MasterKey
from sealtree.metadata import KeySource, Metadata
from sealtree.shamir import Share, combine, split

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Per-call retry settings for master key providers."""

    attempts: int = 3
    timeout: float = 30.0       # seconds, per attempt
    backoff: float = 0.25       # seconds before the first retry
    backoff_factor: float = 2.0
    max_backoff: float = 5.0

    def delay(self, attempt: int) -> float:
        """Sleep after failed attempt number `attempt` (1-based)."""
        return min(self.backoff * self.backoff_factor ** (attempt - 1), self.max_backoff)


async def _invoke(fn, *args):
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    return await asyncio.to_thread(fn, *args)


class KeyGroupManager:
    """
    Wraps and unwraps the data key across the key groups in `metadata`.

    Args:
        metadata: Document metadata; wrapped keys are read from and stored on its master keys.
        retry: Retry/timeout policy for every provider call.
    """

    def __init__(self, metadata: Metadata, retry: RetryPolicy | None = None):
        self.metadata = metadata
        self.retry = retry or RetryPolicy()

    # ── Provider calls ──

    async def _call(self, key: MasterKey, operation: str, payload: bytes) -> bytes:
        fn = getattr(key, operation)
        last_error = None
        for attempt in range(1, self.retry.attempts + 1):
            try:
                return await asyncio.wait_for(_invoke(fn, payload), timeout=self.retry.timeout)
            except SealTreeError as e:
                raise ProviderError(key, operation, attempt, e) from e
            except Exception as e:
                last_error = e
                if attempt < self.retry.attempts:
                    delay = self.retry.delay(attempt)
                    logger.warning(
                        "%s with %s failed (attempt %d/%d), retrying in %.2fs: %r",
                        operation, key, attempt, self.retry.attempts, delay, e,
                    )
                    await asyncio.sleep(delay)
        raise ProviderError(key, operation, self.retry.attempts, last_error) from last_error

    def _check_quorum(self) -> int:
        required = self.metadata.quorum
        usable = sum(1 for source in self.metadata.key_sources if source.keys)
        if required > 1 and usable < required:
            raise MetadataError(
                f"Quorum of {required} key groups configured but only {usable} group(s) hold keys"
            )
        return required

    # ── Unwrap ──

    def unwrap_data_key(self) -> bytes:
        """Blocking wrapper around unwrap_data_key_async."""
        return asyncio.run(self.unwrap_data_key_async())

    async def unwrap_data_key_async(self) -> bytes:
        """
        Recover the data key. Returns as soon as enough groups have answered
        and cancels the rest. Raises NoUsableMasterKey listing every
        provider failure when that never happens.
        """
        required = self._check_quorum()
        failures: list = []
        tasks = [
            asyncio.create_task(self._unwrap_group(source, failures))
            for source in self.metadata.key_sources
            if source.keys
        ]
        recovered = []
        pending = set(tasks)
        try:
            while pending and len(recovered) < required:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                # keep group order stable when several finish together
                for task in sorted(done, key=tasks.index):
                    payload = task.result()
                    if payload is not None:
                        recovered.append(payload)
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if len(recovered) < required:
            raise NoUsableMasterKey(failures, required=required, recovered=len(recovered))
        if required == 1:
            return recovered[0]
        try:
            shares = [Share.from_bytes(payload) for payload in recovered[:required]]
            data_key = combine(shares)
        except ValueError as e:
            raise MetadataError(f"Recovered key shares are inconsistent: {e}") from e
        logger.debug("Combined data key from %d key group share(s)", required)
        return data_key

    async def _unwrap_group(self, source: KeySource, failures: list) -> bytes | None:
        for key in source.keys:
            if key.encrypted_key is None:
                failures.append((key, SealTreeError("no wrapped data key stored for this key")))
                continue
            try:
                payload = await self._call(key, "unwrap", key.encrypted_key)
            except ProviderError as e:
                failures.append((key, e))
                continue
            logger.debug("Unwrapped data key with %s (group %r)", key, source.name)
            return payload
        logger.info("No key in group %r could unwrap the data key", source.name)
        return None

    # ── Wrap ──

    def wrap_data_key(self, data_key: bytes) -> None:
        """Blocking wrapper around wrap_data_key_async."""
        asyncio.run(self.wrap_data_key_async(data_key))

    async def wrap_data_key_async(self, data_key: bytes) -> None:
        """
        Wrap the data key (or each group's share of it) with every master
        key. All calls run to completion; successful wraps are stored on
        their keys even when others fail, and the failures are then raised
        together as KeyWrapError. A key that failed is left holding no
        wrapped copy at all.
        """
        jobs = self._wrap_jobs(data_key)
        results = await asyncio.gather(
            *(self._call(key, "wrap", payload) for key, payload in jobs),
            return_exceptions=True,
        )
        failures = []
        for (key, _), result in zip(jobs, results):
            if isinstance(result, BaseException):
                # drop any blob left from an earlier wrap or split
                key.encrypted_key = None
                failures.append((key, result))
            else:
                key.encrypted_key = result
        logger.info("Wrapped data key with %d of %d master key(s)", len(jobs) - len(failures), len(jobs))
        if failures:
            raise KeyWrapError(failures)

    def _wrap_jobs(self, data_key: bytes) -> list[tuple[MasterKey, bytes]]:
        required = self._check_quorum()
        if required == 1:
            return [(key, data_key) for key in self.metadata.master_keys()]
        shares = split(data_key, required, len(self.metadata.key_sources))
        return [
            (key, share.to_bytes())
            for source, share in zip(self.metadata.key_sources, shares)
            for key in source.keys
        ]

    # ── Rotation ──

    def remove_master_keys(self, keys) -> None:
        """Remove keys from every group. Re-wrap afterwards to finish rotation."""
        keys = list(keys)
        self.metadata.remove_master_keys(keys)
        logger.info("Removed master key(s): %s", ", ".join(map(repr, keys)))
