"""Scoped perceptual-hash index used to reject near-duplicate images."""

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from mealforge.models.fingerprint import ImageFingerprint
from mealforge.services.dedupe.perceptual_hash import (
    compute_fingerprint,
    from_hex,
    hamming_distance,
    to_hex,
)

logger = structlog.get_logger(__name__)

GLOBAL_SCOPE = "global"


@dataclass(frozen=True)
class DedupeResult:
    accepted: bool
    fingerprint: str
    matched_task_id: Optional[str] = None
    distance: Optional[int] = None


class PerceptualHashStore:
    """Fingerprint index with per-scope compare-and-insert.

    An image is rejected when its Hamming distance to a fingerprint recorded
    by another task in the same scope is below ``threshold``. Compare and
    insert for one scope run under a single asyncio.Lock, so two concurrent
    near-identical images can never both be accepted.

    With a ``uow_factory`` every accepted fingerprint is also written to the
    ``image_fingerprints`` table before it becomes visible in memory, and
    ``warm()`` reloads the index after a restart.
    """

    def __init__(self, threshold: int = 6, scope: str = "account", uow_factory=None):
        if scope not in ("account", GLOBAL_SCOPE):
            raise ValueError(f"Unknown duplicate scope: {scope}")
        self.threshold = threshold
        self.scope = scope
        self._uow_factory = uow_factory
        self._index: dict[str, list[tuple[int, str]]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def scope_key(self, account_id: str) -> str:
        return account_id if self.scope == "account" else GLOBAL_SCOPE

    def size(self, scope_key: str) -> int:
        return len(self._index.get(scope_key, []))

    async def warm(self) -> int:
        """Load persisted fingerprints into the in-memory index.

        Returns:
            Number of fingerprints loaded
        """
        if self._uow_factory is None:
            return 0
        async with await self._uow_factory() as uow:
            rows = await uow.fingerprints.list_all()
        for row in rows:
            self._index.setdefault(row.scope_key, []).append(
                (from_hex(row.hash), str(row.source_task_id))
            )
        logger.info("dedupe.index_warmed", fingerprints=len(rows))
        return len(rows)

    async def record(self, task_id: str, image_bytes: bytes, scope_key: str) -> DedupeResult:
        """Check an image against the scope and store it when it is new.

        Args:
            task_id: Task that produced the image
            image_bytes: Encoded image
            scope_key: Duplicate-detection scope (see ``scope_key()``)

        Returns:
            DedupeResult; ``accepted=False`` carries the matching task id and distance

        Raises:
            InvalidImageError: If the bytes cannot be decoded
        """
        fingerprint = await asyncio.to_thread(compute_fingerprint, image_bytes)
        hex_value = to_hex(fingerprint)
        lock = self._locks.setdefault(scope_key, asyncio.Lock())

        async with lock:
            entries = self._index.setdefault(scope_key, [])

            best: Optional[tuple[int, str]] = None
            own_match = False
            for stored, owner in entries:
                distance = hamming_distance(fingerprint, stored)
                if owner == task_id:
                    own_match = own_match or distance < self.threshold
                    continue
                if best is None or distance < best[0]:
                    best = (distance, owner)

            if best is not None and best[0] < self.threshold:
                logger.info(
                    "dedupe.rejected",
                    task_id=task_id,
                    matched_task_id=best[1],
                    distance=best[0],
                    scope=scope_key,
                )
                return DedupeResult(
                    accepted=False,
                    fingerprint=hex_value,
                    matched_task_id=best[1],
                    distance=best[0],
                )

            if own_match:
                # Same task re-recording its own image
                return DedupeResult(accepted=True, fingerprint=hex_value)

            if self._uow_factory is not None:
                async with await self._uow_factory() as uow:
                    await uow.fingerprints.add(
                        ImageFingerprint(
                            scope_key=scope_key,
                            hash=hex_value,
                            source_task_id=task_id,
                        )
                    )
            entries.append((fingerprint, task_id))

        logger.debug("dedupe.accepted", task_id=task_id, fingerprint=hex_value, scope=scope_key)
        return DedupeResult(
            accepted=True,
            fingerprint=hex_value,
            distance=best[0] if best is not None else None,
        )

    async def discard(self, task_id: str, scope_key: str) -> int:
        """Forget every fingerprint a task recorded in a scope.

        Used when an accepted image is never published (storage exhausted or
        job cancelled), so it cannot block later near-identical images.

        Returns:
            Number of in-memory entries removed
        """
        lock = self._locks.setdefault(scope_key, asyncio.Lock())
        async with lock:
            entries = self._index.get(scope_key, [])
            kept = [entry for entry in entries if entry[1] != task_id]
            removed = len(entries) - len(kept)
            if removed == 0:
                return 0
            if self._uow_factory is not None:
                async with await self._uow_factory() as uow:
                    await uow.fingerprints.delete_by_task(task_id, scope_key)
            self._index[scope_key] = kept

        logger.info("dedupe.discarded", task_id=task_id, scope=scope_key, fingerprints=removed)
        return removed
