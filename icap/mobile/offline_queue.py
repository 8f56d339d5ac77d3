"""
Offline queue of location samples that could not reach the server.

Entries live in the local store so they survive an app restart. Delivery is
at-least-once: an entry is removed only after the server acknowledged it, and
the server recognises redelivered samples by their sample id.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List

from icap.mobile.errors import NetworkError, OrderNotFoundError, RequestRejectedError
from icap.mobile.models import LocationSample
from icap.mobile.store import LocalStore, PENDING_KEY

logger = logging.getLogger(__name__)


@dataclass
class DrainResult:
    delivered: int = 0
    dropped: int = 0
    remaining: int = 0
    interrupted: bool = False  # stopped early on a failure


class OfflineQueue:

    def __init__(self, store: LocalStore):
        self.store = store
        self._lock = asyncio.Lock()
        self._drain_lock = asyncio.Lock()

    def _entries(self) -> List[dict]:
        return self.store.get(PENDING_KEY) or []

    def __len__(self) -> int:
        return len(self._entries())

    def snapshot(self) -> List[LocationSample]:
        """Queued samples, oldest first."""
        return [LocationSample.from_payload(entry) for entry in self._entries()]

    async def enqueue(self, sample: LocationSample) -> int:
        """Append a sample; returns the queue length."""
        async with self._lock:
            entries = self._entries()
            entries.append(sample.to_payload())
            self.store.set(PENDING_KEY, entries)
            size = len(entries)
        logger.info("Location queued for sync", extra={"order_code": sample.order_id, "pending": size})
        return size

    async def _remove(self, sample_id: str) -> None:
        async with self._lock:
            entries = [entry for entry in self._entries() if entry.get("sampleId") != sample_id]
            self.store.set(PENDING_KEY, entries)

    async def clear(self) -> None:
        async with self._lock:
            self.store.remove(PENDING_KEY)

    async def drain(self, transport) -> DrainResult:
        """
        Resend queued samples oldest first.

        Stops at the first network failure so the remaining entries keep
        their chronological order. Samples for orders the server no longer
        knows, or that it refuses outright, are dropped. Concurrent calls
        run one after the other.
        """
        async with self._drain_lock:
            result = DrainResult()
            for sample in self.snapshot():
                try:
                    await transport.send_location(sample)
                except OrderNotFoundError:
                    logger.warning(
                        "Dropping undeliverable location",
                        extra={"order_code": sample.order_id, "sample_id": sample.sample_id}
                    )
                    await self._remove(sample.sample_id)
                    result.dropped += 1
                except RequestRejectedError as exc:
                    logger.warning(
                        "Dropping rejected location",
                        extra={
                            "order_code": sample.order_id,
                            "sample_id": sample.sample_id,
                            "error_code": exc.error_code,
                            "reason": str(exc)
                        }
                    )
                    await self._remove(sample.sample_id)
                    result.dropped += 1
                except NetworkError as exc:
                    logger.info("Sync interrupted", extra={"reason": str(exc)})
                    result.interrupted = True
                    break
                else:
                    await self._remove(sample.sample_id)
                    result.delivered += 1

            result.remaining = len(self)

        if result.delivered or result.dropped:
            logger.info(
                "Pending locations synced",
                extra={"delivered": result.delivered, "dropped": result.dropped, "remaining": result.remaining}
            )
        return result

