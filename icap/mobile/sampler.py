"""
Location sampling.

`LocationSampler` turns a platform position fix into a `LocationSample`.
It bounds every request by a timeout and accepts a recent cached fix, but
never retries: the next scheduled tick is the retry.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from itertools import cycle
from typing import Iterable, Optional, Protocol, Tuple

from icap.mobile.errors import GeolocationError, GeolocationErrorKind
from icap.mobile.models import LocationSample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Position:
    """Raw fix as reported by the device."""
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    acquired_at: float = 0.0  # monotonic seconds


class PositionProvider(Protocol):
    """Platform geolocation. Raises `GeolocationError` on failure."""

    async def get_current_position(self, high_accuracy: bool, timeout: float) -> Position:
        ...


class LocationSampler:

    def __init__(
        self,
        provider: PositionProvider,
        high_accuracy: bool = True,
        timeout_ms: int = 10000,
        max_sample_age_ms: int = 5000,
    ):
        self.provider = provider
        self.high_accuracy = high_accuracy
        self.timeout_ms = timeout_ms
        self.max_sample_age_ms = max_sample_age_ms
        self._cached: Optional[Position] = None

    def _fresh_cached(self) -> Optional[Position]:
        if self._cached is None or self.max_sample_age_ms <= 0:
            return None
        age_ms = (time.monotonic() - self._cached.acquired_at) * 1000
        return self._cached if age_ms <= self.max_sample_age_ms else None

    async def acquire(self) -> Position:
        """Get a position fix, failing with one of the three geolocation kinds."""
        cached = self._fresh_cached()
        if cached is not None:
            return cached

        timeout = self.timeout_ms / 1000
        try:
            position = await asyncio.wait_for(
                self.provider.get_current_position(self.high_accuracy, timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise GeolocationError(GeolocationErrorKind.TIMEOUT)
        except GeolocationError:
            raise
        except (OSError, RuntimeError) as exc:
            raise GeolocationError(GeolocationErrorKind.POSITION_UNAVAILABLE, str(exc)) from exc

        if not position.acquired_at:
            position = Position(
                latitude=position.latitude,
                longitude=position.longitude,
                accuracy=position.accuracy,
                speed=position.speed,
                acquired_at=time.monotonic(),
            )
        self._cached = position
        return position

    async def sample(self, order_id: str) -> LocationSample:
        """Acquire a fix and stamp it for `order_id` with the client clock."""
        position = await self.acquire()
        return LocationSample(
            order_id=order_id,
            latitude=position.latitude,
            longitude=position.longitude,
            accuracy=position.accuracy,
            speed=position.speed,
        )


class ReplayPositionProvider:
    """Replays a fixed route, one waypoint per request, looping at the end."""

    def __init__(self, route: Iterable[Tuple[float, float]], accuracy: float = 10.0, speed: Optional[float] = None):
        waypoints = list(route)
        if not waypoints:
            raise ValueError("route needs at least one waypoint")
        self._waypoints = cycle(waypoints)
        self.accuracy = accuracy
        self.speed = speed

    async def get_current_position(self, high_accuracy: bool, timeout: float) -> Position:
        latitude, longitude = next(self._waypoints)
        return Position(
            latitude=latitude,
            longitude=longitude,
            accuracy=self.accuracy if high_accuracy else self.accuracy * 5,
            speed=self.speed,
            acquired_at=time.monotonic(),
        )
