"""Usage ledger: quota reservation, compensating release and billing usage.

Backend errors never block generation. They are returned as an explicit
``BACKEND_UNAVAILABLE`` outcome so callers (and tests) can tell "quota denied"
apart from "quota backend unreachable, allowed by default".
"""

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Protocol

import structlog

from floragen.core.timezone import month_bounds, utc_now
from floragen.uow import UnitOfWork

logger = structlog.get_logger(__name__)


class ReservationOutcome(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    BACKEND_UNAVAILABLE = "backend_unavailable"


@dataclass(frozen=True)
class UsageReservation:
    """Result of a reserve call.

    ``allowed`` is True for a granted reservation and for the fail-open default
    (backend unavailable: used 0, limit and remaining None).
    """

    outcome: ReservationOutcome
    requested: int
    used: int = 0
    limit: int | None = None
    error: str | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome != ReservationOutcome.DENIED

    @property
    def granted(self) -> bool:
        return self.outcome == ReservationOutcome.GRANTED

    @property
    def remaining(self) -> int | None:
        if self.limit is None:
            return None
        return max(self.limit - self.used, 0)


@dataclass(frozen=True)
class BackendReservation:
    """Raw answer from a usage backend."""

    applied: bool
    used: int
    limit: int | None


class UsageBackend(Protocol):
    """Storage contract for usage counters."""

    async def reserve(self, organization_id: str, count: int) -> BackendReservation: ...

    async def release(self, organization_id: str, count: int) -> None: ...

    async def track_usage(self, organization_id: str, succeeded: int, failed: int) -> None: ...


class SqlUsageBackend:
    """UsageBackend on top of the UsageRepository (PostgreSQL).

    Periods are calendar months in UTC. Organizations without a quota row get
    ``default_limit`` (None = unlimited).
    """

    def __init__(
        self,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        default_limit: int | None = None,
        clock=utc_now,
    ):
        self.uow_factory = uow_factory
        self.default_limit = default_limit
        self.clock = clock

    async def reserve(self, organization_id: str, count: int) -> BackendReservation:
        period_start, period_end = month_bounds(self.clock())

        async with await self.uow_factory() as uow:
            quota = await uow.usage.get_quota(organization_id)
            limit = quota.monthly_photo_limit if quota is not None else self.default_limit

            reserved = await uow.usage.reserve(
                organization_id, count, limit, period_start, period_end
            )
            if reserved is not None:
                return BackendReservation(applied=True, used=reserved, limit=limit)

            usage = await uow.usage.get_usage(organization_id, period_start)
            used = usage.reserved_count if usage is not None else 0
            return BackendReservation(applied=False, used=used, limit=limit)

    async def release(self, organization_id: str, count: int) -> None:
        period_start, _ = month_bounds(self.clock())
        async with await self.uow_factory() as uow:
            await uow.usage.release(organization_id, count, period_start)

    async def track_usage(self, organization_id: str, succeeded: int, failed: int) -> None:
        period_start, period_end = month_bounds(self.clock())
        async with await self.uow_factory() as uow:
            await uow.usage.track_usage(
                organization_id, succeeded, failed, period_start, period_end
            )


class UsageLedger:
    """Fail-open facade over a UsageBackend."""

    def __init__(self, backend: UsageBackend):
        self.backend = backend

    async def reserve(self, organization_id: str, count: int) -> UsageReservation:
        """Atomically reserve ``count`` photos for the current period.

        Returns:
            UsageReservation tagged GRANTED, DENIED or BACKEND_UNAVAILABLE
        """
        try:
            result = await self.backend.reserve(organization_id, count)
        except Exception as e:
            logger.error(
                "usage.reserve.backend_unavailable",
                organization_id=organization_id,
                requested=count,
                error=str(e),
                error_type=type(e).__name__,
            )
            return UsageReservation(
                outcome=ReservationOutcome.BACKEND_UNAVAILABLE,
                requested=count,
                error=str(e),
            )

        if not result.applied:
            logger.info(
                "usage.reserve.denied",
                organization_id=organization_id,
                requested=count,
                used=result.used,
                limit=result.limit,
            )
            return UsageReservation(
                outcome=ReservationOutcome.DENIED,
                requested=count,
                used=result.used,
                limit=result.limit,
            )

        logger.info(
            "usage.reserve.granted",
            organization_id=organization_id,
            requested=count,
            used=result.used,
            limit=result.limit,
        )
        return UsageReservation(
            outcome=ReservationOutcome.GRANTED,
            requested=count,
            used=result.used,
            limit=result.limit,
        )

    async def release(self, organization_id: str, count: int) -> bool:
        """Best-effort compensating decrement. Never raises.

        Returns:
            True if the backend applied the release (or there was nothing to release)
        """
        if count <= 0:
            return True
        try:
            await self.backend.release(organization_id, count)
        except Exception as e:
            logger.error(
                "usage.release.failed",
                organization_id=organization_id,
                count=count,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        logger.info("usage.released", organization_id=organization_id, count=count)
        return True

    async def track_usage(self, organization_id: str, succeeded: int, failed: int) -> bool:
        """Record produced and failed photos for billing. Never raises."""
        try:
            await self.backend.track_usage(organization_id, succeeded, failed)
        except Exception as e:
            logger.error(
                "usage.track.failed",
                organization_id=organization_id,
                succeeded=succeeded,
                failed=failed,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        return True
