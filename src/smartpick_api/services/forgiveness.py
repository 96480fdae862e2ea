"""Partner forgiveness of recorded no-shows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from smartpick_api.core.clock import BusinessClock, ensure_aware, get_clock
from smartpick_api.core.settings import settings
from smartpick_api.models.partner import Partner
from smartpick_api.models.penalty import ForgivenessRequest, ForgivenessStatus, Penalty, PenaltyOffense
from smartpick_api.models.user import User, UserRoleEnum
from smartpick_api.observability.engine import get_engine_store
from smartpick_api.services.penalties import PenaltyService
from smartpick_api.services.results import ErrorKind, Ok, Result, err, persisted_err


@dataclass
class ForgivenessOutcome:
    request: ForgivenessRequest
    granted: bool
    already_resolved: bool
    penalty: Penalty | None = None


class ForgivenessService:
    def __init__(
        self,
        db_session: AsyncSession,
        *,
        penalties: PenaltyService | None = None,
        clock: BusinessClock | None = None,
    ) -> None:
        self._db = db_session
        self._clock = clock or get_clock()
        self._penalties = penalties or PenaltyService(db_session, clock=self._clock)
        self._request_window = timedelta(hours=settings.forgiveness_request_window_hours)
        self._response_window = timedelta(hours=settings.forgiveness_response_hours)
        self._observability = get_engine_store()

    async def request_forgiveness(self, penalty_id: UUID, user_id: UUID, message: str) -> Result[ForgivenessRequest]:
        """Open a pending request against the user's latest unforgiven offense."""

        now = self._clock.now()
        penalty = await self._penalties.lock_penalty(penalty_id)
        if penalty is None or penalty.user_id != user_id:
            return err(ErrorKind.NOT_FOUND, "penalty_not_found", penalty_id=str(penalty_id))

        text = (message or "").strip()
        if not text:
            return err(ErrorKind.VALIDATION, "forgiveness_message_required")

        await self._expire_stale_for_penalty(penalty.id, now)
        pending = await self._pending_for_penalty(penalty.id, now)
        if pending is not None:
            self._observability.record_idempotent_outcome("forgiveness.request.already_pending")
            return err(ErrorKind.ALREADY_CLAIMED, "forgiveness_already_pending", request_id=str(pending.id))

        offense = await self._penalties.latest_open_offense(penalty.id)
        if offense is None:
            return err(ErrorKind.VALIDATION, "forgiveness_no_offense")
        if ensure_aware(offense.created_at) + self._request_window < now:
            return err(ErrorKind.INVALID_STATE_TRANSITION, "forgiveness_window_closed")

        request = ForgivenessRequest(
            id=uuid4(),
            penalty_id=penalty.id,
            offense_id=offense.id,
            user_id=user_id,
            partner_id=offense.partner_id,
            message=text,
            status=ForgivenessStatus.PENDING,
            requested_at=now,
            expires_at=now + self._response_window,
        )
        try:
            async with self._db.begin_nested():
                self._db.add(request)
        except IntegrityError:
            self._observability.record_race_lost("forgiveness.request")
            return err(ErrorKind.ALREADY_CLAIMED, "forgiveness_already_resolved", offense_id=str(offense.id))

        logger.info(
            "Forgiveness requested",
            request_id=str(request.id),
            penalty_id=str(penalty.id),
            offense_id=str(offense.id),
            partner_id=str(offense.partner_id) if offense.partner_id else None,
        )
        return Ok(request)

    async def resolve_forgiveness(
        self,
        request_id: UUID,
        resolver: User,
        *,
        granted: bool,
        message: str | None = None,
    ) -> Result[ForgivenessOutcome]:
        """Grant or deny a pending request; granting reverses one offense."""

        now = self._clock.now()
        request = await self._lock_request(request_id)
        if request is None:
            return err(ErrorKind.NOT_FOUND, "forgiveness_request_not_found", request_id=str(request_id))

        if resolver.role != UserRoleEnum.ADMIN.value:
            partner = await self._partner_for_user(resolver.id)
            if partner is None or request.partner_id != partner.id:
                return err(ErrorKind.FORBIDDEN, "forgiveness_not_partner")

        if request.status != ForgivenessStatus.PENDING:
            self._observability.record_idempotent_outcome("forgiveness.resolve.already_resolved")
            return Ok(
                ForgivenessOutcome(
                    request=request,
                    granted=request.status == ForgivenessStatus.GRANTED,
                    already_resolved=True,
                )
            )

        if ensure_aware(request.expires_at) <= now:
            request.status = ForgivenessStatus.EXPIRED
            request.resolved_at = now
            await self._db.flush()
            logger.info("Forgiveness request expired on late resolve", request_id=str(request.id))
            return persisted_err(
                ErrorKind.INVALID_STATE_TRANSITION, "forgiveness_deadline_passed", request_id=str(request.id)
            )

        penalty: Penalty | None = None
        if granted:
            penalty = await self._penalties.lock_penalty(request.penalty_id)
            offense = await self._db.get(PenaltyOffense, request.offense_id)
            if penalty is not None and offense is not None and offense.forgiven_at is None:
                await self._penalties.forgive_offense(penalty, offense)

        request.status = ForgivenessStatus.GRANTED if granted else ForgivenessStatus.DENIED
        request.partner_message = message
        request.resolved_at = now
        request.resolved_by_id = resolver.id
        await self._db.flush()

        logger.info(
            "Forgiveness resolved",
            request_id=str(request.id),
            granted=granted,
            resolver_id=str(resolver.id),
        )
        return Ok(ForgivenessOutcome(request=request, granted=granted, already_resolved=False, penalty=penalty))

    async def expire_stale_requests(self, *, now: datetime | None = None, limit: int = 500) -> list[ForgivenessRequest]:
        """Auto-deny pending requests past their deadline. Penalty state is untouched."""

        reference = now or self._clock.now()
        stmt = (
            select(ForgivenessRequest)
            .where(
                ForgivenessRequest.status == ForgivenessStatus.PENDING,
                ForgivenessRequest.expires_at <= reference,
            )
            .order_by(ForgivenessRequest.expires_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        requests = list((await self._db.execute(stmt)).scalars().all())
        for request in requests:
            request.status = ForgivenessStatus.EXPIRED
            request.resolved_at = reference
        if requests:
            await self._db.flush()
            logger.info("Auto-denied stale forgiveness requests", count=len(requests))
        return requests

    async def list_pending_for_partner(self, partner_id: UUID) -> list[ForgivenessRequest]:
        stmt = (
            select(ForgivenessRequest)
            .where(
                ForgivenessRequest.partner_id == partner_id,
                ForgivenessRequest.status == ForgivenessStatus.PENDING,
            )
            .order_by(ForgivenessRequest.requested_at.asc())
        )
        return list((await self._db.execute(stmt)).scalars().all())

    async def _expire_stale_for_penalty(self, penalty_id: UUID, now: datetime) -> None:
        stmt = select(ForgivenessRequest).where(
            ForgivenessRequest.penalty_id == penalty_id,
            ForgivenessRequest.status == ForgivenessStatus.PENDING,
            ForgivenessRequest.expires_at <= now,
        )
        stale = list((await self._db.execute(stmt)).scalars().all())
        for request in stale:
            request.status = ForgivenessStatus.EXPIRED
            request.resolved_at = now
        if stale:
            await self._db.flush()

    async def _pending_for_penalty(self, penalty_id: UUID, now: datetime) -> ForgivenessRequest | None:
        stmt = select(ForgivenessRequest).where(
            ForgivenessRequest.penalty_id == penalty_id,
            ForgivenessRequest.status == ForgivenessStatus.PENDING,
            ForgivenessRequest.expires_at > now,
        )
        return (await self._db.execute(stmt)).scalars().first()

    async def _lock_request(self, request_id: UUID) -> ForgivenessRequest | None:
        stmt = (
            select(ForgivenessRequest)
            .where(ForgivenessRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def _partner_for_user(self, user_id: UUID) -> Partner | None:
        stmt = select(Partner).where(Partner.user_id == user_id)
        return (await self._db.execute(stmt)).scalar_one_or_none()


__all__ = ["ForgivenessOutcome", "ForgivenessService"]
