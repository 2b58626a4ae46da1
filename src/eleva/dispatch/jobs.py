"""Units of work run by scheduler callbacks.

Every job may be invoked concurrently with itself and redelivered after a
failure, so each one claims its rows in the database before acting:

* reminders claim a stage marker with ``UPDATE ... WHERE marker IS NULL``;
* transfers and payouts claim a row by moving its status forward with a
  conditional ``UPDATE``.

Losing a claim means another invocation owns the row, and the row is skipped.
When the side effect fails the claim is released so the next delivery picks the
row up again. Provider calls additionally carry idempotency keys derived from
row ids.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from sqlalchemy import and_, delete, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eleva.config import Settings
from eleva.dispatch.notifications import NovuClient
from eleva.dispatch.stages import (
    APPOINTMENT_STAGES,
    PAYMENT_STAGES,
    ReminderStage,
    StageState,
)
from eleva.dispatch.stripe import StripeClient
from eleva.errors import (
    ConfigurationError,
    DuplicateWorkError,
    ServiceUnavailable,
    StripeRequestError,
)
from eleva.models.base import utcnow
from eleva.models.meeting import PAYMENT_STATUS_SUCCEEDED, Meeting
from eleva.models.payment_transfer import PaymentTransfer, TransferStatus
from eleva.models.reservation import SlotReservation

logger = structlog.get_logger(__name__)

APPOINTMENT_WORKFLOW = "appointment-universal"
PAYMENT_REMINDER_WORKFLOW = "multibanco-payment-reminder"
PAYOUT_COMPLETED_WORKFLOW = "payout-completed"
PAYOUT_FAILED_WORKFLOW = "payout-failed"


@dataclass
class JobSummary:
    job: str
    candidates: int = 0
    completed: int = 0
    skipped: int = 0
    deferred: int = 0
    rejected: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def fail(self, message: str) -> None:
        self.failed += 1
        self.errors.append(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job": self.job,
            "success": self.ok,
            "candidates": self.candidates,
            "completed": self.completed,
            "skipped": self.skipped,
            "deferred": self.deferred,
            "rejected": self.rejected,
            "failed": self.failed,
            "errors": self.errors,
            **self.details,
        }


@dataclass
class DispatchContext:
    """Everything a job needs; provider clients are built on first use."""

    session_factory: async_sessionmaker[AsyncSession]
    settings: Settings
    now: datetime = field(default_factory=utcnow)
    _notifier: NovuClient | None = None
    _payments: StripeClient | None = None

    @property
    def notifier(self) -> NovuClient:
        if self._notifier is None:
            self._notifier = NovuClient.from_settings(self.settings)
        return self._notifier

    @property
    def payments(self) -> StripeClient:
        if self._payments is None:
            self._payments = StripeClient.from_settings(self.settings)
        return self._payments

    async def aclose(self) -> None:
        if self._notifier is not None:
            await self._notifier.aclose()
        if self._payments is not None:
            await self._payments.aclose()


JobHandler = Callable[[DispatchContext, Any], Awaitable[JobSummary]]


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


async def claim_marker(
    ctx: DispatchContext, model: type, row_id: str, marker: str
) -> datetime:
    """Set ``marker`` on one row if it is still unset; raise DuplicateWorkError otherwise."""
    column = getattr(model, marker)
    async with ctx.session_factory() as session:
        result = await session.execute(
            update(model)
            .where(model.id == row_id, column.is_(None))
            .values({marker: ctx.now})
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    if result.rowcount != 1:
        raise DuplicateWorkError(f"{model.__name__} {row_id} {marker} already claimed")
    return ctx.now


async def release_marker(ctx: DispatchContext, model: type, row_id: str, marker: str) -> None:
    column = getattr(model, marker)
    async with ctx.session_factory() as session:
        await session.execute(
            update(model)
            .where(model.id == row_id, column == ctx.now)
            .values({marker: None})
            .execution_options(synchronize_session=False)
        )
        await session.commit()


async def claim_transfer(
    ctx: DispatchContext,
    transfer: PaymentTransfer,
    *,
    to_status: TransferStatus,
) -> None:
    """Move a transfer to an in-flight status if nobody else has since."""
    conditions = [PaymentTransfer.id == transfer.id, PaymentTransfer.status == transfer.status]
    if transfer.claimed_at is None:
        conditions.append(PaymentTransfer.claimed_at.is_(None))
    else:
        conditions.append(PaymentTransfer.claimed_at == transfer.claimed_at)
    async with ctx.session_factory() as session:
        result = await session.execute(
            update(PaymentTransfer)
            .where(*conditions)
            .values(status=to_status, claimed_at=ctx.now)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    if result.rowcount != 1:
        raise DuplicateWorkError(f"PaymentTransfer {transfer.id} already claimed")


async def update_transfer(ctx: DispatchContext, transfer_id: int, /, **values: Any) -> None:
    async with ctx.session_factory() as session:
        await session.execute(
            update(PaymentTransfer)
            .where(PaymentTransfer.id == transfer_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await session.commit()


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def format_local(moment: datetime, timezone: str | None) -> tuple[str, str]:
    local = moment.astimezone(_zone(timezone))
    return local.strftime("%Y-%m-%d"), local.strftime("%H:%M")


def split_name(full_name: str | None) -> tuple[str | None, str | None]:
    parts = (full_name or "").split()
    if not parts:
        return None, None
    return parts[0], " ".join(parts[1:]) or None


def locale_code(locale: str | None) -> str:
    locale = (locale or "en").lower()
    for code in ("pt", "es"):
        if locale.startswith(code):
            return code
    return "en"


# ---------------------------------------------------------------------------
# Appointment reminders
# ---------------------------------------------------------------------------


async def _notify_appointment(notifier: NovuClient, meeting: Meeting, stage: ReminderStage) -> None:
    expert = meeting.expert
    guest_name = meeting.guest_name or "Guest"
    expert_tz = expert.schedule_timezone or meeting.timezone
    expert_date, expert_time = format_local(meeting.start_time, expert_tz)
    await notifier.trigger(
        APPOINTMENT_WORKFLOW,
        subscriber_id=expert.id,
        payload={
            "eventType": "reminder",
            "reminderStage": stage.name,
            "expertName": expert.display_name,
            "customerName": guest_name,
            "serviceName": meeting.event_name,
            "appointmentDate": expert_date,
            "appointmentTime": expert_time,
            "timezone": expert_tz,
            "meetLink": meeting.meeting_url,
            "locale": locale_code(expert.locale),
        },
        transaction_id=f"reminder-{stage.name}-expert-{meeting.id}",
    )

    guest_date, guest_time = format_local(meeting.start_time, meeting.timezone)
    first, last = split_name(meeting.guest_name)
    await notifier.trigger(
        APPOINTMENT_WORKFLOW,
        subscriber_id=meeting.guest_email,
        email=meeting.guest_email,
        first_name=first,
        last_name=last,
        payload={
            "eventType": "reminder",
            "reminderStage": stage.name,
            "expertName": expert.display_name,
            "customerName": guest_name,
            "serviceName": meeting.event_name,
            "appointmentDate": guest_date,
            "appointmentTime": guest_time,
            "timezone": meeting.timezone,
            "meetLink": meeting.meeting_url,
            "durationMinutes": meeting.duration_minutes,
            "locale": locale_code(meeting.guest_locale),
        },
        transaction_id=f"reminder-{stage.name}-patient-{meeting.id}",
    )


async def send_appointment_reminders(ctx: DispatchContext, stage: ReminderStage) -> JobSummary:
    """Remind expert and guest of every confirmed meeting inside ``stage``'s window."""
    summary = JobSummary(job=f"appointment-reminders-{stage.name}")
    log = logger.bind(job=summary.job)
    marker = getattr(Meeting, stage.marker)
    # start + opens_at <= now < start + closes_at
    earliest_start = ctx.now - (stage.closes_at or timedelta(0))
    latest_start = ctx.now - stage.opens_at

    async with ctx.session_factory() as session:
        result = await session.execute(
            select(Meeting)
            .where(
                Meeting.payment_status == PAYMENT_STATUS_SUCCEEDED,
                Meeting.start_time > earliest_start,
                Meeting.start_time <= latest_start,
                marker.is_(None),
            )
            .order_by(Meeting.start_time)
        )
        meetings = list(result.scalars().unique().all())

    summary.candidates = len(meetings)
    for meeting in meetings:
        state = stage.state(
            anchor=meeting.start_time,
            deadline=meeting.start_time,
            sent_at=getattr(meeting, stage.marker),
            now=ctx.now,
        )
        if state is not StageState.ELIGIBLE:
            summary.skipped += 1
            continue
        # Missing credentials fail here, before any marker is claimed
        notifier = ctx.notifier
        try:
            await claim_marker(ctx, Meeting, meeting.id, stage.marker)
        except DuplicateWorkError:
            log.info("reminder_already_claimed", meeting_id=meeting.id)
            summary.skipped += 1
            continue
        try:
            await _notify_appointment(notifier, meeting, stage)
        except ServiceUnavailable as exc:
            await release_marker(ctx, Meeting, meeting.id, stage.marker)
            log.error("reminder_failed", meeting_id=meeting.id, error=str(exc))
            summary.fail(f"meeting {meeting.id}: {exc}")
            continue
        except Exception:
            await release_marker(ctx, Meeting, meeting.id, stage.marker)
            raise
        log.info("reminder_sent", meeting_id=meeting.id, stage=stage.name)
        summary.completed += 1

    log.info("job_complete", **summary.to_dict())
    return summary


# ---------------------------------------------------------------------------
# Multibanco payment reminders
# ---------------------------------------------------------------------------


async def _notify_payment_reminder(
    notifier: NovuClient, reservation: SlotReservation, stage: ReminderStage, now: datetime
) -> None:
    days_remaining = max(0, -(-(reservation.expires_at - now) // timedelta(days=1)))
    appointment_date, appointment_time = format_local(reservation.start_time, "Europe/Lisbon")
    await notifier.trigger(
        PAYMENT_REMINDER_WORKFLOW,
        subscriber_id=reservation.guest_email,
        email=reservation.guest_email,
        payload={
            "reminderType": stage.name,
            "expertName": reservation.expert.display_name,
            "serviceName": reservation.event_name,
            "appointmentDate": appointment_date,
            "appointmentTime": appointment_time,
            "timezone": "Europe/Lisbon",
            "durationMinutes": reservation.duration_minutes,
            "voucherExpiresAt": reservation.expires_at.isoformat(),
            "paymentIntentId": reservation.stripe_payment_intent_id,
            "daysRemaining": days_remaining,
        },
        transaction_id=f"payment-reminder-{stage.name}-{reservation.id}",
    )


async def send_payment_reminders(ctx: DispatchContext, payload: Any = None) -> JobSummary:
    """Send the Day-3 gentle and Day-6 urgent reminders for unpaid reservations."""
    summary = JobSummary(job="send-payment-reminders")
    log = logger.bind(job=summary.job)
    stages: dict[str, dict[str, int]] = {}

    for stage in PAYMENT_STAGES:
        marker = getattr(SlotReservation, stage.marker)
        conditions = [
            SlotReservation.stripe_payment_intent_id.is_not(None),
            SlotReservation.expires_at > ctx.now,
            SlotReservation.created_at <= ctx.now - stage.opens_at,
            marker.is_(None),
        ]
        if stage.closes_at is not None:
            conditions.append(SlotReservation.created_at > ctx.now - stage.closes_at)

        async with ctx.session_factory() as session:
            result = await session.execute(select(SlotReservation).where(*conditions))
            reservations = list(result.scalars().unique().all())

        stage_counts = {"found": len(reservations), "sent": 0}
        summary.candidates += len(reservations)
        for reservation in reservations:
            state = stage.state(
                anchor=reservation.created_at,
                deadline=reservation.expires_at,
                sent_at=getattr(reservation, stage.marker),
                now=ctx.now,
            )
            if state is not StageState.ELIGIBLE:
                summary.skipped += 1
                continue
            notifier = ctx.notifier
            try:
                await claim_marker(ctx, SlotReservation, reservation.id, stage.marker)
            except DuplicateWorkError:
                summary.skipped += 1
                continue
            try:
                await _notify_payment_reminder(notifier, reservation, stage, ctx.now)
            except ServiceUnavailable as exc:
                await release_marker(ctx, SlotReservation, reservation.id, stage.marker)
                log.error("payment_reminder_failed", reservation_id=reservation.id, error=str(exc))
                summary.fail(f"reservation {reservation.id}: {exc}")
                continue
            except Exception:
                await release_marker(ctx, SlotReservation, reservation.id, stage.marker)
                raise
            log.info("payment_reminder_sent", reservation_id=reservation.id, stage=stage.name)
            stage_counts["sent"] += 1
            summary.completed += 1
        stages[stage.name] = stage_counts

    summary.details["stages"] = stages
    log.info("job_complete", **summary.to_dict())
    return summary


# ---------------------------------------------------------------------------
# Expert transfers and payouts
# ---------------------------------------------------------------------------


def days_between(earlier: datetime, later: datetime) -> int:
    return (later - earlier) // timedelta(days=1)


async def _notify_expert(
    ctx: DispatchContext, workflow: str, transfer: PaymentTransfer, **extra: Any
) -> None:
    """Best-effort expert notification; a failure never undoes a payment."""
    try:
        await ctx.notifier.trigger(
            workflow,
            subscriber_id=transfer.expert_id,
            payload={
                "amount": transfer.amount,
                "currency": transfer.currency,
                "eventId": transfer.event_id,
                **extra,
            },
            transaction_id=f"{workflow}-{transfer.id}",
        )
    except (ConfigurationError, ServiceUnavailable) as exc:
        logger.warning("expert_notification_failed", transfer_id=transfer.id, error=str(exc))


async def process_expert_transfers(ctx: DispatchContext, payload: Any = None) -> JobSummary:
    """Transfer aged payments to expert Connect accounts."""
    summary = JobSummary(job="process-expert-transfers")
    log = logger.bind(job=summary.job)
    limit = getattr(payload, "limit", 100)
    stale_before = ctx.now - timedelta(minutes=ctx.settings.transfer_claim_timeout_minutes)

    async with ctx.session_factory() as session:
        result = await session.execute(
            select(PaymentTransfer)
            .where(
                PaymentTransfer.transfer_id.is_(None),
                or_(
                    PaymentTransfer.status == TransferStatus.APPROVED,
                    and_(
                        PaymentTransfer.status == TransferStatus.PENDING,
                        PaymentTransfer.scheduled_transfer_time <= ctx.now,
                        PaymentTransfer.requires_approval.is_(False),
                    ),
                    and_(
                        PaymentTransfer.status == TransferStatus.PROCESSING,
                        PaymentTransfer.claimed_at < stale_before,
                    ),
                ),
            )
            .order_by(PaymentTransfer.scheduled_transfer_time)
            .limit(limit)
        )
        transfers = list(result.scalars().unique().all())

    summary.candidates = len(transfers)
    for transfer in transfers:
        if transfer.status is TransferStatus.PENDING:
            required = ctx.settings.delay_days_for(transfer.expert.country)
            age = days_between(transfer.created_at, ctx.now)
            if age < required:
                log.info("transfer_not_aged", transfer_id=transfer.id, age=age, required=required)
                summary.deferred += 1
                continue

        # A reclaimed stale row goes back to pending on failure
        resume_status = (
            TransferStatus.PENDING
            if transfer.status is TransferStatus.PROCESSING
            else transfer.status
        )
        payments = ctx.payments
        try:
            await claim_transfer(ctx, transfer, to_status=TransferStatus.PROCESSING)
        except DuplicateWorkError:
            summary.skipped += 1
            continue

        try:
            stripe_transfer_id = await payments.create_transfer(
                amount=transfer.amount,
                currency=transfer.currency,
                destination=transfer.expert_connect_account_id,
                source_transaction=transfer.payment_intent_id,
                metadata={
                    "paymentTransferId": str(transfer.id),
                    "eventId": transfer.event_id,
                    "expertId": transfer.expert_id,
                    "sessionStartTime": transfer.session_start_time.isoformat(),
                    "scheduledTransferTime": transfer.scheduled_transfer_time.isoformat(),
                },
                description=f"Expert payout for session {transfer.event_id}",
                idempotency_key=f"transfer-{transfer.id}",
            )
        except StripeRequestError as exc:
            retry_count = (transfer.retry_count or 0) + 1
            exhausted = retry_count >= ctx.settings.payout_max_retries
            await update_transfer(
                ctx,
                transfer.id,
                status=TransferStatus.FAILED if exhausted else resume_status,
                stripe_error_code=exc.code,
                stripe_error_message=str(exc),
                retry_count=retry_count,
                claimed_at=None,
            )
            log.warning(
                "transfer_rejected", transfer_id=transfer.id, code=exc.code, retry_count=retry_count
            )
            summary.rejected += 1
            if exhausted:
                await _notify_expert(
                    ctx, PAYOUT_FAILED_WORKFLOW, transfer, errorMessage=str(exc)
                )
            continue
        except ServiceUnavailable as exc:
            await update_transfer(ctx, transfer.id, status=resume_status, claimed_at=None)
            log.error("transfer_failed", transfer_id=transfer.id, error=str(exc))
            summary.fail(f"transfer {transfer.id}: {exc}")
            continue
        except Exception:
            await update_transfer(ctx, transfer.id, status=resume_status, claimed_at=None)
            raise

        await update_transfer(
            ctx,
            transfer.id,
            status=TransferStatus.COMPLETED,
            transfer_id=stripe_transfer_id,
            transferred_at=ctx.now,
            stripe_error_code=None,
            stripe_error_message=None,
            claimed_at=None,
        )
        log.info("transfer_completed", transfer_id=transfer.id, stripe_transfer_id=stripe_transfer_id)
        summary.completed += 1
        await _notify_expert(ctx, PAYOUT_COMPLETED_WORKFLOW, transfer, transferId=stripe_transfer_id)

    log.info("job_complete", **summary.to_dict())
    return summary


async def process_pending_payouts(ctx: DispatchContext, payload: Any = None) -> JobSummary:
    """Pay out completed transfers from the expert's Connect balance."""
    summary = JobSummary(job="process-pending-payouts")
    log = logger.bind(job=summary.job)
    limit = getattr(payload, "limit", 100)
    stale_before = ctx.now - timedelta(minutes=ctx.settings.transfer_claim_timeout_minutes)

    async with ctx.session_factory() as session:
        result = await session.execute(
            select(PaymentTransfer)
            .where(
                PaymentTransfer.payout_id.is_(None),
                or_(
                    PaymentTransfer.status == TransferStatus.COMPLETED,
                    and_(
                        PaymentTransfer.status == TransferStatus.PAYOUT_PROCESSING,
                        PaymentTransfer.claimed_at < stale_before,
                    ),
                ),
            )
            .order_by(PaymentTransfer.id)
            .limit(limit)
        )
        transfers = list(result.scalars().unique().all())

    summary.candidates = len(transfers)
    for transfer in transfers:
        account = transfer.expert.stripe_connect_account_id
        if not account:
            log.warning("payout_no_connect_account", transfer_id=transfer.id)
            summary.deferred += 1
            continue
        completed_at = transfer.transferred_at or transfer.updated_at
        required = ctx.settings.delay_days_for(transfer.expert.country)
        if days_between(completed_at, ctx.now) < required:
            summary.deferred += 1
            continue

        payments = ctx.payments
        try:
            await claim_transfer(ctx, transfer, to_status=TransferStatus.PAYOUT_PROCESSING)
        except DuplicateWorkError:
            summary.skipped += 1
            continue

        release = {"status": TransferStatus.COMPLETED, "claimed_at": None}
        try:
            balance = await payments.available_balance(account, transfer.currency)
            if balance <= 0:
                await update_transfer(ctx, transfer.id, **release)
                log.info("payout_no_balance", transfer_id=transfer.id, account=account)
                summary.deferred += 1
                continue
            payout_id = await payments.create_payout(
                account=account,
                amount=min(balance, transfer.amount),
                currency=transfer.currency,
                metadata={
                    "paymentTransferId": str(transfer.id),
                    "eventId": transfer.event_id,
                    "expertId": transfer.expert_id,
                    "originalTransferAmount": str(transfer.amount),
                },
                description=f"Expert payout for session {transfer.event_id}",
                idempotency_key=f"payout-{transfer.id}",
            )
        except StripeRequestError as exc:
            await update_transfer(
                ctx,
                transfer.id,
                stripe_error_code=exc.code,
                stripe_error_message=str(exc),
                **release,
            )
            log.warning("payout_rejected", transfer_id=transfer.id, code=exc.code)
            summary.rejected += 1
            continue
        except ServiceUnavailable as exc:
            await update_transfer(ctx, transfer.id, **release)
            log.error("payout_failed", transfer_id=transfer.id, error=str(exc))
            summary.fail(f"payout {transfer.id}: {exc}")
            continue
        except Exception:
            await update_transfer(ctx, transfer.id, **release)
            raise

        await update_transfer(
            ctx,
            transfer.id,
            status=TransferStatus.PAID_OUT,
            payout_id=payout_id,
            claimed_at=None,
        )
        log.info("payout_created", transfer_id=transfer.id, payout_id=payout_id)
        summary.completed += 1

    log.info("job_complete", **summary.to_dict())
    return summary


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


async def cleanup_expired_reservations(ctx: DispatchContext, payload: Any = None) -> JobSummary:
    summary = JobSummary(job="cleanup-expired-reservations")
    async with ctx.session_factory() as session:
        result = await session.execute(
            delete(SlotReservation)
            .where(SlotReservation.expires_at <= ctx.now)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    summary.completed = result.rowcount or 0
    logger.info("job_complete", **summary.to_dict())
    return summary


async def keep_alive(ctx: DispatchContext, payload: Any = None) -> JobSummary:
    summary = JobSummary(job="keep-alive")
    async with ctx.session_factory() as session:
        await session.execute(text("SELECT 1"))
    summary.completed = 1
    return summary


async def _appointment_reminders_24h(ctx: DispatchContext, payload: Any = None) -> JobSummary:
    return await send_appointment_reminders(ctx, APPOINTMENT_STAGES["24hr"])


async def _appointment_reminders_1h(ctx: DispatchContext, payload: Any = None) -> JobSummary:
    return await send_appointment_reminders(ctx, APPOINTMENT_STAGES["1hr"])


JOB_HANDLERS: dict[str, JobHandler] = {
    "appointmentReminders": _appointment_reminders_24h,
    "appointmentReminders1Hr": _appointment_reminders_1h,
    "sendPaymentReminders": send_payment_reminders,
    "processExpertTransfers": process_expert_transfers,
    "processPendingPayouts": process_pending_payouts,
    "cleanupExpiredReservations": cleanup_expired_reservations,
    "keepAlive": keep_alive,
}
