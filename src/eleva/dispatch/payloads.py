"""Typed scheduler payloads, one variant per job, tagged by ``job``."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from eleva.errors import PayloadValidationError


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    # Overrides "now" for replays and backfills
    as_of: datetime | None = None

    @field_validator("as_of")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class AppointmentRemindersPayload(_Payload):
    job: Literal["appointmentReminders"] = "appointmentReminders"


class AppointmentReminders1HrPayload(_Payload):
    job: Literal["appointmentReminders1Hr"] = "appointmentReminders1Hr"


class SendPaymentRemindersPayload(_Payload):
    job: Literal["sendPaymentReminders"] = "sendPaymentReminders"


class ProcessExpertTransfersPayload(_Payload):
    job: Literal["processExpertTransfers"] = "processExpertTransfers"
    limit: int = Field(default=100, ge=1, le=1000)


class ProcessPendingPayoutsPayload(_Payload):
    job: Literal["processPendingPayouts"] = "processPendingPayouts"
    limit: int = Field(default=100, ge=1, le=1000)


class CleanupExpiredReservationsPayload(_Payload):
    job: Literal["cleanupExpiredReservations"] = "cleanupExpiredReservations"


class KeepAlivePayload(_Payload):
    job: Literal["keepAlive"] = "keepAlive"


CronPayload = Annotated[
    AppointmentRemindersPayload
    | AppointmentReminders1HrPayload
    | SendPaymentRemindersPayload
    | ProcessExpertTransfersPayload
    | ProcessPendingPayoutsPayload
    | CleanupExpiredReservationsPayload
    | KeepAlivePayload,
    Field(discriminator="job"),
]

_adapter: TypeAdapter[CronPayload] = TypeAdapter(CronPayload)

PAYLOAD_TYPES: dict[str, type[_Payload]] = {
    "appointmentReminders": AppointmentRemindersPayload,
    "appointmentReminders1Hr": AppointmentReminders1HrPayload,
    "sendPaymentReminders": SendPaymentRemindersPayload,
    "processExpertTransfers": ProcessExpertTransfersPayload,
    "processPendingPayouts": ProcessPendingPayoutsPayload,
    "cleanupExpiredReservations": CleanupExpiredReservationsPayload,
    "keepAlive": KeepAlivePayload,
}


def parse_payload(job_name: str, body: bytes) -> _Payload:
    """Validate a raw request body for ``job_name``.

    An empty body yields the job's default payload. A body tagged with a
    different job, or with unknown fields, is rejected.
    """
    if job_name not in PAYLOAD_TYPES:
        raise PayloadValidationError(f"No payload schema for job {job_name!r}")
    if not body.strip():
        return PAYLOAD_TYPES[job_name]()
    try:
        payload = _adapter.validate_json(body)
    except ValidationError as exc:
        raise PayloadValidationError(f"Invalid payload for {job_name}: {exc.errors()}") from exc
    if payload.job != job_name:
        raise PayloadValidationError(
            f"Payload tagged {payload.job!r} delivered to the {job_name!r} endpoint"
        )
    return payload
