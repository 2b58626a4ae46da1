"""Exception hierarchy shared by the scheduler client, dispatch targets, and CLI."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from eleva.scheduling.sync import SyncReport


class ElevaError(Exception):
    """Base class for all application errors."""


class ConfigurationError(ElevaError):
    """A required credential or URL is missing. Fatal."""


class ServiceUnavailable(ElevaError):
    """An external service (scheduler, notification or payment provider) could not be reached."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SchedulerAPIError(ServiceUnavailable):
    """The scheduler API failed or rejected a request."""


class NotificationError(ServiceUnavailable):
    """The notification provider did not accept a workflow trigger."""


class PaymentProviderError(ServiceUnavailable):
    """Stripe was unreachable or returned a server error."""


class StripeRequestError(ElevaError):
    """Stripe rejected a request (4xx). Recorded on the transfer row, not retried immediately."""

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.code = code or "unknown_error"
        self.status_code = status_code


class DuplicateWorkError(ElevaError):
    """The unit of work was already claimed or completed by another invocation."""


class PayloadValidationError(ElevaError):
    """A scheduler payload did not match the job's schema."""


class PartialSyncFailure(ElevaError):
    """Some registry entries failed to reconcile while others succeeded."""

    def __init__(self, report: SyncReport) -> None:
        failed = [r.name for r in report.results if not r.ok]
        super().__init__(f"{len(failed)} job(s) failed to sync: {', '.join(failed)}")
        self.report = report
