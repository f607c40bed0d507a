"""Change-tracking guest notifications.

Each event has one reference point: the moment of the last successful batch.
A CHANGES run emails every pending/confirmed booking created, updated or
modified after it; a BULK run emails every such booking. After a run that
sent at least one email, notified pending bookings are confirmed, a
guest-less BULK audit row is written, and the reference point moves to
now() by compare-and-swap, so an immediate re-run finds nothing.

Batches are strictly sequential. A failed send is recorded and the batch
carries on; nothing is retried.

Job state:   queued ──► sending ──► sent | failed
Batch state: idle ──► running ──► completed
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Iterator

import psycopg2

from roomblock.domain import booking_states
from roomblock.domain.bookings import BookingNotFoundError, set_booking_status
from roomblock.domain.booking_states import InvalidTransitionError
from roomblock.infra.db import txn
from roomblock.infra.repositories import notifications_repository as notifications
from roomblock.infra.time import start_of_day_utc
from roomblock.mail.hubspot import EmailMessage, EmailSendError, send_email
from roomblock.observability.context import get_correlation_id
from roomblock.observability.logging import get_logger

logger = get_logger(__name__)

NOTIFICATION_INDIVIDUAL = "INDIVIDUAL"
NOTIFICATION_BULK = "BULK"
NOTIFICATION_CHANGES = "CHANGES"
NOTIFICATION_MOCK = "MOCK"
NOTIFICATION_TYPES = (NOTIFICATION_INDIVIDUAL, NOTIFICATION_BULK, NOTIFICATION_CHANGES)

STATUS_SENT = "sent"
STATUS_FAILED = "failed"
STATUS_PENDING = "pending"
NOTIFICATION_STATUSES = (STATUS_SENT, STATUS_FAILED, STATUS_PENDING)

JOB_QUEUED = "queued"
JOB_SENDING = "sending"
JOB_SENT = "sent"
JOB_FAILED = "failed"

_JOB_TRANSITIONS = {
    JOB_QUEUED: (JOB_SENDING,),
    JOB_SENDING: (JOB_SENT, JOB_FAILED),
    JOB_SENT: (),
    JOB_FAILED: (),
}

BATCH_IDLE = "idle"
BATCH_RUNNING = "running"
BATCH_COMPLETED = "completed"

SUBJECTS = {
    NOTIFICATION_INDIVIDUAL: "Your accommodation booking",
    NOTIFICATION_BULK: "Your accommodation details",
    NOTIFICATION_CHANGES: "Your accommodation details have changed",
}

SOURCE_REFERENCE_POINT = "reference_point"
SOURCE_BULK_NOTIFICATION = "bulk_notification"
SOURCE_MOCK = NOTIFICATION_MOCK


class EventNotFoundError(Exception):
    """Raised when the event does not exist."""

    pass


class BatchAlreadyRunningError(Exception):
    """Raised when a batch is started while another one is still running."""

    pass


class ReferencePointConflictError(Exception):
    """Raised when another run moved the reference point first."""

    pass


class InvalidJobTransitionError(Exception):
    pass


# ── Jobs and batches ──────────────────────────────────────────────────────────


@dataclass
class EmailJob:
    event_id: int
    notification_type: str
    recipient_email: str | None
    guest_id: int | None = None
    booking_id: int | None = None
    booking_status: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    subject: str | None = None
    status: str = JOB_QUEUED
    status_id: str | None = None
    error_message: str | None = None

    def _move(self, target: str) -> None:
        if target not in _JOB_TRANSITIONS[self.status]:
            raise InvalidJobTransitionError(f"Email job cannot go from {self.status} to {target}")
        self.status = target

    def mark_sending(self) -> None:
        self._move(JOB_SENDING)

    def mark_sent(self, status_id: str | None) -> None:
        self._move(JOB_SENT)
        self.status_id = status_id

    def mark_failed(self, error_message: str) -> None:
        self._move(JOB_FAILED)
        self.error_message = error_message

    def to_message(self) -> EmailMessage:
        return EmailMessage(
            to=self.recipient_email or "",
            first_name=self.first_name,
            last_name=self.last_name,
            ticket_id=str(self.booking_id) if self.booking_id is not None else None,
        )

    @classmethod
    def for_booking(cls, booking: dict, notification_type: str) -> "EmailJob":
        return cls(
            event_id=booking["event_id"],
            notification_type=notification_type,
            recipient_email=booking.get("email"),
            guest_id=booking.get("person_id"),
            booking_id=booking.get("booking_id"),
            booking_status=booking.get("status"),
            first_name=booking.get("first_name"),
            last_name=booking.get("last_name"),
            subject=SUBJECTS[notification_type],
        )


@dataclass
class BatchProgress:
    total: int
    sent: int = 0
    failed: int = 0

    @property
    def remaining(self) -> int:
        return self.total - self.sent - self.failed

    @property
    def percent_complete(self) -> int:
        if self.total == 0:
            return 100
        # Halves round up.
        return ((self.sent + self.failed) * 100 + self.total // 2) // self.total

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "sent": self.sent,
            "failed": self.failed,
            "remaining": self.remaining,
            "percent_complete": self.percent_complete,
        }


@dataclass
class BatchResult:
    total: int
    sent: int
    failed: int
    jobs: list[EmailJob] = field(default_factory=list)


def record_job_outcome(job: EmailJob) -> dict:
    """Persist the final state of a job as an email_notifications row."""
    with txn() as cur:
        return notifications.insert_email_notification(
            cur,
            event_id=job.event_id,
            notification_type=job.notification_type,
            status=STATUS_SENT if job.status == JOB_SENT else STATUS_FAILED,
            guest_id=job.guest_id,
            booking_id=job.booking_id,
            recipient_email=job.recipient_email,
            subject=job.subject,
            status_id=job.status_id,
            error_message=job.error_message,
        )


class EmailDispatcher:
    """Runs email jobs one after another, recording every outcome.

    A send failure marks the job failed and moves on. Errors while recording
    an outcome are not send failures and propagate.
    """

    def __init__(
        self,
        sender: Callable[..., str | None] | None = None,
        recorder: Callable[[EmailJob], dict] | None = None,
    ) -> None:
        self._sender = sender or send_email
        self._recorder = recorder or record_job_outcome
        self._lock = threading.Lock()
        self.state = BATCH_IDLE

    def send_batch(
        self,
        jobs: list[EmailJob],
        on_progress: Callable[[dict], None] | None = None,
    ) -> BatchResult:
        with self._lock:
            if self.state == BATCH_RUNNING:
                raise BatchAlreadyRunningError("A batch is already being sent")
            self.state = BATCH_RUNNING

        progress = BatchProgress(total=len(jobs))
        try:
            for job in jobs:
                job.mark_sending()
                try:
                    status_id = self._sender(
                        job.to_message(), correlation_id=get_correlation_id() or None
                    )
                except EmailSendError as e:
                    job.mark_failed(str(e))
                    progress.failed += 1
                else:
                    job.mark_sent(status_id)
                    progress.sent += 1

                self._recorder(job)
                if on_progress is not None:
                    on_progress(progress.to_dict())
        finally:
            self.state = BATCH_COMPLETED

        return BatchResult(
            total=progress.total,
            sent=progress.sent,
            failed=progress.failed,
            jobs=list(jobs),
        )


_running_events: set[int] = set()
_running_events_lock = threading.Lock()


@contextmanager
def _claim_event(event_id: int) -> Iterator[None]:
    """Allow one change-tracking run per event in this process at a time."""
    with _running_events_lock:
        if event_id in _running_events:
            raise BatchAlreadyRunningError(
                f"A notification batch for event {event_id} is already running"
            )
        _running_events.add(event_id)
    try:
        yield
    finally:
        with _running_events_lock:
            _running_events.discard(event_id)


# ── Reference point ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ReferencePoint:
    timestamp: datetime
    source: str
    version: int | None = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
            "version": self.version,
        }


def get_reference_point(event_id: int) -> ReferencePoint:
    """Boundary for change tracking.

    The later of the recorded reference point and the latest bulk
    notification wins. Without either, the event start date is used
    (MOCK, never stored).
    """
    with txn() as cur:
        recorded = notifications.fetch_reference_point(cur, event_id)
        last_bulk = notifications.fetch_last_notification(cur, event_id, None)
        bulk_at = datetime.fromisoformat(last_bulk["sent_at"]) if last_bulk is not None else None

        if recorded is not None:
            timestamp, version = recorded
            if bulk_at is not None and bulk_at > timestamp:
                timestamp = bulk_at
            return ReferencePoint(timestamp, SOURCE_REFERENCE_POINT, version)

        if bulk_at is not None:
            return ReferencePoint(bulk_at, SOURCE_BULK_NOTIFICATION)

        start_date = notifications.fetch_event_start_date(cur, event_id)

    if start_date is None:
        raise EventNotFoundError(f"Event {event_id} not found")
    return ReferencePoint(start_of_day_utc(start_date), SOURCE_MOCK)


def advance_reference_point(event_id: int, expected_version: int | None) -> ReferencePoint:
    """Move the reference point to now() if nobody else moved it since it was read.

    Raises:
        ReferencePointConflictError: The stored version no longer matches.
    """
    with txn() as cur:
        advanced = notifications.advance_reference_point(cur, event_id, expected_version)
    if advanced is None:
        raise ReferencePointConflictError(
            f"Reference point of event {event_id} changed during the run"
        )
    return ReferencePoint(advanced[0], SOURCE_REFERENCE_POINT, advanced[1])


def get_changed_bookings(event_id: int, since: datetime) -> list[dict]:
    with txn() as cur:
        return notifications.fetch_changed_bookings(cur, event_id, since)


# ── Runs ──────────────────────────────────────────────────────────────────────


def _promote_pending(jobs: list[EmailJob]) -> tuple[int, int]:
    """Confirm notified pending bookings one at a time.

    Returns:
        (promoted, failures)
    """
    promoted = failures = 0
    for job in jobs:
        if job.status != JOB_SENT or job.booking_status != booking_states.PENDING:
            continue
        try:
            set_booking_status(job.booking_id, booking_states.CONFIRMED)
        except (BookingNotFoundError, InvalidTransitionError, psycopg2.Error) as e:
            failures += 1
            logger.warning(
                "booking confirmation after notification failed",
                extra={
                    "extra_fields": {
                        "booking_id": job.booking_id,
                        "error_type": type(e).__name__,
                    }
                },
            )
            continue
        promoted += 1
    return promoted, failures


def _run_batch(
    event_id: int,
    bookings: list[dict],
    notification_type: str,
    reference: ReferencePoint | None,
    on_progress: Callable[[dict], None] | None,
) -> dict:
    jobs = [EmailJob.for_booking(b, notification_type) for b in bookings]
    result = EmailDispatcher().send_batch(jobs, on_progress)
    promoted, promotion_failures = _promote_pending(result.jobs)

    reference_advanced = False
    new_reference: ReferencePoint | None = None
    if result.sent > 0:
        with txn() as cur:
            notifications.insert_email_notification(
                cur,
                event_id=event_id,
                notification_type=NOTIFICATION_BULK,
                status=STATUS_SENT,
                subject=f"{notification_type} batch: {result.sent} sent, {result.failed} failed",
            )
        expected = reference.version if reference and reference.source == SOURCE_REFERENCE_POINT else None
        try:
            new_reference = advance_reference_point(event_id, expected)
            reference_advanced = True
        except ReferencePointConflictError:
            logger.warning(
                "reference point not advanced, concurrent run detected",
                extra={"extra_fields": {"event_id": event_id, "expected_version": expected}},
            )

    logger.info(
        "notification batch completed",
        extra={
            "extra_fields": {
                "event_id": event_id,
                "notification_type": notification_type,
                "total": result.total,
                "sent": result.sent,
                "failed": result.failed,
                "promoted": promoted,
                "promotion_failures": promotion_failures,
                "reference_advanced": reference_advanced,
            }
        },
    )
    return {
        "event_id": event_id,
        "notification_type": notification_type,
        "total": result.total,
        "sent": result.sent,
        "failed": result.failed,
        "promoted": promoted,
        "promotion_failures": promotion_failures,
        "reference_advanced": reference_advanced,
        "reference_timestamp": new_reference.timestamp.isoformat() if new_reference else None,
    }


def send_updates(event_id: int, on_progress: Callable[[dict], None] | None = None) -> dict:
    """Email every guest whose booking changed since the reference point."""
    with _claim_event(event_id):
        reference = get_reference_point(event_id)
        changed = get_changed_bookings(event_id, reference.timestamp)
        return _run_batch(event_id, changed, NOTIFICATION_CHANGES, reference, on_progress)


def send_to_all(event_id: int, on_progress: Callable[[dict], None] | None = None) -> dict:
    """Email every guest with a pending or confirmed booking for the event."""
    with _claim_event(event_id):
        reference = get_reference_point(event_id)
        with txn() as cur:
            everyone = notifications.fetch_notifiable_bookings(cur, event_id)
        return _run_batch(event_id, everyone, NOTIFICATION_BULK, reference, on_progress)


def send_individual(booking_id: int) -> dict:
    """Email one guest about one booking. The reference point is untouched."""
    with txn() as cur:
        booking = notifications.fetch_guest_booking(cur, booking_id)
    if booking is None:
        raise BookingNotFoundError(f"Booking {booking_id} not found")

    job = EmailJob.for_booking(booking, NOTIFICATION_INDIVIDUAL)
    EmailDispatcher().send_batch([job])
    return {
        "booking_id": booking_id,
        "status": STATUS_SENT if job.status == JOB_SENT else STATUS_FAILED,
        "status_id": job.status_id,
        "error_message": job.error_message,
    }


# ── Notification log ──────────────────────────────────────────────────────────


def get_last_notification(event_id: int, guest_id: int | None) -> dict | None:
    """Last notification for a guest (or the last bulk marker when guest_id is None).

    When no bulk marker exists, a MOCK record dated at the event start is
    returned so callers always get a "since" boundary. It is never stored.
    """
    with txn() as cur:
        last = notifications.fetch_last_notification(cur, event_id, guest_id)
        if last is not None:
            return last
        if guest_id is not None:
            return None
        start_date = notifications.fetch_event_start_date(cur, event_id)

    if start_date is None:
        raise EventNotFoundError(f"Event {event_id} not found")
    return _mock_notification(event_id, start_date)


def _mock_notification(event_id: int, start_date: date) -> dict:
    return {
        "id": -1,
        "guest_id": None,
        "event_id": event_id,
        "booking_id": None,
        "notification_type": NOTIFICATION_MOCK,
        "sent_at": start_of_day_utc(start_date).isoformat(),
        "recipient_email": None,
        "subject": None,
        "status": STATUS_SENT,
        "status_id": None,
        "error_message": None,
        "message": "No bulk notification found, using event start date as reference",
    }


def list_notification_log(
    *,
    event_id: int | None = None,
    notification_type: str | None = None,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    with txn() as cur:
        rows, total = notifications.list_notifications(
            cur,
            event_id=event_id,
            notification_type=notification_type,
            status=status,
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=limit,
        )
    return {
        "notifications": rows,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


def record_notification(
    *,
    event_id: int,
    notification_type: str,
    status: str,
    guest_id: int | None = None,
    booking_id: int | None = None,
    recipient_email: str | None = None,
    subject: str | None = None,
    status_id: str | None = None,
    error_message: str | None = None,
    sent_at: datetime | None = None,
) -> dict:
    """Append a notification row reported by a client-side send.

    A sent guest-less BULK row marks a completed batch, so it also moves the
    event's reference point up to its sent_at in the same transaction.
    """
    with txn() as cur:
        row = notifications.insert_email_notification(
            cur,
            event_id=event_id,
            notification_type=notification_type,
            status=status,
            guest_id=guest_id,
            booking_id=booking_id,
            recipient_email=recipient_email,
            subject=subject,
            status_id=status_id,
            error_message=error_message,
            sent_at=sent_at,
        )
        if guest_id is None and notification_type == NOTIFICATION_BULK and status == STATUS_SENT:
            reference_timestamp, version = notifications.raise_reference_point(cur, event_id, sent_at)
            logger.info(
                "reference point moved by bulk notification",
                extra={
                    "extra_fields": {
                        "event_id": event_id,
                        "notification_id": row["id"],
                        "reference_timestamp": reference_timestamp.isoformat(),
                        "version": version,
                    }
                },
            )
    return row
