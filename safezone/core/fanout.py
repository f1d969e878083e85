"""
SafeZone — Notification fan-out.

Sends one notice to every contact in a snapshot concurrently and waits for
all of them. Each attempt is independent: a failure, an exception or a
timeout in one never cancels another, and every contact ends up with
exactly one NotificationRecord. Records are only returned after the
barrier, so callers merge them into the Alert/Trip in one step.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Callable

from safezone.data.models import NoticeKind, NotificationOutcome, NotificationRecord
from safezone.ports.notification_port import NotificationError
from safezone.ports.store_port import StoreUnavailable

if TYPE_CHECKING:
    from safezone.core.messages import Notice
    from safezone.data.models import Contact
    from safezone.ports.notification_port import NotificationGateway
    from safezone.ports.store_port import ContactRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_IN_FLIGHT = 10
DEFAULT_TIMEOUT_SECONDS = 15.0

REASON_TIMEOUT = "timeout"
REASON_NO_ADDRESS = "no_address"


class DispatchOutcome(Enum):
    SUCCESS = "success"              # at least one contact reached
    TOTAL_FAILURE = "total_failure"  # attempts made, none succeeded
    NO_CONTACTS = "no_contacts"      # nobody on file
    SKIPPED = "skipped"              # contact list could not be read


@dataclass
class FanoutResult:
    notice: NoticeKind
    outcome: DispatchOutcome
    records: list[NotificationRecord] = field(default_factory=list)

    @property
    def sent_count(self) -> int:
        return sum(1 for r in self.records if r.sent)

    @property
    def failed_count(self) -> int:
        return len(self.records) - self.sent_count


def summarize(notice: NoticeKind, records: list[NotificationRecord]) -> FanoutResult:
    """Decide the overall outcome for a finished batch."""
    if not records:
        return FanoutResult(notice=notice, outcome=DispatchOutcome.NO_CONTACTS)
    if any(r.sent for r in records):
        return FanoutResult(notice=notice, outcome=DispatchOutcome.SUCCESS, records=records)
    return FanoutResult(notice=notice, outcome=DispatchOutcome.TOTAL_FAILURE, records=records)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Fanout:
    """Bounded-concurrency, wait-for-all dispatcher over a NotificationGateway."""

    def __init__(
        self,
        gateway: NotificationGateway,
        max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self._gateway = gateway
        self._max_in_flight = max_in_flight
        self._timeout = timeout_seconds
        self._clock = clock

    @property
    def channel(self) -> str:
        return self._gateway.channel

    async def dispatch(self, contacts: list[Contact], notice: Notice) -> FanoutResult:
        """Send *notice* to every contact and aggregate the outcomes.

        The returned records follow the order of *contacts*.
        """
        if not contacts:
            return summarize(notice.kind, [])

        semaphore = asyncio.Semaphore(self._max_in_flight)
        records = await asyncio.gather(
            *(self._attempt(semaphore, contact, notice) for contact in contacts)
        )
        result = summarize(notice.kind, list(records))
        logger.info(
            "Fan-out %s over %s: %d sent, %d failed",
            notice.kind.value, self.channel, result.sent_count, result.failed_count,
        )
        return result

    async def dispatch_to(
        self, registry: ContactRegistry, user_id: int, notice: Notice,
    ) -> FanoutResult:
        """Best-effort variant: read the user's contacts, then dispatch.

        A registry outage is logged and reported as SKIPPED instead of
        being raised, since the caller's state change has already been
        committed.
        """
        try:
            contacts = registry.list_contacts(user_id)
        except StoreUnavailable as exc:
            logger.error(
                "Could not load contacts for user %d, %s notice skipped: %s",
                user_id, notice.kind.value, exc,
            )
            return FanoutResult(notice=notice.kind, outcome=DispatchOutcome.SKIPPED)
        return await self.dispatch(contacts, notice)

    async def _attempt(
        self, semaphore: asyncio.Semaphore, contact: Contact, notice: Notice,
    ) -> NotificationRecord:
        channel = self.channel
        address = contact.address_for(channel)
        if not address:
            logger.warning("Contact #%d has no %s address", contact.id, channel)
            return self._record(contact, NotificationOutcome.FAILED, notice, REASON_NO_ADDRESS)

        async with semaphore:
            attempted_at = self._clock()
            try:
                message_id = await asyncio.wait_for(
                    self._gateway.send(address, notice.subject, notice.body),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Notification to contact #%d timed out after %ss", contact.id, self._timeout,
                )
                return self._record(
                    contact, NotificationOutcome.FAILED, notice, REASON_TIMEOUT, at=attempted_at,
                )
            except NotificationError as exc:
                logger.warning(
                    "Notification to contact #%d failed (%s): %s",
                    contact.id, "transient" if exc.transient else "permanent", exc.reason,
                )
                return self._record(
                    contact, NotificationOutcome.FAILED, notice, exc.reason, at=attempted_at,
                )
            except Exception as exc:
                logger.exception("Unexpected gateway error for contact #%d", contact.id)
                return self._record(
                    contact, NotificationOutcome.FAILED, notice, f"error: {exc}", at=attempted_at,
                )

        return self._record(
            contact, NotificationOutcome.SENT, notice,
            message_id=message_id or None, at=attempted_at,
        )

    def _record(
        self,
        contact: Contact,
        outcome: NotificationOutcome,
        notice: Notice,
        reason: str | None = None,
        message_id: str | None = None,
        at: datetime | None = None,
    ) -> NotificationRecord:
        return NotificationRecord(
            contact_id=contact.id,
            channel=self.channel,
            attempted_at=at or self._clock(),
            outcome=outcome,
            failure_reason=reason,
            message_id=message_id,
            notice=notice.kind,
        )
