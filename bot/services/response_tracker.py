from __future__ import annotations

import logging
from datetime import datetime

from database.models import ResponseTracking
from database.repositories import ReminderRepository
from utils.time import ensure_utc

LOGGER = logging.getLogger(__name__)


class ResponseTracker:
    """Owns the per-ticket response tracking record.

    Activity writes are last-write-wins. Reminder state is only saved while the
    activity it was computed from is still current.
    """

    def __init__(self, repository: ReminderRepository) -> None:
        self.repository = repository

    async def record_customer_message(self, ticket_id: str, at: datetime) -> None:
        await self.repository.upsert_response_tracking(
            ticket_id,
            last_customer_message_at=ensure_utc(at),
            no_response_needed=False,
        )
        LOGGER.debug("Customer message recorded", extra={"ticket_id": ticket_id})

    async def record_staff_response(self, ticket_id: str, at: datetime) -> None:
        await self.repository.upsert_response_tracking(
            ticket_id,
            last_staff_response_at=ensure_utc(at),
            reminder_sent=False,
            reminder_sent_at=None,
            reminder_count=0,
            last_reminder_at=None,
        )
        LOGGER.debug("Staff response recorded", extra={"ticket_id": ticket_id})

    async def mark_no_response_needed(self, ticket_id: str) -> None:
        await self.repository.upsert_response_tracking(
            ticket_id,
            no_response_needed=True,
            reminder_sent=False,
            reminder_sent_at=None,
        )
        LOGGER.info("Ticket marked as not needing a response", extra={"ticket_id": ticket_id})

    async def get(self, ticket_id: str) -> ResponseTracking | None:
        return await self.repository.get_response_tracking(ticket_id)

    async def clear(self, ticket_id: str) -> None:
        await self.repository.delete_response_tracking(ticket_id)

    async def apply_reminder(self, next_state: ResponseTracking, message_ref: str | None) -> bool:
        """Persist the state computed by the policy together with the new reminder message.

        ``next_state`` carries the activity timestamps the decision was based on. When a
        staff response, customer message or dismissal was recorded meanwhile, only the
        message reference is kept so its controls can still be cleared later.
        """
        applied = await self.repository.update_response_tracking_if_unchanged(
            next_state,
            reminder_sent=next_state.reminder_sent,
            reminder_sent_at=next_state.reminder_sent_at,
            reminder_count=next_state.reminder_count,
            last_reminder_at=next_state.last_reminder_at,
            last_reminder_message_ref=message_ref,
        )
        if not applied:
            await self.repository.set_last_reminder_message_ref(next_state.ticket_id, message_ref)
            LOGGER.info(
                "Ticket activity changed while the reminder was in flight; reminder state not saved",
                extra={"ticket_id": next_state.ticket_id},
            )
        return applied
