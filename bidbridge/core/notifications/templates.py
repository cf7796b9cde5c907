"""Notification builders for every engagement event.

Each builder returns the events to hand off; the metadata always carries an
``action`` key plus the ids of the entities involved.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from bidbridge.common.enums import NotificationCategory
from bidbridge.core.notifications.schemas import NotificationEvent


def _money(amount: Decimal | None) -> str:
    return f"${amount:,.2f}" if amount is not None else "an undisclosed amount"


def _preview(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def quote_submitted(
    *,
    quote_id: uuid.UUID,
    project_id: uuid.UUID,
    project_title: str,
    poster_id: uuid.UUID,
    provider_id: uuid.UUID,
    provider_name: str,
    amount: Decimal,
) -> list[NotificationEvent]:
    meta = {
        "quote_id": str(quote_id),
        "job_id": str(project_id),
        "provider_id": str(provider_id),
        "job_title": project_title,
    }
    return [
        NotificationEvent(
            recipient_ids=[poster_id],
            category=NotificationCategory.QUOTE,
            title="New Quote Received",
            message=f'{provider_name} submitted a quote of {_money(amount)} for your project "{project_title}"',
            metadata={**meta, "action": "quote_submitted", "amount": str(amount)},
        ),
        NotificationEvent(
            recipient_ids=[provider_id],
            category=NotificationCategory.QUOTE,
            title="Quote Submitted Successfully",
            message=f'Your quote for "{project_title}" has been submitted to the project owner',
            metadata={**meta, "action": "quote_submitted_confirmation", "poster_id": str(poster_id)},
        ),
    ]


def quote_approved(
    *,
    quote_id: uuid.UUID,
    project_id: uuid.UUID,
    project_title: str,
    poster_id: uuid.UUID,
    provider_id: uuid.UUID,
    provider_name: str,
    amount: Decimal,
) -> list[NotificationEvent]:
    meta = {
        "quote_id": str(quote_id),
        "job_id": str(project_id),
        "job_title": project_title,
        "approved_amount": str(amount),
    }
    return [
        NotificationEvent(
            recipient_ids=[provider_id],
            category=NotificationCategory.QUOTE,
            title="Quote Approved!",
            message=(
                f'Congratulations! Your quote for "{project_title}" has been approved. '
                "The project has been assigned to you."
            ),
            metadata={**meta, "action": "quote_approved", "poster_id": str(poster_id)},
        ),
        NotificationEvent(
            recipient_ids=[poster_id],
            category=NotificationCategory.QUOTE,
            title="Quote Approved",
            message=(
                f"You have approved {provider_name}'s quote for \"{project_title}\". "
                "The project is now assigned."
            ),
            metadata={**meta, "action": "quote_approved_confirmation", "provider_id": str(provider_id)},
        ),
    ]


def quote_rejected(
    *,
    quote_id: uuid.UUID,
    project_id: uuid.UUID,
    project_title: str,
    provider_id: uuid.UUID,
) -> NotificationEvent:
    return NotificationEvent(
        recipient_ids=[provider_id],
        category=NotificationCategory.QUOTE,
        title="Quote Not Selected",
        message=f'Your quote for "{project_title}" was not selected. The project has been assigned to another provider.',
        metadata={
            "action": "quote_rejected",
            "quote_id": str(quote_id),
            "job_id": str(project_id),
            "job_title": project_title,
        },
    )


def project_status_changed(
    *,
    project_id: uuid.UUID,
    project_title: str,
    poster_id: uuid.UUID,
    provider_id: uuid.UUID,
    old_status: str,
    new_status: str,
) -> NotificationEvent:
    if new_status == "completed":
        title = "Project Completed"
        message = f'The project "{project_title}" has been marked as completed by the client'
    else:
        title = "Project Cancelled"
        message = f'The project "{project_title}" has been cancelled by the client'
    return NotificationEvent(
        recipient_ids=[provider_id],
        category=NotificationCategory.JOB,
        title=title,
        message=message,
        metadata={
            "action": f"job_{new_status}",
            "job_id": str(project_id),
            "job_title": project_title,
            "poster_id": str(poster_id),
            "old_status": old_status,
            "new_status": new_status,
        },
    )


def project_deleted(
    *,
    project_id: uuid.UUID,
    project_title: str,
    poster_id: uuid.UUID,
    provider_ids: list[uuid.UUID],
) -> NotificationEvent:
    return NotificationEvent(
        recipient_ids=provider_ids,
        category=NotificationCategory.JOB,
        title="Project Removed",
        message=f'The project "{project_title}" was removed by the client. Your quote has been closed.',
        metadata={
            "action": "job_deleted",
            "job_id": str(project_id),
            "job_title": project_title,
            "poster_id": str(poster_id),
        },
    )


def message_posted(
    *,
    message_id: uuid.UUID,
    conversation_id: uuid.UUID,
    sender_id: uuid.UUID,
    sender_name: str,
    recipients: list[tuple[uuid.UUID, str]],
    text: str,
    job_title: str,
    preview_length: int,
) -> list[NotificationEvent]:
    preview = _preview(text, preview_length) if text else "Sent an attachment"
    meta = {
        "message_id": str(message_id),
        "conversation_id": str(conversation_id),
        "sender_id": str(sender_id),
    }
    return [
        NotificationEvent(
            recipient_ids=[user_id for user_id, _ in recipients],
            category=NotificationCategory.MESSAGE,
            title=f"New message from {sender_name}",
            message=preview,
            metadata={
                **meta,
                "action": "message_received",
                "sender_name": sender_name,
                "job_title": job_title,
                "preview": preview,
            },
        ),
        NotificationEvent(
            recipient_ids=[sender_id],
            category=NotificationCategory.MESSAGE,
            title="Message Delivered",
            message=f"Your message has been delivered to {', '.join(name for _, name in recipients)}",
            metadata={
                **meta,
                "action": "message_delivered",
                "recipient_count": len(recipients),
                "recipients": [{"id": str(user_id), "name": name} for user_id, name in recipients],
            },
        ),
    ]
