"""Activity logging service - centralized ticket activity tracking."""

from uuid import UUID

from sqlalchemy.orm import Session

from helpdesk.db.enums import ActivityType, MessageKind
from helpdesk.db.models import TicketActivity


def log_activity(
    db: Session,
    ticket_id: UUID,
    organization_id: UUID,
    activity_type: ActivityType,
    properties: dict | None = None,
) -> TicketActivity:
    """
    Log a ticket activity.

    Args:
        db: Database session
        ticket_id: The ticket this activity is for
        organization_id: Organization context
        activity_type: Type of activity (from ActivityType enum)
        properties: Type-specific details as JSON

    Returns:
        The created activity entry
    """
    activity = TicketActivity(
        ticket_id=ticket_id,
        organization_id=organization_id,
        type=activity_type.value,
        properties=properties,
    )
    db.add(activity)
    db.flush()  # Don't commit - let caller control transaction
    return activity


def log_ticket_created(
    db: Session,
    ticket_id: UUID,
    organization_id: UUID,
    source: str,
) -> TicketActivity:
    """Log ticket creation from an inbound channel."""
    return log_activity(
        db=db,
        ticket_id=ticket_id,
        organization_id=organization_id,
        activity_type=ActivityType.CREATED,
        properties={"source": source},
    )


def log_message_added(
    db: Session,
    ticket_id: UUID,
    organization_id: UUID,
    message_id: UUID,
    kind: MessageKind,
) -> TicketActivity:
    """Log a message being attached to a ticket."""
    return log_activity(
        db=db,
        ticket_id=ticket_id,
        organization_id=organization_id,
        activity_type=ActivityType.MESSAGE_ADDED,
        properties={"message_id": str(message_id), "kind": kind.value},
    )


def log_ticket_reopened(
    db: Session,
    ticket_id: UUID,
    organization_id: UUID,
    from_status_id: UUID | None,
    to_status_id: UUID | None,
) -> TicketActivity:
    """Log automatic reopening of a closed ticket."""
    return log_activity(
        db=db,
        ticket_id=ticket_id,
        organization_id=organization_id,
        activity_type=ActivityType.REOPENED,
        properties={
            "from_status_id": str(from_status_id) if from_status_id else None,
            "to_status_id": str(to_status_id) if to_status_id else None,
        },
    )


def log_priority_raised(
    db: Session,
    ticket_id: UUID,
    organization_id: UUID,
    priority_id: UUID,
    reason: str,
) -> TicketActivity:
    """Log urgency classification raising a new ticket's priority."""
    return log_activity(
        db=db,
        ticket_id=ticket_id,
        organization_id=organization_id,
        activity_type=ActivityType.PRIORITY_RAISED,
        properties={"priority_id": str(priority_id), "reason": reason},
    )
