"""
Order status transitions and audit-trail entries
"""
from datetime import datetime, timezone
from typing import Optional
import logging

from errors import ValidationError
from models.order import OrderStatus, StatusHistoryItem

logger = logging.getLogger(__name__)

ALLOWED_STATUS_TRANSITIONS = {
    OrderStatus.PENDING.value: {OrderStatus.QUOTED.value, OrderStatus.CONFIRMED.value, OrderStatus.CANCELLED.value},
    OrderStatus.QUOTED.value: {OrderStatus.CONFIRMED.value, OrderStatus.CANCELLED.value, OrderStatus.PENDING.value},
    OrderStatus.CONFIRMED.value: {OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value},
    OrderStatus.COMPLETED.value: set(),
    OrderStatus.CANCELLED.value: set(),
}

# A quote may be (re)issued while the order is still being negotiated
QUOTABLE_STATUSES = {OrderStatus.PENDING.value, OrderStatus.QUOTED.value}

TERMINAL_STATUSES = {OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value}


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_STATUS_TRANSITIONS.get(current, set())


def check_transition(current: str, new: str, force: bool = False, order_number: str = "") -> None:
    """Raise ValidationError unless current -> new is an allowed edge.

    force lets an admin correct a mistaken status outside the table; the
    override is logged so it stays visible.
    """
    if can_transition(current, new):
        return
    if force and new != current:
        logger.warning(f"[Orders] Forced status change on {order_number or 'order'}: {current} -> {new}")
        return
    raise ValidationError(f"Cannot change status from {current} to {new}.")


def history_entry(status: str, changed_by: str, changed_by_name: Optional[str] = None, notes: str = "") -> dict:
    return StatusHistoryItem(
        status=status,
        changed_at=datetime.now(timezone.utc).isoformat(),
        changed_by=changed_by,
        changed_by_name=changed_by_name,
        notes=notes
    ).model_dump(mode="json")


def status_change_text(status: str, notes: str = "") -> str:
    text = f"Order status changed to: {status}."
    if notes:
        text = f"{text} {notes}"
    return text
