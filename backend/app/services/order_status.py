"""Order status state machine.

``plan_transition`` decides what a status change writes; the order store
applies the result with a conditional update so the decision and the
write see the same current status.

Forward moves through fulfillment (processing -> printed -> shipped ->
delivered) may skip ahead; the skipped states are stamped at the same
instant so the recorded path never has gaps. Payment-bound moves out of
pending cannot be skipped. Fulfillment timestamps are written once and
never re-stamped.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from app.errors import InvalidTransition
from app.models.order import OrderInDB, OrderStatus

FULFILLMENT_PATH = [
    OrderStatus.PROCESSING,
    OrderStatus.PRINTED,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.PRINTED, OrderStatus.CANCELLED}),
    OrderStatus.PRINTED: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

DEFAULT_CARRIER = "USPS"
DEFAULT_LEAD_TIME_DAYS = 5
CARRIER_LEAD_TIME_DAYS = {
    "standard": 5,
    "usps": 5,
    "ups": 3,
    "fedex": 4,
    "dhl": 4,
    "express": 2,
}

STATUS_TIMESTAMPS = {
    OrderStatus.PRINTED: "printedAt",
    OrderStatus.SHIPPED: "shippedAt",
    OrderStatus.DELIVERED: "deliveredAt",
}


def carrier_lead_time_days(carrier: Optional[str]) -> int:
    return CARRIER_LEAD_TIME_DAYS.get((carrier or "").strip().lower(), DEFAULT_LEAD_TIME_DAYS)


def estimate_delivery(shipped_at: datetime, carrier: Optional[str]) -> datetime:
    return shipped_at + timedelta(days=carrier_lead_time_days(carrier))


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


def transition_path(current: OrderStatus, requested: OrderStatus) -> list[OrderStatus]:
    """States visited moving from ``current`` to ``requested``, excluding ``current``.

    Raises InvalidTransition when no valid path exists.
    """
    if can_transition(current, requested):
        return [requested]
    if current in FULFILLMENT_PATH and requested in FULFILLMENT_PATH:
        start = FULFILLMENT_PATH.index(current)
        end = FULFILLMENT_PATH.index(requested)
        if end > start:
            return FULFILLMENT_PATH[start + 1 : end + 1]
    raise InvalidTransition(current.value, requested.value)


@dataclass
class TransitionPlan:
    """Field updates for one status change. Empty ``updates`` means no-op."""

    status: OrderStatus
    path: list[OrderStatus] = field(default_factory=list)
    updates: dict[str, Any] = field(default_factory=dict)

    @property
    def is_noop(self) -> bool:
        return not self.updates


def _tracking_updates(
    order: OrderInDB,
    shipped_at: datetime,
    tracking_number: Optional[str],
    carrier: Optional[str],
) -> dict[str, Any]:
    if not tracking_number:
        return {}
    resolved_carrier = carrier or order.fulfillment.carrier or DEFAULT_CARRIER
    if (
        tracking_number == order.fulfillment.trackingNumber
        and resolved_carrier == order.fulfillment.carrier
        and order.fulfillment.estimatedDelivery is not None
    ):
        return {}
    return {
        "fulfillment.trackingNumber": tracking_number,
        "fulfillment.carrier": resolved_carrier,
        "fulfillment.estimatedDelivery": estimate_delivery(shipped_at, resolved_carrier),
    }


def plan_transition(
    order: OrderInDB,
    requested: OrderStatus,
    now: datetime,
    tracking_number: Optional[str] = None,
    carrier: Optional[str] = None,
) -> TransitionPlan:
    """Work out the writes for moving ``order`` to ``requested``.

    Re-applying the current status only fills in tracking data that was
    missing or changed; timestamps already set are left untouched.
    """
    current = order.status
    if requested == current:
        updates: dict[str, Any] = {}
        if requested == OrderStatus.SHIPPED:
            shipped_at = order.fulfillment.shippedAt or now
            updates = _tracking_updates(order, shipped_at, tracking_number, carrier)
        if updates:
            updates["updatedAt"] = now
        return TransitionPlan(status=current, updates=updates)

    path = transition_path(current, requested)
    updates = {"status": requested.value, "updatedAt": now}
    for state in path:
        stamp = STATUS_TIMESTAMPS.get(state)
        if stamp and getattr(order.fulfillment, stamp) is None:
            updates[f"fulfillment.{stamp}"] = now
    if OrderStatus.SHIPPED in path:
        shipped_at = order.fulfillment.shippedAt or now
        updates.update(_tracking_updates(order, shipped_at, tracking_number, carrier))
    return TransitionPlan(status=requested, path=path, updates=updates)
