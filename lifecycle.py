"""Allowed order and payment status transitions."""
from typing import Dict, FrozenSet

from fastapi import HTTPException

ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "Pending": frozenset({"Processing", "Cancelled"}),
    "Processing": frozenset({"Shipped", "Cancelled"}),
    "Shipped": frozenset({"Delivered", "Returned"}),
    "Delivered": frozenset({"Returned"}),
    "Cancelled": frozenset(),
    "Returned": frozenset(),
}

PAYMENT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "Pending": frozenset({"Paid", "Failed"}),
    "Failed": frozenset({"Pending", "Paid"}),
    "Paid": frozenset({"Refunded"}),
    "Refunded": frozenset(),
}

CANCELLABLE = frozenset(s for s, targets in ORDER_TRANSITIONS.items() if "Cancelled" in targets)


def check_order_transition(current: str, target: str) -> None:
    if target not in ORDER_TRANSITIONS:
        raise HTTPException(status_code=400, detail="Invalid status value")
    if target not in ORDER_TRANSITIONS.get(current, frozenset()):
        raise HTTPException(status_code=400, detail=f"Cannot change order status from {current} to {target}")


def check_payment_transition(current: str, target: str) -> None:
    if target not in PAYMENT_TRANSITIONS:
        raise HTTPException(status_code=400, detail="Invalid payment status")
    if target not in PAYMENT_TRANSITIONS.get(current, frozenset()):
        raise HTTPException(status_code=400, detail=f"Cannot change payment status from {current} to {target}")
