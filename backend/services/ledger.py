"""
Quote and payment ledger arithmetic.

Pure functions over order documents; order_store persists what they return.
Invariant kept on every call: payment.amount_due == quote.final_amount - payment.amount_paid
"""
from datetime import datetime, timezone
from typing import List, Optional
import copy

from config import DEFAULT_CURRENCY
from errors import ValidationError
from models.order import PaymentStatus


def _money(value: float) -> float:
    return round(float(value), 2)


def format_amount(amount: float) -> str:
    """480000 -> '480,000'; keeps cents only when present"""
    if float(amount).is_integer():
        return f"{amount:,.0f}"
    return f"{amount:,.2f}"


def build_quote(
    breakdown: List[dict],
    discount: float = 0,
    sent_by: str = "",
    valid_until: Optional[str] = None,
    currency: str = DEFAULT_CURRENCY
) -> dict:
    if not breakdown:
        raise ValidationError("Quote breakdown is invalid.")
    if discount < 0:
        raise ValidationError("Discount must not be negative.")

    total = _money(sum(item["amount"] for item in breakdown))
    if discount > total:
        raise ValidationError("Discount must not exceed the quote total.")

    return {
        "total": total,
        "currency": currency,
        "breakdown": breakdown,
        "discount": _money(discount),
        "final_amount": _money(total - discount),
        "valid_until": valid_until,
        "sent_at": datetime.now(timezone.utc).isoformat(),
        "sent_by": sent_by
    }


def _payment_status(amount_paid: float, final_amount: float, current: str) -> str:
    if amount_paid >= final_amount:
        return PaymentStatus.COMPLETED.value
    if amount_paid > 0:
        return PaymentStatus.PARTIAL.value
    return current


def recompute_payment(payment: dict, final_amount: float) -> dict:
    """Re-derive amount_due and status after the quote changed"""
    updated = copy.deepcopy(payment)
    updated["amount_due"] = _money(final_amount - updated["amount_paid"])
    updated["status"] = _payment_status(updated["amount_paid"], final_amount, updated.get("status", PaymentStatus.PENDING.value))
    return updated


def apply_payment(order: dict, transaction: dict) -> dict:
    """Return the order's payment block with transaction appended"""
    quote = order.get("quote")
    if not quote:
        raise ValidationError("Cannot add payment for this order status.")

    amount = transaction["amount"]
    if amount <= 0:
        raise ValidationError("Invalid payment amount.")

    final_amount = quote["final_amount"]
    payment = copy.deepcopy(order.get("payment")) or {
        "method": transaction["method"],
        "status": PaymentStatus.PENDING.value,
        "amount_paid": 0,
        "amount_due": final_amount,
        "transactions": []
    }

    outstanding = _money(final_amount - payment["amount_paid"])
    if amount > outstanding:
        raise ValidationError("Payment amount exceeds order total.")

    payment["transactions"].append(transaction)
    payment["amount_paid"] = _money(payment["amount_paid"] + amount)
    return recompute_payment(payment, final_amount)
