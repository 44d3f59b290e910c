# services/utils.py

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal('0.01')


def to_money(value):
    """Quantize to two decimal places."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value):
    return f"{to_money(value):.2f}"


def format_invoice_no(order_id):
    return f"INV-{order_id:06d}"


def isoformat(value):
    return value.isoformat() if value else None


def time_elapsed(created_at, now=None):
    """Human readable age of an order, e.g. '5 mins ago'."""
    if not created_at:
        return None
    now = now or datetime.utcnow()
    minutes = int((now - created_at).total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days} day{'s' if days > 1 else ''} ago"
    if hours > 0:
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    if minutes > 0:
        return f"{minutes} min{'s' if minutes > 1 else ''} ago"
    return "Just now"
