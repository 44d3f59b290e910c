# services/order_state.py
"""
Order status vocabulary, the transition graph, and the notification table.

Nothing in here touches the database or the fan-out channel, so it can be
used from models, services and tests alike.
"""

from datetime import datetime

from services.errors import InvalidInput, InvalidTransition


class OrderStatus:
    PENDING = 'pending'
    ACCEPTED = 'accepted'
    CONFIRMED = 'confirmed'
    REJECTED = 'rejected'
    PREPARING = 'preparing'
    READY = 'ready'
    DELIVERED = 'delivered'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'

    ALL = (
        PENDING, ACCEPTED, CONFIRMED, REJECTED, PREPARING,
        READY, DELIVERED, COMPLETED, CANCELLED,
    )


class PaymentStatus:
    PENDING = 'pending'
    PAID = 'paid'
    FAILED = 'failed'

    ALL = (PENDING, PAID, FAILED)


class PaymentMethod:
    ESEWA = 'esewa'
    CASH = 'cash'

    ALL = (ESEWA, CASH)


TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.ACCEPTED, OrderStatus.REJECTED}),
    OrderStatus.ACCEPTED: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.REJECTED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.COMPLETED: frozenset(),
}

# A table with an order in one of these is occupied
OPEN_STATUSES = frozenset({
    OrderStatus.PENDING, OrderStatus.ACCEPTED, OrderStatus.CONFIRMED, OrderStatus.PREPARING,
})

TERMINAL_STATUSES = frozenset({
    OrderStatus.REJECTED, OrderStatus.CANCELLED, OrderStatus.COMPLETED,
})

# A gateway payment can only confirm an order that has not moved past confirmation yet
PAYMENT_CONFIRMABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.ACCEPTED})

POLICY_STRICT = 'strict'
POLICY_RELAXED = 'relaxed'
POLICIES = (POLICY_STRICT, POLICY_RELAXED)


def is_valid_status(value):
    return value in TRANSITIONS


def can_transition(current, requested):
    """True when `requested` is reachable from `current` in exactly one step."""
    return requested in TRANSITIONS.get(current, frozenset())


def is_terminal(status):
    return status in TERMINAL_STATUSES


def check_transition(current, requested, policy=POLICY_STRICT, force=False):
    """
    Validate a requested status change.

    Unknown literals are rejected under every policy. Under the strict policy
    the move must follow the graph unless `force` is set; `force` still
    refuses a no-op move to the current status.
    """
    if not is_valid_status(requested):
        raise InvalidInput(
            "Invalid status",
            details={'validStatuses': list(OrderStatus.ALL)}
        )
    if policy not in POLICIES:
        raise ValueError(f"Unknown transition policy: {policy}")

    if force:
        if requested == current:
            raise InvalidTransition(current, requested)
        return

    if policy == POLICY_RELAXED:
        return

    if not can_transition(current, requested):
        raise InvalidTransition(current, requested)


class NotificationPolicy:
    """Single source for the human-readable notifications sent to vendor rooms."""

    ORDER = 'order'
    PAYMENT = 'payment'
    ISSUE = 'issue'
    VERIFICATION = 'verification'

    STATUS_MESSAGES = {
        OrderStatus.ACCEPTED: "Order has been accepted",
        OrderStatus.REJECTED: "Order has been rejected",
        OrderStatus.PREPARING: "Order is being prepared",
        OrderStatus.READY: "Order is ready for pickup",
        OrderStatus.DELIVERED: "Order has been delivered",
        OrderStatus.COMPLETED: "Order is completed",
        OrderStatus.CANCELLED: "Order has been cancelled",
    }

    # kind -> (type, id suffix, title template, message template)
    EVENTS = {
        'created': (ORDER, 'created', "New Order Received", "New order #{order_id} from {source}"),
        'payment': (PAYMENT, 'payment', "Payment Received", "Payment received for order #{order_id} via {method}"),
        'issue': (ISSUE, 'issue', "Delivery Issue Reported", "Customer reported issue with order #{order_id}"),
        'verified': (VERIFICATION, 'verified', "Order Verified", "Customer verified delivery of order #{order_id}"),
    }

    @classmethod
    def for_status(cls, order_id, old_status, new_status):
        """Notification for a status change, or None when the status is not announced."""
        message = cls.STATUS_MESSAGES.get(new_status)
        if message is None:
            return None
        return cls._payload(
            notification_id=f"order-{order_id}-{new_status}",
            kind=cls.ORDER,
            title=f"Order #{order_id} {new_status.capitalize()}",
            message=message,
            data={
                'order_id': order_id,
                'old_status': old_status,
                'new_status': new_status,
            },
        )

    @classmethod
    def for_event(cls, event, order_id, data=None, **fields):
        kind, suffix, title, template = cls.EVENTS[event]
        return cls._payload(
            notification_id=f"order-{order_id}-{suffix}",
            kind=kind,
            title=title.format(order_id=order_id, **fields),
            message=template.format(order_id=order_id, **fields),
            data={'order_id': order_id, **(data or {})},
        )

    @staticmethod
    def _payload(notification_id, kind, title, message, data):
        now = datetime.utcnow().isoformat() + 'Z'
        return {
            'id': notification_id,
            'type': kind,
            'title': title,
            'message': message,
            'timestamp': now,
            'created_at': now,
            'read': False,
            'data': data,
        }
