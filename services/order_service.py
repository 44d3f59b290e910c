# services/order_service.py
"""
Order lifecycle coordinator.

Every write to an order's status and payment fields goes through
``OrderService``. Writes are committed first and only then announced on the
fan-out channel; a failing publish is logged and never turns a committed
change into an error.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from db.extensions import db
from models.menuItem import MenuItem
from models.order import Order, StructuredTable, FreeTextIdentifier
from models.orderItem import OrderItem
from models.user import User
from services.auth import ensure_vendor_access
from services.errors import NotFound, Forbidden, InvalidInput, OrderConflict
from services.fanout import vendor_room, table_room
from services.order_state import (
    OrderStatus, PaymentStatus, PaymentMethod, NotificationPolicy,
    OPEN_STATUSES, PAYMENT_CONFIRMABLE_STATUSES, POLICY_STRICT,
    check_transition, is_terminal,
)
from services.table_service import TableService
from services.utils import to_money, format_money, format_invoice_no, isoformat

logger = logging.getLogger(__name__)

DEFAULT_ISSUE_DESCRIPTION = "Customer reported not receiving order"
DEFAULT_RESOLUTION_MESSAGE = "Issue has been resolved"


def _parse_id(value, label):
    if isinstance(value, bool):
        raise InvalidInput(f"Invalid {label}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"Invalid {label}")


def _parse_quantity(value):
    if value is None:
        return 1
    if isinstance(value, int) and not isinstance(value, bool):
        quantity = value
    elif isinstance(value, str) and value.strip().isdigit():
        quantity = int(value)
    else:
        raise InvalidInput("Quantity must be a whole number of at least 1")
    if quantity < 1:
        raise InvalidInput("Quantity must be a whole number of at least 1")
    return quantity


class OrderService:

    def __init__(self, publisher, policy=POLICY_STRICT):
        self.publisher = publisher
        self.policy = policy

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_order(self, order_id):
        order = db.session.get(Order, _parse_id(order_id, "order ID"))
        if not order:
            raise NotFound("Order not found")
        return order

    def get_order_details(self, order_id, acting_user=None):
        order = self.get_order(order_id)
        if acting_user is not None:
            ensure_vendor_access(acting_user, order.vendor_id)
        return order

    def get_customer_order(self, order_id):
        """Public read used by the order tracking page. No scope check."""
        return self.get_order(order_id)

    def get_order_by_invoice(self, invoice_no):
        if not invoice_no:
            return None
        return Order.query.filter_by(invoice_no=invoice_no).first()

    def list_vendor_orders(self, vendor_id, acting_user):
        vendor_id = _parse_id(vendor_id, "vendor ID")
        ensure_vendor_access(acting_user, vendor_id)
        self._get_vendor(vendor_id)
        return Order.query.filter_by(vendor_id=vendor_id)\
            .order_by(Order.created_at.desc(), Order.id.desc())\
            .all()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_order(self, vendor_id, items, table_id=None, table_identifier=None):
        """
        Place a new order.

        The total is computed from the current menu prices; any client-side
        total is ignored. Items that do not resolve to an available menu item
        of this vendor are skipped, and at least one must resolve.
        """
        if not vendor_id or not items:
            raise InvalidInput("Vendor ID and order items are required")
        if not isinstance(items, list):
            raise InvalidInput("Order items must be a list")

        vendor = self._get_vendor(_parse_id(vendor_id, "vendor ID"))

        table = None
        if table_id:
            table = TableService.get_vendor_table(vendor.id, _parse_id(table_id, "table ID"))
            table_identifier = table.name
        elif table_identifier:
            table_identifier = str(table_identifier)
            table = TableService.find_by_identifier(vendor.id, table_identifier)
            logger.info(f"[create_order] Table lookup for '{table_identifier}': {table.name if table else 'not found'}")

        resolved = self._resolve_items(vendor.id, items)
        if not resolved:
            raise InvalidInput("No valid menu items found")

        total = sum((menu_item.price * quantity for menu_item, quantity in resolved), Decimal('0'))

        order = Order(
            vendor_id=vendor.id,
            table_id=table.id if table else None,
            table_identifier=table_identifier or None,
            status=OrderStatus.PENDING,
            total_amount=to_money(total),
            # unique placeholder until the id is known
            invoice_no=f"PENDING-{uuid.uuid4().hex}",
            payment_status=PaymentStatus.PENDING,
            payment_method=PaymentMethod.CASH,
        )
        try:
            db.session.add(order)
            db.session.flush()
            order.invoice_no = format_invoice_no(order.id)
            for menu_item, quantity in resolved:
                db.session.add(OrderItem(
                    order_id=order.id,
                    menu_item_id=menu_item.id,
                    quantity=quantity,
                    price=menu_item.price,
                ))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"✅ Order {order.id} ({order.invoice_no}) created for vendor {vendor.id}, total {order.total_amount}")
        self._publish_created(order)
        return order

    def _resolve_items(self, vendor_id, items):
        resolved = []
        for item in items:
            if not isinstance(item, dict):
                raise InvalidInput("Each order item must be an object with an id")
            quantity = _parse_quantity(item.get('quantity'))
            menu_item_id = item.get('id')
            if menu_item_id is None or isinstance(menu_item_id, bool):
                continue
            try:
                menu_item_id = int(menu_item_id)
            except (TypeError, ValueError):
                continue
            menu_item = MenuItem.query.filter_by(
                id=menu_item_id, vendor_id=vendor_id, is_available=True
            ).first()
            if menu_item is None:
                logger.info(f"[create_order] Skipping unknown or unavailable menu item {menu_item_id}")
                continue
            resolved.append((menu_item, quantity))
        return resolved

    def _get_vendor(self, vendor_id):
        vendor = db.session.get(User, vendor_id)
        if not vendor or vendor.role == User.ROLE_STAFF:
            raise NotFound("Vendor not found")
        return vendor

    # ------------------------------------------------------------------
    # Status and payment
    # ------------------------------------------------------------------

    def update_status(self, order_id, requested_status, acting_user, force=False):
        """Move an order to `requested_status`. Returns (order, old_status, new_status)."""
        order = self.get_order(order_id)
        ensure_vendor_access(acting_user, order.vendor_id)
        if force and acting_user.role == User.ROLE_STAFF:
            raise Forbidden("Only the vendor or an admin can force a status change")

        old_status = order.status
        check_transition(old_status, requested_status, policy=self.policy, force=force)

        order.status = requested_status
        self._commit(order)

        if force:
            logger.warning(f"⚠️  Order {order.id} forced from {old_status} to {requested_status} by user {acting_user.id}")
        else:
            logger.info(f"Order {order.id} status {old_status} -> {requested_status} by user {acting_user.id}")

        self._publish_status_change(order, old_status, requested_status)
        return order, old_status, requested_status

    def update_payment(self, order_id, acting_user, payment_status=None, payment_method=None, transaction_id=None):
        order = self.get_order(order_id)
        ensure_vendor_access(acting_user, order.vendor_id)

        if payment_status and payment_status not in PaymentStatus.ALL:
            raise InvalidInput("Invalid payment status", details={'validPaymentStatuses': list(PaymentStatus.ALL)})
        if payment_method and payment_method not in PaymentMethod.ALL:
            raise InvalidInput("Invalid payment method", details={'validPaymentMethods': list(PaymentMethod.ALL)})

        if payment_status:
            order.payment_status = payment_status
        if payment_method:
            order.payment_method = payment_method
        if transaction_id:
            order.transaction_id = str(transaction_id)

        self._commit(order)
        logger.info(f"Order {order.id} payment updated: {order.payment_status}/{order.payment_method}")
        return order

    def confirm_payment(self, order, transaction_code):
        """
        Record a verified gateway payment.

        Returns False when nothing was written: terminal and already-paid
        orders are accepted as no-ops.
        """
        if is_terminal(order.status):
            logger.info(f"Payment callback for order {order.id} in terminal status {order.status}, ignoring")
            return False
        if order.payment_status == PaymentStatus.PAID:
            if order.transaction_id == transaction_code:
                logger.info(f"Duplicate payment callback for order {order.id} ({transaction_code}), ignoring")
            else:
                logger.warning(
                    f"⚠️  Payment callback {transaction_code} for order {order.id} already paid "
                    f"via {order.payment_method} ({order.transaction_id}), ignoring"
                )
            return False

        old_status = order.status
        advance = old_status in PAYMENT_CONFIRMABLE_STATUSES

        order.payment_status = PaymentStatus.PAID
        order.payment_method = PaymentMethod.ESEWA
        order.transaction_id = transaction_code
        if advance:
            order.status = OrderStatus.CONFIRMED
        self._commit(order)

        logger.info(f"✅ Order {order.id} payment verified. Transaction: {transaction_code}")

        if advance:
            self._publish_status_change(order, old_status, OrderStatus.CONFIRMED, announce=False)
        self._publish(vendor_room(order.vendor_id), 'notification', NotificationPolicy.for_event(
            'payment', order.id,
            method=PaymentMethod.ESEWA,
            data={
                'transaction_code': transaction_code,
                'payment_method': PaymentMethod.ESEWA,
                'amount': format_money(order.total_amount),
            },
        ))
        if advance:
            self._publish(vendor_room(order.vendor_id), 'order-created', {
                'orderId': order.id,
                'status': order.status,
                'totalAmount': format_money(order.total_amount),
                'tableIdentifier': order.table_identifier,
                'tableName': order.table_name,
                'invoiceNo': order.invoice_no,
            })
        return True

    def mark_payment_pending(self, order):
        if is_terminal(order.status) or order.payment_status == PaymentStatus.PAID:
            return False
        if order.payment_status == PaymentStatus.PENDING:
            return False
        order.payment_status = PaymentStatus.PENDING
        self._commit(order)
        logger.info(f"Payment pending for order {order.id}")
        return True

    # ------------------------------------------------------------------
    # Delivery follow-up
    # ------------------------------------------------------------------

    def report_delivery_issue(self, order_id, description=None):
        order = self.get_order(order_id)
        description = description or DEFAULT_ISSUE_DESCRIPTION

        order.delivery_issue_reported = True
        order.issue_report_timestamp = datetime.utcnow()
        order.issue_description = description
        self._commit(order)

        logger.info(f"⚠️  Delivery issue reported for order {order.id}")
        room = vendor_room(order.vendor_id)
        self._publish(room, 'delivery-issue', {
            'orderId': order.id,
            'issueDescription': description,
            'issueReportTimestamp': isoformat(order.issue_report_timestamp),
        })
        self._publish(room, 'notification', NotificationPolicy.for_event(
            'issue', order.id, data={'issue_description': description},
        ))
        return order

    def resolve_delivery_issue(self, order_id, acting_user, message=None):
        order = self.get_order(order_id)
        ensure_vendor_access(acting_user, order.vendor_id)

        order.issue_resolved = True
        order.issue_resolution_timestamp = datetime.utcnow()
        order.resolution_message = message or DEFAULT_RESOLUTION_MESSAGE
        self._commit(order)

        logger.info(f"Delivery issue resolved for order {order.id} by user {acting_user.id}")
        return order

    def verify_delivery(self, order_id):
        order = self.get_order(order_id)

        order.customer_verified = True
        order.verification_timestamp = datetime.utcnow()
        self._commit(order)

        logger.info(f"✅ Customer verified delivery of order {order.id}")
        room = vendor_room(order.vendor_id)
        self._publish(room, 'order-verified', {
            'orderId': order.id,
            'verificationTimestamp': isoformat(order.verification_timestamp),
        })
        self._publish(room, 'notification', NotificationPolicy.for_event('verified', order.id))
        return order

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _commit(self, order):
        order_id = order.id
        try:
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            logger.warning(f"⚠️  Concurrent update detected on order {order_id}")
            raise OrderConflict(
                "Order was modified by another request, please retry",
                details={'orderId': order_id},
            )
        except Exception:
            db.session.rollback()
            raise

    def _table_rooms_for(self, order):
        """QR room first, plus the room of the identifier the order was placed with when it differs."""
        ref = order.table_ref
        if isinstance(ref, StructuredTable):
            rooms = [table_room(order.vendor_id, ref.qr_code)]
            if order.table_identifier and order.table_identifier != ref.qr_code:
                rooms.append(table_room(order.vendor_id, order.table_identifier))
            return rooms
        if isinstance(ref, FreeTextIdentifier):
            return [table_room(order.vendor_id, ref.identifier)]
        return []

    def _publish(self, room, event, payload):
        if self.publisher is None:
            return
        try:
            self.publisher.publish(room, event, payload)
        except Exception as e:
            logger.error(f"❌ Failed to publish {event} to {room}: {str(e)}", exc_info=True)

    def _publish_created(self, order):
        room = vendor_room(order.vendor_id)
        ref = order.table_ref
        table_name = ref.name if isinstance(ref, StructuredTable) else None

        self._publish(room, 'order-created', {
            'orderId': order.id,
            'status': order.status,
            'totalAmount': format_money(order.total_amount),
            'tableIdentifier': order.table_name,
            'tableName': table_name,
            'invoiceNo': order.invoice_no,
        })
        self._publish(room, 'notification', NotificationPolicy.for_event(
            'created', order.id,
            source=table_name or "customer",
            data={
                'table_name': table_name,
                'total_amount': format_money(order.total_amount),
                'status': order.status,
                'items': [
                    {'name': item.name, 'quantity': item.quantity, 'price': format_money(item.price)}
                    for item in order.items
                ],
            },
        ))

        for t_room in self._table_rooms_for(order):
            self._publish(t_room, 'order-status-update', {'orderId': order.id, 'status': order.status})
            if isinstance(ref, StructuredTable):
                self._publish(t_room, 'table-status-update', {
                    'tableId': ref.table_id,
                    'tableIdentifier': ref.qr_code,
                    'hasActiveOrder': True,
                })

    def _publish_status_change(self, order, old_status, new_status, announce=True):
        room = vendor_room(order.vendor_id)
        self._publish(room, 'order-status-changed', {
            'orderId': order.id,
            'oldStatus': old_status,
            'newStatus': new_status,
        })

        if announce:
            notification = NotificationPolicy.for_status(order.id, old_status, new_status)
            if notification:
                self._publish(room, 'notification', notification)

        t_rooms = self._table_rooms_for(order)
        for t_room in t_rooms:
            self._publish(t_room, 'order-status-update', {'orderId': order.id, 'status': new_status})

        ref = order.table_ref
        if isinstance(ref, StructuredTable) and (old_status in OPEN_STATUSES) != (new_status in OPEN_STATUSES):
            try:
                has_active = TableService.has_active_order(ref.table_id)
            except Exception as e:
                logger.error(f"❌ Could not read occupancy of table {ref.table_id}: {str(e)}")
                return
            for t_room in t_rooms:
                self._publish(t_room, 'table-status-update', {
                    'tableId': ref.table_id,
                    'tableIdentifier': ref.qr_code,
                    'hasActiveOrder': has_active,
                })


def init_order_service(app, publisher):
    service = OrderService(publisher, policy=app.config.get('ORDER_TRANSITION_POLICY', POLICY_STRICT))
    app.extensions['order_service'] = service
    return service


def get_order_service():
    return current_app.extensions['order_service']
