from flask import Blueprint, request, jsonify, current_app

from services.auth import login_required, optional_auth, current_user, ensure_vendor_access
from services.order_service import get_order_service
from services.utils import format_money, isoformat, time_elapsed

order_bp = Blueprint('order', __name__)


def _serialize_items(order):
    return [{
        'id': item.id,
        'name': item.name,
        'price': format_money(item.price),
        'quantity': item.quantity,
    } for item in order.items]


def serialize_vendor_order(order):
    table = order.table
    return {
        'id': order.id,
        'orderId': f"ORD{order.id:03d}",
        'status': order.status,
        'paymentStatus': order.payment_status,
        'paymentMethod': order.payment_method,
        'totalAmount': format_money(order.total_amount),
        'tableName': order.table_name or "Unknown",
        'tableId': table.id if table else None,
        'tableIdentifier': order.table_identifier,
        'qrCode': table.qr_code if table else order.table_identifier,
        'invoiceNo': order.invoice_no,
        'createdAt': isoformat(order.created_at),
        'timeElapsed': time_elapsed(order.created_at),
        'items': _serialize_items(order),
        'customerVerified': order.customer_verified,
        'verificationTimestamp': isoformat(order.verification_timestamp),
        'deliveryIssueReported': order.delivery_issue_reported,
        'issueReportTimestamp': isoformat(order.issue_report_timestamp),
        'issueDescription': order.issue_description,
        'issueResolved': order.issue_resolved,
        'issueResolutionTimestamp': isoformat(order.issue_resolution_timestamp),
        'resolutionMessage': order.resolution_message,
    }


def serialize_customer_order(order):
    vendor = order.vendor
    return {
        'id': order.id,
        'invoice_no': order.invoice_no,
        'status': order.status,
        'payment_status': order.payment_status,
        'payment_method': order.payment_method,
        'total_amount': format_money(order.total_amount),
        'table_name': order.table_name,
        'table_identifier': order.table_identifier,
        'vendor_id': order.vendor_id,
        'vendor_name': vendor.restaurant_name if vendor else None,
        'transaction_id': order.transaction_id,
        'customer_verified': order.customer_verified,
        'delivery_issue_reported': order.delivery_issue_reported,
        'issue_resolved': order.issue_resolved,
        'resolution_message': order.resolution_message,
        'created_at': isoformat(order.created_at),
        'items': _serialize_items(order),
    }


def _json_body():
    return request.get_json(silent=True) or {}


@order_bp.route('/orders', methods=['POST'])
@login_required
def create_order():
    """Staff/vendor places an order on behalf of a table."""
    data = _json_body()
    vendor_id = data.get('vendorId')
    if vendor_id:
        ensure_vendor_access(current_user(), vendor_id)

    order = get_order_service().create_order(
        vendor_id=vendor_id,
        items=data.get('items'),
        table_id=data.get('tableId'),
    )
    table = order.table
    return jsonify({
        'orderId': order.id,
        'tableId': table.id if table else None,
        'tableName': table.name if table else None,
        'invoiceNo': order.invoice_no,
        'message': "Order created successfully",
    }), 201


@order_bp.route('/customer/orders', methods=['POST'])
def create_customer_order():
    data = _json_body()
    order = get_order_service().create_order(
        vendor_id=data.get('vendor_id'),
        items=data.get('items'),
        table_identifier=data.get('table_identifier'),
    )
    table = order.table
    return jsonify({
        'order_id': order.id,
        'order': {
            'id': order.id,
            'status': order.status,
            'total': format_money(order.total_amount),
            'table_name': order.table_name,
            'invoice_no': order.invoice_no,
        },
        'table_id': table.id if table else None,
        'table_name': table.name if table else None,
        'message': "Order created successfully",
    }), 201


@order_bp.route('/customer/orders/<order_id>', methods=['GET'])
def get_customer_order(order_id):
    order = get_order_service().get_customer_order(order_id)
    return jsonify(serialize_customer_order(order)), 200


@order_bp.route('/orders/<order_id>', methods=['GET'])
@optional_auth
def get_order_details(order_id):
    order = get_order_service().get_order_details(order_id, acting_user=current_user())
    return jsonify({'order': serialize_vendor_order(order)}), 200


@order_bp.route('/vendors/<vendor_id>/orders', methods=['GET'])
@login_required
def list_vendor_orders(vendor_id):
    orders = get_order_service().list_vendor_orders(vendor_id, current_user())
    current_app.logger.info(f"[list_vendor_orders] Returning {len(orders)} orders for vendor {vendor_id}")
    return jsonify({
        'orders': [serialize_vendor_order(o) for o in orders],
        'count': len(orders),
    }), 200


@order_bp.route('/orders/<order_id>/status', methods=['PATCH', 'PUT'])
@login_required
def update_order_status(order_id):
    data = _json_body()
    requested = data.get('status')
    if not requested:
        return jsonify({'error': 'Status is required'}), 400

    order, old_status, new_status = get_order_service().update_status(
        order_id, requested, current_user(), force=data.get('force') is True
    )
    return jsonify({
        'message': "Order status updated successfully",
        'orderId': order.id,
        'oldStatus': old_status,
        'newStatus': new_status,
    }), 200


@order_bp.route('/orders/<order_id>/payment', methods=['PATCH', 'PUT'])
@login_required
def update_payment_status(order_id):
    data = _json_body()
    order = get_order_service().update_payment(
        order_id,
        current_user(),
        payment_status=data.get('paymentStatus'),
        payment_method=data.get('paymentMethod'),
        transaction_id=data.get('transactionId'),
    )
    return jsonify({
        'message': "Payment status updated successfully",
        'orderId': order.id,
        'paymentStatus': order.payment_status,
        'paymentMethod': order.payment_method,
        'transactionId': order.transaction_id,
    }), 200


@order_bp.route('/orders/<order_id>/report-issue', methods=['POST'])
def report_delivery_issue(order_id):
    data = _json_body()
    order = get_order_service().report_delivery_issue(order_id, data.get('issueDescription'))
    return jsonify({
        'message': "Issue reported successfully",
        'orderId': order.id,
        'issueReportTimestamp': isoformat(order.issue_report_timestamp),
    }), 200


@order_bp.route('/orders/<order_id>/resolve-issue', methods=['POST'])
@login_required
def resolve_delivery_issue(order_id):
    data = _json_body()
    order = get_order_service().resolve_delivery_issue(order_id, current_user(), data.get('resolutionMessage'))
    return jsonify({
        'message': "Issue resolved successfully",
        'orderId': order.id,
        'issueResolutionTimestamp': isoformat(order.issue_resolution_timestamp),
        'resolutionMessage': order.resolution_message,
    }), 200


@order_bp.route('/orders/<order_id>/verify', methods=['POST'])
def verify_order_delivery(order_id):
    order = get_order_service().verify_delivery(order_id)
    return jsonify({
        'message': "Order verified successfully",
        'orderId': order.id,
        'verificationTimestamp': isoformat(order.verification_timestamp),
    }), 200
