from flask import Blueprint, request, jsonify, current_app, redirect

from services.order_service import get_order_service
from services.payment_gateway import get_payment_gateway, CallbackOutcome, RESULT_FAILED
from services.utils import format_money

payment_bp = Blueprint('payment', __name__)


@payment_bp.route('/payment/esewa/initiate', methods=['POST'])
def initiate_esewa_payment():
    data = request.get_json(silent=True) or {}
    gateway = get_payment_gateway()

    order, payment_data = gateway.build_signed_request(data.get('orderId'))
    return jsonify({
        'success': True,
        'paymentUrl': gateway.payment_url,
        'paymentData': payment_data,
        'orderId': order.id,
        'invoiceNo': order.invoice_no,
    }), 200


@payment_bp.route('/payment/esewa/verify', methods=['GET'])
def verify_esewa_payment():
    """Gateway callback. Always answers with a redirect to the client."""
    client_url = current_app.config['CLIENT_URL']
    try:
        outcome = get_payment_gateway().handle_callback(request.args.get('data'))
    except Exception as e:
        current_app.logger.error(f"❌ [eSewa] Error verifying payment: {str(e)}", exc_info=True)
        outcome = CallbackOutcome(RESULT_FAILED)

    current_app.logger.info(f"[eSewa] Callback result: {outcome.result} (order {outcome.order_id})")
    return redirect(outcome.redirect_url(client_url))


@payment_bp.route('/payment/status/<order_id>', methods=['GET'])
def get_payment_status(order_id):
    order = get_order_service().get_order(order_id)
    return jsonify({
        'orderId': order.id,
        'invoiceNo': order.invoice_no,
        'paymentStatus': order.payment_status,
        'paymentMethod': order.payment_method,
        'transactionId': order.transaction_id,
        'totalAmount': format_money(order.total_amount),
    }), 200
