# services/payment_gateway.py
"""
eSewa ePay v2 adapter.

Outgoing requests are signed with HMAC-SHA256 over
``total_amount=..,transaction_uuid=..,product_code=..`` and base64 encoded.
The gateway calls back with a base64 JSON blob in the ``data`` query
parameter, signed the same way over the fields it lists in
``signed_field_names``. A callback only ever reaches the order through
``OrderService.confirm_payment`` / ``mark_payment_pending``.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from urllib.parse import urlencode

from flask import current_app

from services.errors import InvalidInput, OrderConflict, VerificationError
from services.order_state import PaymentStatus, is_terminal
from services.utils import format_money, to_money

logger = logging.getLogger(__name__)

SIGNED_FIELD_NAMES = "total_amount,transaction_uuid,product_code"
AMOUNT_TOLERANCE = Decimal('0.01')

STATUS_COMPLETE = 'COMPLETE'
STATUS_PENDING = 'PENDING'

RESULT_SUCCESS = 'success'
RESULT_PENDING = 'pending'
RESULT_FAILED = 'failed'

REQUIRED_FIELDS = ('transaction_uuid', 'status', 'total_amount')


@dataclass
class VerifiedPayment:
    order: object
    status: str
    transaction_code: str
    total_amount: Decimal


@dataclass
class CallbackOutcome:
    result: str
    order_id: int = None
    invoice_no: str = None

    def redirect_url(self, client_url):
        """Where the customer's browser goes next. Failures never say why."""
        params = {'status': self.result}
        if self.result == RESULT_SUCCESS:
            params['orderId'] = self.order_id
            params['invoice_no'] = self.invoice_no
        elif self.result == RESULT_PENDING:
            params['invoice_no'] = self.invoice_no
        return f"{client_url.rstrip('/')}/payment-result?{urlencode(params)}"


def _decode_data(data_param):
    # query strings sometimes turn '+' into ' '
    raw = data_param.replace(' ', '+').strip().replace('-', '+').replace('_', '/')
    raw += '=' * (-len(raw) % 4)
    return base64.b64decode(raw, validate=True)


def _field_value(value):
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _parse_amount(value):
    try:
        return Decimal(_field_value(value).replace(',', ''))
    except InvalidOperation:
        return None


class EsewaGateway:

    def __init__(self, secret_key, product_code, payment_url, success_url, failure_url, order_service):
        self.secret_key = secret_key
        self.product_code = product_code
        self.payment_url = payment_url
        self.success_url = success_url
        self.failure_url = failure_url
        self.order_service = order_service

    @classmethod
    def from_config(cls, config, order_service):
        return cls(
            secret_key=config['ESEWA_SECRET_KEY'],
            product_code=config['ESEWA_PRODUCT_CODE'],
            payment_url=config['ESEWA_PAYMENT_URL'],
            success_url=config['ESEWA_SUCCESS_URL'],
            failure_url=config['ESEWA_FAILURE_URL'],
            order_service=order_service,
        )

    def sign(self, message):
        digest = hmac.new(self.secret_key.encode('utf-8'), message.encode('utf-8'), hashlib.sha256).digest()
        return base64.b64encode(digest).decode('ascii')

    def sign_fields(self, data, signed_field_names):
        message = ','.join(
            f"{field}={_field_value(data.get(field))}"
            for field in signed_field_names.split(',')
        )
        return self.sign(message)

    def build_signed_request(self, order_id):
        if not order_id:
            raise InvalidInput("Order ID is required")
        order = self.order_service.get_order(order_id)

        if is_terminal(order.status):
            raise InvalidInput("Order can no longer be paid", details={'status': order.status})
        if order.payment_status == PaymentStatus.PAID:
            raise InvalidInput("Order is already paid", details={'invoiceNo': order.invoice_no})

        total_amount = format_money(order.total_amount)
        payment_data = {
            'amount': total_amount,
            'tax_amount': "0",
            'total_amount': total_amount,
            'transaction_uuid': order.invoice_no,
            'product_code': self.product_code,
            'product_service_charge': "0",
            'product_delivery_charge': "0",
            'success_url': self.success_url,
            'failure_url': self.failure_url,
            'signed_field_names': SIGNED_FIELD_NAMES,
            'order_id': order.id,
        }
        payment_data['signature'] = self.sign_fields(payment_data, SIGNED_FIELD_NAMES)

        logger.info(f"💳 eSewa payment initiated for order {order.id} ({order.invoice_no}), amount {total_amount}")
        return order, payment_data

    def verify_callback(self, data_param):
        """
        Decode and authenticate a callback.

        Checks run in a fixed order: decode, JSON, required fields, signature,
        order lookup, gateway status and, for completed payments, the amount.
        """
        if not data_param:
            raise VerificationError(VerificationError.MISSING_DATA)

        try:
            decoded = _decode_data(data_param)
        except (binascii.Error, ValueError):
            raise VerificationError(VerificationError.DECODE_ERROR)

        try:
            payment_data = json.loads(decoded.decode('utf-8'))
        except (UnicodeDecodeError, ValueError):
            raise VerificationError(VerificationError.DECODE_ERROR)
        if not isinstance(payment_data, dict):
            raise VerificationError(VerificationError.DECODE_ERROR)

        if any(payment_data.get(field) in (None, '') for field in REQUIRED_FIELDS):
            raise VerificationError(VerificationError.MISSING_DATA)

        invoice_no = str(payment_data['transaction_uuid'])
        received_signature = payment_data.get('signature')
        signed_field_names = payment_data.get('signed_field_names')
        if not received_signature or not signed_field_names:
            logger.warning(f"⚠️  eSewa callback for {invoice_no} carried no signature")
            raise VerificationError(VerificationError.BAD_SIGNATURE, invoice_no)

        expected = self.sign_fields(payment_data, str(signed_field_names))
        if not hmac.compare_digest(expected.encode('ascii'), str(received_signature).encode('utf-8')):
            logger.warning(f"⚠️  eSewa signature verification failed for {invoice_no}")
            raise VerificationError(VerificationError.BAD_SIGNATURE, invoice_no)

        order = self.order_service.get_order_by_invoice(invoice_no)
        if order is None:
            logger.error(f"❌ eSewa callback for unknown invoice {invoice_no}")
            raise VerificationError(VerificationError.UNKNOWN_ORDER, invoice_no)

        status = str(payment_data['status'])
        if status not in (STATUS_COMPLETE, STATUS_PENDING):
            logger.warning(f"⚠️  eSewa payment for {invoice_no} failed with status {status}")
            raise VerificationError(VerificationError.PAYMENT_FAILED, invoice_no)

        amount = _parse_amount(payment_data['total_amount'])
        if status == STATUS_COMPLETE:
            if amount is None or abs(amount - to_money(order.total_amount)) > AMOUNT_TOLERANCE:
                logger.warning(f"⚠️  eSewa amount mismatch for {invoice_no}: expected {order.total_amount}, got {payment_data['total_amount']}")
                raise VerificationError(VerificationError.AMOUNT_MISMATCH, invoice_no)

        return VerifiedPayment(
            order=order,
            status=status,
            transaction_code=_field_value(payment_data.get('transaction_code')) or None,
            total_amount=amount,
        )

    def handle_callback(self, data_param):
        try:
            payment = self.verify_callback(data_param)
        except VerificationError as e:
            logger.info(f"eSewa callback rejected: {e.reason} (invoice {e.invoice_no})")
            return CallbackOutcome(RESULT_FAILED)

        order = payment.order
        if payment.status == STATUS_PENDING:
            self.order_service.mark_payment_pending(order)
            return CallbackOutcome(RESULT_PENDING, order.id, order.invoice_no)

        try:
            self.order_service.confirm_payment(order, payment.transaction_code)
        except OrderConflict:
            # one retry against the fresh row
            order = self.order_service.get_order(order.id)
            logger.info(f"🔁 Retrying payment confirmation for order {order.id}")
            self.order_service.confirm_payment(order, payment.transaction_code)

        return CallbackOutcome(RESULT_SUCCESS, order.id, order.invoice_no)


def init_payment_gateway(app, order_service):
    gateway = EsewaGateway.from_config(app.config, order_service)
    app.extensions['payment_gateway'] = gateway
    return gateway


def get_payment_gateway():
    return current_app.extensions['payment_gateway']
