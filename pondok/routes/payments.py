import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from pondok.errors import NotFound, ServiceError, ValidationFailed
from pondok.extensions import csrf
from pondok.forms import (
    CancelPaymentForm, CreateTransactionForm, MidtransNotificationForm, parse_form, request_payload,
)
from pondok.models import GatewayPayment, PaymentPurpose, UserRole
from pondok.services.payment_gateway import PaymentGatewayService

logger = logging.getLogger(__name__)

payments_bp = Blueprint('payments', __name__)


def client_ip():
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.remote_addr or 'unknown'


def require_bill_access():
    """Pembayaran tagihan hanya untuk wali/staff yang sudah login."""
    if not current_user.is_authenticated:
        raise ServiceError('Silakan login terlebih dahulu', 401)
    if not current_user.has_role(UserRole.ADMIN, UserRole.TU, UserRole.WALI_MURID):
        raise ServiceError('Akses ditolak', 403)


@payments_bp.route('/create-transaction', methods=['POST'])
def create_transaction():
    form = parse_form(CreateTransactionForm)
    if form.purpose.data == 'BILL':
        require_bill_access()

    payment = PaymentGatewayService.create_transaction(
        form.purpose.data, form.reference_id.data, amount=form.amount.data,
    )
    return jsonify({
        'message': 'Transaksi berhasil dibuat',
        'token': payment.snap_token,
        'redirect_url': payment.redirect_url,
        'payment': payment.to_dict(),
    }), 201


@payments_bp.route('/status/<external_id>')
def payment_status(external_id):
    payment = GatewayPayment.query.filter_by(external_id=external_id).first()
    if not payment:
        raise NotFound('Pembayaran tidak ditemukan')
    return jsonify({'payment': payment.to_dict()})


@payments_bp.route('/cancel/<payment_ref>', methods=['POST'])
def cancel_payment(payment_ref):
    form = parse_form(CancelPaymentForm)
    payment = PaymentGatewayService.find(payment_ref)
    if payment.purpose == PaymentPurpose.BILL:
        require_bill_access()

    cancelled_by = current_user.username if current_user.is_authenticated else None
    payment, gateway = PaymentGatewayService.cancel(payment, reason=form.reason.data or None, cancelled_by=cancelled_by)
    return jsonify({
        'message': 'Pembayaran dibatalkan',
        'payment': payment.to_dict(),
        'gateway': gateway,
    })


# ==========================================
# WEBHOOK MIDTRANS
# ==========================================
@payments_bp.route('/notification', methods=['POST'])
@csrf.exempt
def notification():
    limiter = current_app.extensions['webhook_limiter']
    allowed, remaining, reset_at = limiter.check(client_ip())
    headers = {
        'X-RateLimit-Remaining': str(remaining),
        'X-RateLimit-Reset': str(int(reset_at)),
    }
    if not allowed:
        logger.warning("Rate limit webhook terlampaui untuk %s", client_ip())
        return jsonify({'error': 'Terlalu banyak permintaan'}), 429, headers

    payload = request_payload()
    try:
        parse_form(MidtransNotificationForm, payload)
    except ValidationFailed as e:
        logger.warning("Payload notifikasi tidak valid: %s", e.details)
        return jsonify(e.to_dict()), 400, headers

    result = PaymentGatewayService.handle_notification(
        payload,
        current_app.config.get('MIDTRANS_SERVER_KEY'),
        current_app.config.get('MIDTRANS_NOTIFICATION_MAX_AGE_HOURS', 24),
    )
    return jsonify(result), 200, headers
