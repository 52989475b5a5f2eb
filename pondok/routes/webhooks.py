import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required, current_user

from pondok.decorators import staff_required
from pondok.errors import ServiceError
from pondok.extensions import csrf
from pondok.forms import WhatsAppSendForm, parse_form
from pondok.services.line_service import LineService, verify_line_signature
from pondok.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__)


# ==========================================
# WHATSAPP
# ==========================================
@webhooks_bp.route('/whatsapp/send', methods=['POST'])
@login_required
@staff_required
def whatsapp_send():
    form = parse_form(WhatsAppSendForm)
    item = NotificationService.send_now(form.phone.data, form.message.data, user_id=current_user.id)
    if item.status != 'SENT':
        return jsonify({'error': 'Pesan gagal dikirim', 'details': item.error, 'notification': item.to_dict()}), 502
    return jsonify({'message': 'Pesan terkirim', 'notification': item.to_dict()})


@webhooks_bp.route('/whatsapp/webhook', methods=['GET'])
def whatsapp_verify():
    mode = request.args.get('hub.mode')
    token = request.args.get('hub.verify_token')
    challenge = request.args.get('hub.challenge', '')
    expected = current_app.config.get('WHATSAPP_VERIFY_TOKEN')

    if mode == 'subscribe' and expected and token == expected:
        logger.info("Webhook WhatsApp terverifikasi")
        return challenge, 200, {'Content-Type': 'text/plain'}
    return jsonify({'error': 'Verifikasi gagal'}), 403


@webhooks_bp.route('/whatsapp/webhook', methods=['POST'])
@csrf.exempt
def whatsapp_webhook():
    payload = request.get_json(silent=True) or {}
    updated = NotificationService.record_statuses(payload)
    return jsonify({'status': 'ok', 'updated': updated})


# ==========================================
# LINE
# ==========================================
@webhooks_bp.route('/webhooks/line', methods=['POST'])
@csrf.exempt
def line_webhook():
    body = request.get_data()
    signature = request.headers.get('X-Line-Signature', '')
    if not verify_line_signature(current_app.config.get('LINE_CHANNEL_SECRET'), body, signature):
        logger.warning("Signature LINE tidak valid dari %s", request.remote_addr)
        raise ServiceError('Signature tidak valid', 401)

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ServiceError('Payload tidak valid', 400)

    replied = LineService.handle_events(payload)
    return jsonify({'status': 'ok', 'replied': replied})
