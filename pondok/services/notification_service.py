import logging
from datetime import datetime

import requests
from flask import current_app

from pondok.extensions import db
from pondok.models import NotificationQueue
from pondok.utils.phone import normalize_phone

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    pass


class WhatsAppClient:
    """Client WhatsApp Cloud API (graph.facebook.com)."""

    def __init__(self, api_url, token, phone_number_id, timeout=10):
        self.api_url = api_url.rstrip('/')
        self.token = token
        self.phone_number_id = phone_number_id
        self.timeout = timeout

    @classmethod
    def from_config(cls, config=None):
        config = config or current_app.config
        return cls(
            config.get('WHATSAPP_API_URL', 'https://graph.facebook.com/v18.0'),
            config.get('WHATSAPP_TOKEN', ''),
            config.get('WHATSAPP_PHONE_NUMBER_ID', ''),
        )

    @property
    def is_configured(self):
        return bool(self.token and self.phone_number_id)

    def send_text(self, phone, message):
        """Kirim pesan teks, return message id dari WhatsApp."""
        if not self.is_configured:
            raise NotificationError('WhatsApp belum dikonfigurasi')

        to = normalize_phone(phone)
        if not to:
            raise NotificationError('Nomor WhatsApp tidak valid')

        payload = {
            'messaging_product': 'whatsapp',
            'to': to,
            'type': 'text',
            'text': {'body': message},
        }
        try:
            response = requests.post(
                f'{self.api_url}/{self.phone_number_id}/messages',
                json=payload,
                headers={'Authorization': f'Bearer {self.token}'},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise NotificationError(f'Gagal mengirim WhatsApp: {e}') from e

        messages = response.json().get('messages') or [{}]
        return messages[0].get('id')


class NotificationService:
    @staticmethod
    def queue(phone, message, user_id=None, channel='WHATSAPP'):
        """Masukkan pesan ke antrian (commit mengikuti transaksi pemanggil)."""
        if not phone:
            return None
        item = NotificationQueue(
            user_id=user_id,
            channel=channel,
            target_contact=normalize_phone(phone),
            message=message,
            status='PENDING',
        )
        db.session.add(item)
        return item

    @staticmethod
    def queue_for_student(student, message):
        parent = student.parent
        phone = (parent.phone if parent else None) or student.father_phone or student.mother_phone
        user_id = parent.user_id if parent else None
        return NotificationService.queue(phone, message, user_id=user_id)

    @staticmethod
    def send_now(phone, message, user_id=None):
        item = NotificationQueue(
            user_id=user_id,
            target_contact=normalize_phone(phone),
            message=message,
            status='PENDING',
        )
        db.session.add(item)
        NotificationService._deliver(WhatsAppClient.from_config(), item)
        db.session.commit()
        return item

    @staticmethod
    def send_pending(limit=50):
        client = WhatsAppClient.from_config()
        if not client.is_configured:
            logger.warning("WhatsApp belum dikonfigurasi, antrian tidak dikirim")
            return {'sent': 0, 'failed': 0}

        items = NotificationQueue.query.filter_by(status='PENDING', channel='WHATSAPP') \
            .order_by(NotificationQueue.id).limit(limit).all()

        result = {'sent': 0, 'failed': 0}
        for item in items:
            if NotificationService._deliver(client, item):
                result['sent'] += 1
            else:
                result['failed'] += 1
        db.session.commit()
        logger.info("Antrian WhatsApp diproses: %s", result)
        return result

    @staticmethod
    def _deliver(client, item):
        try:
            item.external_id = client.send_text(item.target_contact, item.message)
            item.status = 'SENT'
            item.sent_at = datetime.utcnow()
            item.error = None
            return True
        except NotificationError as e:
            logger.warning("Pesan %s gagal dikirim: %s", item.id, e)
            item.status = 'FAILED'
            item.error = str(e)
            return False

    @staticmethod
    def record_statuses(payload):
        """Simpan status delivery dari webhook WhatsApp. Return jumlah yang diperbarui."""
        updated = 0
        for entry in payload.get('entry') or []:
            for change in entry.get('changes') or []:
                value = change.get('value') or {}
                for status in value.get('statuses') or []:
                    if not status.get('id'):
                        continue
                    item = NotificationQueue.query.filter_by(external_id=status['id']).first()
                    if not item:
                        continue
                    item.status = (status.get('status') or item.status).upper()
                    errors = status.get('errors') or []
                    if errors:
                        item.error = errors[0].get('title')
                    updated += 1
        if updated:
            db.session.commit()
        return updated
