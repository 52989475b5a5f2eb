import base64
import hashlib
import hmac
import logging

import requests
from flask import current_app

from pondok.models import Student, Bill
from pondok.services.billing_service import OPEN_STATUSES, format_rupiah

logger = logging.getLogger(__name__)

LINE_REPLY_URL = 'https://api.line.me/v2/bot/message/reply'
MAX_REPLY_MESSAGES = 5

HELP_TEXT = (
    "Perintah yang tersedia:\n"
    "- tagihan <NIS> : cek tagihan yang belum lunas\n"
    "- hafalan <NIS> : cek perkembangan hafalan\n"
    "- bantuan : tampilkan pesan ini"
)


def line_signature(channel_secret, body):
    digest = hmac.new(channel_secret.encode('utf-8'), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode('utf-8')


def verify_line_signature(channel_secret, body, signature):
    if not channel_secret or not signature:
        return False
    return hmac.compare_digest(line_signature(channel_secret, body), signature)


class LineService:
    @staticmethod
    def reply(reply_token, texts):
        token = current_app.config.get('LINE_CHANNEL_ACCESS_TOKEN')
        if not token or not reply_token:
            logger.warning("LINE belum dikonfigurasi, balasan tidak dikirim")
            return False

        messages = [{'type': 'text', 'text': text[:5000]} for text in texts[:MAX_REPLY_MESSAGES]]
        try:
            response = requests.post(
                LINE_REPLY_URL,
                json={'replyToken': reply_token, 'messages': messages},
                headers={'Authorization': f'Bearer {token}'},
                timeout=10,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error("Gagal membalas pesan LINE: %s", e)
            return False
        return True

    @staticmethod
    def bills_text(nis):
        student = Student.query.filter_by(nis=nis).first()
        if not student:
            return f'Santri dengan NIS {nis} tidak ditemukan.'

        bills = Bill.query.filter(Bill.student_id == student.id, Bill.status.in_(OPEN_STATUSES)) \
            .order_by(Bill.due_date).all()
        if not bills:
            return f'Alhamdulillah, tidak ada tagihan tertunggak untuk {student.full_name}.'

        lines = [f'Tagihan {student.full_name} ({student.nis}):']
        for bill in bills:
            due = bill.due_date.strftime('%d-%m-%Y') if bill.due_date else '-'
            lines.append(f'- {bill.bill_type.name} {bill.period}: {format_rupiah(bill.remaining_amount)} (jatuh tempo {due})')
        lines.append(f'Total: {format_rupiah(sum(b.remaining_amount for b in bills))}')
        return '\n'.join(lines)

    @staticmethod
    def hafalan_text(nis):
        student = Student.query.filter_by(nis=nis).first()
        if not student:
            return f'Santri dengan NIS {nis} tidak ditemukan.'

        progress = student.hafalan_progress
        if not progress:
            return f'Belum ada data hafalan untuk {student.full_name}.'
        return (
            f'Hafalan {student.full_name} ({student.nis}):\n'
            f'- Level: {progress.level.value}\n'
            f'- Surat selesai: {progress.total_surah}\n'
            f'- Total ayat: {progress.total_ayat}\n'
            f'- Progres keseluruhan: {progress.overall_progress}%\n'
            f'- Progres Juz 30: {progress.juz30_progress}%'
        )

    @staticmethod
    def answer(text):
        parts = (text or '').strip().split()
        if not parts:
            return HELP_TEXT
        command = parts[0].lower()
        if command in ('bantuan', 'help'):
            return HELP_TEXT
        if command in ('tagihan', 'hafalan'):
            if len(parts) < 2:
                return f'Format: {command} <NIS>'
            nis = parts[1].upper()
            return LineService.bills_text(nis) if command == 'tagihan' else LineService.hafalan_text(nis)
        return 'Perintah tidak dikenali.\n\n' + HELP_TEXT

    @staticmethod
    def handle_events(payload):
        """Proses event webhook LINE. Return jumlah event yang dibalas."""
        replied = 0
        for event in payload.get('events') or []:
            try:
                if event.get('type') == 'message' and (event.get('message') or {}).get('type') == 'text':
                    text = LineService.answer(event['message'].get('text'))
                elif event.get('type') == 'follow':
                    text = 'Assalamualaikum, terima kasih telah menambahkan akun pondok.\n\n' + HELP_TEXT
                else:
                    continue
                if LineService.reply(event.get('replyToken'), [text]):
                    replied += 1
            except Exception:
                logger.exception("Gagal memproses event LINE %s", event.get('type'))
        return replied
