import hashlib
import hmac
import logging
import time
from datetime import datetime, timedelta

import requests
from flask import current_app

from pondok.errors import ServiceError, ValidationFailed, NotFound, Conflict
from pondok.extensions import db
from pondok.models import (
    GatewayPayment, GatewayStatus, PaymentPurpose, Registration,
    RegistrationPaymentStatus, Bill, BillStatus, BillPayment, PaymentMethod,
    VerificationStatus, Donation,
)
from pondok.services.billing_service import BillingService
from pondok.services.donation_service import DonationService

logger = logging.getLogger(__name__)

SNAP_URLS = {
    True: 'https://app.midtrans.com/snap/v1',
    False: 'https://app.sandbox.midtrans.com/snap/v1',
}
CORE_URLS = {
    True: 'https://api.midtrans.com/v2',
    False: 'https://api.sandbox.midtrans.com/v2',
}

STATUS_MAP = {
    'capture': GatewayStatus.SUCCESS,
    'settlement': GatewayStatus.SUCCESS,
    'pending': GatewayStatus.PENDING,
    'deny': GatewayStatus.FAILED,
    'cancel': GatewayStatus.FAILED,
    'expire': GatewayStatus.FAILED,
    'failure': GatewayStatus.FAILED,
}

PAYMENT_TYPE_METHODS = {
    'bank_transfer': PaymentMethod.VIRTUAL_ACCOUNT,
    'echannel': PaymentMethod.VIRTUAL_ACCOUNT,
    'permata': PaymentMethod.VIRTUAL_ACCOUNT,
    'qris': PaymentMethod.QRIS,
    'gopay': PaymentMethod.QRIS,
    'shopeepay': PaymentMethod.QRIS,
    'credit_card': PaymentMethod.CARD,
}

# Waktu transaksi Midtrans dalam WIB (UTC+7)
WIB_OFFSET = timedelta(hours=7)
SENSITIVE_FIELDS = ('signature_key', 'masked_card', 'approval_code', 'bill_key')


def notification_signature(order_id, status_code, gross_amount, server_key):
    raw = f'{order_id}{status_code}{gross_amount}{server_key}'
    return hashlib.sha512(raw.encode('utf-8')).hexdigest()


def verify_signature(payload, server_key):
    if not server_key:
        return False
    expected = notification_signature(
        payload.get('order_id', ''),
        payload.get('status_code', ''),
        payload.get('gross_amount', ''),
        server_key,
    )
    return hmac.compare_digest(expected, str(payload.get('signature_key', '')))


def parse_transaction_time(value):
    """'2024-12-01 10:00:00' (WIB) -> datetime UTC naive."""
    return datetime.strptime(value, '%Y-%m-%d %H:%M:%S') - WIB_OFFSET


def is_notification_fresh(transaction_time, max_age_hours, now=None):
    if not transaction_time:
        return True
    try:
        sent_at = parse_transaction_time(transaction_time)
    except ValueError:
        return False
    now = now or datetime.utcnow()
    return now - sent_at <= timedelta(hours=max_age_hours)


def mask_sensitive(payload):
    masked = dict(payload)
    for field in SENSITIVE_FIELDS:
        if masked.get(field):
            value = str(masked[field])
            masked[field] = value[:4] + '*' * max(0, len(value) - 4)
    return masked


def extract_va_number(payload):
    va_numbers = payload.get('va_numbers') or []
    if va_numbers and isinstance(va_numbers, list):
        return va_numbers[0].get('va_number')
    return payload.get('permata_va_number') or payload.get('bca_va_number')


class MidtransClient:
    def __init__(self, server_key, is_production=False, timeout=15):
        self.server_key = server_key
        self.snap_url = SNAP_URLS[bool(is_production)]
        self.core_url = CORE_URLS[bool(is_production)]
        self.timeout = timeout

    @classmethod
    def from_config(cls, config=None):
        config = config or current_app.config
        return cls(config.get('MIDTRANS_SERVER_KEY', ''), config.get('MIDTRANS_IS_PRODUCTION', False))

    def create_transaction(self, order_id, amount, customer, items):
        if not self.server_key:
            raise ServiceError('Payment gateway belum dikonfigurasi', 503)

        payload = {
            'transaction_details': {'order_id': order_id, 'gross_amount': int(amount)},
            'customer_details': customer,
            'item_details': items,
        }
        try:
            response = requests.post(
                f'{self.snap_url}/transactions',
                json=payload,
                auth=(self.server_key, ''),
                headers={'Accept': 'application/json'},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error("Midtrans create transaction %s gagal: %s", order_id, e)
            raise ServiceError('Gagal membuat transaksi pembayaran', 502) from e
        return response.json()

    def cancel_transaction(self, order_id):
        if not self.server_key:
            raise ServiceError('Payment gateway belum dikonfigurasi', 503)
        try:
            response = requests.post(
                f'{self.core_url}/{order_id}/cancel',
                auth=(self.server_key, ''),
                headers={'Accept': 'application/json'},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error("Midtrans cancel %s gagal: %s", order_id, e)
            raise ServiceError('Gagal membatalkan transaksi di payment gateway', 502) from e
        return response.json()


class PaymentGatewayService:
    @staticmethod
    def _next_payment_no(now):
        prefix = f'PAY-{now.strftime("%Y%m")}-'
        last = db.session.query(GatewayPayment.payment_no) \
            .filter(GatewayPayment.payment_no.like(f'{prefix}%')) \
            .execution_options(include_deleted=True) \
            .order_by(GatewayPayment.payment_no.desc()).first()
        sequence = int(last[0][len(prefix):]) + 1 if last else 1
        return f'{prefix}{sequence:04d}'

    @staticmethod
    def _target(purpose, reference_id, amount=None):
        """Return (field, objek, nominal, customer, item)."""
        if purpose == PaymentPurpose.REGISTRATION:
            registration = db.session.get(Registration, reference_id)
            if not registration:
                raise NotFound('Pendaftaran tidak ditemukan')
            if registration.payment_status in (RegistrationPaymentStatus.PAID, RegistrationPaymentStatus.VERIFIED):
                raise Conflict('Biaya pendaftaran sudah dibayar')
            total = amount or registration.registration_fee
            customer = {'first_name': registration.full_name, 'email': registration.email or '',
                        'phone': registration.parent_phone() or registration.phone or ''}
            name = f'Pendaftaran {registration.registration_no}'
            return 'registration_id', registration, total, customer, name

        if purpose == PaymentPurpose.BILL:
            bill = db.session.get(Bill, reference_id)
            if not bill:
                raise NotFound('Tagihan tidak ditemukan')
            if bill.status in (BillStatus.PAID, BillStatus.CANCELLED):
                raise Conflict('Tagihan sudah lunas atau dibatalkan')
            if amount and amount > bill.remaining_amount:
                raise ValidationFailed('Nominal pembayaran melebihi sisa tagihan')
            total = amount or bill.remaining_amount
            student = bill.student
            customer = {'first_name': student.full_name, 'email': '',
                        'phone': student.father_phone or student.mother_phone or ''}
            return 'bill_id', bill, total, customer, f'{bill.bill_type.name} {bill.period}'

        donation = db.session.get(Donation, reference_id)
        if not donation:
            raise NotFound('Donasi tidak ditemukan')
        if donation.payment_status != VerificationStatus.PENDING:
            raise Conflict('Donasi sudah diproses')
        customer = {'first_name': donation.donor_name or 'Hamba Allah', 'email': donation.donor_email or '',
                    'phone': donation.donor_phone or ''}
        return 'donation_id', donation, donation.amount, customer, f'Donasi {donation.donation_no}'

    @staticmethod
    def create_transaction(purpose, reference_id, amount=None):
        purpose = PaymentPurpose[purpose] if isinstance(purpose, str) else purpose
        field, target, total, customer, item_name = PaymentGatewayService._target(purpose, reference_id, amount)
        if not total or total <= 0:
            raise ValidationFailed('Nominal pembayaran tidak valid')

        now = datetime.utcnow()
        order_id = f'{purpose.name[:3]}-{target.id}-{int(time.time() * 1000)}'
        snap = MidtransClient.from_config().create_transaction(
            order_id, total, customer,
            [{'id': f'{purpose.name}-{target.id}', 'price': int(total), 'quantity': 1, 'name': item_name[:50]}],
        )

        try:
            payment = GatewayPayment(
                payment_no=PaymentGatewayService._next_payment_no(now),
                external_id=order_id,
                purpose=purpose,
                amount=total,
                status=GatewayStatus.PENDING,
                snap_token=snap.get('token'),
                redirect_url=snap.get('redirect_url'),
            )
            setattr(payment, field, target.id)
            if purpose == PaymentPurpose.REGISTRATION:
                target.payment_status = RegistrationPaymentStatus.PENDING
            db.session.add(payment)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Transaksi Midtrans %s dibuat untuk %s #%s", order_id, purpose.name, target.id)
        return payment

    @staticmethod
    def handle_notification(payload, server_key, max_age_hours=24):
        """
        Proses notifikasi Midtrans. Raise ServiceError untuk payload/signature/order
        yang tidak valid; error saat memproses tetap dijawab 200 agar tidak di-retry.
        """
        if not verify_signature(payload, server_key):
            logger.warning("Signature notifikasi tidak valid: %s", mask_sensitive(payload))
            raise ServiceError('Signature tidak valid', 401)
        if not is_notification_fresh(payload.get('transaction_time'), max_age_hours):
            logger.warning("Notifikasi kedaluwarsa untuk order %s", payload.get('order_id'))
            raise ServiceError('Notifikasi kedaluwarsa', 401)

        payment = GatewayPayment.query.filter_by(external_id=payload['order_id']).first()
        if not payment:
            raise NotFound('Pembayaran tidak ditemukan')

        if payment.status == GatewayStatus.SUCCESS:
            logger.info("Notifikasi duplikat untuk order %s diabaikan", payment.external_id)
            return {'message': 'Notifikasi duplikat diabaikan', 'order_id': payment.external_id}

        try:
            status = STATUS_MAP[payload['transaction_status']]
            payment.status = status
            payment.transaction_id = payload.get('transaction_id') or payment.transaction_id
            payment.payment_type = payload.get('payment_type') or payment.payment_type
            payment.fraud_status = payload.get('fraud_status')
            payment.va_number = extract_va_number(payload) or payment.va_number
            payment.gateway_data = mask_sensitive(payload)

            if status == GatewayStatus.SUCCESS:
                transaction_time = payload.get('transaction_time')
                payment.paid_at = parse_transaction_time(transaction_time) if transaction_time else datetime.utcnow()
                PaymentGatewayService._apply_success(payment)
            elif status == GatewayStatus.FAILED:
                PaymentGatewayService._release_registration(payment)

            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Gagal memproses notifikasi order %s", payload.get('order_id'))
            return {'message': 'Notifikasi diterima, terjadi kesalahan saat memproses', 'order_id': payload.get('order_id')}

        logger.info("Pembayaran %s -> %s", payment.payment_no, payment.status.name)
        return {
            'message': 'Notifikasi berhasil diproses',
            'payment': {
                'id': payment.id,
                'payment_no': payment.payment_no,
                'status': payment.status.name,
                'transaction_id': payment.transaction_id,
            },
        }

    @staticmethod
    def find(reference):
        """Cari pembayaran berdasarkan id, order_id, atau payment_no."""
        reference = str(reference)
        conditions = [GatewayPayment.external_id == reference, GatewayPayment.payment_no == reference]
        if reference.isdigit():
            conditions.append(GatewayPayment.id == int(reference))
        payment = GatewayPayment.query.filter(db.or_(*conditions)).first()
        if not payment:
            raise NotFound('Pembayaran tidak ditemukan')
        return payment

    @staticmethod
    def cancel(payment, reason=None, cancelled_by=None):
        """
        Batalkan transaksi yang masih PENDING. Pembatalan di Midtrans bersifat
        best effort: jika gagal, pembatalan lokal tetap dijalankan.
        """
        if payment.status == GatewayStatus.SUCCESS:
            raise ValidationFailed('Pembayaran yang sudah berhasil tidak dapat dibatalkan')
        if payment.status in (GatewayStatus.FAILED, GatewayStatus.CANCELLED):
            raise ValidationFailed('Pembayaran sudah dibatalkan atau gagal')

        try:
            MidtransClient.from_config().cancel_transaction(payment.external_id)
            gateway = {'success': True, 'message': 'Transaksi dibatalkan di payment gateway'}
        except ServiceError as e:
            logger.warning("Pembatalan %s di Midtrans gagal, lanjut batal lokal: %s", payment.external_id, e.message)
            gateway = {'success': False, 'message': e.message}

        try:
            payment.status = GatewayStatus.CANCELLED
            payment.gateway_data = dict(payment.gateway_data or {}, cancel_reason=reason, cancelled_by=cancelled_by,
                                        cancelled_at=datetime.utcnow().isoformat())
            PaymentGatewayService._release_registration(payment)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Pembayaran %s dibatalkan oleh %s", payment.payment_no, cancelled_by or 'sistem')
        return payment, gateway

    @staticmethod
    def _release_registration(payment):
        registration = payment.registration
        if payment.purpose == PaymentPurpose.REGISTRATION and registration \
                and registration.payment_status == RegistrationPaymentStatus.PENDING:
            registration.payment_status = RegistrationPaymentStatus.UNPAID

    @staticmethod
    def _apply_success(payment):
        if payment.purpose == PaymentPurpose.REGISTRATION and payment.registration:
            registration = payment.registration
            if registration.payment_status in (RegistrationPaymentStatus.PAID, RegistrationPaymentStatus.VERIFIED):
                return
            registration.payment_status = RegistrationPaymentStatus.PAID
            registration.payment_date = payment.paid_at

        elif payment.purpose == PaymentPurpose.BILL and payment.bill:
            bill = payment.bill
            if bill.status in (BillStatus.PAID, BillStatus.CANCELLED):
                return
            bill_payment = BillPayment(
                payment_no=BillingService.next_payment_no(),
                bill_id=bill.id,
                amount=min(payment.amount, bill.remaining_amount),
                payment_date=payment.paid_at,
                method=PAYMENT_TYPE_METHODS.get(payment.payment_type, PaymentMethod.OTHER),
                channel='MIDTRANS',
                reference=payment.external_id,
                verification_status=VerificationStatus.VERIFIED,
                verified_at=datetime.utcnow(),
            )
            db.session.add(bill_payment)
            db.session.flush()
            BillingService.apply_payment(bill, bill_payment, description=f'Pembayaran online {payment.external_id}')

        elif payment.purpose == PaymentPurpose.DONATION and payment.donation:
            if payment.donation.payment_status == VerificationStatus.VERIFIED:
                return
            DonationService.apply_verification(payment.donation, paid_at=payment.paid_at)
