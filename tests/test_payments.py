import hashlib
from datetime import datetime, timedelta

import pytest
import requests

from pondok.extensions import db
from pondok.models import (
    Bill, BillPayment, Donation, DonationCampaign, GatewayPayment, GatewayStatus, PaymentMethod, Registration,
    RegistrationPaymentStatus, VerificationStatus,
)
from pondok.services.payment_gateway import (
    PaymentGatewayService, notification_signature, parse_transaction_time, is_notification_fresh, mask_sensitive,
)
from pondok.utils.rate_limiter import RateLimiter

SERVER_KEY = 'SB-Mid-server-test'


class FakeResponse:
    def __init__(self, data, status_code=200):
        self._data = data
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} Error')

    def json(self):
        return self._data


@pytest.fixture
def snap(monkeypatch):
    """Ganti requests.post agar Snap API tidak benar-benar dipanggil."""
    calls = []

    def fake_post(url, json=None, auth=None, headers=None, timeout=None):
        calls.append({'url': url, 'json': json, 'auth': auth})
        return FakeResponse({'token': 'snap-token-123', 'redirect_url': 'https://app.sandbox.midtrans.com/snap/v2/vtweb/x'})

    monkeypatch.setattr(requests, 'post', fake_post)
    return calls


def _wib_now(offset=timedelta()):
    return (datetime.utcnow() + timedelta(hours=7) + offset).strftime('%Y-%m-%d %H:%M:%S')


def _notification(order_id, gross_amount, status='settlement', status_code='200', **extra):
    payload = {
        'order_id': order_id,
        'status_code': status_code,
        'gross_amount': gross_amount,
        'transaction_status': status,
        'transaction_id': 'trx-0001',
        'transaction_time': _wib_now(),
        'payment_type': 'bank_transfer',
        'va_numbers': [{'bank': 'bca', 'va_number': '12345678901'}],
    }
    payload.update(extra)
    payload['signature_key'] = notification_signature(order_id, status_code, gross_amount, SERVER_KEY)
    return payload


# ==========================================
# FUNGSI MURNI
# ==========================================
def test_notification_signature():
    expected = hashlib.sha512(b'ORD-1200100000.00key').hexdigest()

    assert notification_signature('ORD-1', '200', '100000.00', 'key') == expected


def test_parse_transaction_time_converts_wib_to_utc():
    assert parse_transaction_time('2025-01-01 10:00:00') == datetime(2025, 1, 1, 3, 0, 0)


def test_is_notification_fresh():
    assert is_notification_fresh(None, 24) is True
    assert is_notification_fresh('bukan-tanggal', 24) is False
    assert is_notification_fresh('2025-01-01 10:00:00', 24, now=datetime(2025, 1, 1, 4)) is True
    assert is_notification_fresh('2025-01-01 10:00:00', 24, now=datetime(2025, 1, 3, 4)) is False


def test_mask_sensitive():
    masked = mask_sensitive({'signature_key': 'abcdef', 'order_id': 'ORD-1'})

    assert masked == {'signature_key': 'abcd**', 'order_id': 'ORD-1'}


# ==========================================
# TAGIHAN
# ==========================================
@pytest.fixture
def bill_id(admin_client, factory):
    _, parent_id = factory.parent('wali01')
    factory.student('PONDOK25001', parent_id=parent_id)
    bill_type_id = factory.bill_type()
    response = admin_client.post('/api/billing/generate', json={
        'bill_type_id': bill_type_id, 'period': '2025-01', 'due_date': '2025-01-10',
    })
    return response.get_json()['bills'][0]['id']


def test_bill_transaction_requires_login(client, bill_id):
    response = client.post('/api/payments/create-transaction', json={'purpose': 'BILL', 'reference_id': bill_id})

    assert response.status_code == 401


def test_bill_paid_through_notification(app, client, admin_client, bill_id, snap):
    created = admin_client.post('/api/payments/create-transaction', json={'purpose': 'BILL', 'reference_id': bill_id})

    assert created.status_code == 201
    body = created.get_json()
    assert body['token'] == 'snap-token-123'
    order_id = body['payment']['order_id']
    assert order_id.startswith(f'BIL-{bill_id}-')
    assert body['payment']['amount'] == 750000
    assert snap[0]['auth'] == (SERVER_KEY, '')
    assert snap[0]['json']['transaction_details'] == {'order_id': order_id, 'gross_amount': 750000}

    response = client.post('/api/payments/notification', json=_notification(order_id, '750000.00'))

    assert response.status_code == 200
    result = response.get_json()
    assert result['message'] == 'Notifikasi berhasil diproses'
    assert result['payment']['status'] == 'SUCCESS'
    assert result['payment']['transaction_id'] == 'trx-0001'
    assert 'X-RateLimit-Remaining' in response.headers

    with app.app_context():
        bill = db.session.get(Bill, bill_id)
        assert bill.status.name == 'PAID'
        bill_payment = BillPayment.query.filter_by(bill_id=bill_id).one()
        assert bill_payment.channel == 'MIDTRANS'
        assert bill_payment.method == PaymentMethod.VIRTUAL_ACCOUNT
        assert bill_payment.verification_status == VerificationStatus.VERIFIED
        gateway = GatewayPayment.query.filter_by(external_id=order_id).one()
        assert gateway.va_number == '12345678901'
        assert gateway.gateway_data['signature_key'].endswith('*')

    duplicate = client.post('/api/payments/notification', json=_notification(order_id, '750000.00'))
    assert duplicate.status_code == 200
    assert duplicate.get_json() == {'message': 'Notifikasi duplikat diabaikan', 'order_id': order_id}

    with app.app_context():
        assert BillPayment.query.filter_by(bill_id=bill_id).count() == 1

    status = client.get(f'/api/payments/status/{order_id}')
    assert status.get_json()['payment']['status'] == 'SUCCESS'


def test_pending_then_expire_keeps_bill_open(app, client, admin_client, bill_id, snap):
    order_id = admin_client.post('/api/payments/create-transaction', json={
        'purpose': 'BILL', 'reference_id': bill_id, 'amount': 250000,
    }).get_json()['payment']['order_id']

    pending = client.post('/api/payments/notification', json=_notification(order_id, '250000.00', status='pending',
                                                                           status_code='201'))
    expired = client.post('/api/payments/notification', json=_notification(order_id, '250000.00', status='expire',
                                                                           status_code='407'))

    assert pending.get_json()['payment']['status'] == 'PENDING'
    assert expired.get_json()['payment']['status'] == 'FAILED'
    with app.app_context():
        bill = db.session.get(Bill, bill_id)
        assert bill.remaining_amount == 750000
        assert bill.status.name == 'OUTSTANDING'
        assert BillPayment.query.filter_by(bill_id=bill_id).count() == 0


def test_transaction_amount_cannot_exceed_bill(admin_client, bill_id, snap):
    response = admin_client.post('/api/payments/create-transaction', json={
        'purpose': 'BILL', 'reference_id': bill_id, 'amount': 9000000,
    })

    assert response.status_code == 400
    assert snap == []


def test_gateway_error_returns_502(admin_client, bill_id, monkeypatch):
    def failing_post(*args, **kwargs):
        raise requests.ConnectionError('timeout')

    monkeypatch.setattr(requests, 'post', failing_post)

    response = admin_client.post('/api/payments/create-transaction', json={'purpose': 'BILL', 'reference_id': bill_id})

    assert response.status_code == 502


# ==========================================
# VALIDASI NOTIFIKASI
# ==========================================
def test_notification_bad_signature(client):
    payload = _notification('BIL-1-1700000000000', '100000.00')
    payload['signature_key'] = 'palsu'

    assert client.post('/api/payments/notification', json=payload).status_code == 401


def test_notification_unknown_order(client):
    response = client.post('/api/payments/notification', json=_notification('BIL-99-1700000000000', '100000.00'))

    assert response.status_code == 404


def test_notification_stale(client):
    payload = _notification('BIL-1-1700000000000', '100000.00', transaction_time=_wib_now(-timedelta(hours=48)))

    assert client.post('/api/payments/notification', json=payload).status_code == 401


def test_notification_missing_fields(client):
    response = client.post('/api/payments/notification', json={'order_id': 'BIL-1-1700000000000'})

    assert response.status_code == 400
    assert 'signature_key' in response.get_json()['details']


def test_notification_rate_limited(app, client):
    app.extensions['webhook_limiter'] = RateLimiter(2, 60)

    first = client.post('/api/payments/notification', json={})
    second = client.post('/api/payments/notification', json={})
    third = client.post('/api/payments/notification', json={})

    assert first.status_code == 400
    assert first.headers['X-RateLimit-Remaining'] == '1'
    assert second.headers['X-RateLimit-Remaining'] == '0'
    assert third.status_code == 429
    assert third.get_json() == {'error': 'Terlalu banyak permintaan'}


# ==========================================
# DONASI
# ==========================================
def test_donation_paid_through_gateway(app, client, factory, snap):
    category_id = factory.donation_category()
    campaign_id = factory.campaign(category_id=category_id)
    donation = client.post('/api/donations/create', json={
        'category_id': category_id,
        'campaign_id': campaign_id,
        'amount': 500000,
        'donor_name': 'Hamba Allah',
        'donor_email': 'donatur@example.com',
        'payment_method': 'MIDTRANS',
    }).get_json()['donation']

    created = client.post('/api/payments/create-transaction', json={
        'purpose': 'DONATION', 'reference_id': donation['id'],
    })
    assert created.status_code == 201
    order_id = created.get_json()['payment']['order_id']
    assert order_id.startswith(f"DON-{donation['id']}-")
    assert snap[0]['json']['customer_details']['email'] == 'donatur@example.com'

    response = client.post('/api/payments/notification', json=_notification(order_id, '500000.00',
                                                                             payment_type='qris'))
    assert response.status_code == 200

    with app.app_context():
        paid = db.session.get(Donation, donation['id'])
        assert paid.payment_status == VerificationStatus.VERIFIED
        assert paid.certificate_no.startswith(f'CERT-{paid.donation_no}-')
        assert db.session.get(DonationCampaign, campaign_id).current_amount == 500000

    again = client.post('/api/payments/create-transaction', json={
        'purpose': 'DONATION', 'reference_id': donation['id'],
    })
    assert again.status_code == 409


def test_gateway_settlement_after_manual_verification(app, client, admin_client, factory, snap):
    category_id = factory.donation_category()
    campaign_id = factory.campaign(category_id=category_id)
    donation_id = client.post('/api/donations/create', json={
        'category_id': category_id, 'campaign_id': campaign_id, 'amount': 500000, 'is_anonymous': True,
        'payment_method': 'MIDTRANS',
    }).get_json()['donation']['id']
    order_id = client.post('/api/payments/create-transaction', json={
        'purpose': 'DONATION', 'reference_id': donation_id,
    }).get_json()['payment']['order_id']
    assert admin_client.post(f'/api/donations/{donation_id}/verify').status_code == 200
    with app.app_context():
        certificate_no = db.session.get(Donation, donation_id).certificate_no

    response = client.post('/api/payments/notification', json=_notification(order_id, '500000.00'))

    assert response.status_code == 200
    with app.app_context():
        donation = db.session.get(Donation, donation_id)
        assert donation.certificate_no == certificate_no
        assert db.session.get(DonationCampaign, campaign_id).current_amount == 500000


# ==========================================
# PENDAFTARAN
# ==========================================
@pytest.fixture
def registration_id(client):
    response = client.post('/api/ppdb/register', json={
        'level': 'PONDOK',
        'full_name': 'Abdullah Hakim',
        'gender': 'L',
        'birth_place': 'Bogor',
        'birth_date': '2012-05-01',
        'address': 'Jl. Pesantren No. 1',
        'father_name': 'Bapak Hakim',
        'father_phone': '081211112222',
        'mother_name': 'Ibu Aminah',
        'submit': True,
    })
    return response.get_json()['registration']['id']


def _registration_payment_status(app, registration_id):
    with app.app_context():
        return db.session.get(Registration, registration_id).payment_status


def test_registration_paid_through_notification(app, client, registration_id, snap):
    created = client.post('/api/payments/create-transaction', json={
        'purpose': 'REGISTRATION', 'reference_id': registration_id,
    })

    assert created.status_code == 201
    order_id = created.get_json()['payment']['order_id']
    assert order_id.startswith(f'REG-{registration_id}-')
    assert created.get_json()['payment']['amount'] == 250000
    assert _registration_payment_status(app, registration_id) == RegistrationPaymentStatus.PENDING

    response = client.post('/api/payments/notification', json=_notification(order_id, '250000.00'))

    assert response.get_json()['payment']['status'] == 'SUCCESS'
    with app.app_context():
        registration = db.session.get(Registration, registration_id)
        assert registration.payment_status == RegistrationPaymentStatus.PAID
        assert registration.payment_date is not None


def test_registration_settlement_keeps_verified_status(app, client, admin_client, registration_id, snap):
    order_id = client.post('/api/payments/create-transaction', json={
        'purpose': 'REGISTRATION', 'reference_id': registration_id,
    }).get_json()['payment']['order_id']
    admin_client.post('/api/ppdb/admin/verify', json={'registration_id': registration_id})

    client.post('/api/payments/notification', json=_notification(order_id, '250000.00'))

    assert _registration_payment_status(app, registration_id) == RegistrationPaymentStatus.VERIFIED


def test_registration_expired_returns_to_unpaid(app, client, registration_id, snap):
    order_id = client.post('/api/payments/create-transaction', json={
        'purpose': 'REGISTRATION', 'reference_id': registration_id,
    }).get_json()['payment']['order_id']

    response = client.post('/api/payments/notification', json=_notification(order_id, '250000.00', status='expire',
                                                                             status_code='407'))

    assert response.get_json()['payment']['status'] == 'FAILED'
    assert _registration_payment_status(app, registration_id) == RegistrationPaymentStatus.UNPAID


def test_processing_error_is_acknowledged(app, client, registration_id, snap, monkeypatch):
    order_id = client.post('/api/payments/create-transaction', json={
        'purpose': 'REGISTRATION', 'reference_id': registration_id,
    }).get_json()['payment']['order_id']

    def broken(payment):
        raise RuntimeError('database error')

    monkeypatch.setattr(PaymentGatewayService, '_apply_success', staticmethod(broken))

    response = client.post('/api/payments/notification', json=_notification(order_id, '250000.00'))

    assert response.status_code == 200
    assert response.get_json() == {
        'message': 'Notifikasi diterima, terjadi kesalahan saat memproses', 'order_id': order_id,
    }
    with app.app_context():
        assert GatewayPayment.query.filter_by(external_id=order_id).one().status == GatewayStatus.PENDING
    assert _registration_payment_status(app, registration_id) == RegistrationPaymentStatus.PENDING


# ==========================================
# PEMBATALAN
# ==========================================
def test_cancel_registration_payment(app, client, registration_id, snap):
    payment = client.post('/api/payments/create-transaction', json={
        'purpose': 'REGISTRATION', 'reference_id': registration_id,
    }).get_json()['payment']

    response = client.post(f"/api/payments/cancel/{payment['payment_no']}", json={'reason': 'Salah nominal'})

    assert response.status_code == 200
    body = response.get_json()
    assert body['payment']['status'] == 'CANCELLED'
    assert body['gateway']['success'] is True
    assert snap[1]['url'] == f"https://api.sandbox.midtrans.com/v2/{payment['order_id']}/cancel"
    assert snap[1]['auth'] == (SERVER_KEY, '')
    assert _registration_payment_status(app, registration_id) == RegistrationPaymentStatus.UNPAID
    with app.app_context():
        gateway_data = GatewayPayment.query.filter_by(external_id=payment['order_id']).one().gateway_data
        assert gateway_data['cancel_reason'] == 'Salah nominal'

    again = client.post(f"/api/payments/cancel/{payment['order_id']}")
    assert again.status_code == 400


def test_cancel_continues_when_gateway_fails(app, client, registration_id, snap, monkeypatch):
    payment = client.post('/api/payments/create-transaction', json={
        'purpose': 'REGISTRATION', 'reference_id': registration_id,
    }).get_json()['payment']

    def failing_post(*args, **kwargs):
        raise requests.ConnectionError('timeout')

    monkeypatch.setattr(requests, 'post', failing_post)

    response = client.post(f"/api/payments/cancel/{payment['id']}")

    assert response.status_code == 200
    assert response.get_json()['payment']['status'] == 'CANCELLED'
    assert response.get_json()['gateway']['success'] is False


def test_cancel_refuses_successful_payment(client, admin_client, bill_id, snap):
    order_id = admin_client.post('/api/payments/create-transaction', json={
        'purpose': 'BILL', 'reference_id': bill_id,
    }).get_json()['payment']['order_id']
    client.post('/api/payments/notification', json=_notification(order_id, '750000.00'))

    assert client.post(f'/api/payments/cancel/{order_id}').status_code == 401
    assert admin_client.post(f'/api/payments/cancel/{order_id}').status_code == 400


def test_cancel_unknown_payment(client):
    assert client.post('/api/payments/cancel/PAY-209901-9999').status_code == 404
