import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from pondok.decorators import staff_required, cron_required
from pondok.errors import NotFound, Conflict, ValidationFailed
from pondok.extensions import db, csrf
from pondok.forms import (
    BillTypeForm, GenerateBillsForm, RecordPaymentForm, VerifyPaymentForm, BulkVerifyForm,
    parse_form, request_payload,
)
from pondok.models import (
    Bill, BillType, BillCategory, BillFrequency, BillPayment, PenaltyType, VerificationStatus,
)
from pondok.services.billing_service import BillingService
from pondok.utils.audit import log_audit
from pondok.utils.pagination import page_args

logger = logging.getLogger(__name__)

billing_bp = Blueprint('billing', __name__)

OUTSTANDING_FILTERS = ('ALL', 'OUTSTANDING', 'PARTIAL', 'OVERDUE')


# ==========================================
# 1. GENERATE TAGIHAN
# ==========================================
@billing_bp.route('/generate', methods=['POST'])
@login_required
@staff_required
def generate_bills():
    payload = request_payload()
    form = parse_form(GenerateBillsForm, payload)
    result = BillingService.generate_bills(
        form.bill_type_id.data,
        form.period.data,
        form.due_date.data,
        student_ids=form.student_ids.data or None,
        institution_types=form.institution_types.data or None,
        grades=form.grades.data or None,
        apply_discounts=bool(payload.get('apply_discounts', True)),
        notes=form.notes.data or None,
        user=current_user,
    )
    return jsonify({'message': f"{result['generated']} tagihan berhasil dibuat", **result}), 201


@billing_bp.route('/cron/monthly-bills', methods=['POST'])
@csrf.exempt
@cron_required
def cron_monthly_bills():
    result = BillingService.generate_monthly_bills()
    return jsonify({'message': 'Generate tagihan bulanan selesai', **result})


# ==========================================
# 2. TUNGGAKAN
# ==========================================
@billing_bp.route('/outstanding')
@login_required
@staff_required
def outstanding():
    status = (request.args.get('status') or 'ALL').upper()
    if status not in OUTSTANDING_FILTERS:
        raise ValidationFailed('Status tidak valid')

    is_overdue = request.args.get('is_overdue')
    if is_overdue is not None:
        is_overdue = is_overdue.lower() == 'true'

    institution_type = request.args.get('institution_type')
    if institution_type and institution_type not in ('TK', 'SD', 'PONDOK'):
        raise ValidationFailed('Jenjang tidak valid')

    items, summary = BillingService.outstanding(
        status=status,
        is_overdue=is_overdue,
        student_id=request.args.get('student_id', type=int),
        bill_type_id=request.args.get('bill_type_id', type=int),
        institution_type=institution_type,
        grade=request.args.get('grade'),
        search=request.args.get('search'),
    )

    page, per_page = page_args()
    start = (page - 1) * per_page
    total = len(items)
    return jsonify({
        'bills': items[start:start + per_page],
        'summary': summary,
        'pagination': {
            'page': page,
            'limit': per_page,
            'total': total,
            'total_pages': (total + per_page - 1) // per_page,
            'has_next': start + per_page < total,
            'has_prev': page > 1,
        },
    })


# ==========================================
# 3. PEMBAYARAN
# ==========================================
@billing_bp.route('/payment', methods=['POST'])
@login_required
@staff_required
def payment():
    payload = request_payload()
    action_type = payload.get('type', 'RECORD_PAYMENT')

    if action_type == 'RECORD_PAYMENT':
        form = parse_form(RecordPaymentForm, payload)
        result = BillingService.record_payment(
            form.bill_id.data,
            form.amount.data,
            form.method.data,
            current_user,
            auto_verify=form.auto_verify.data,
            channel=form.channel.data or None,
            reference=form.reference.data or None,
            proof_url=form.proof_url.data or None,
            payment_date=form.payment_date.data,
            notes=form.notes.data or None,
        )
        return jsonify({
            'message': 'Pembayaran berhasil dicatat',
            'payment': result.to_dict(),
            'bill': result.bill.to_dict(),
        }), 201

    if action_type == 'VERIFY_PAYMENT':
        form = parse_form(VerifyPaymentForm, payload)
        result = BillingService.verify_payment(
            form.payment_id.data, form.action.data, current_user,
            rejection_reason=form.rejection_reason.data or None,
        )
        message = 'Pembayaran diverifikasi' if form.action.data == 'VERIFY' else 'Pembayaran ditolak'
        return jsonify({'message': message, 'payment': result.to_dict(), 'bill': result.bill.to_dict()})

    raise ValidationFailed('Jenis aksi pembayaran tidak valid')


@billing_bp.route('/payments/pending')
@login_required
@staff_required
def pending_payments():
    payments = BillPayment.query.filter_by(verification_status=VerificationStatus.PENDING) \
        .order_by(BillPayment.payment_date).all()
    items = []
    for item in payments:
        data = item.to_dict()
        data['bill_no'] = item.bill.bill_no
        data['student'] = item.bill.student.full_name
        items.append(data)
    return jsonify({'payments': items})


@billing_bp.route('/verify-payments', methods=['POST'])
@login_required
@staff_required
def verify_payments():
    form = parse_form(BulkVerifyForm)
    results = BillingService.bulk_verify(form.payment_ids.data, current_user)
    return jsonify({
        'message': f"{len(results['verified'])} pembayaran diverifikasi",
        **results,
    })


# ==========================================
# 4. JENIS TAGIHAN
# ==========================================
def _price_by_grade(payload):
    prices = payload.get('price_by_grade') or {}
    if not isinstance(prices, dict):
        raise ValidationFailed('price_by_grade harus berupa objek')
    for key, value in prices.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValidationFailed(f'Harga untuk {key} tidak valid')
    return {str(key): value for key, value in prices.items()}


def _fill_bill_type(bill_type, form, payload):
    bill_type.name = form.name.data
    bill_type.category = BillCategory[form.category.data]
    bill_type.description = form.description.data or None
    bill_type.default_amount = form.default_amount.data
    bill_type.is_recurring = form.is_recurring.data
    bill_type.frequency = BillFrequency[form.frequency.data] if form.frequency.data else None
    bill_type.price_by_grade = _price_by_grade(payload)
    bill_type.due_day_of_month = form.due_day_of_month.data
    bill_type.grace_period_days = form.grace_period_days.data if form.grace_period_days.data is not None else 7
    bill_type.late_penalty_type = PenaltyType[form.late_penalty_type.data or 'NONE']
    bill_type.late_penalty_amount = form.late_penalty_amount.data or 0
    bill_type.max_penalty = form.max_penalty.data
    bill_type.allow_sibling_discount = form.allow_sibling_discount.data
    bill_type.sibling_discount_percent = form.sibling_discount_percent.data or 0
    bill_type.is_active = bool(payload.get('is_active', True))
    bill_type.sort_order = form.sort_order.data or 0

    if bill_type.is_recurring and not bill_type.frequency:
        raise ValidationFailed('Frekuensi wajib diisi untuk tagihan berulang')


def _get_bill_type(bill_type_id):
    bill_type = db.session.get(BillType, bill_type_id)
    if not bill_type or bill_type.is_deleted:
        raise NotFound('Jenis tagihan tidak ditemukan')
    return bill_type


@billing_bp.route('/bill-types', methods=['GET'])
@login_required
@staff_required
def list_bill_types():
    query = BillType.query
    if request.args.get('active_only') == 'true':
        query = query.filter(BillType.is_active.is_(True))
    bill_types = query.order_by(BillType.sort_order, BillType.name).all()
    return jsonify({'bill_types': [b.to_dict() for b in bill_types]})


@billing_bp.route('/bill-types', methods=['POST'])
@login_required
@staff_required
def create_bill_type():
    payload = request_payload()
    form = parse_form(BillTypeForm, payload)
    bill_type = BillType()
    _fill_bill_type(bill_type, form, payload)
    bill_type.save()
    log_audit('CREATE_BILL_TYPE', 'BillType', bill_type.id, {'name': bill_type.name})
    db.session.commit()
    return jsonify({'message': 'Jenis tagihan ditambahkan', 'bill_type': bill_type.to_dict()}), 201


@billing_bp.route('/bill-types/<int:bill_type_id>', methods=['GET'])
@login_required
@staff_required
def get_bill_type(bill_type_id):
    return jsonify({'bill_type': _get_bill_type(bill_type_id).to_dict()})


@billing_bp.route('/bill-types/<int:bill_type_id>', methods=['PUT'])
@login_required
@staff_required
def update_bill_type(bill_type_id):
    bill_type = _get_bill_type(bill_type_id)
    # Field yang tidak dikirim tetap memakai nilai lama
    merged = {**bill_type.to_dict(), **request_payload()}
    merged.pop('id', None)
    form = parse_form(BillTypeForm, merged)
    _fill_bill_type(bill_type, form, merged)
    log_audit('UPDATE_BILL_TYPE', 'BillType', bill_type.id, {'name': bill_type.name})
    db.session.commit()
    return jsonify({'message': 'Jenis tagihan diperbarui', 'bill_type': bill_type.to_dict()})


@billing_bp.route('/bill-types/<int:bill_type_id>', methods=['DELETE'])
@login_required
@staff_required
def delete_bill_type(bill_type_id):
    bill_type = _get_bill_type(bill_type_id)
    if Bill.query.filter_by(bill_type_id=bill_type.id).count():
        raise Conflict('Jenis tagihan sudah memiliki tagihan, nonaktifkan saja')
    bill_type.is_deleted = True
    log_audit('DELETE_BILL_TYPE', 'BillType', bill_type.id, {'name': bill_type.name})
    db.session.commit()
    return jsonify({'message': 'Jenis tagihan dihapus'})


# ==========================================
# 5. PEMBATALAN & LAPORAN
# ==========================================
@billing_bp.route('/bills/<int:bill_id>/cancel', methods=['POST'])
@login_required
@staff_required
def cancel_bill(bill_id):
    bill = db.session.get(Bill, bill_id)
    if not bill:
        raise NotFound('Tagihan tidak ditemukan')
    reason = request_payload().get('reason')
    BillingService.cancel_bill(bill, current_user, reason=reason)
    logger.info("Tagihan %s dibatalkan oleh %s", bill.bill_no, current_user.username)
    return jsonify({'message': 'Tagihan dibatalkan', 'bill': bill.to_dict()})


@billing_bp.route('/reports')
@login_required
@staff_required
def reports():
    return jsonify(BillingService.report(period=request.args.get('period')))
