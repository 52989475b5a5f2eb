from datetime import date

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from pondok.decorators import staff_required
from pondok.errors import ValidationFailed
from pondok.forms import (
    RegistrationForm, RegistrationStatusForm, RegistrationVerifyForm, TestScheduleForm,
    TestScoreForm, AdminNoteForm, parse_form,
)
from pondok.services.admission_service import AdmissionService, STATUS_DESCRIPTIONS
from pondok.utils.pagination import paginate, page_meta

ppdb_bp = Blueprint('ppdb', __name__)


# ==========================================
# 1. PUBLIK (CALON SANTRI)
# ==========================================
@ppdb_bp.route('/register', methods=['POST'])
def register():
    form = parse_form(RegistrationForm)
    registration = AdmissionService.register(form)
    message = 'Pendaftaran berhasil dikirim' if form.submit.data else 'Draft pendaftaran tersimpan'
    return jsonify({
        'message': message,
        'registration_no': registration.registration_no,
        'registration': registration.to_dict(),
        'registration_fee': registration.registration_fee,
    }), 201


@ppdb_bp.route('/<registration_no>/submit', methods=['POST'])
def submit(registration_no):
    registration = AdmissionService.submit(registration_no)
    return jsonify({'message': 'Pendaftaran berhasil dikirim', 'registration': registration.to_dict()})


@ppdb_bp.route('/status')
def status():
    registration_no = (request.args.get('registration_no') or '').strip()
    raw_birth_date = request.args.get('birth_date')
    if not registration_no or not raw_birth_date:
        raise ValidationFailed('Nomor pendaftaran dan tanggal lahir wajib diisi')
    try:
        birth_date = date.fromisoformat(raw_birth_date)
    except ValueError:
        raise ValidationFailed('Format tanggal lahir harus YYYY-MM-DD')
    return jsonify({'registration': AdmissionService.lookup(registration_no, birth_date)})


# ==========================================
# 2. ADMIN PPDB
# ==========================================
@ppdb_bp.route('/admin/registrations')
@login_required
@staff_required
def admin_list():
    query = AdmissionService.list_query(
        status=request.args.get('status'),
        level=request.args.get('level'),
        payment_status=request.args.get('payment_status'),
        search=request.args.get('search'),
    )
    pagination = paginate(query)
    return jsonify({
        'registrations': [r.to_dict() for r in pagination.items],
        'pagination': page_meta(pagination),
    })


@ppdb_bp.route('/admin/registrations/<int:registration_id>')
@login_required
@staff_required
def admin_detail(registration_id):
    registration = AdmissionService.get(registration_id)
    data = registration.to_dict(detail=True)
    data['status_description'] = STATUS_DESCRIPTIONS[registration.status]
    return jsonify({'registration': data})


@ppdb_bp.route('/admin/status', methods=['POST'])
@login_required
@staff_required
def admin_status():
    form = parse_form(RegistrationStatusForm)
    registration = AdmissionService.change_status(
        form.registration_id.data, form.status.data, current_user, reason=form.reason.data or None,
    )
    return jsonify({
        'message': f'Status diubah menjadi {registration.status.name}',
        'registration': registration.to_dict(detail=True),
    })


@ppdb_bp.route('/admin/verify', methods=['POST'])
@login_required
@staff_required
def admin_verify():
    form = parse_form(RegistrationVerifyForm)
    registration = AdmissionService.verify_payment(form.registration_id.data, current_user, notes=form.notes.data or None)
    return jsonify({'message': 'Pembayaran pendaftaran terverifikasi', 'registration': registration.to_dict(detail=True)})


@ppdb_bp.route('/admin/test-schedule', methods=['POST'])
@login_required
@staff_required
def admin_test_schedule():
    form = parse_form(TestScheduleForm)
    registration = AdmissionService.schedule_test(
        form.registration_id.data, form.test_schedule.data, current_user,
        test_location=form.test_location.data or None,
    )
    return jsonify({'message': 'Jadwal tes tersimpan', 'registration': registration.to_dict(detail=True)})


@ppdb_bp.route('/admin/test-score', methods=['POST'])
@login_required
@staff_required
def admin_test_score():
    form = parse_form(TestScoreForm)
    registration = AdmissionService.input_test_score(
        form.registration_id.data, form.quran.data, form.arabic.data, form.interview.data,
        current_user, notes=form.notes.data or None,
    )
    return jsonify({
        'message': f'Nilai tes tersimpan, hasil: {registration.test_result}',
        'registration': registration.to_dict(detail=True),
    })


@ppdb_bp.route('/admin/test-score', methods=['GET'])
@login_required
@staff_required
def admin_rankings():
    return jsonify({'rankings': AdmissionService.rankings(level=request.args.get('level'))})


@ppdb_bp.route('/admin/stats')
@login_required
@staff_required
def admin_stats():
    return jsonify(AdmissionService.stats())


@ppdb_bp.route('/admin/notes', methods=['POST'])
@login_required
@staff_required
def admin_notes():
    form = parse_form(AdminNoteForm)
    entry = AdmissionService.add_note(form.registration_id.data, form.note.data, current_user)
    return jsonify({'message': 'Catatan ditambahkan', 'note': entry}), 201
