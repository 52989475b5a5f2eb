from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from pondok.decorators import role_required
from pondok.errors import NotFound, Forbidden, ValidationFailed
from pondok.extensions import db
from pondok.forms import (
    HafalanRecordForm, HafalanRecordUpdateForm, SetoranForm, parse_form, request_payload,
)
from pondok.models import (
    QuranSurah, HafalanRecord, HafalanSession, HafalanStatus, HafalanAchievement, UserRole,
)
from pondok.services.hafalan_service import HafalanService
from pondok.services.parent_service import ParentService
from pondok.utils.pagination import paginate, page_meta
from pondok.utils.roles import STAFF_ROLES

hafalan_bp = Blueprint('hafalan', __name__)

TEACHING_ROLES = (UserRole.ADMIN, UserRole.TU, UserRole.GURU)


@hafalan_bp.route('/surah')
@login_required
def list_surah():
    query = QuranSurah.query
    juz = request.args.get('juz', type=int)
    if juz:
        query = query.filter(QuranSurah.juz == juz)
    return jsonify({'surah': [s.to_dict() for s in query.order_by(QuranSurah.number).all()]})


# ==========================================
# RECORD HAFALAN
# ==========================================
@hafalan_bp.route('/record', methods=['GET'])
@login_required
@role_required(*TEACHING_ROLES)
def list_records():
    query = HafalanRecord.query
    student_id = request.args.get('student_id', type=int)
    surah_number = request.args.get('surah_number', type=int)
    status = request.args.get('status')
    if student_id:
        query = query.filter(HafalanRecord.student_id == student_id)
    if surah_number:
        query = query.filter(HafalanRecord.surah_number == surah_number)
    if status:
        try:
            query = query.filter(HafalanRecord.status == HafalanStatus[status])
        except KeyError:
            raise ValidationFailed('Status hafalan tidak valid')

    pagination = paginate(query.order_by(HafalanRecord.date.desc(), HafalanRecord.id.desc()))
    return jsonify({
        'records': [r.to_dict() for r in pagination.items],
        'pagination': page_meta(pagination),
    })


@hafalan_bp.route('/record', methods=['POST'])
@login_required
@role_required(*TEACHING_ROLES)
def create_record():
    form = parse_form(HafalanRecordForm)
    record = HafalanService.create_record(form, current_user)
    progress = record.student.hafalan_progress
    return jsonify({
        'message': 'Hafalan berhasil dicatat',
        'record': record.to_dict(),
        'progress': progress.to_dict() if progress else None,
    }), 201


@hafalan_bp.route('/record', methods=['PUT'])
@login_required
@role_required(*TEACHING_ROLES)
def update_record():
    payload = request_payload()
    record_id = payload.get('id')
    record = db.session.get(HafalanRecord, record_id) if isinstance(record_id, int) else None
    if not record:
        raise NotFound('Data hafalan tidak ditemukan')

    form = parse_form(HafalanRecordUpdateForm, payload)
    HafalanService.update_record(record, form, payload, current_user)
    return jsonify({'message': 'Data hafalan diperbarui', 'record': record.to_dict()})


# ==========================================
# SETORAN
# ==========================================
@hafalan_bp.route('/setoran', methods=['POST'])
@login_required
@role_required(*TEACHING_ROLES)
def create_setoran():
    form = parse_form(SetoranForm)
    setoran, progress = HafalanService.create_setoran(form, current_user)
    return jsonify({
        'message': 'Setoran hafalan berhasil dicatat!',
        'setoran': setoran.to_dict(with_records=True),
        'progress': progress.to_dict(),
    }), 201


@hafalan_bp.route('/setoran', methods=['GET'])
@login_required
@role_required(*TEACHING_ROLES)
def list_setoran():
    query = HafalanSession.query
    student_id = request.args.get('student_id', type=int)
    teacher_id = request.args.get('teacher_id', type=int)
    if student_id:
        query = query.filter(HafalanSession.student_id == student_id)
    if teacher_id:
        query = query.filter(HafalanSession.teacher_id == teacher_id)

    pagination = paginate(query.order_by(HafalanSession.session_date.desc(), HafalanSession.id.desc()))
    return jsonify({
        'sessions': [s.to_dict() for s in pagination.items],
        'pagination': page_meta(pagination),
    })


def _get_setoran(setoran_id):
    setoran = db.session.get(HafalanSession, setoran_id)
    if not setoran or setoran.is_deleted:
        raise NotFound('Setoran tidak ditemukan')
    return setoran


@hafalan_bp.route('/setoran/<int:setoran_id>', methods=['GET'])
@login_required
@role_required(*TEACHING_ROLES)
def get_setoran(setoran_id):
    return jsonify({'setoran': _get_setoran(setoran_id).to_dict(with_records=True)})


@hafalan_bp.route('/setoran/<int:setoran_id>', methods=['DELETE'])
@login_required
@role_required(*TEACHING_ROLES)
def delete_setoran(setoran_id):
    setoran = _get_setoran(setoran_id)
    HafalanService.delete_setoran(setoran, current_user)
    return jsonify({'message': 'Setoran berhasil dihapus'})


# ==========================================
# PROGRES & STATISTIK
# ==========================================
@hafalan_bp.route('/progress/<int:student_id>')
@login_required
def student_progress(student_id):
    student = HafalanService.get_student(student_id)
    if current_user.role == UserRole.WALI_MURID:
        ParentService.get_child(current_user.parent_profile, student.id)
    elif current_user.role == UserRole.SISWA:
        if student.user_id != current_user.id:
            raise Forbidden('Akses ditolak')
    elif not current_user.has_role(*STAFF_ROLES, UserRole.GURU):
        raise Forbidden('Akses ditolak')

    progress = student.hafalan_progress
    achievements = HafalanAchievement.query.filter_by(student_id=student.id) \
        .order_by(HafalanAchievement.created_at.desc()).all()
    return jsonify({
        'student': student.to_dict(),
        'progress': progress.to_dict() if progress else None,
        'achievements': [a.to_dict() for a in achievements],
    })


@hafalan_bp.route('/statistics')
@login_required
@role_required(*TEACHING_ROLES)
def statistics():
    limit = request.args.get('limit', 10, type=int)
    return jsonify(HafalanService.statistics(limit=max(1, min(limit, 100))))
