from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from pondok.decorators import role_required
from pondok.errors import NotFound, ValidationFailed
from pondok.models import Attendance, Grade, UserRole
from pondok.services.academic_service import AcademicService, attendance_counts
from pondok.services.parent_service import ParentService
from pondok.utils.announcements import get_announcements_for_user, mark_announcements_as_read

parent_bp = Blueprint('parent', __name__)


def _parent():
    parent = current_user.parent_profile
    if not parent:
        raise NotFound('Data wali murid tidak ditemukan')
    return parent


@parent_bp.route('/children')
@login_required
@role_required(UserRole.WALI_MURID)
def children():
    items = [ParentService.child_summary(child) for child in ParentService.children_of(_parent())]
    return jsonify({'children': items})


@parent_bp.route('/dashboard')
@login_required
@role_required(UserRole.WALI_MURID)
def dashboard():
    return jsonify(ParentService.dashboard(_parent(), current_user))


@parent_bp.route('/hafalan')
@login_required
@role_required(UserRole.WALI_MURID)
def hafalan():
    student_id = request.args.get('student_id', type=int)
    if not student_id:
        raise ValidationFailed('student_id wajib diisi')
    student = ParentService.get_child(_parent(), student_id)
    return jsonify(ParentService.hafalan(student, limit=request.args.get('limit', 20, type=int)))


@parent_bp.route('/payments/<int:student_id>')
@login_required
@role_required(UserRole.WALI_MURID)
def payments(student_id):
    student = ParentService.get_child(_parent(), student_id)
    return jsonify(ParentService.payments(student))


@parent_bp.route('/grades/<int:student_id>')
@login_required
@role_required(UserRole.WALI_MURID)
def grades(student_id):
    student = ParentService.get_child(_parent(), student_id)
    academic_year_id = request.args.get('academic_year_id', type=int)

    query = Grade.query.filter_by(student_id=student.id)
    if academic_year_id:
        query = query.filter(Grade.academic_year_id == academic_year_id)
    items = query.order_by(Grade.created_at.desc()).all()
    return jsonify({
        'student': student.to_dict(),
        'grades': [g.to_dict() for g in items],
        'report_card': AcademicService.report_card(student, academic_year_id),
    })


@parent_bp.route('/attendance/<int:student_id>')
@login_required
@role_required(UserRole.WALI_MURID)
def attendance(student_id):
    student = ParentService.get_child(_parent(), student_id)
    records = Attendance.query.filter_by(student_id=student.id) \
        .order_by(Attendance.date.desc()).limit(request.args.get('limit', 60, type=int)).all()
    return jsonify({
        'student': student.to_dict(),
        'summary': attendance_counts(records),
        'monthly_rate': AcademicService.monthly_attendance_rate(student.id),
        'records': [r.to_dict() for r in records],
    })


@parent_bp.route('/announcements')
@login_required
@role_required(UserRole.WALI_MURID)
def announcements():
    announcements, items, unread_count = get_announcements_for_user(current_user)
    if request.args.get('mark_read') == 'true':
        mark_announcements_as_read(current_user, announcements)
    return jsonify({'announcements': items, 'unread_count': unread_count})
