from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from pondok.decorators import role_required, staff_required
from pondok.errors import NotFound, Forbidden
from pondok.extensions import db
from pondok.forms import StudentForm, StudentUpdateForm, PromoteForm, parse_form, request_payload
from pondok.models import Student, UserRole
from pondok.services.parent_service import ParentService
from pondok.services.student_service import StudentService
from pondok.utils.pagination import paginate, page_meta
from pondok.utils.roles import STAFF_ROLES

students_bp = Blueprint('students', __name__)


def _get_student(student_id):
    student = db.session.get(Student, student_id)
    if not student or student.is_deleted:
        raise NotFound('Santri tidak ditemukan')
    return student


def _check_read_access(student):
    """Staff & guru boleh melihat semua, santri hanya dirinya, wali hanya anaknya."""
    if current_user.has_role(*STAFF_ROLES, UserRole.GURU):
        return
    if current_user.role == UserRole.SISWA and student.user_id == current_user.id:
        return
    if current_user.role == UserRole.WALI_MURID:
        ParentService.get_child(current_user.parent_profile, student.id)
        return
    raise Forbidden('Akses ditolak')


@students_bp.route('', methods=['GET'])
@login_required
@role_required(*STAFF_ROLES, UserRole.GURU)
def list_students():
    query = StudentService.search_query(
        search=request.args.get('search'),
        institution_type=request.args.get('institution_type'),
        grade=request.args.get('grade'),
        status=request.args.get('status'),
        class_id=request.args.get('class_id', type=int),
    )
    pagination = paginate(query)
    return jsonify({
        'students': [s.to_dict() for s in pagination.items],
        'pagination': page_meta(pagination),
    })


@students_bp.route('', methods=['POST'])
@login_required
@staff_required
def create_student():
    form = parse_form(StudentForm)
    student = StudentService.create_student(form)
    return jsonify({
        'message': f'Siswa {student.full_name} berhasil ditambahkan!',
        'student': student.to_dict(detail=True),
    }), 201


@students_bp.route('/<int:student_id>', methods=['GET'])
@login_required
def get_student(student_id):
    student = _get_student(student_id)
    _check_read_access(student)
    data = student.to_dict(detail=True)
    data['parent'] = student.parent.to_dict() if student.parent else None
    data['hafalan_progress'] = student.hafalan_progress.to_dict() if student.hafalan_progress else None
    return jsonify({'student': data})


@students_bp.route('/<int:student_id>', methods=['PUT'])
@login_required
@staff_required
def update_student(student_id):
    student = _get_student(student_id)
    payload = request_payload()
    form = parse_form(StudentUpdateForm, payload)
    StudentService.update_student(student, form, payload)
    return jsonify({'message': 'Data siswa diupdate.', 'student': student.to_dict(detail=True)})


@students_bp.route('/<int:student_id>', methods=['DELETE'])
@login_required
@staff_required
def delete_student(student_id):
    student = _get_student(student_id)
    StudentService.delete_student(student)
    return jsonify({'message': 'Data siswa berhasil dihapus (Soft Delete).'})


@students_bp.route('/promote', methods=['POST'])
@login_required
@staff_required
def promote_students():
    form = parse_form(PromoteForm)
    count = StudentService.promote(
        form.student_ids.data,
        target_class_id=form.target_class_id.data,
        target_grade=form.target_grade.data or None,
        graduate=bool(form.graduate.data),
    )
    return jsonify({'message': f'{count} santri berhasil diproses', 'processed': count})
