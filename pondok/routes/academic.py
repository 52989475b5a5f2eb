from datetime import date

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from pondok.decorators import role_required, staff_required
from pondok.errors import NotFound, Forbidden, ValidationFailed, Conflict
from pondok.extensions import db
from pondok.forms import (
    AcademicYearForm, ClassRoomForm, SubjectForm, BulkGradeForm, BulkAttendanceForm, parse_form,
)
from pondok.models import AcademicYear, ClassRoom, Subject, Teacher, Student, InstitutionType, UserRole
from pondok.services.academic_service import AcademicService
from pondok.services.parent_service import ParentService
from pondok.utils.pagination import paginate, page_meta
from pondok.utils.roles import STAFF_ROLES

academic_bp = Blueprint('academic', __name__)

TEACHING_ROLES = (UserRole.ADMIN, UserRole.TU, UserRole.GURU)


def _date_arg(name):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ValidationFailed(f'Format {name} harus YYYY-MM-DD')


# ==========================================
# TAHUN AJARAN
# ==========================================
@academic_bp.route('/years', methods=['GET'])
@login_required
def list_years():
    years = AcademicYear.query.order_by(AcademicYear.name.desc(), AcademicYear.semester).all()
    return jsonify({'years': [y.to_dict() for y in years]})


@academic_bp.route('/years', methods=['POST'])
@login_required
@staff_required
def create_year():
    form = parse_form(AcademicYearForm)
    year = AcademicService.create_year(form.name.data, form.semester.data, is_active=form.is_active.data)
    return jsonify({'message': 'Tahun ajaran ditambahkan', 'year': year.to_dict()}), 201


@academic_bp.route('/years/<int:year_id>/activate', methods=['POST'])
@login_required
@staff_required
def activate_year(year_id):
    year = AcademicService.activate_year(year_id)
    return jsonify({'message': f'Tahun ajaran {year.name} {year.semester} aktif', 'year': year.to_dict()})


# ==========================================
# KELAS & MAPEL
# ==========================================
@academic_bp.route('/classes', methods=['GET'])
@login_required
def list_classes():
    query = ClassRoom.query
    institution_type = request.args.get('institution_type')
    if institution_type:
        try:
            query = query.filter(ClassRoom.institution_type == InstitutionType[institution_type])
        except KeyError:
            raise ValidationFailed('Jenjang tidak valid')
    classes = query.order_by(ClassRoom.grade_level, ClassRoom.name).all()

    items = []
    for class_room in classes:
        data = class_room.to_dict()
        data['student_count'] = Student.query.filter_by(current_class_id=class_room.id).count()
        data['homeroom_teacher'] = class_room.homeroom_teacher.full_name if class_room.homeroom_teacher else None
        items.append(data)
    return jsonify({'classes': items})


@academic_bp.route('/classes', methods=['POST'])
@login_required
@staff_required
def create_class():
    form = parse_form(ClassRoomForm)
    if form.homeroom_teacher_id.data and not db.session.get(Teacher, form.homeroom_teacher_id.data):
        raise NotFound('Wali kelas tidak ditemukan')
    year_id = form.academic_year_id.data
    if year_id and not db.session.get(AcademicYear, year_id):
        raise NotFound('Tahun ajaran tidak ditemukan')
    if not year_id:
        active = AcademicService.active_year()
        year_id = active.id if active else None

    class_room = ClassRoom(
        name=form.name.data,
        grade_level=form.grade_level.data,
        institution_type=InstitutionType[form.institution_type.data] if form.institution_type.data else None,
        homeroom_teacher_id=form.homeroom_teacher_id.data,
        academic_year_id=year_id,
    )
    class_room.save()
    return jsonify({'message': f'Kelas {class_room.name} ditambahkan', 'class': class_room.to_dict()}), 201


@academic_bp.route('/subjects', methods=['GET'])
@login_required
def list_subjects():
    subjects = Subject.query.order_by(Subject.name).all()
    return jsonify({'subjects': [s.to_dict() for s in subjects]})


@academic_bp.route('/subjects', methods=['POST'])
@login_required
@staff_required
def create_subject():
    form = parse_form(SubjectForm)
    if Subject.query.execution_options(include_deleted=True).filter_by(code=form.code.data).first():
        raise Conflict(f'Kode mapel {form.code.data} sudah digunakan')
    subject = Subject(
        code=form.code.data,
        name=form.name.data,
        kkm=form.kkm.data if form.kkm.data is not None else 75.0,
    )
    subject.save()
    return jsonify({'message': 'Mata pelajaran ditambahkan', 'subject': subject.to_dict()}), 201


# ==========================================
# NILAI
# ==========================================
@academic_bp.route('/grades', methods=['GET'])
@login_required
@role_required(*TEACHING_ROLES)
def list_grades():
    query = AcademicService.grades_query(
        student_id=request.args.get('student_id', type=int),
        subject_id=request.args.get('subject_id', type=int),
        class_id=request.args.get('class_id', type=int),
        grade_type=request.args.get('type'),
        academic_year_id=request.args.get('academic_year_id', type=int),
    )
    pagination = paginate(query)
    return jsonify({
        'grades': [g.to_dict() for g in pagination.items],
        'pagination': page_meta(pagination),
    })


@academic_bp.route('/grades', methods=['POST'])
@login_required
@role_required(*TEACHING_ROLES)
def save_grades():
    form = parse_form(BulkGradeForm)
    grades = AcademicService.save_grades(form, current_user.teacher_profile)
    return jsonify({
        'message': f'{len(grades)} nilai berhasil disimpan',
        'saved': len(grades),
        'grades': [g.to_dict() for g in grades],
    }), 201


# ==========================================
# ABSENSI
# ==========================================
@academic_bp.route('/attendance', methods=['GET'])
@login_required
@role_required(*TEACHING_ROLES)
def attendance_recap():
    start = _date_arg('start_date')
    end = _date_arg('end_date')
    if start and end and start > end:
        raise ValidationFailed('Tanggal awal harus sebelum tanggal akhir')
    recap = AcademicService.attendance_recap(
        class_id=request.args.get('class_id', type=int),
        student_id=request.args.get('student_id', type=int),
        start=start,
        end=end,
    )
    return jsonify(recap)


@academic_bp.route('/attendance', methods=['POST'])
@login_required
@role_required(*TEACHING_ROLES)
def save_attendance():
    form = parse_form(BulkAttendanceForm)
    result = AcademicService.save_attendance(form, current_user.teacher_profile)
    return jsonify({'message': 'Absensi tersimpan', **result})


# ==========================================
# RAPOR
# ==========================================
@academic_bp.route('/report-cards/<int:student_id>')
@login_required
def report_card(student_id):
    student = db.session.get(Student, student_id)
    if not student:
        raise NotFound('Santri tidak ditemukan')

    if current_user.role == UserRole.WALI_MURID:
        ParentService.get_child(current_user.parent_profile, student.id)
    elif current_user.role == UserRole.SISWA:
        if student.user_id != current_user.id:
            raise Forbidden('Akses ditolak')
    elif not current_user.has_role(*STAFF_ROLES, UserRole.GURU):
        raise Forbidden('Akses ditolak')

    return jsonify(AcademicService.report_card(student, request.args.get('academic_year_id', type=int)))
