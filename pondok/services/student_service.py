import logging
from datetime import date

from flask import current_app
from sqlalchemy import or_

from pondok.errors import ValidationFailed, NotFound, Conflict
from pondok.extensions import db
from pondok.models import (
    User, UserRole, Parent, Student, StudentStatus, StudentClassHistory,
    ClassRoom, AcademicYear, Gender, InstitutionType,
)
from pondok.utils.nis import generate_nis
from pondok.utils.phone import phone_variants

logger = logging.getLogger(__name__)


def _default_password():
    return current_app.config.get('DEFAULT_PASSWORD', '123456')


class StudentService:
    # ==========================================
    # AKUN WALI & SANTRI
    # ==========================================
    @staticmethod
    def find_parent_by_phone(phone):
        variants = phone_variants(phone)
        if not variants:
            return None
        return Parent.query.filter(Parent.phone.in_(variants)).first()

    @staticmethod
    def ensure_parent(full_name, phone, email=None, job=None, address=None):
        """
        Cari profil wali berdasarkan No HP, buat akun WALI_MURID jika belum ada.
        Tidak commit, dipakai di dalam transaksi pemanggil.
        """
        if not phone:
            return None

        parent = StudentService.find_parent_by_phone(phone)
        if parent:
            return parent

        username = phone.strip()
        user = User.query.filter_by(username=username).first()
        if user and user.role != UserRole.WALI_MURID:
            raise Conflict(f'No HP {username} sudah dipakai akun lain')

        if not user:
            if email and User.query.filter_by(email=email).first():
                email = None
            user = User(
                username=username,
                email=email or f'wali.{username}@pondok.id',
                role=UserRole.WALI_MURID,
                must_change_password=True,
            )
            user.set_password(_default_password())
            db.session.add(user)
            db.session.flush()

        parent = Parent(
            user_id=user.id,
            full_name=full_name or username,
            phone=username,
            job=job,
            address=address,
        )
        db.session.add(parent)
        db.session.flush()
        return parent

    @staticmethod
    def create_student_user(nis):
        if User.query.filter_by(username=nis).first():
            raise Conflict(f'NIS {nis} sudah terdaftar sebagai user')
        user = User(
            username=nis,
            email=f'{nis.lower()}@santri.pondok.id',
            role=UserRole.SISWA,
            must_change_password=True,
        )
        user.set_password(_default_password())
        db.session.add(user)
        db.session.flush()
        return user

    # ==========================================
    # CRUD SANTRI
    # ==========================================
    @staticmethod
    def search_query(search=None, institution_type=None, grade=None, status=None, class_id=None):
        query = Student.query
        if search:
            term = f'%{search.strip()}%'
            query = query.filter(or_(
                Student.full_name.ilike(term),
                Student.nis.ilike(term),
                Student.nisn.ilike(term),
                Student.father_phone.ilike(term),
                Student.mother_phone.ilike(term),
            ))
        if institution_type:
            try:
                query = query.filter(Student.institution_type == InstitutionType[institution_type])
            except KeyError:
                raise ValidationFailed('Jenjang tidak valid')
        if grade:
            query = query.filter(Student.grade == grade)
        if status:
            try:
                query = query.filter(Student.status == StudentStatus[status])
            except KeyError:
                raise ValidationFailed('Status tidak valid')
        if class_id:
            query = query.filter(Student.current_class_id == class_id)
        return query.order_by(Student.full_name)

    @staticmethod
    def create_student(form):
        level = InstitutionType[form.institution_type.data]
        year = form.enrollment_year.data or str(date.today().year)

        nis = form.nis.data or generate_nis(level, int(year))
        if Student.query.execution_options(include_deleted=True).filter_by(nis=nis).first():
            raise Conflict(f'NIS {nis} sudah terdaftar')
        if form.nisn.data and Student.query.filter_by(nisn=form.nisn.data).first():
            raise Conflict(f'NISN {form.nisn.data} sudah terdaftar')
        if form.class_id.data and not db.session.get(ClassRoom, form.class_id.data):
            raise NotFound('Kelas tidak ditemukan')

        try:
            user = StudentService.create_student_user(nis)
            parent_phone = form.parent_phone.data or form.father_phone.data or form.mother_phone.data
            parent = StudentService.ensure_parent(
                form.parent_name.data or form.father_name.data or form.mother_name.data,
                parent_phone,
                email=form.parent_email.data,
                job=form.parent_job.data,
                address=form.address.data,
            )

            student = Student(
                user_id=user.id,
                parent_id=parent.id if parent else None,
                nis=nis,
                nisn=form.nisn.data or None,
                full_name=form.full_name.data,
                nickname=form.nickname.data or None,
                gender=Gender[form.gender.data],
                place_of_birth=form.place_of_birth.data or None,
                date_of_birth=form.date_of_birth.data,
                address=form.address.data or None,
                institution_type=level,
                grade=form.grade.data or None,
                current_class_id=form.class_id.data or None,
                enrollment_year=year,
                custom_spp_fee=form.custom_spp_fee.data,
                father_name=form.father_name.data or None,
                father_phone=form.father_phone.data or None,
                mother_name=form.mother_name.data or None,
                mother_phone=form.mother_phone.data or None,
                status=StudentStatus.ACTIVE,
            )
            db.session.add(student)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Santri %s (%s) ditambahkan", student.full_name, student.nis)
        return student

    @staticmethod
    def update_student(student, form, payload):
        # Hanya field yang dikirim yang diubah
        enum_fields = {'gender': Gender, 'institution_type': InstitutionType, 'status': StudentStatus}
        for name, field in form._fields.items():
            if name not in payload:
                continue
            value = field.data
            if name in enum_fields:
                value = enum_fields[name][value] if value else None
                if value is None:
                    continue
            elif name == 'class_id':
                if value and not db.session.get(ClassRoom, value):
                    raise NotFound('Kelas tidak ditemukan')
                student.current_class_id = value or None
                continue
            elif name == 'nisn' and value:
                other = Student.query.filter(Student.nisn == value, Student.id != student.id).first()
                if other:
                    raise Conflict(f'NISN {value} sudah terdaftar')
            elif isinstance(value, str):
                value = value or None
            setattr(student, name, value)

        if 'full_name' in payload and not student.full_name:
            raise ValidationFailed('Nama santri wajib diisi')

        db.session.commit()
        return student

    @staticmethod
    def delete_student(student):
        if student.user:
            student.user.is_deleted = True
        student.delete()
        logger.info("Santri %s dihapus (soft delete)", student.nis)

    @staticmethod
    def promote(student_ids, target_class_id=None, target_grade=None, graduate=False):
        """Naik kelas / lulus massal. Return jumlah santri yang diproses."""
        if not graduate and not target_class_id and not target_grade:
            raise ValidationFailed('Pilih kelas tujuan, tingkat tujuan, atau kelulusan')

        target_class = None
        if target_class_id:
            target_class = db.session.get(ClassRoom, target_class_id)
            if not target_class:
                raise NotFound('Kelas tujuan tidak ditemukan')

        students = Student.query.filter(Student.id.in_(student_ids)).all()
        found_ids = {s.id for s in students}
        missing = [sid for sid in student_ids if sid not in found_ids]
        if missing:
            raise NotFound(f'Santri tidak ditemukan: {missing}')

        active_year = AcademicYear.query.filter_by(is_active=True).first()
        try:
            for student in students:
                if student.current_class_id:
                    db.session.add(StudentClassHistory(
                        student_id=student.id,
                        class_id=student.current_class_id,
                        academic_year_id=active_year.id if active_year else None,
                        status='Graduated' if graduate else 'Promoted',
                    ))
                if graduate:
                    student.status = StudentStatus.GRADUATED
                    student.current_class_id = None
                    continue
                if target_class:
                    student.current_class_id = target_class.id
                if target_grade:
                    student.grade = target_grade
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("%s santri diproses (%s)", len(students), 'lulus' if graduate else 'naik kelas')
        return len(students)
