import logging
from collections import defaultdict
from datetime import date

from pondok.errors import ValidationFailed, NotFound
from pondok.extensions import db
from pondok.models import (
    AcademicYear, ClassRoom, Subject, Grade, GradeType, Attendance,
    AttendanceStatus, Student,
)

logger = logging.getLogger(__name__)

GRADE_WEIGHTS = {'TUGAS': 0.3, 'UH': 0.2, 'UTS': 0.25, 'UAS': 0.25}


def calculate_weighted_final(type_averages):
    """Hitung nilai akhir berbobot dari rata-rata per tipe nilai."""
    total_weighted = 0
    total_weight = 0
    for type_name, avg_score in type_averages.items():
        weight = GRADE_WEIGHTS.get(type_name, 0)
        total_weighted += avg_score * weight
        total_weight += weight
    return round(total_weighted / total_weight, 2) if total_weight > 0 else 0


def attendance_counts(records):
    counts = {status.name: 0 for status in AttendanceStatus}
    for record in records:
        if record.status:
            counts[record.status.name] += 1
    total = len(records)
    counts['total'] = total
    counts['attendance_rate'] = round(counts['HADIR'] / total * 100, 2) if total else 0
    return counts


class AcademicService:
    @staticmethod
    def active_year():
        return AcademicYear.query.filter_by(is_active=True).first()

    @staticmethod
    def create_year(name, semester, is_active=False):
        year = AcademicYear(name=name, semester=semester, is_active=False)
        db.session.add(year)
        db.session.flush()
        if is_active:
            AcademicService._set_active(year)
        db.session.commit()
        return year

    @staticmethod
    def _set_active(year):
        AcademicYear.query.filter(AcademicYear.id != year.id).update({'is_active': False})
        year.is_active = True

    @staticmethod
    def activate_year(year_id):
        year = db.session.get(AcademicYear, year_id)
        if not year:
            raise NotFound('Tahun ajaran tidak ditemukan')
        AcademicService._set_active(year)
        db.session.commit()
        logger.info("Tahun ajaran %s %s diaktifkan", year.name, year.semester)
        return year

    # ==========================================
    # NILAI
    # ==========================================
    @staticmethod
    def save_grades(form, teacher=None):
        subject = db.session.get(Subject, form.subject_id.data)
        if not subject:
            raise NotFound('Mata pelajaran tidak ditemukan')
        year = AcademicService.active_year()
        if not year:
            raise ValidationFailed('Tahun ajaran aktif belum diatur')

        entries = form.entries.data
        student_ids = {entry['student_id'] for entry in entries}
        found = {s.id for s in Student.query.filter(Student.id.in_(student_ids)).all()}
        missing = sorted(student_ids - found)
        if missing:
            raise NotFound(f'Santri tidak ditemukan: {missing}')

        grade_type = GradeType[form.type.data]
        try:
            grades = []
            for entry in entries:
                grade = Grade(
                    student_id=entry['student_id'],
                    subject_id=subject.id,
                    academic_year_id=year.id,
                    teacher_id=teacher.id if teacher else None,
                    type=grade_type,
                    score=entry['score'],
                    notes=entry.get('notes') or None,
                )
                db.session.add(grade)
                grades.append(grade)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return grades

    @staticmethod
    def grades_query(student_id=None, subject_id=None, class_id=None, grade_type=None, academic_year_id=None):
        query = Grade.query
        if student_id:
            query = query.filter(Grade.student_id == student_id)
        if subject_id:
            query = query.filter(Grade.subject_id == subject_id)
        if class_id:
            query = query.join(Student, Student.id == Grade.student_id).filter(Student.current_class_id == class_id)
        if grade_type:
            try:
                query = query.filter(Grade.type == GradeType[grade_type])
            except KeyError:
                raise ValidationFailed('Jenis nilai tidak valid')
        if academic_year_id:
            query = query.filter(Grade.academic_year_id == academic_year_id)
        return query.order_by(Grade.created_at.desc(), Grade.id.desc())

    # ==========================================
    # ABSENSI
    # ==========================================
    @staticmethod
    def save_attendance(form, teacher=None):
        class_room = db.session.get(ClassRoom, form.class_id.data)
        if not class_room:
            raise NotFound('Kelas tidak ditemukan')
        year = AcademicService.active_year()
        att_date = form.date.data

        created = updated = 0
        try:
            for entry in form.entries.data:
                student = db.session.get(Student, entry['student_id'])
                if not student:
                    raise NotFound(f"Santri {entry['student_id']} tidak ditemukan")

                existing = Attendance.query.execution_options(include_deleted=True) \
                    .filter_by(student_id=student.id, date=att_date).first()
                if existing:
                    existing.status = AttendanceStatus[entry['status']]
                    existing.notes = entry.get('notes') or None
                    existing.class_id = class_room.id
                    existing.is_deleted = False
                    updated += 1
                else:
                    db.session.add(Attendance(
                        student_id=student.id,
                        class_id=class_room.id,
                        teacher_id=teacher.id if teacher else None,
                        academic_year_id=year.id if year else None,
                        date=att_date,
                        status=AttendanceStatus[entry['status']],
                        notes=entry.get('notes') or None,
                    ))
                    created += 1
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return {'created': created, 'updated': updated}

    @staticmethod
    def attendance_recap(class_id=None, student_id=None, start=None, end=None):
        query = Attendance.query
        if class_id:
            query = query.filter(Attendance.class_id == class_id)
        if student_id:
            query = query.filter(Attendance.student_id == student_id)
        if start:
            query = query.filter(Attendance.date >= start)
        if end:
            query = query.filter(Attendance.date <= end)
        records = query.order_by(Attendance.date.desc()).all()

        per_student = defaultdict(list)
        for record in records:
            per_student[record.student_id].append(record)

        students = []
        for sid, items in per_student.items():
            student = db.session.get(Student, sid)
            students.append({
                'student_id': sid,
                'full_name': student.full_name if student else None,
                **attendance_counts(items),
            })

        return {
            'summary': attendance_counts(records),
            'students': sorted(students, key=lambda row: row['full_name'] or ''),
            'records': [r.to_dict() for r in records],
        }

    @staticmethod
    def monthly_attendance_rate(student_id, today=None):
        today = today or date.today()
        start = today.replace(day=1)
        records = Attendance.query.filter(
            Attendance.student_id == student_id,
            Attendance.date >= start,
            Attendance.date <= today,
        ).all()
        return attendance_counts(records)['attendance_rate']

    # ==========================================
    # RAPOR
    # ==========================================
    @staticmethod
    def report_card(student, academic_year_id=None):
        year = db.session.get(AcademicYear, academic_year_id) if academic_year_id else AcademicService.active_year()

        query = Grade.query.filter_by(student_id=student.id)
        if year:
            query = query.filter(Grade.academic_year_id == year.id)

        grades_by_subject = defaultdict(list)
        for grade in query.all():
            if grade.subject:
                grades_by_subject[grade.subject].append(grade)

        subjects = []
        for subject, subject_grades in sorted(grades_by_subject.items(), key=lambda item: item[0].name):
            type_scores = defaultdict(list)
            for grade in subject_grades:
                type_scores[grade.type.name].append(grade.score)
            type_averages = {name: round(sum(s) / len(s), 2) for name, s in type_scores.items()}
            final = calculate_weighted_final(type_averages)
            kkm = subject.kkm if subject.kkm is not None else 75.0
            subjects.append({
                'subject_id': subject.id,
                'subject': subject.name,
                'kkm': kkm,
                'averages': type_averages,
                'final_score': final,
                'passed': final >= kkm,
            })

        attendance_query = Attendance.query.filter_by(student_id=student.id)
        if year:
            attendance_query = attendance_query.filter(Attendance.academic_year_id == year.id)

        finals = [row['final_score'] for row in subjects]
        return {
            'student': student.to_dict(),
            'academic_year': year.to_dict() if year else None,
            'subjects': subjects,
            'average': round(sum(finals) / len(finals), 2) if finals else 0,
            'attendance': attendance_counts(attendance_query.all()),
        }
