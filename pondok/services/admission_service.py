import logging
import random
from datetime import date, datetime

from sqlalchemy import func

from pondok.errors import ValidationFailed, NotFound, Conflict
from pondok.extensions import db
from pondok.models import (
    AppConfig, Registration, RegistrationStatus, RegistrationPaymentStatus,
    InstitutionType, Gender, Student, StudentStatus,
)
from pondok.services.billing_service import BillingService
from pondok.services.notification_service import NotificationService
from pondok.services.student_service import StudentService
from pondok.utils.audit import log_audit
from pondok.utils.nis import generate_nis

logger = logging.getLogger(__name__)

# Nilai minimal kelulusan tes per jenjang
PASSING_SCORES = {
    InstitutionType.TK: 60,
    InstitutionType.SD: 65,
    InstitutionType.PONDOK: 70,
}

DEFAULT_REGISTRATION_FEES = {
    InstitutionType.TK: 100000,
    InstitutionType.SD: 150000,
    InstitutionType.PONDOK: 250000,
}

STATUS_DESCRIPTIONS = {
    RegistrationStatus.DRAFT: 'Draft - Belum dikirim',
    RegistrationStatus.SUBMITTED: 'Pendaftaran telah diterima',
    RegistrationStatus.DOCUMENT_CHECK: 'Dokumen sedang diperiksa',
    RegistrationStatus.VERIFIED: 'Dokumen terverifikasi',
    RegistrationStatus.TEST_SCHEDULED: 'Jadwal tes telah ditentukan',
    RegistrationStatus.TEST_TAKEN: 'Tes telah dilakukan',
    RegistrationStatus.PASSED: 'Lulus seleksi',
    RegistrationStatus.FAILED: 'Tidak lulus seleksi',
    RegistrationStatus.REGISTERED: 'Terdaftar sebagai santri',
}

TEST_STATUSES = (RegistrationStatus.TEST_SCHEDULED, RegistrationStatus.TEST_TAKEN)


def passing_score(level):
    return PASSING_SCORES.get(level, 65)


def registration_fee(level):
    """Biaya pendaftaran dari AppConfig (ppdb_fee_<jenjang>) atau default."""
    config = AppConfig.query.filter_by(key=f'ppdb_fee_{level.name.lower()}').first()
    if config and config.value:
        try:
            return float(config.value)
        except ValueError:
            logger.warning("AppConfig %s bukan angka: %s", config.key, config.value)
    return float(DEFAULT_REGISTRATION_FEES.get(level, 0))


class AdmissionService:
    # ==========================================
    # PUBLIK
    # ==========================================
    @staticmethod
    def generate_registration_no(year=None):
        year = year or date.today().year
        while True:
            registration_no = f'PPDB-{year}-{random.randint(0, 9999):04d}'
            exists = Registration.query.execution_options(include_deleted=True) \
                .filter_by(registration_no=registration_no).first()
            if not exists:
                return registration_no

    @staticmethod
    def register(form):
        if not (form.father_phone.data or form.mother_phone.data or form.guardian_phone.data):
            raise ValidationFailed('Minimal satu No HP orang tua/wali harus diisi')

        level = InstitutionType[form.level.data]
        submit = bool(form.submit.data)
        registration = Registration(
            registration_no=AdmissionService.generate_registration_no(),
            level=level,
            grade_target=form.grade_target.data or None,
            status=RegistrationStatus.SUBMITTED if submit else RegistrationStatus.DRAFT,
            payment_status=RegistrationPaymentStatus.UNPAID,
            registration_fee=registration_fee(level),
            full_name=form.full_name.data,
            nickname=form.nickname.data or None,
            nisn=form.nisn.data or None,
            gender=Gender[form.gender.data],
            birth_place=form.birth_place.data,
            birth_date=form.birth_date.data,
            address=form.address.data,
            phone=form.phone.data or None,
            email=form.email.data or None,
            previous_school=form.previous_school.data or None,
            special_needs=form.special_needs.data or None,
            father_name=form.father_name.data,
            father_job=form.father_job.data or None,
            father_phone=form.father_phone.data or None,
            mother_name=form.mother_name.data,
            mother_job=form.mother_job.data or None,
            mother_phone=form.mother_phone.data or None,
            guardian_name=form.guardian_name.data or None,
            guardian_phone=form.guardian_phone.data or None,
            guardian_relation=form.guardian_relation.data or None,
            documents=[doc for doc in form.documents.data if doc],
            admin_notes=[],
        )
        db.session.add(registration)
        if submit:
            AdmissionService._notify_status(registration)
        db.session.commit()
        logger.info("Pendaftaran %s dibuat (%s)", registration.registration_no, registration.status.name)
        return registration

    @staticmethod
    def submit(registration_no):
        registration = Registration.query.filter_by(registration_no=registration_no).first()
        if not registration:
            raise NotFound('Data pendaftaran tidak ditemukan')
        if registration.status != RegistrationStatus.DRAFT:
            raise Conflict('Pendaftaran sudah dikirim')

        registration.status = RegistrationStatus.SUBMITTED
        AdmissionService._notify_status(registration)
        db.session.commit()
        return registration

    @staticmethod
    def lookup(registration_no, birth_date):
        registration = None
        if registration_no and birth_date:
            registration = Registration.query.filter_by(
                registration_no=registration_no, birth_date=birth_date,
            ).first()
        if not registration:
            raise NotFound('Data pendaftaran tidak ditemukan. Periksa nomor pendaftaran dan tanggal lahir.')

        data = registration.to_dict()
        data['status_description'] = STATUS_DESCRIPTIONS[registration.status]
        data['registration_fee'] = registration.registration_fee
        data['test_location'] = registration.test_location
        return data

    # ==========================================
    # ADMIN
    # ==========================================
    @staticmethod
    def get(registration_id):
        registration = db.session.get(Registration, registration_id)
        if not registration:
            raise NotFound('Data pendaftaran tidak ditemukan')
        return registration

    @staticmethod
    def list_query(status=None, level=None, payment_status=None, search=None):
        query = Registration.query
        try:
            if status:
                query = query.filter(Registration.status == RegistrationStatus[status])
            if level:
                query = query.filter(Registration.level == InstitutionType[level])
            if payment_status:
                query = query.filter(Registration.payment_status == RegistrationPaymentStatus[payment_status])
        except KeyError as e:
            raise ValidationFailed(f'Filter tidak valid: {e.args[0]}')
        if search:
            term = f'%{search.strip()}%'
            query = query.filter(db.or_(
                Registration.full_name.ilike(term),
                Registration.registration_no.ilike(term),
                Registration.nisn.ilike(term),
            ))
        return query.order_by(Registration.created_at.desc(), Registration.id.desc())

    @staticmethod
    def change_status(registration_id, status, user, reason=None):
        registration = AdmissionService.get(registration_id)
        try:
            new_status = RegistrationStatus[status]
        except KeyError:
            raise ValidationFailed('Status tidak valid')

        old_status = registration.status
        try:
            registration.status = new_status
            if new_status == RegistrationStatus.VERIFIED:
                registration.verified_by = user.id
                registration.verified_at = datetime.utcnow()
            if new_status in (RegistrationStatus.FAILED, RegistrationStatus.DOCUMENT_CHECK):
                registration.rejection_reason = reason
            if new_status == RegistrationStatus.REGISTERED:
                AdmissionService.create_student(registration, user)

            log_audit('UPDATE_STATUS', 'Registration', registration.id, {
                'from': old_status.name, 'to': new_status.name, 'reason': reason,
            })
            AdmissionService._notify_status(registration)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Status pendaftaran %s: %s -> %s", registration.registration_no, old_status.name, new_status.name)
        return registration

    @staticmethod
    def verify_payment(registration_id, user, notes=None):
        registration = AdmissionService.get(registration_id)
        if registration.payment_status == RegistrationPaymentStatus.VERIFIED:
            raise Conflict('Pembayaran pendaftaran sudah terverifikasi')

        try:
            registration.payment_status = RegistrationPaymentStatus.VERIFIED
            registration.payment_date = registration.payment_date or datetime.utcnow()
            registration.verified_by = user.id
            registration.verified_at = datetime.utcnow()
            if registration.status == RegistrationStatus.PASSED:
                registration.status = RegistrationStatus.REGISTERED
                AdmissionService.create_student(registration, user)
                AdmissionService._notify_status(registration)

            log_audit('VERIFY_PAYMENT', 'Registration', registration.id, {'notes': notes})
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return registration

    @staticmethod
    def schedule_test(registration_id, test_schedule, user, test_location=None):
        registration = AdmissionService.get(registration_id)
        if registration.status in (RegistrationStatus.DRAFT, RegistrationStatus.REGISTERED):
            raise Conflict(f'Tidak bisa menjadwalkan tes untuk status {registration.status.name}')

        registration.test_schedule = test_schedule
        registration.test_location = test_location or registration.test_location
        registration.status = RegistrationStatus.TEST_SCHEDULED
        log_audit('SCHEDULE_TEST', 'Registration', registration.id, {
            'test_schedule': test_schedule.isoformat(), 'test_location': test_location,
        })
        schedule_text = test_schedule.strftime('%d-%m-%Y %H:%M')
        NotificationService.queue(
            registration.parent_phone(),
            f'Assalamualaikum. Jadwal tes PPDB {registration.full_name} ({registration.registration_no}): '
            f'{schedule_text} di {registration.test_location or "pondok"}.',
        )
        db.session.commit()
        return registration

    @staticmethod
    def input_test_score(registration_id, quran, arabic, interview, user, notes=None):
        registration = AdmissionService.get(registration_id)
        for name, value in (('quran', quran), ('arabic', arabic), ('interview', interview)):
            if value is None or not 0 <= value <= 100:
                raise ValidationFailed(f'Nilai {name} harus 0-100')

        total = round((quran + arabic + interview) / 3)
        result = 'PASSED' if total >= passing_score(registration.level) else 'FAILED'

        try:
            registration.test_score = {'quran': quran, 'arabic': arabic, 'interview': interview, 'total': total}
            registration.test_result = result
            if registration.status in TEST_STATUSES:
                registration.status = RegistrationStatus[result]
            if result == 'PASSED' and registration.payment_status == RegistrationPaymentStatus.VERIFIED \
                    and registration.status == RegistrationStatus.PASSED:
                registration.status = RegistrationStatus.REGISTERED
                AdmissionService.create_student(registration, user)

            log_audit('INPUT_TEST_SCORE', 'Registration', registration.id, {
                'quran': quran, 'arabic': arabic, 'interview': interview,
                'total': total, 'result': result, 'notes': notes,
            })
            AdmissionService._notify_status(registration)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return registration

    @staticmethod
    def rankings(level=None):
        """Urutkan pendaftar lulus berdasarkan nilai total, simpan peringkatnya."""
        query = Registration.query.filter(
            Registration.test_result == 'PASSED',
            Registration.test_score.isnot(None),
        )
        if level:
            try:
                query = query.filter(Registration.level == InstitutionType[level])
            except KeyError:
                raise ValidationFailed('Jenjang tidak valid')

        registrations = sorted(
            query.all(),
            key=lambda r: ((r.test_score or {}).get('total') or 0, -r.id),
            reverse=True,
        )
        for index, registration in enumerate(registrations, start=1):
            registration.ranking = index
        db.session.commit()

        return [{
            'id': r.id,
            'registration_no': r.registration_no,
            'full_name': r.full_name,
            'level': r.level.name,
            'test_score': r.test_score,
            'total_score': (r.test_score or {}).get('total') or 0,
            'ranking': r.ranking,
        } for r in registrations]

    @staticmethod
    def stats():
        def _group(column):
            rows = db.session.query(column, func.count(Registration.id)) \
                .filter(Registration.is_deleted.is_(False)).group_by(column).all()
            return {key.name if hasattr(key, 'name') else (key or 'UNKNOWN'): count for key, count in rows}

        total = Registration.query.count()
        by_status = _group(Registration.status)
        return {
            'total': total,
            'by_status': by_status,
            'by_level': _group(Registration.level),
            'by_payment_status': _group(Registration.payment_status),
            'by_test_result': {k: v for k, v in _group(Registration.test_result).items() if k != 'UNKNOWN'},
            'completion_rate': round(by_status.get('REGISTERED', 0) / total * 100) if total else 0,
        }

    @staticmethod
    def add_note(registration_id, note, user):
        registration = AdmissionService.get(registration_id)
        notes = list(registration.admin_notes or [])
        entry = {
            'note': note,
            'author_id': user.id,
            'author': user.username,
            'created_at': datetime.utcnow().isoformat(),
        }
        notes.append(entry)
        registration.admin_notes = notes
        log_audit('ADD_NOTE', 'Registration', registration.id, {'note': note})
        db.session.commit()
        return entry

    # ==========================================
    # PEMBUATAN SANTRI
    # ==========================================
    @staticmethod
    def create_student(registration, user=None):
        """
        Buat santri + akun wali/santri + tagihan pendaftaran dari data PPDB.
        Idempotent: jika santri sudah ada, kembalikan yang lama. Tidak commit.
        """
        existing = Student.query.execution_options(include_deleted=True) \
            .filter_by(registration_id=registration.id).first()
        if existing:
            return existing

        year = date.today().year
        nis = generate_nis(registration.level, year)
        student_user = StudentService.create_student_user(nis)

        parent_phone = registration.parent_phone()
        parent_name = registration.father_name or registration.mother_name or registration.guardian_name
        if registration.guardian_phone and parent_phone == registration.guardian_phone:
            parent_name = registration.guardian_name or parent_name
        parent = StudentService.ensure_parent(
            parent_name, parent_phone,
            email=registration.email,
            job=registration.father_job or registration.mother_job,
            address=registration.address,
        )

        student = Student(
            user_id=student_user.id,
            parent_id=parent.id if parent else None,
            registration_id=registration.id,
            nis=nis,
            nisn=registration.nisn or None,
            full_name=registration.full_name,
            nickname=registration.nickname,
            gender=registration.gender,
            place_of_birth=registration.birth_place,
            date_of_birth=registration.birth_date,
            address=registration.address,
            institution_type=registration.level,
            grade=registration.grade_target,
            status=StudentStatus.ACTIVE,
            enrollment_year=str(year),
            father_name=registration.father_name,
            father_phone=registration.father_phone,
            mother_name=registration.mother_name,
            mother_phone=registration.mother_phone,
        )
        db.session.add(student)
        db.session.flush()

        bills = BillingService.issue_registration_bills(student, user_id=user.id if user else None)
        log_audit('CREATE_STUDENT', 'Student', student.id, {
            'registration_no': registration.registration_no, 'nis': nis, 'bills': len(bills),
        })
        logger.info("Santri %s dibuat dari pendaftaran %s", nis, registration.registration_no)
        return student

    @staticmethod
    def _notify_status(registration):
        description = STATUS_DESCRIPTIONS.get(registration.status, registration.status.value)
        NotificationService.queue(
            registration.parent_phone(),
            f'Assalamualaikum. Status pendaftaran {registration.full_name} '
            f'({registration.registration_no}): {description}.',
        )
