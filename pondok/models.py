from pondok.extensions import db
from datetime import datetime
import enum
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash


def _iso(value):
    return value.isoformat() if value else None


def _enum(value):
    return value.name if value else None


# ==========================================
# 0. BASE MODEL
# ==========================================
class BaseModel(db.Model):
    """
    Kelas Abstract yang akan diwarisi oleh semua model.
    Menyediakan fitur Timestamp otomatis dan Soft Delete.
    """
    __abstract__ = True

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    is_deleted = db.Column(db.Boolean, default=False)  # Soft Delete flag

    def save(self):
        db.session.add(self)
        db.session.commit()

    def delete(self):
        """Soft delete: data tidak hilang, hanya disembunyikan."""
        self.is_deleted = True
        db.session.commit()


# ==========================================
# 1. ENUMS
# ==========================================
class UserRole(enum.Enum):
    ADMIN = "admin"
    TU = "tata_usaha"
    GURU = "teacher"
    WALI_MURID = "wali_murid"
    SISWA = "student"


class Gender(enum.Enum):
    L = "Laki-laki"
    P = "Perempuan"


class InstitutionType(enum.Enum):
    TK = "TK"
    SD = "SD"
    PONDOK = "Pondok"


class StudentStatus(enum.Enum):
    ACTIVE = "Aktif"
    INACTIVE = "Tidak Aktif"
    GRADUATED = "Lulus"
    TRANSFERRED = "Pindah"


class AttendanceStatus(enum.Enum):
    HADIR = "Hadir"
    SAKIT = "Sakit"
    IZIN = "Izin"
    ALPA = "Alpa"


class GradeType(enum.Enum):
    TUGAS = "Tugas"
    UH = "Ulangan Harian"
    UTS = "UTS"
    UAS = "UAS"
    SIKAP = "Sikap"


class HafalanStatus(enum.Enum):
    BARU = "Baru"
    MURAJAAH = "Muraja'ah"
    LANCAR = "Lancar"
    MUTQIN = "Mutqin"


class HafalanQuality(enum.Enum):
    A = "Sangat Baik"
    B = "Baik"
    C = "Cukup"


class HafalanSessionType(enum.Enum):
    SETORAN_BARU = "Setoran Baru"
    MURAJAAH = "Muraja'ah"
    TES_HAFALAN = "Tes Hafalan"
    TALAQQI = "Talaqqi"


class HafalanLevel(enum.Enum):
    PEMULA = "Pemula"
    MENENGAH = "Menengah"
    LANJUT = "Lanjut"
    HAFIDZ = "Hafidz"


class BillCategory(enum.Enum):
    TUITION = "SPP"
    REGISTRATION = "Pendaftaran"
    MATERIAL = "Buku & Seragam"
    ACTIVITY = "Kegiatan"
    OTHER = "Lainnya"


class BillFrequency(enum.Enum):
    MONTHLY = "Bulanan"
    QUARTERLY = "Triwulan"
    ANNUALLY = "Tahunan"
    ONE_TIME = "Sekali Bayar"


class PenaltyType(enum.Enum):
    NONE = "Tanpa Denda"
    FIXED = "Nominal Tetap"
    PERCENTAGE = "Persentase"


class BillStatus(enum.Enum):
    OUTSTANDING = "Belum Lunas"
    PARTIAL = "Cicilan"
    PAID = "Lunas"
    OVERDUE = "Terlambat"
    CANCELLED = "Dibatalkan"


class PaymentMethod(enum.Enum):
    CASH = "Tunai"
    BANK_TRANSFER = "Transfer Bank"
    QRIS = "QRIS"
    VIRTUAL_ACCOUNT = "Virtual Account"
    CARD = "Kartu"
    OTHER = "Lainnya"


class VerificationStatus(enum.Enum):
    PENDING = "Menunggu Verifikasi"
    VERIFIED = "Terverifikasi"
    REJECTED = "Ditolak"


class RegistrationStatus(enum.Enum):
    DRAFT = "Draft"
    SUBMITTED = "Terkirim"
    DOCUMENT_CHECK = "Cek Dokumen"
    VERIFIED = "Terverifikasi"
    TEST_SCHEDULED = "Tes Dijadwalkan"
    TEST_TAKEN = "Sudah Tes"
    PASSED = "Lulus"
    FAILED = "Tidak Lulus"
    REGISTERED = "Terdaftar"


class RegistrationPaymentStatus(enum.Enum):
    UNPAID = "Belum Bayar"
    PENDING = "Menunggu"
    PAID = "Sudah Bayar"
    VERIFIED = "Terverifikasi"


class GatewayStatus(enum.Enum):
    PENDING = "Menunggu"
    SUCCESS = "Berhasil"
    FAILED = "Gagal"
    CANCELLED = "Dibatalkan"


class PaymentPurpose(enum.Enum):
    REGISTRATION = "Pendaftaran"
    BILL = "Tagihan"
    DONATION = "Donasi"


class CampaignStatus(enum.Enum):
    DRAFT = "Draft"
    ACTIVE = "Aktif"
    COMPLETED = "Selesai"
    CANCELLED = "Dibatalkan"


# ==========================================
# 2. SYSTEM & CONFIG
# ==========================================
class AppConfig(BaseModel):
    """Menyimpan setting dinamis (misal: nama sekolah, nomor rekening)"""
    __tablename__ = 'app_configs'
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(50), unique=True, nullable=False)
    value = db.Column(db.String(255))
    description = db.Column(db.String(200))


class AuditLog(db.Model):
    """Mencatat siapa melakukan apa (Security)"""
    __tablename__ = 'audit_logs'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    action = db.Column(db.String(50))  # UPDATE_STATUS, VERIFY_PAYMENT, INPUT_TEST_SCORE
    entity = db.Column(db.String(50))
    entity_id = db.Column(db.Integer)
    details = db.Column(db.Text)
    ip_address = db.Column(db.String(50))
    timestamp = db.Column(db.DateTime, default=datetime.utcnow)


class NotificationQueue(BaseModel):
    """Antrian pesan WA"""
    __tablename__ = 'notification_queues'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    channel = db.Column(db.String(20), default='WHATSAPP')
    target_contact = db.Column(db.String(50))  # No WA
    message = db.Column(db.Text)
    status = db.Column(db.String(20), default='PENDING')  # PENDING, SENT, DELIVERED, READ, FAILED
    external_id = db.Column(db.String(100), index=True)
    error = db.Column(db.Text)
    sent_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            'id': self.id,
            'channel': self.channel,
            'target_contact': self.target_contact,
            'message': self.message,
            'status': self.status,
            'error': self.error,
            'sent_at': _iso(self.sent_at),
            'created_at': _iso(self.created_at),
        }


# ==========================================
# 3. USERS & PROFILES
# ==========================================
class User(UserMixin, BaseModel):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256))
    role = db.Column(db.Enum(UserRole), default=UserRole.SISWA, nullable=False)
    last_login = db.Column(db.DateTime)

    # Jika True = user wajib ganti password sebelum memakai API lain
    must_change_password = db.Column(db.Boolean, default=True)

    student_profile = db.relationship('Student', backref='user', uselist=False)
    teacher_profile = db.relationship('Teacher', backref='user', uselist=False)
    parent_profile = db.relationship('Parent', backref='user', uselist=False)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def has_role(self, *roles):
        return self.role in roles

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'role': _enum(self.role),
            'must_change_password': bool(self.must_change_password),
            'last_login': _iso(self.last_login),
        }


class Parent(BaseModel):
    __tablename__ = 'parents'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    full_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20), nullable=False, index=True)
    address = db.Column(db.Text)
    job = db.Column(db.String(100))
    line_user_id = db.Column(db.String(64), index=True)

    children = db.relationship('Student', backref='parent', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'full_name': self.full_name,
            'phone': self.phone,
            'address': self.address,
            'job': self.job,
        }


class Teacher(BaseModel):
    __tablename__ = 'teachers'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    nip = db.Column(db.String(20), unique=True)
    full_name = db.Column(db.String(100))
    phone = db.Column(db.String(20))
    specialty = db.Column(db.String(50))

    homeroom_class = db.relationship('ClassRoom', backref='homeroom_teacher', uselist=False)

    def to_dict(self):
        return {
            'id': self.id,
            'nip': self.nip,
            'full_name': self.full_name,
            'phone': self.phone,
            'specialty': self.specialty,
        }


class Student(BaseModel):
    __tablename__ = 'students'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    parent_id = db.Column(db.Integer, db.ForeignKey('parents.id'), nullable=True)
    current_class_id = db.Column(db.Integer, db.ForeignKey('class_rooms.id'))
    registration_id = db.Column(db.Integer, db.ForeignKey('registrations.id'), unique=True)
    nis = db.Column(db.String(20), unique=True, nullable=False)
    nisn = db.Column(db.String(20), unique=True, nullable=True)
    full_name = db.Column(db.String(100), nullable=False)
    nickname = db.Column(db.String(50))
    gender = db.Column(db.Enum(Gender))
    place_of_birth = db.Column(db.String(50))
    date_of_birth = db.Column(db.Date)
    address = db.Column(db.Text)
    institution_type = db.Column(db.Enum(InstitutionType), default=InstitutionType.PONDOK, nullable=False)
    grade = db.Column(db.String(10))
    status = db.Column(db.Enum(StudentStatus), default=StudentStatus.ACTIVE, nullable=False)
    enrollment_year = db.Column(db.String(4))
    father_name = db.Column(db.String(100))
    father_phone = db.Column(db.String(20), index=True)
    mother_name = db.Column(db.String(100))
    mother_phone = db.Column(db.String(20), index=True)
    custom_spp_fee = db.Column(db.Integer, nullable=True, default=None)

    class_history = db.relationship('StudentClassHistory', backref='student', lazy=True)
    attendances = db.relationship('Attendance', backref='student', lazy=True)
    grades = db.relationship('Grade', backref='student', lazy=True)
    bills = db.relationship('Bill', backref='student', lazy=True)
    hafalan_records = db.relationship('HafalanRecord', backref='student', lazy=True)
    hafalan_progress = db.relationship('HafalanProgress', backref='student', uselist=False)

    def to_dict(self, detail=False):
        data = {
            'id': self.id,
            'nis': self.nis,
            'nisn': self.nisn,
            'full_name': self.full_name,
            'nickname': self.nickname,
            'gender': _enum(self.gender),
            'institution_type': _enum(self.institution_type),
            'grade': self.grade,
            'status': _enum(self.status),
            'class_id': self.current_class_id,
            'class_name': self.current_class.name if self.current_class else None,
            'parent_id': self.parent_id,
        }
        if detail:
            data.update({
                'place_of_birth': self.place_of_birth,
                'date_of_birth': _iso(self.date_of_birth),
                'address': self.address,
                'enrollment_year': self.enrollment_year,
                'father_name': self.father_name,
                'father_phone': self.father_phone,
                'mother_name': self.mother_name,
                'mother_phone': self.mother_phone,
                'custom_spp_fee': self.custom_spp_fee,
                'registration_id': self.registration_id,
            })
        return data


# ==========================================
# 4. ACADEMIC CORE
# ==========================================
class AcademicYear(BaseModel):
    __tablename__ = 'academic_years'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(20), nullable=False)  # 2024/2025
    semester = db.Column(db.String(10), nullable=False)  # Ganjil/Genap
    is_active = db.Column(db.Boolean, default=False)

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'semester': self.semester, 'is_active': bool(self.is_active)}


class ClassRoom(BaseModel):
    __tablename__ = 'class_rooms'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False)
    grade_level = db.Column(db.Integer)
    institution_type = db.Column(db.Enum(InstitutionType))
    homeroom_teacher_id = db.Column(db.Integer, db.ForeignKey('teachers.id'))
    academic_year_id = db.Column(db.Integer, db.ForeignKey('academic_years.id'))

    students = db.relationship('Student', backref='current_class', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'grade_level': self.grade_level,
            'institution_type': _enum(self.institution_type),
            'homeroom_teacher_id': self.homeroom_teacher_id,
            'academic_year_id': self.academic_year_id,
        }


class Subject(BaseModel):
    __tablename__ = 'subjects'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(10), unique=True)
    name = db.Column(db.String(50), nullable=False)
    kkm = db.Column(db.Float, default=75.0)

    def to_dict(self):
        return {'id': self.id, 'code': self.code, 'name': self.name, 'kkm': self.kkm}


class StudentClassHistory(BaseModel):
    """Mencatat riwayat kenaikan kelas santri"""
    __tablename__ = 'student_class_history'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'))
    class_id = db.Column(db.Integer, db.ForeignKey('class_rooms.id'))
    academic_year_id = db.Column(db.Integer, db.ForeignKey('academic_years.id'))
    status = db.Column(db.String(20))  # Active, Promoted, Graduated


class Grade(BaseModel):
    __tablename__ = 'grades'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'))
    subject_id = db.Column(db.Integer, db.ForeignKey('subjects.id'))
    academic_year_id = db.Column(db.Integer, db.ForeignKey('academic_years.id'))
    teacher_id = db.Column(db.Integer, db.ForeignKey('teachers.id'))
    type = db.Column(db.Enum(GradeType))
    score = db.Column(db.Float)
    notes = db.Column(db.String(100))

    subject = db.relationship('Subject')

    def to_dict(self):
        return {
            'id': self.id,
            'student_id': self.student_id,
            'subject_id': self.subject_id,
            'subject': self.subject.name if self.subject else None,
            'academic_year_id': self.academic_year_id,
            'type': _enum(self.type),
            'score': self.score,
            'notes': self.notes,
        }


class Attendance(BaseModel):
    __tablename__ = 'attendances'
    __table_args__ = (db.UniqueConstraint('student_id', 'date', name='uq_attendance_student_date'),)
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'))
    class_id = db.Column(db.Integer, db.ForeignKey('class_rooms.id'))
    teacher_id = db.Column(db.Integer, db.ForeignKey('teachers.id'))
    academic_year_id = db.Column(db.Integer, db.ForeignKey('academic_years.id'))
    date = db.Column(db.Date, default=datetime.utcnow)
    status = db.Column(db.Enum(AttendanceStatus))
    notes = db.Column(db.String(100))

    def to_dict(self):
        return {
            'id': self.id,
            'student_id': self.student_id,
            'class_id': self.class_id,
            'date': _iso(self.date),
            'status': _enum(self.status),
            'notes': self.notes,
        }


class Announcement(BaseModel):
    __tablename__ = 'announcements'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    title = db.Column(db.String(150), nullable=False)
    content = db.Column(db.Text, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    target_scope = db.Column(db.String(20), default='ALL')  # ALL, ROLE, CLASS, USER
    target_role = db.Column(db.String(30))
    target_class_id = db.Column(db.Integer, db.ForeignKey('class_rooms.id'))
    target_user_id = db.Column(db.Integer, db.ForeignKey('users.id'))

    author = db.relationship('User', foreign_keys=[user_id])
    target_class = db.relationship('ClassRoom')

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'content': self.content,
            'target_scope': self.target_scope,
            'target_role': self.target_role,
            'target_class_id': self.target_class_id,
            'target_user_id': self.target_user_id,
            'created_at': _iso(self.created_at),
        }


class AnnouncementRead(BaseModel):
    __tablename__ = 'announcement_reads'
    __table_args__ = (db.UniqueConstraint('announcement_id', 'user_id', name='uq_announcement_read_user'),)
    id = db.Column(db.Integer, primary_key=True)
    announcement_id = db.Column(db.Integer, db.ForeignKey('announcements.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    read_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


# ==========================================
# 5. HAFALAN (TAHFIDZ)
# ==========================================
class QuranSurah(db.Model):
    """Data referensi 114 surat (diisi lewat `flask seed-quran`)"""
    __tablename__ = 'quran_surahs'
    number = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False)
    total_ayat = db.Column(db.Integer, nullable=False)
    juz = db.Column(db.Integer, nullable=False)

    def to_dict(self):
        return {'number': self.number, 'name': self.name, 'total_ayat': self.total_ayat, 'juz': self.juz}


class HafalanSession(BaseModel):
    __tablename__ = 'hafalan_sessions'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False, index=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    session_date = db.Column(db.DateTime, default=datetime.utcnow)
    type = db.Column(db.Enum(HafalanSessionType), default=HafalanSessionType.SETORAN_BARU)
    duration = db.Column(db.Integer, default=15)  # menit
    location = db.Column(db.String(20), default='KELAS')
    total_ayat = db.Column(db.Integer, default=0)
    overall_quality = db.Column(db.Enum(HafalanQuality), default=HafalanQuality.B)
    overall_fluency = db.Column(db.String(20), default='CUKUP')
    student_mood = db.Column(db.String(20), default='NORMAL')
    engagement = db.Column(db.String(20), default='GOOD')
    improvements = db.Column(db.Text)
    challenges = db.Column(db.Text)
    homework = db.Column(db.Text)
    next_target = db.Column(db.String(200))
    notes = db.Column(db.Text)

    records = db.relationship('HafalanRecord', backref='session', lazy=True)

    def to_dict(self, with_records=False):
        data = {
            'id': self.id,
            'student_id': self.student_id,
            'teacher_id': self.teacher_id,
            'session_date': _iso(self.session_date),
            'type': _enum(self.type),
            'duration': self.duration,
            'location': self.location,
            'total_ayat': self.total_ayat,
            'overall_quality': _enum(self.overall_quality),
            'overall_fluency': self.overall_fluency,
            'student_mood': self.student_mood,
            'engagement': self.engagement,
            'homework': self.homework,
            'next_target': self.next_target,
            'notes': self.notes,
        }
        if with_records:
            data['records'] = [r.to_dict() for r in self.records if not r.is_deleted]
        return data


class HafalanRecord(BaseModel):
    __tablename__ = 'hafalan_records'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False, index=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    session_id = db.Column(db.Integer, db.ForeignKey('hafalan_sessions.id'))
    surah_number = db.Column(db.Integer, db.ForeignKey('quran_surahs.number'), nullable=False)
    start_ayat = db.Column(db.Integer, nullable=False)
    end_ayat = db.Column(db.Integer, nullable=False)
    status = db.Column(db.Enum(HafalanStatus), nullable=False)
    quality = db.Column(db.Enum(HafalanQuality), default=HafalanQuality.B)
    fluency = db.Column(db.String(20))
    tajweed = db.Column(db.String(20))
    makharijul = db.Column(db.String(20))
    duration = db.Column(db.Integer)
    method = db.Column(db.String(20), default='INDIVIDUAL')
    date = db.Column(db.DateTime, default=datetime.utcnow)
    notes = db.Column(db.Text)
    corrections = db.Column(db.Text)

    surah = db.relationship('QuranSurah')

    def to_dict(self):
        return {
            'id': self.id,
            'student_id': self.student_id,
            'teacher_id': self.teacher_id,
            'session_id': self.session_id,
            'surah_number': self.surah_number,
            'surah_name': self.surah.name if self.surah else None,
            'start_ayat': self.start_ayat,
            'end_ayat': self.end_ayat,
            'status': _enum(self.status),
            'quality': _enum(self.quality),
            'fluency': self.fluency,
            'tajweed': self.tajweed,
            'makharijul': self.makharijul,
            'duration': self.duration,
            'method': self.method,
            'date': _iso(self.date),
            'notes': self.notes,
            'corrections': self.corrections,
        }


class HafalanProgress(BaseModel):
    __tablename__ = 'hafalan_progress'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), unique=True, nullable=False)
    total_surah = db.Column(db.Integer, default=0)
    total_ayat = db.Column(db.Integer, default=0)
    total_juz = db.Column(db.Integer, default=0)
    juz30_progress = db.Column(db.Float, default=0)
    overall_progress = db.Column(db.Float, default=0)
    avg_quality = db.Column(db.Float, default=0)
    level = db.Column(db.Enum(HafalanLevel), default=HafalanLevel.PEMULA)
    total_sessions = db.Column(db.Integer, default=0)
    last_setoran_date = db.Column(db.DateTime)
    last_updated = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'student_id': self.student_id,
            'total_surah': self.total_surah,
            'total_ayat': self.total_ayat,
            'total_juz': self.total_juz,
            'juz30_progress': round(self.juz30_progress or 0, 2),
            'overall_progress': round(self.overall_progress or 0, 2),
            'avg_quality': round(self.avg_quality or 0, 2),
            'level': _enum(self.level),
            'total_sessions': self.total_sessions,
            'last_setoran_date': _iso(self.last_setoran_date),
            'last_updated': _iso(self.last_updated),
        }


class HafalanAchievement(BaseModel):
    __tablename__ = 'hafalan_achievements'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False, index=True)
    type = db.Column(db.String(30), default='SURAH_COMPLETE')
    surah_number = db.Column(db.Integer, db.ForeignKey('quran_surahs.number'))
    title = db.Column(db.String(150))
    description = db.Column(db.Text)
    level = db.Column(db.String(10))  # BRONZE, SILVER, GOLD
    points = db.Column(db.Integer, default=0)
    verified_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    verified_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'surah_number': self.surah_number,
            'title': self.title,
            'description': self.description,
            'level': self.level,
            'points': self.points,
            'verified_at': _iso(self.verified_at),
        }


# ==========================================
# 6. BILLING (SPP & TAGIHAN)
# ==========================================
class BillType(BaseModel):
    __tablename__ = 'bill_types'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    category = db.Column(db.Enum(BillCategory), default=BillCategory.OTHER, nullable=False)
    description = db.Column(db.Text)
    default_amount = db.Column(db.Float)
    is_recurring = db.Column(db.Boolean, default=False)
    frequency = db.Column(db.Enum(BillFrequency))
    price_by_grade = db.Column(db.JSON, default=dict)  # {"7": 650000, "SD": 300000}
    due_day_of_month = db.Column(db.Integer)
    grace_period_days = db.Column(db.Integer, default=7)
    late_penalty_type = db.Column(db.Enum(PenaltyType), default=PenaltyType.NONE)
    late_penalty_amount = db.Column(db.Float, default=0)
    max_penalty = db.Column(db.Float)
    allow_sibling_discount = db.Column(db.Boolean, default=False)
    sibling_discount_percent = db.Column(db.Float, default=0)
    is_active = db.Column(db.Boolean, default=True)
    sort_order = db.Column(db.Integer, default=0)

    bills = db.relationship('Bill', backref='bill_type', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'category': _enum(self.category),
            'description': self.description,
            'default_amount': self.default_amount,
            'is_recurring': bool(self.is_recurring),
            'frequency': _enum(self.frequency),
            'price_by_grade': self.price_by_grade or {},
            'due_day_of_month': self.due_day_of_month,
            'grace_period_days': self.grace_period_days,
            'late_penalty_type': _enum(self.late_penalty_type),
            'late_penalty_amount': self.late_penalty_amount,
            'max_penalty': self.max_penalty,
            'allow_sibling_discount': bool(self.allow_sibling_discount),
            'sibling_discount_percent': self.sibling_discount_percent,
            'is_active': bool(self.is_active),
            'sort_order': self.sort_order,
        }


class Bill(BaseModel):
    __tablename__ = 'bills'
    id = db.Column(db.Integer, primary_key=True)

    # Format: BILL-2024-12-0001 / SPP-202412-0001
    bill_no = db.Column(db.String(50), unique=True, nullable=False)

    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False, index=True)
    bill_type_id = db.Column(db.Integer, db.ForeignKey('bill_types.id'), nullable=False)
    period = db.Column(db.String(10), index=True)
    amount = db.Column(db.Float, nullable=False)
    original_amount = db.Column(db.Float)
    discounts = db.Column(db.JSON, default=list)
    total_discount = db.Column(db.Float, default=0)
    paid_amount = db.Column(db.Float, default=0)
    remaining_amount = db.Column(db.Float, default=0)
    due_date = db.Column(db.Date)
    status = db.Column(db.Enum(BillStatus), default=BillStatus.OUTSTANDING, nullable=False)
    is_overdue = db.Column(db.Boolean, default=False)
    days_past_due = db.Column(db.Integer, default=0)
    first_overdue_date = db.Column(db.Date)
    generated_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    notes = db.Column(db.Text)

    payments = db.relationship('BillPayment', backref='bill', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'bill_no': self.bill_no,
            'student_id': self.student_id,
            'bill_type_id': self.bill_type_id,
            'bill_type': self.bill_type.name if self.bill_type else None,
            'period': self.period,
            'amount': self.amount,
            'original_amount': self.original_amount,
            'discounts': self.discounts or [],
            'total_discount': self.total_discount,
            'paid_amount': self.paid_amount,
            'remaining_amount': self.remaining_amount,
            'due_date': _iso(self.due_date),
            'status': _enum(self.status),
            'is_overdue': bool(self.is_overdue),
            'days_past_due': self.days_past_due,
            'notes': self.notes,
            'created_at': _iso(self.created_at),
        }


class BillPayment(BaseModel):
    __tablename__ = 'bill_payments'
    id = db.Column(db.Integer, primary_key=True)
    payment_no = db.Column(db.String(30), unique=True, nullable=False)  # BP-2024-12-0001
    bill_id = db.Column(db.Integer, db.ForeignKey('bills.id'), nullable=False, index=True)
    amount = db.Column(db.Float, nullable=False)
    payment_date = db.Column(db.DateTime, default=datetime.utcnow)
    method = db.Column(db.Enum(PaymentMethod), nullable=False)
    channel = db.Column(db.String(50))
    reference = db.Column(db.String(100))
    proof_url = db.Column(db.String(255))
    notes = db.Column(db.Text)
    verification_status = db.Column(db.Enum(VerificationStatus), default=VerificationStatus.PENDING)
    verified_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    verified_at = db.Column(db.DateTime)
    rejection_reason = db.Column(db.Text)

    def to_dict(self):
        return {
            'id': self.id,
            'payment_no': self.payment_no,
            'bill_id': self.bill_id,
            'amount': self.amount,
            'payment_date': _iso(self.payment_date),
            'method': _enum(self.method),
            'channel': self.channel,
            'reference': self.reference,
            'verification_status': _enum(self.verification_status),
            'verified_at': _iso(self.verified_at),
            'rejection_reason': self.rejection_reason,
        }


class PaymentHistory(BaseModel):
    """Jejak audit setiap perubahan tagihan"""
    __tablename__ = 'payment_histories'
    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey('bills.id'), nullable=False, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey('bill_payments.id'))
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'))
    action = db.Column(db.String(30), nullable=False)  # BILL_GENERATED, PAYMENT_MADE, ...
    description = db.Column(db.String(255))
    previous_amount = db.Column(db.Float)
    new_amount = db.Column(db.Float)
    change_amount = db.Column(db.Float)
    performed_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    details = db.Column(db.JSON)


class GatewayPayment(BaseModel):
    """Transaksi yang dibayar lewat Midtrans"""
    __tablename__ = 'gateway_payments'
    id = db.Column(db.Integer, primary_key=True)
    payment_no = db.Column(db.String(30), unique=True, nullable=False)
    external_id = db.Column(db.String(64), unique=True, nullable=False)  # order_id Midtrans
    purpose = db.Column(db.Enum(PaymentPurpose), nullable=False)
    registration_id = db.Column(db.Integer, db.ForeignKey('registrations.id'))
    bill_id = db.Column(db.Integer, db.ForeignKey('bills.id'))
    donation_id = db.Column(db.Integer, db.ForeignKey('donations.id'))
    amount = db.Column(db.Float, nullable=False)
    status = db.Column(db.Enum(GatewayStatus), default=GatewayStatus.PENDING, nullable=False)
    transaction_id = db.Column(db.String(64))
    payment_type = db.Column(db.String(30))
    va_number = db.Column(db.String(40))
    fraud_status = db.Column(db.String(20))
    snap_token = db.Column(db.String(100))
    redirect_url = db.Column(db.String(255))
    paid_at = db.Column(db.DateTime)
    gateway_data = db.Column(db.JSON)

    registration = db.relationship('Registration', backref='gateway_payments')
    bill = db.relationship('Bill', backref='gateway_payments')
    donation = db.relationship('Donation', backref='gateway_payments')

    def to_dict(self):
        return {
            'id': self.id,
            'payment_no': self.payment_no,
            'order_id': self.external_id,
            'purpose': _enum(self.purpose),
            'amount': self.amount,
            'status': _enum(self.status),
            'transaction_id': self.transaction_id,
            'payment_type': self.payment_type,
            'va_number': self.va_number,
            'redirect_url': self.redirect_url,
            'paid_at': _iso(self.paid_at),
        }


# ==========================================
# 7. PPDB (PENDAFTARAN SANTRI BARU)
# ==========================================
class Registration(BaseModel):
    __tablename__ = 'registrations'
    id = db.Column(db.Integer, primary_key=True)
    registration_no = db.Column(db.String(20), unique=True, nullable=False)  # PPDB-2025-0042
    level = db.Column(db.Enum(InstitutionType), nullable=False)
    grade_target = db.Column(db.String(10))
    status = db.Column(db.Enum(RegistrationStatus), default=RegistrationStatus.DRAFT, nullable=False)
    payment_status = db.Column(db.Enum(RegistrationPaymentStatus), default=RegistrationPaymentStatus.UNPAID)
    registration_fee = db.Column(db.Float, default=0)
    payment_date = db.Column(db.DateTime)

    # --- DATA PRIBADI ---
    full_name = db.Column(db.String(100), nullable=False)
    nickname = db.Column(db.String(50))
    nisn = db.Column(db.String(20))
    gender = db.Column(db.Enum(Gender))
    birth_place = db.Column(db.String(50))
    birth_date = db.Column(db.Date, nullable=False)
    address = db.Column(db.Text)
    phone = db.Column(db.String(20))
    email = db.Column(db.String(120))
    previous_school = db.Column(db.String(100))
    special_needs = db.Column(db.Text)

    # --- DATA ORANG TUA ---
    father_name = db.Column(db.String(100))
    father_job = db.Column(db.String(100))
    father_phone = db.Column(db.String(20))
    mother_name = db.Column(db.String(100))
    mother_job = db.Column(db.String(100))
    mother_phone = db.Column(db.String(20))
    guardian_name = db.Column(db.String(100))
    guardian_phone = db.Column(db.String(20))
    guardian_relation = db.Column(db.String(30))

    documents = db.Column(db.JSON, default=list)

    # --- SELEKSI ---
    test_schedule = db.Column(db.DateTime)
    test_location = db.Column(db.String(100))
    test_score = db.Column(db.JSON)  # {"quran": 80, "arabic": 70, "interview": 90, "total": 80}
    test_result = db.Column(db.String(10))  # PASSED / FAILED
    ranking = db.Column(db.Integer)
    verified_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    verified_at = db.Column(db.DateTime)
    rejection_reason = db.Column(db.Text)
    admin_notes = db.Column(db.JSON, default=list)

    student = db.relationship('Student', backref='registration', uselist=False)

    def parent_phone(self):
        return self.father_phone or self.mother_phone or self.guardian_phone

    def to_dict(self, detail=False):
        data = {
            'id': self.id,
            'registration_no': self.registration_no,
            'level': _enum(self.level),
            'grade_target': self.grade_target,
            'full_name': self.full_name,
            'status': _enum(self.status),
            'payment_status': _enum(self.payment_status),
            'test_schedule': _iso(self.test_schedule),
            'test_score': self.test_score,
            'test_result': self.test_result,
            'ranking': self.ranking,
            'created_at': _iso(self.created_at),
        }
        if detail:
            data.update({
                'nickname': self.nickname,
                'nisn': self.nisn,
                'gender': _enum(self.gender),
                'birth_place': self.birth_place,
                'birth_date': _iso(self.birth_date),
                'address': self.address,
                'phone': self.phone,
                'email': self.email,
                'previous_school': self.previous_school,
                'special_needs': self.special_needs,
                'father_name': self.father_name,
                'father_job': self.father_job,
                'father_phone': self.father_phone,
                'mother_name': self.mother_name,
                'mother_job': self.mother_job,
                'mother_phone': self.mother_phone,
                'guardian_name': self.guardian_name,
                'guardian_phone': self.guardian_phone,
                'guardian_relation': self.guardian_relation,
                'documents': self.documents or [],
                'registration_fee': self.registration_fee,
                'test_location': self.test_location,
                'verified_at': _iso(self.verified_at),
                'rejection_reason': self.rejection_reason,
                'admin_notes': self.admin_notes or [],
                'student_id': self.student.id if self.student else None,
            })
        return data


# ==========================================
# 8. DONASI
# ==========================================
class DonationCategory(BaseModel):
    __tablename__ = 'donation_categories'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'slug': self.slug, 'description': self.description}


class DonationCampaign(BaseModel):
    __tablename__ = 'donation_campaigns'
    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(120), unique=True, nullable=False)
    title = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    category_id = db.Column(db.Integer, db.ForeignKey('donation_categories.id'))
    target_amount = db.Column(db.Float, nullable=False)
    current_amount = db.Column(db.Float, default=0)
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)
    status = db.Column(db.Enum(CampaignStatus), default=CampaignStatus.DRAFT)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'))

    category = db.relationship('DonationCategory')
    donations = db.relationship('Donation', backref='campaign', lazy=True)

    def progress(self):
        if not self.target_amount:
            return 0
        return round(min(100, (self.current_amount or 0) / self.target_amount * 100), 2)

    def to_dict(self):
        return {
            'id': self.id,
            'slug': self.slug,
            'title': self.title,
            'description': self.description,
            'category_id': self.category_id,
            'target_amount': self.target_amount,
            'current_amount': self.current_amount or 0,
            'progress': self.progress(),
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'status': _enum(self.status),
        }


class Donation(BaseModel):
    __tablename__ = 'donations'
    id = db.Column(db.Integer, primary_key=True)
    donation_no = db.Column(db.String(30), unique=True, nullable=False)  # DON-202412-0001
    campaign_id = db.Column(db.Integer, db.ForeignKey('donation_campaigns.id'))
    category_id = db.Column(db.Integer, db.ForeignKey('donation_categories.id'), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    message = db.Column(db.Text)
    donor_name = db.Column(db.String(100))
    donor_email = db.Column(db.String(120))
    donor_phone = db.Column(db.String(20))
    is_anonymous = db.Column(db.Boolean, default=False)
    payment_method = db.Column(db.String(30), nullable=False)
    payment_channel = db.Column(db.String(30))
    payment_status = db.Column(db.Enum(VerificationStatus), default=VerificationStatus.PENDING)
    source = db.Column(db.String(20), default='WEB')
    ip_address = db.Column(db.String(50))
    verified_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    verified_at = db.Column(db.DateTime)
    paid_at = db.Column(db.DateTime)
    certificate_no = db.Column(db.String(80))

    category = db.relationship('DonationCategory')

    def to_dict(self, public=False):
        data = {
            'id': self.id,
            'donation_no': self.donation_no,
            'campaign_id': self.campaign_id,
            'category_id': self.category_id,
            'amount': self.amount,
            'message': self.message,
            'donor_name': 'Hamba Allah' if self.is_anonymous else self.donor_name,
            'is_anonymous': bool(self.is_anonymous),
            'payment_status': _enum(self.payment_status),
            'paid_at': _iso(self.paid_at),
            'created_at': _iso(self.created_at),
        }
        if not public:
            data.update({
                'donor_email': self.donor_email,
                'donor_phone': self.donor_phone,
                'payment_method': self.payment_method,
                'payment_channel': self.payment_channel,
                'certificate_no': self.certificate_no,
                'verified_at': _iso(self.verified_at),
            })
        return data


# ==========================================
# 9. OTA (ORANG TUA ASUH)
# ==========================================
class OTAProgram(BaseModel):
    __tablename__ = 'ota_programs'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False)
    description = db.Column(db.Text)
    monthly_target = db.Column(db.Float, nullable=False)
    current_month = db.Column(db.String(7))  # YYYY-MM
    monthly_progress = db.Column(db.Float, default=0)
    months_completed = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)
    last_update = db.Column(db.DateTime)

    student = db.relationship('Student')
    sponsors = db.relationship('OTASponsor', backref='program', lazy=True)


class OTASponsor(BaseModel):
    __tablename__ = 'ota_sponsors'
    id = db.Column(db.Integer, primary_key=True)
    program_id = db.Column(db.Integer, db.ForeignKey('ota_programs.id'), nullable=False)
    donor_name = db.Column(db.String(100), nullable=False)
    donor_email = db.Column(db.String(120))
    donor_phone = db.Column(db.String(20))
    amount = db.Column(db.Float, nullable=False)
    month = db.Column(db.String(7), nullable=False, index=True)
    is_paid = db.Column(db.Boolean, default=False)
    paid_at = db.Column(db.DateTime)

    def donor_key(self):
        return self.donor_email or self.donor_name

    def to_dict(self):
        return {
            'id': self.id,
            'program_id': self.program_id,
            'donor_name': self.donor_name,
            'amount': self.amount,
            'month': self.month,
            'is_paid': bool(self.is_paid),
            'paid_at': _iso(self.paid_at),
        }


class OTAReport(BaseModel):
    __tablename__ = 'ota_reports'
    id = db.Column(db.Integer, primary_key=True)
    month = db.Column(db.String(7), nullable=False)
    year = db.Column(db.String(4), nullable=False)
    report_type = db.Column(db.String(20), default='MONTHLY')
    total_target = db.Column(db.Float, default=0)
    total_collected = db.Column(db.Float, default=0)
    total_distributed = db.Column(db.Float, default=0)
    total_pending = db.Column(db.Float, default=0)
    total_orphans = db.Column(db.Integer, default=0)
    fully_funded_count = db.Column(db.Integer, default=0)
    partial_funded_count = db.Column(db.Integer, default=0)
    unfunded_count = db.Column(db.Integer, default=0)
    total_donors = db.Column(db.Integer, default=0)
    new_donors = db.Column(db.Integer, default=0)
    recurring_donors = db.Column(db.Integer, default=0)
    carry_over_amount = db.Column(db.Float, default=0)
    surplus_amount = db.Column(db.Float, default=0)
    details = db.Column(db.JSON, default=list)
    generated_by = db.Column(db.String(20), default='SYSTEM')
    status = db.Column(db.String(10), default='FINAL')

    def to_dict(self):
        return {
            'id': self.id,
            'month': self.month,
            'year': self.year,
            'report_type': self.report_type,
            'total_target': self.total_target,
            'total_collected': self.total_collected,
            'total_distributed': self.total_distributed,
            'total_pending': self.total_pending,
            'total_orphans': self.total_orphans,
            'fully_funded_count': self.fully_funded_count,
            'partial_funded_count': self.partial_funded_count,
            'unfunded_count': self.unfunded_count,
            'total_donors': self.total_donors,
            'new_donors': self.new_donors,
            'recurring_donors': self.recurring_donors,
            'carry_over_amount': self.carry_over_amount,
            'surplus_amount': self.surplus_amount,
            'details': self.details or [],
            'status': self.status,
        }
