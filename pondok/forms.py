from flask import request
from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict

from wtforms import (
    Form,
    StringField,
    PasswordField,
    BooleanField,
    DateField,
    DateTimeField,
    TextAreaField,
    IntegerField,
    FloatField,
    FieldList,
    FormField,
)

from wtforms.validators import (
    DataRequired,
    InputRequired,
    Optional,
    Email,
    Length,
    EqualTo,
    NumberRange,
    AnyOf,
)

from pondok.errors import ValidationFailed
from pondok.models import (
    Gender, InstitutionType, StudentStatus, GradeType, AttendanceStatus,
    HafalanStatus, HafalanQuality, HafalanSessionType, BillCategory,
    BillFrequency, PenaltyType, PaymentMethod, PaymentPurpose,
    RegistrationStatus, UserRole,
)

DATETIME_FORMATS = ['%Y-%m-%dT%H:%M:%S', '%Y-%m-%dT%H:%M', '%Y-%m-%d %H:%M:%S', '%Y-%m-%d %H:%M']


def _names(enum_cls):
    return [item.name for item in enum_cls]


def json_formdata(payload):
    """
    Ubah body JSON menjadi MultiDict yang dipahami WTForms.
    List/dict bersarang diratakan: entries[0].score -> 'entries-0-score'.
    """
    formdata = MultiDict()

    def _add(key, value):
        if value is None:
            return
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                _add(f'{key}-{sub_key}', sub_value)
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                _add(f'{key}-{index}', item)
        elif isinstance(value, bool):
            formdata.add(key, 'y' if value else 'false')
        else:
            formdata.add(key, str(value))

    for key, value in (payload or {}).items():
        _add(key, value)
    return formdata


def request_payload():
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationFailed('Body harus berupa objek JSON')
    return payload


def parse_form(form_cls, payload=None):
    """Validasi body JSON dengan form, raise ValidationFailed jika gagal."""
    if payload is None:
        payload = request_payload()
    form = form_cls(formdata=json_formdata(payload))
    if not form.validate():
        raise ValidationFailed('Validation failed', details=form.errors)
    return form


class ApiForm(FlaskForm):
    """Base form untuk body JSON. CSRF dicek global oleh CSRFProtect."""
    class Meta:
        csrf = False


# ==========================================
# AUTH
# ==========================================
class LoginForm(ApiForm):
    # Ini agar bisa menerima input: "admin", "PONDOK25001", atau "08123..."
    login_id = StringField('Email / No. HP / NIS', validators=[DataRequired()])
    password = PasswordField('Password', validators=[DataRequired()])
    remember = BooleanField('Ingat Saya')


class ChangePasswordForm(ApiForm):
    old_password = PasswordField('Password Lama (Saat ini)', validators=[DataRequired()])
    new_password = PasswordField('Password Baru', validators=[
        DataRequired(),
        Length(min=6, message="Password minimal 6 karakter")
    ])
    confirm_password = PasswordField('Konfirmasi Password Baru', validators=[
        DataRequired(),
        EqualTo('new_password', message='Password tidak sama')
    ])


# ==========================================
# SANTRI
# ==========================================
class StudentForm(ApiForm):
    nis = StringField('NIS', validators=[Optional(), Length(max=20)])
    nisn = StringField('NISN', validators=[Optional(), Length(max=20)])
    full_name = StringField('Nama Lengkap Siswa', validators=[DataRequired(), Length(max=100)])
    nickname = StringField('Nama Panggilan', validators=[Optional(), Length(max=50)])
    gender = StringField('Jenis Kelamin', validators=[DataRequired(), AnyOf(_names(Gender))])
    place_of_birth = StringField('Tempat Lahir', validators=[Optional()])
    date_of_birth = DateField('Tanggal Lahir', format='%Y-%m-%d', validators=[Optional()])
    address = TextAreaField('Alamat Lengkap', validators=[Optional()])
    institution_type = StringField('Jenjang', validators=[DataRequired(), AnyOf(_names(InstitutionType))])
    grade = StringField('Tingkat', validators=[Optional(), Length(max=10)])
    class_id = IntegerField('Kelas', validators=[Optional()])
    enrollment_year = StringField('Tahun Masuk', validators=[Optional(), Length(min=4, max=4)])
    custom_spp_fee = IntegerField('SPP Khusus', validators=[Optional(), NumberRange(min=0)])

    # Data Wali (Otomatis dibuatkan akun)
    parent_name = StringField('Nama Lengkap Wali', validators=[Optional()])
    parent_phone = StringField('No WA Wali (untuk Login)', validators=[Optional(), Length(max=20)])
    parent_email = StringField('Email Wali', validators=[Optional(), Email()])
    parent_job = StringField('Pekerjaan Wali', validators=[Optional()])
    father_name = StringField('Nama Ayah', validators=[Optional()])
    father_phone = StringField('No HP Ayah', validators=[Optional(), Length(max=20)])
    mother_name = StringField('Nama Ibu', validators=[Optional()])
    mother_phone = StringField('No HP Ibu', validators=[Optional(), Length(max=20)])


class StudentUpdateForm(ApiForm):
    nisn = StringField('NISN', validators=[Optional(), Length(max=20)])
    full_name = StringField('Nama Lengkap Siswa', validators=[Optional(), Length(max=100)])
    nickname = StringField('Nama Panggilan', validators=[Optional(), Length(max=50)])
    gender = StringField('Jenis Kelamin', validators=[Optional(), AnyOf(_names(Gender))])
    place_of_birth = StringField('Tempat Lahir', validators=[Optional()])
    date_of_birth = DateField('Tanggal Lahir', format='%Y-%m-%d', validators=[Optional()])
    address = TextAreaField('Alamat Lengkap', validators=[Optional()])
    institution_type = StringField('Jenjang', validators=[Optional(), AnyOf(_names(InstitutionType))])
    grade = StringField('Tingkat', validators=[Optional(), Length(max=10)])
    status = StringField('Status', validators=[Optional(), AnyOf(_names(StudentStatus))])
    class_id = IntegerField('Kelas', validators=[Optional()])
    custom_spp_fee = IntegerField('SPP Khusus', validators=[Optional(), NumberRange(min=0)])
    father_name = StringField('Nama Ayah', validators=[Optional()])
    father_phone = StringField('No HP Ayah', validators=[Optional(), Length(max=20)])
    mother_name = StringField('Nama Ibu', validators=[Optional()])
    mother_phone = StringField('No HP Ibu', validators=[Optional(), Length(max=20)])


class PromoteForm(ApiForm):
    student_ids = FieldList(IntegerField(validators=[InputRequired()]), validators=[Length(min=1, message='Pilih minimal satu santri')])
    target_class_id = IntegerField('Kelas Tujuan', validators=[Optional()])
    target_grade = StringField('Tingkat Tujuan', validators=[Optional(), Length(max=10)])
    graduate = BooleanField('Luluskan')


# ==========================================
# AKADEMIK
# ==========================================
class AcademicYearForm(ApiForm):
    name = StringField('Tahun Ajaran', validators=[DataRequired(), Length(max=20)])
    semester = StringField('Semester', validators=[DataRequired(), AnyOf(['Ganjil', 'Genap'])])
    is_active = BooleanField('Aktif')


class ClassRoomForm(ApiForm):
    name = StringField('Nama Kelas', validators=[DataRequired(), Length(max=50)])
    grade_level = IntegerField('Tingkat', validators=[Optional()])
    institution_type = StringField('Jenjang', validators=[Optional(), AnyOf(_names(InstitutionType))])
    homeroom_teacher_id = IntegerField('Wali Kelas', validators=[Optional()])
    academic_year_id = IntegerField('Tahun Ajaran', validators=[Optional()])


class SubjectForm(ApiForm):
    code = StringField('Kode', validators=[DataRequired(), Length(max=10)])
    name = StringField('Nama Mapel', validators=[DataRequired(), Length(max=50)])
    kkm = FloatField('KKM', validators=[Optional(), NumberRange(min=0, max=100)])


class GradeEntryForm(Form):
    student_id = IntegerField(validators=[InputRequired()])
    score = FloatField(validators=[InputRequired(), NumberRange(min=0, max=100, message='Nilai harus 0-100')])
    notes = StringField(validators=[Optional(), Length(max=100)])


class BulkGradeForm(ApiForm):
    subject_id = IntegerField('Mapel', validators=[InputRequired()])
    type = StringField('Jenis Nilai', validators=[DataRequired(), AnyOf(_names(GradeType))])
    entries = FieldList(FormField(GradeEntryForm), validators=[Length(min=1, message='Data nilai kosong')])


class AttendanceEntryForm(Form):
    student_id = IntegerField(validators=[InputRequired()])
    status = StringField(validators=[DataRequired(), AnyOf(_names(AttendanceStatus))])
    notes = StringField(validators=[Optional(), Length(max=100)])


class BulkAttendanceForm(ApiForm):
    class_id = IntegerField('Kelas', validators=[InputRequired()])
    date = DateField('Tanggal', format='%Y-%m-%d', validators=[DataRequired()])
    entries = FieldList(FormField(AttendanceEntryForm), validators=[Length(min=1, message='Data absensi kosong')])


# ==========================================
# HAFALAN
# ==========================================
class HafalanRecordForm(ApiForm):
    student_id = IntegerField('Santri', validators=[InputRequired()])
    surah_number = IntegerField('Surat', validators=[InputRequired(), NumberRange(min=1, max=114)])
    start_ayat = IntegerField('Ayat Awal', validators=[InputRequired(), NumberRange(min=1)])
    end_ayat = IntegerField('Ayat Akhir', validators=[InputRequired(), NumberRange(min=1)])
    status = StringField('Status', validators=[DataRequired(), AnyOf(_names(HafalanStatus))])
    quality = StringField('Kualitas', validators=[Optional(), AnyOf(_names(HafalanQuality))])
    fluency = StringField('Kelancaran', validators=[Optional(), Length(max=20)])
    tajweed = StringField('Tajwid', validators=[Optional(), Length(max=20)])
    makharijul = StringField('Makharijul Huruf', validators=[Optional(), Length(max=20)])
    duration = IntegerField('Durasi (menit)', validators=[Optional(), NumberRange(min=0)])
    method = StringField('Metode', validators=[Optional(), Length(max=20)])
    notes = TextAreaField('Catatan', validators=[Optional()])
    corrections = TextAreaField('Koreksi', validators=[Optional()])


class HafalanRecordUpdateForm(ApiForm):
    start_ayat = IntegerField('Ayat Awal', validators=[Optional(), NumberRange(min=1)])
    end_ayat = IntegerField('Ayat Akhir', validators=[Optional(), NumberRange(min=1)])
    status = StringField('Status', validators=[Optional(), AnyOf(_names(HafalanStatus))])
    quality = StringField('Kualitas', validators=[Optional(), AnyOf(_names(HafalanQuality))])
    fluency = StringField('Kelancaran', validators=[Optional(), Length(max=20)])
    tajweed = StringField('Tajwid', validators=[Optional(), Length(max=20)])
    makharijul = StringField('Makharijul Huruf', validators=[Optional(), Length(max=20)])
    notes = TextAreaField('Catatan', validators=[Optional()])
    corrections = TextAreaField('Koreksi', validators=[Optional()])


class SetoranContentForm(Form):
    surah_number = IntegerField(validators=[InputRequired(), NumberRange(min=1, max=114)])
    start_ayat = IntegerField(validators=[InputRequired(), NumberRange(min=1)])
    end_ayat = IntegerField(validators=[InputRequired(), NumberRange(min=1)])
    status = StringField(validators=[DataRequired(), AnyOf(_names(HafalanStatus))])
    quality = StringField(validators=[Optional(), AnyOf(_names(HafalanQuality))])
    fluency = StringField(validators=[Optional(), Length(max=20)])
    tajweed = StringField(validators=[Optional(), Length(max=20)])
    notes = StringField(validators=[Optional()])


class SetoranForm(ApiForm):
    student_id = IntegerField('Santri', validators=[InputRequired()])
    session_date = DateTimeField('Waktu Setoran', format=DATETIME_FORMATS, validators=[Optional()])
    type = StringField('Jenis Sesi', validators=[Optional(), AnyOf(_names(HafalanSessionType))])
    duration = IntegerField('Durasi (menit)', validators=[Optional(), NumberRange(min=0)])
    location = StringField('Lokasi', validators=[Optional(), Length(max=20)])
    overall_quality = StringField('Kualitas', validators=[Optional(), AnyOf(_names(HafalanQuality))])
    overall_fluency = StringField('Kelancaran', validators=[Optional(), Length(max=20)])
    student_mood = StringField('Mood', validators=[Optional(), Length(max=20)])
    engagement = StringField('Keterlibatan', validators=[Optional(), Length(max=20)])
    improvements = TextAreaField('Perkembangan', validators=[Optional()])
    challenges = TextAreaField('Kendala', validators=[Optional()])
    homework = TextAreaField('Tugas', validators=[Optional()])
    next_target = StringField('Target Berikutnya', validators=[Optional(), Length(max=200)])
    notes = TextAreaField('Catatan', validators=[Optional()])
    content = FieldList(FormField(SetoranContentForm), validators=[Length(min=1, message='Isi setoran kosong')])


# ==========================================
# KEUANGAN
# ==========================================
class BillTypeForm(ApiForm):
    name = StringField('Nama Tagihan', validators=[DataRequired(), Length(max=100)])
    category = StringField('Kategori', validators=[DataRequired(), AnyOf(_names(BillCategory))])
    description = TextAreaField('Keterangan', validators=[Optional()])
    default_amount = FloatField('Nominal Default', validators=[Optional(), NumberRange(min=0)])
    is_recurring = BooleanField('Berulang')
    frequency = StringField('Frekuensi', validators=[Optional(), AnyOf(_names(BillFrequency))])
    due_day_of_month = IntegerField('Tanggal Jatuh Tempo', validators=[Optional(), NumberRange(min=1, max=28)])
    grace_period_days = IntegerField('Masa Tenggang', validators=[Optional(), NumberRange(min=0)])
    late_penalty_type = StringField('Jenis Denda', validators=[Optional(), AnyOf(_names(PenaltyType))])
    late_penalty_amount = FloatField('Denda', validators=[Optional(), NumberRange(min=0)])
    max_penalty = FloatField('Denda Maksimal', validators=[Optional(), NumberRange(min=0)])
    allow_sibling_discount = BooleanField('Diskon Saudara')
    sibling_discount_percent = FloatField('Persen Diskon Saudara', validators=[Optional(), NumberRange(min=0, max=100)])
    is_active = BooleanField('Aktif')
    sort_order = IntegerField('Urutan', validators=[Optional()])


class GenerateBillsForm(ApiForm):
    bill_type_id = IntegerField('Jenis Tagihan', validators=[InputRequired()])
    period = StringField('Periode', validators=[DataRequired(), Length(max=10)])
    due_date = DateField('Jatuh Tempo', format='%Y-%m-%d', validators=[DataRequired()])
    student_ids = FieldList(IntegerField(validators=[InputRequired()]))
    institution_types = FieldList(StringField(validators=[AnyOf(_names(InstitutionType))]))
    grades = FieldList(StringField())
    apply_discounts = BooleanField('Terapkan Diskon')
    notes = TextAreaField('Catatan', validators=[Optional()])


class RecordPaymentForm(ApiForm):
    bill_id = IntegerField('Tagihan', validators=[InputRequired()])
    amount = FloatField('Jumlah Pembayaran (Rp)', validators=[InputRequired(), NumberRange(min=1, message='Nominal harus lebih dari 0')])
    method = StringField('Metode Pembayaran', validators=[DataRequired(), AnyOf(_names(PaymentMethod))])
    channel = StringField('Channel', validators=[Optional(), Length(max=50)])
    reference = StringField('No Referensi', validators=[Optional(), Length(max=100)])
    proof_url = StringField('Bukti', validators=[Optional(), Length(max=255)])
    payment_date = DateTimeField('Tanggal Bayar', format=DATETIME_FORMATS, validators=[Optional()])
    notes = TextAreaField('Catatan (Opsional)', validators=[Optional()])
    auto_verify = BooleanField('Langsung Verifikasi')


class VerifyPaymentForm(ApiForm):
    payment_id = IntegerField('Pembayaran', validators=[InputRequired()])
    action = StringField('Aksi', validators=[DataRequired(), AnyOf(['VERIFY', 'REJECT'])])
    rejection_reason = TextAreaField('Alasan Penolakan', validators=[Optional()])


class BulkVerifyForm(ApiForm):
    payment_ids = FieldList(IntegerField(validators=[InputRequired()]), validators=[Length(min=1, message='Pilih minimal satu pembayaran')])


class CreateTransactionForm(ApiForm):
    purpose = StringField('Tujuan', validators=[DataRequired(), AnyOf(_names(PaymentPurpose))])
    reference_id = IntegerField('ID Referensi', validators=[InputRequired()])
    amount = FloatField('Nominal', validators=[Optional(), NumberRange(min=1)])


class MidtransNotificationForm(ApiForm):
    order_id = StringField(validators=[DataRequired()])
    status_code = StringField(validators=[DataRequired()])
    gross_amount = StringField(validators=[DataRequired()])
    signature_key = StringField(validators=[DataRequired()])
    transaction_status = StringField(validators=[DataRequired(), AnyOf([
        'capture', 'settlement', 'pending', 'deny', 'cancel', 'expire', 'failure',
    ])])
    transaction_id = StringField(validators=[Optional()])
    transaction_time = StringField(validators=[Optional()])
    payment_type = StringField(validators=[Optional()])
    fraud_status = StringField(validators=[Optional()])


class CancelPaymentForm(ApiForm):
    reason = StringField('Alasan', validators=[Optional(), Length(max=255)])


# ==========================================
# PPDB
# ==========================================
class RegistrationForm(ApiForm):
    level = StringField('Jenjang', validators=[DataRequired(), AnyOf(_names(InstitutionType))])
    grade_target = StringField('Kelas Tujuan', validators=[Optional(), Length(max=10)])

    # === DATA DIRI ===
    full_name = StringField('Nama Lengkap', validators=[DataRequired(), Length(min=3, max=100)])
    nickname = StringField('Nama Panggilan', validators=[Optional(), Length(max=50)])
    nisn = StringField('NISN', validators=[Optional(), Length(max=20)])
    gender = StringField('Jenis Kelamin', validators=[DataRequired(), AnyOf(_names(Gender))])
    birth_place = StringField('Tempat Lahir', validators=[DataRequired()])
    birth_date = DateField('Tanggal Lahir', format='%Y-%m-%d', validators=[DataRequired()])
    address = TextAreaField('Alamat Lengkap', validators=[DataRequired()])
    phone = StringField('No HP', validators=[Optional(), Length(max=20)])
    email = StringField('Email', validators=[Optional(), Email()])
    previous_school = StringField('Sekolah Asal', validators=[Optional()])
    special_needs = TextAreaField('Kebutuhan Khusus', validators=[Optional()])

    # === DATA ORANG TUA ===
    father_name = StringField('Nama Ayah', validators=[DataRequired()])
    father_job = StringField('Pekerjaan Ayah', validators=[Optional()])
    father_phone = StringField('No HP Ayah', validators=[Optional(), Length(max=20)])
    mother_name = StringField('Nama Ibu', validators=[DataRequired()])
    mother_job = StringField('Pekerjaan Ibu', validators=[Optional()])
    mother_phone = StringField('No HP Ibu', validators=[Optional(), Length(max=20)])
    guardian_name = StringField('Nama Wali', validators=[Optional()])
    guardian_phone = StringField('No HP Wali', validators=[Optional(), Length(max=20)])
    guardian_relation = StringField('Hubungan Wali', validators=[Optional(), Length(max=30)])

    documents = FieldList(StringField())
    submit = BooleanField('Kirim Pendaftaran')


class RegistrationStatusForm(ApiForm):
    registration_id = IntegerField(validators=[InputRequired()])
    status = StringField(validators=[DataRequired(), AnyOf(_names(RegistrationStatus), message='Status tidak valid')])
    reason = TextAreaField(validators=[Optional()])


class RegistrationVerifyForm(ApiForm):
    registration_id = IntegerField(validators=[InputRequired()])
    notes = TextAreaField(validators=[Optional()])


class TestScheduleForm(ApiForm):
    registration_id = IntegerField(validators=[InputRequired()])
    test_schedule = DateTimeField('Jadwal Tes', format=DATETIME_FORMATS, validators=[DataRequired()])
    test_location = StringField('Lokasi Tes', validators=[Optional(), Length(max=100)])


class TestScoreForm(ApiForm):
    registration_id = IntegerField(validators=[InputRequired()])
    quran = FloatField('Nilai Quran', validators=[InputRequired(), NumberRange(min=0, max=100, message='Nilai harus 0-100')])
    arabic = FloatField('Nilai Bahasa Arab', validators=[InputRequired(), NumberRange(min=0, max=100, message='Nilai harus 0-100')])
    interview = FloatField('Nilai Wawancara', validators=[InputRequired(), NumberRange(min=0, max=100, message='Nilai harus 0-100')])
    notes = TextAreaField(validators=[Optional()])


class AdminNoteForm(ApiForm):
    registration_id = IntegerField(validators=[InputRequired()])
    note = TextAreaField('Catatan', validators=[DataRequired(), Length(max=1000)])


# ==========================================
# DONASI & OTA
# ==========================================
class DonationForm(ApiForm):
    category_id = IntegerField('Kategori', validators=[InputRequired()])
    campaign_id = IntegerField('Program', validators=[Optional()])
    amount = FloatField('Nominal', validators=[InputRequired(), NumberRange(min=1000, message='Minimal donasi Rp 1.000')])
    message = TextAreaField('Pesan', validators=[Optional(), Length(max=500)])
    donor_name = StringField('Nama Donatur', validators=[Optional(), Length(max=100)])
    donor_email = StringField('Email Donatur', validators=[Optional(), Email()])
    donor_phone = StringField('No HP Donatur', validators=[Optional(), Length(max=20)])
    is_anonymous = BooleanField('Sembunyikan Nama')
    payment_method = StringField('Metode Pembayaran', validators=[DataRequired(), Length(max=30)])
    payment_channel = StringField('Channel', validators=[Optional(), Length(max=30)])


class CampaignForm(ApiForm):
    title = StringField('Judul', validators=[DataRequired(), Length(max=150)])
    slug = StringField('Slug', validators=[Optional(), Length(max=120)])
    description = TextAreaField('Deskripsi', validators=[Optional()])
    category_id = IntegerField('Kategori', validators=[Optional()])
    target_amount = FloatField('Target', validators=[InputRequired(), NumberRange(min=1)])
    start_date = DateField('Mulai', format='%Y-%m-%d', validators=[Optional()])
    end_date = DateField('Selesai', format='%Y-%m-%d', validators=[Optional()])
    status = StringField('Status', validators=[Optional(), AnyOf(['DRAFT', 'ACTIVE', 'COMPLETED', 'CANCELLED'])])


class OTASponsorForm(ApiForm):
    program_id = IntegerField('Program', validators=[InputRequired()])
    donor_name = StringField('Nama Donatur', validators=[DataRequired(), Length(max=100)])
    donor_email = StringField('Email Donatur', validators=[Optional(), Email()])
    donor_phone = StringField('No HP Donatur', validators=[Optional(), Length(max=20)])
    amount = FloatField('Nominal', validators=[InputRequired(), NumberRange(min=1000, message='Minimal Rp 1.000')])
    month = StringField('Bulan (YYYY-MM)', validators=[Optional(), Length(min=7, max=7)])


# ==========================================
# KOMUNIKASI
# ==========================================
class AnnouncementForm(ApiForm):
    title = StringField('Judul', validators=[DataRequired(), Length(max=150)])
    content = TextAreaField('Isi', validators=[DataRequired()])
    target_scope = StringField('Sasaran', validators=[Optional(), AnyOf(['ALL', 'ROLE', 'CLASS', 'USER'])])
    target_role = StringField('Role', validators=[Optional(), AnyOf(_names(UserRole))])
    target_class_id = IntegerField('Kelas', validators=[Optional()])
    target_user_id = IntegerField('User', validators=[Optional()])


class WhatsAppSendForm(ApiForm):
    phone = StringField('No WA', validators=[DataRequired(), Length(max=20)])
    message = TextAreaField('Pesan', validators=[DataRequired(), Length(max=4096)])


class ErrorReportForm(ApiForm):
    message = StringField('Pesan', validators=[DataRequired(), Length(max=2000)])
    level = StringField('Level', validators=[Optional(), AnyOf(['error', 'warning', 'info'])])
    stack = TextAreaField('Stack', validators=[Optional()])
    url = StringField('URL', validators=[Optional(), Length(max=500)])
    user_agent = StringField('User Agent', validators=[Optional(), Length(max=500)])
    component = StringField('Komponen', validators=[Optional(), Length(max=100)])
