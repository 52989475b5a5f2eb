from datetime import date

import pytest

from config import TestConfig
from pondok import create_app
from pondok.data.quran import seed_surahs
from pondok.extensions import db
from pondok.models import (
    User, UserRole, Teacher, Parent, Student, Gender, InstitutionType, AcademicYear,
    ClassRoom, Subject, BillType, BillCategory, BillFrequency, PenaltyType,
    DonationCategory, DonationCampaign, CampaignStatus, OTAProgram,
)

PASSWORD = 'rahasia123'


class Factory:
    """Pembuat data uji. Setiap method commit dan mengembalikan id (bukan objek ORM)."""

    def __init__(self, app):
        self.app = app

    def _save(self, *items):
        db.session.add_all(items)
        db.session.commit()

    def user(self, username, role=UserRole.ADMIN, password=PASSWORD, must_change_password=False):
        with self.app.app_context():
            user = User(username=username, email=f'{username}@test.pondok.id', role=role,
                        must_change_password=must_change_password)
            user.set_password(password)
            self._save(user)
            return user.id

    def teacher(self, username='guru01', nip=None, phone=None):
        user_id = self.user(username, role=UserRole.GURU)
        with self.app.app_context():
            teacher = Teacher(user_id=user_id, nip=nip, full_name=f'Ustadz {username}', phone=phone)
            self._save(teacher)
            return user_id, teacher.id

    def parent(self, username='wali01', phone='081234567890', full_name='Bapak Hasan'):
        user_id = self.user(username, role=UserRole.WALI_MURID)
        with self.app.app_context():
            parent = Parent(user_id=user_id, full_name=full_name, phone=phone)
            self._save(parent)
            return user_id, parent.id

    def student(self, nis, full_name='Muhammad Arsyad', parent_id=None, institution_type=InstitutionType.PONDOK,
                grade='7', class_id=None, with_user=False, **extra):
        user_id = self.user(nis, role=UserRole.SISWA) if with_user else None
        with self.app.app_context():
            student = Student(
                nis=nis, full_name=full_name, gender=Gender.L, institution_type=institution_type,
                grade=grade, parent_id=parent_id, current_class_id=class_id, user_id=user_id,
                enrollment_year='2025', date_of_birth=date(2013, 5, 17), **extra,
            )
            self._save(student)
            return student.id

    def academic_year(self, name='2025/2026', semester='Ganjil', is_active=True):
        with self.app.app_context():
            year = AcademicYear(name=name, semester=semester, is_active=is_active)
            self._save(year)
            return year.id

    def class_room(self, name='7-Abu Bakar', grade_level=7, academic_year_id=None, homeroom_teacher_id=None):
        with self.app.app_context():
            class_room = ClassRoom(name=name, grade_level=grade_level, institution_type=InstitutionType.PONDOK,
                                   academic_year_id=academic_year_id, homeroom_teacher_id=homeroom_teacher_id)
            self._save(class_room)
            return class_room.id

    def subject(self, code='MTK', name='Matematika', kkm=75):
        with self.app.app_context():
            subject = Subject(code=code, name=name, kkm=kkm)
            self._save(subject)
            return subject.id

    def bill_type(self, name='SPP Bulanan', **overrides):
        values = dict(
            category=BillCategory.TUITION, default_amount=500000, is_recurring=True,
            frequency=BillFrequency.MONTHLY, price_by_grade={'PONDOK': 750000},
            grace_period_days=7, late_penalty_type=PenaltyType.FIXED, late_penalty_amount=25000,
            max_penalty=100000, allow_sibling_discount=True, sibling_discount_percent=10,
        )
        values.update(overrides)
        with self.app.app_context():
            bill_type = BillType(name=name, **values)
            self._save(bill_type)
            return bill_type.id

    def donation_category(self, name='Pembangunan', slug='pembangunan'):
        with self.app.app_context():
            category = DonationCategory(name=name, slug=slug)
            self._save(category)
            return category.id

    def campaign(self, slug='pembangunan-asrama', category_id=None, status=CampaignStatus.ACTIVE,
                 target_amount=10000000, end_date=None):
        with self.app.app_context():
            campaign = DonationCampaign(slug=slug, title=slug.replace('-', ' ').title(), category_id=category_id,
                                        target_amount=target_amount, status=status, end_date=end_date)
            self._save(campaign)
            return campaign.id

    def ota_program(self, student_id, monthly_target=1000000, current_month=None):
        with self.app.app_context():
            program = OTAProgram(student_id=student_id, monthly_target=monthly_target,
                                 current_month=current_month, description='Santri yatim')
            self._save(program)
            return program.id


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        seed_surahs(db.session)

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def factory(app):
    return Factory(app)


def login(client, login_id, password=PASSWORD):
    response = client.post('/auth/login', json={'login_id': login_id, 'password': password})
    assert response.status_code == 200, response.get_json()
    return response


@pytest.fixture
def admin_client(app, factory):
    factory.user('admin')
    client = app.test_client()
    login(client, 'admin')
    return client


@pytest.fixture
def tu_client(app, factory):
    factory.user('tu01', role=UserRole.TU)
    client = app.test_client()
    login(client, 'tu01')
    return client


@pytest.fixture
def guru(app, factory):
    """(client, user_id, teacher_id) untuk akun guru yang sudah login."""
    user_id, teacher_id = factory.teacher('guru01', nip='19900101')
    client = app.test_client()
    login(client, 'guru01')
    return client, user_id, teacher_id
