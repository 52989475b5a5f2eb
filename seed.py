from datetime import date

from pondok import create_app
from pondok.data.quran import seed_surahs
from pondok.extensions import db
from pondok.models import (
    User, UserRole, Student, Teacher, Parent, ClassRoom, Gender, Subject,
    AcademicYear, AppConfig, InstitutionType, BillType, BillCategory,
    BillFrequency, PenaltyType, DonationCategory, DonationCampaign, CampaignStatus,
    OTAProgram,
)

app = create_app()

with app.app_context():
    print("🧹 Menghapus database lama...")
    db.drop_all()

    print("🏗️ Membuat tabel database baru...")
    db.create_all()

    # ============================================
    # 1. MASTER DATA (CONFIG, TAHUN AJARAN, QURAN)
    # ============================================
    print("⚙️  Creating Master Data...")

    db.session.add_all([
        AppConfig(key="school_name", value="Pondok Pesantren Terpadu", description="Nama Lembaga"),
        AppConfig(key="ppdb_fee_pondok", value="250000", description="Biaya pendaftaran Pondok"),
    ])

    ta_now = AcademicYear(name='2025/2026', semester='Ganjil', is_active=True)
    db.session.add(ta_now)
    db.session.commit()

    total_surah = seed_surahs(db.session)
    print(f"📖 {total_surah} surat Al-Quran ditambahkan")

    # ============================================
    # 2. KELAS & MAPEL
    # ============================================
    print("📚 Creating Classes & Subjects...")

    db.session.add_all([
        Subject(code="MTK", name="Matematika", kkm=75),
        Subject(code="BAR", name="Bahasa Arab", kkm=75),
        Subject(code="THF", name="Tahfidz Al-Quran", kkm=80),
    ])

    cls7a = ClassRoom(name="7-Abu Bakar", grade_level=7, institution_type=InstitutionType.PONDOK,
                      academic_year_id=ta_now.id)
    cls1sd = ClassRoom(name="1-Umar", grade_level=1, institution_type=InstitutionType.SD,
                       academic_year_id=ta_now.id)
    db.session.add_all([cls7a, cls1sd])
    db.session.commit()

    # ============================================
    # 3. USERS (ADMIN, GURU, TU)
    # ============================================
    print("👤 Creating Users (Admin, Guru, TU)...")

    admin_user = User(username='admin', email='admin@pondok.id', role=UserRole.ADMIN, must_change_password=False)
    admin_user.set_password('admin123')
    tu_user = User(username='tu01', email='tu@pondok.id', role=UserRole.TU, must_change_password=False)
    tu_user.set_password('tu123')
    guru_user = User(username='guru01', email='guru@pondok.id', role=UserRole.GURU, must_change_password=False)
    guru_user.set_password('guru123')
    db.session.add_all([admin_user, tu_user, guru_user])
    db.session.flush()

    guru_profile = Teacher(
        user_id=guru_user.id,
        nip="19900101",
        full_name="Ustadz Ahmad Fauzi",
        phone="081234500001",
        specialty="Tahfidz",
    )
    db.session.add(guru_profile)
    db.session.flush()
    cls7a.homeroom_teacher_id = guru_profile.id

    # ============================================
    # 4. WALI & SANTRI
    # ============================================
    print("👨‍👩‍👦 Creating Parents & Students...")

    wali_user = User(username='081234567890', email='wali.081234567890@pondok.id',
                     role=UserRole.WALI_MURID, must_change_password=True)
    wali_user.set_password('123456')
    db.session.add(wali_user)
    db.session.flush()

    wali_profile = Parent(user_id=wali_user.id, full_name="Bapak Hasan", phone="081234567890",
                          job="Wiraswasta", address="Bogor")
    db.session.add(wali_profile)
    db.session.flush()

    santri_data = [
        ("PONDOK25001", "Muhammad Arsyad", Gender.L, InstitutionType.PONDOK, "7", cls7a),
        ("SD25001", "Aisyah Zahra", Gender.P, InstitutionType.SD, "1", cls1sd),
    ]
    for nis, name, gender, level, grade, class_room in santri_data:
        santri_user = User(username=nis, email=f'{nis.lower()}@santri.pondok.id',
                           role=UserRole.SISWA, must_change_password=True)
        santri_user.set_password(nis)
        db.session.add(santri_user)
        db.session.flush()
        db.session.add(Student(
            user_id=santri_user.id,
            parent_id=wali_profile.id,
            current_class_id=class_room.id,
            nis=nis,
            full_name=name,
            gender=gender,
            institution_type=level,
            grade=grade,
            enrollment_year='2025',
            date_of_birth=date(2013, 5, 17),
            father_name="Hasan",
            father_phone="081234567890",
        ))
    db.session.commit()

    # ============================================
    # 5. KEUANGAN (JENIS TAGIHAN)
    # ============================================
    print("💰 Creating Bill Types...")

    db.session.add_all([
        BillType(
            name="SPP Bulanan", category=BillCategory.TUITION, default_amount=500000,
            is_recurring=True, frequency=BillFrequency.MONTHLY,
            price_by_grade={"PONDOK": 750000, "SD": 350000, "TK": 250000},
            grace_period_days=7, late_penalty_type=PenaltyType.FIXED, late_penalty_amount=25000,
            max_penalty=100000, allow_sibling_discount=True, sibling_discount_percent=10, sort_order=1,
        ),
        BillType(
            name="Uang Pangkal", category=BillCategory.REGISTRATION, default_amount=2000000,
            frequency=BillFrequency.ONE_TIME, price_by_grade={"PONDOK": 3500000, "SD": 2500000},
            sort_order=2,
        ),
    ])

    # ============================================
    # 6. DONASI & OTA
    # ============================================
    print("🤲 Creating Donation Programs...")

    kategori = DonationCategory(name="Pembangunan", slug="pembangunan")
    db.session.add(kategori)
    db.session.flush()
    db.session.add(DonationCampaign(
        slug="pembangunan-asrama", title="Pembangunan Asrama Santri", category_id=kategori.id,
        target_amount=500000000, start_date=date(2025, 7, 1), status=CampaignStatus.ACTIVE,
        created_by=admin_user.id,
    ))

    arsyad = Student.query.filter_by(nis="PONDOK25001").first()
    db.session.add(OTAProgram(student_id=arsyad.id, description="Biaya hidup & pendidikan santri yatim",
                              monthly_target=1000000, current_month=date.today().strftime('%Y-%m')))

    db.session.commit()

    print("\n✅ SEEDING SELESAI!")
    print("-------------------------------------------")
    print("Login Admin : admin / admin123")
    print("Login TU    : tu01 / tu123")
    print("Login Guru  : guru01 / guru123 (atau NIP 19900101)")
    print("Login Wali  : 081234567890 / 123456")
    print("Login Santri: PONDOK25001 / PONDOK25001")
    print("-------------------------------------------")
