from pondok.extensions import db
from pondok.models import Student, StudentClassHistory, User, UserRole

from conftest import login


def test_create_student_with_parent_account(app, admin_client):
    response = admin_client.post('/api/students', json={
        'full_name': 'Ahmad Zaki',
        'gender': 'L',
        'institution_type': 'PONDOK',
        'grade': '7',
        'enrollment_year': '2025',
        'parent_name': 'Ibu Fatimah',
        'parent_phone': '081299998888',
    })

    assert response.status_code == 201
    student = response.get_json()['student']
    assert student['nis'] == 'PONDOK25001'
    assert student['enrollment_year'] == '2025'

    with app.app_context():
        parent_user = User.query.filter_by(username='081299998888').first()
        assert parent_user.role == UserRole.WALI_MURID
        assert parent_user.must_change_password is True
        assert parent_user.parent_profile.full_name == 'Ibu Fatimah'
        assert db.session.get(Student, student['id']).parent_id == parent_user.parent_profile.id

    parent_client = app.test_client()
    body = login(parent_client, '081299998888', '123456').get_json()
    assert body['must_change_password'] is True


def test_create_student_reuses_existing_parent(app, admin_client, factory):
    _, parent_id = factory.parent('wali01', phone='081234567890')

    response = admin_client.post('/api/students', json={
        'full_name': 'Aisyah Zahra',
        'gender': 'P',
        'institution_type': 'SD',
        'enrollment_year': '2025',
        'father_phone': '+6281234567890',
    })

    assert response.status_code == 201
    student = response.get_json()['student']
    assert student['nis'] == 'SD25001'
    assert student['parent_id'] == parent_id


def test_create_student_duplicate_nis(admin_client, factory):
    factory.student('PONDOK25001')

    response = admin_client.post('/api/students', json={
        'nis': 'PONDOK25001',
        'full_name': 'Santri Lain',
        'gender': 'L',
        'institution_type': 'PONDOK',
    })

    assert response.status_code == 409


def test_create_student_validation(admin_client):
    response = admin_client.post('/api/students', json={'full_name': 'Tanpa Jenjang', 'gender': 'X'})

    assert response.status_code == 400
    details = response.get_json()['details']
    assert 'gender' in details
    assert 'institution_type' in details


def test_guru_cannot_create_student(guru):
    client, _, _ = guru

    response = client.post('/api/students', json={
        'full_name': 'Ahmad Zaki', 'gender': 'L', 'institution_type': 'PONDOK',
    })

    assert response.status_code == 403


def test_list_students_search_and_pagination(admin_client, factory):
    factory.student('PONDOK25001', full_name='Muhammad Arsyad')
    factory.student('PONDOK25002', full_name='Muhammad Faqih')
    factory.student('SD25001', full_name='Aisyah Zahra')

    response = admin_client.get('/api/students?search=Muhammad&limit=1')

    assert response.status_code == 200
    body = response.get_json()
    assert [s['full_name'] for s in body['students']] == ['Muhammad Arsyad']
    assert body['pagination']['total'] == 2
    assert body['pagination']['has_next'] is True

    page_two = admin_client.get('/api/students?search=Muhammad&limit=1&page=2').get_json()
    assert [s['full_name'] for s in page_two['students']] == ['Muhammad Faqih']


def test_list_students_invalid_filter(admin_client):
    response = admin_client.get('/api/students?institution_type=SMA')

    assert response.status_code == 400


def test_update_and_delete_student(app, admin_client, factory):
    student_id = factory.student('PONDOK25001', with_user=True)

    updated = admin_client.put(f'/api/students/{student_id}', json={'grade': '8', 'nickname': 'Arsyad'})
    assert updated.status_code == 200
    assert updated.get_json()['student']['grade'] == '8'
    assert updated.get_json()['student']['full_name'] == 'Muhammad Arsyad'

    deleted = admin_client.delete(f'/api/students/{student_id}')
    assert deleted.status_code == 200

    assert admin_client.get(f'/api/students/{student_id}').status_code == 404

    with app.app_context():
        hidden = Student.query.filter_by(nis='PONDOK25001').first()
        assert hidden is None
        kept = Student.query.execution_options(include_deleted=True).filter_by(nis='PONDOK25001').first()
        assert kept.is_deleted is True


def test_promote_and_graduate(app, admin_client, factory):
    year_id = factory.academic_year()
    class_7 = factory.class_room('7-Abu Bakar', 7, academic_year_id=year_id)
    class_8 = factory.class_room('8-Umar', 8, academic_year_id=year_id)
    first = factory.student('PONDOK25001', class_id=class_7)
    second = factory.student('PONDOK25002', full_name='Muhammad Faqih', class_id=class_7)

    promoted = admin_client.post('/api/students/promote', json={
        'student_ids': [first], 'target_class_id': class_8, 'target_grade': '8',
    })
    assert promoted.status_code == 200
    assert promoted.get_json()['processed'] == 1

    graduated = admin_client.post('/api/students/promote', json={'student_ids': [second], 'graduate': True})
    assert graduated.status_code == 200

    with app.app_context():
        first_student = db.session.get(Student, first)
        assert first_student.current_class_id == class_8
        assert first_student.grade == '8'
        second_student = db.session.get(Student, second)
        assert second_student.status.name == 'GRADUATED'
        assert second_student.current_class_id is None
        statuses = sorted(h.status for h in StudentClassHistory.query.all())
        assert statuses == ['Graduated', 'Promoted']


def test_promote_requires_target(admin_client, factory):
    student_id = factory.student('PONDOK25001')

    response = admin_client.post('/api/students/promote', json={'student_ids': [student_id]})

    assert response.status_code == 400


def test_parent_cannot_read_other_child(app, factory):
    _, parent_id = factory.parent('wali01', phone='081234567890')
    own = factory.student('PONDOK25001', parent_id=parent_id)
    other = factory.student('PONDOK25002', full_name='Santri Lain')

    client = app.test_client()
    login(client, 'wali01')

    assert client.get(f'/api/students/{own}').status_code == 200
    assert client.get(f'/api/students/{other}').status_code == 403
