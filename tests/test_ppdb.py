from pondok.extensions import db
from pondok.models import (
    AppConfig, Bill, BillCategory, BillFrequency, Registration, Student, User, UserRole,
)

REGISTRATION = {
    'level': 'PONDOK',
    'grade_target': '7',
    'full_name': 'Abdullah Hakim',
    'gender': 'L',
    'birth_place': 'Bogor',
    'birth_date': '2012-05-01',
    'address': 'Jl. Pesantren No. 1',
    'father_name': 'Bapak Hakim',
    'father_phone': '081211112222',
    'mother_name': 'Ibu Aminah',
}


def _register(client, **overrides):
    payload = dict(REGISTRATION, **overrides)
    return client.post('/api/ppdb/register', json=payload)


def test_register_draft_uses_default_fee(client):
    response = _register(client)

    assert response.status_code == 201
    body = response.get_json()
    assert body['message'] == 'Draft pendaftaran tersimpan'
    assert body['registration_no'].startswith('PPDB-')
    assert body['registration']['status'] == 'DRAFT'
    assert body['registration_fee'] == 250000


def test_register_fee_from_app_config(app, client):
    with app.app_context():
        db.session.add(AppConfig(key='ppdb_fee_pondok', value='300000'))
        db.session.commit()

    response = _register(client, submit=True)

    body = response.get_json()
    assert body['registration_fee'] == 300000
    assert body['registration']['status'] == 'SUBMITTED'


def test_register_requires_parent_phone(client):
    response = _register(client, father_phone='')

    assert response.status_code == 400


def test_register_validation(client):
    response = client.post('/api/ppdb/register', json={'level': 'SMA', 'full_name': 'Ab'})

    assert response.status_code == 400
    details = response.get_json()['details']
    assert 'level' in details
    assert 'birth_date' in details


def test_submit_draft_once(client):
    registration_no = _register(client).get_json()['registration_no']

    first = client.post(f'/api/ppdb/{registration_no}/submit')
    second = client.post(f'/api/ppdb/{registration_no}/submit')

    assert first.status_code == 200
    assert first.get_json()['registration']['status'] == 'SUBMITTED'
    assert second.status_code == 409


def test_status_lookup(client):
    registration_no = _register(client, submit=True).get_json()['registration_no']

    found = client.get(f'/api/ppdb/status?registration_no={registration_no}&birth_date=2012-05-01')
    wrong_birth_date = client.get(f'/api/ppdb/status?registration_no={registration_no}&birth_date=2012-05-02')
    missing = client.get('/api/ppdb/status?registration_no=PPDB-2025-0001')

    assert found.status_code == 200
    registration = found.get_json()['registration']
    assert registration['status_description'] == 'Pendaftaran telah diterima'
    assert registration['registration_fee'] == 250000
    assert wrong_birth_date.status_code == 404
    assert missing.status_code == 400


def test_admin_flow_until_registered(app, client, admin_client, factory):
    factory.bill_type('Biaya Pendaftaran', category=BillCategory.REGISTRATION, default_amount=1000000,
                      is_recurring=False, frequency=BillFrequency.ONE_TIME, price_by_grade=None)
    registration_id = _register(client, submit=True).get_json()['registration']['id']

    scheduled = admin_client.post('/api/ppdb/admin/test-schedule', json={
        'registration_id': registration_id, 'test_schedule': '2025-06-10T08:00', 'test_location': 'Aula',
    })
    assert scheduled.status_code == 200
    assert scheduled.get_json()['registration']['status'] == 'TEST_SCHEDULED'

    scored = admin_client.post('/api/ppdb/admin/test-score', json={
        'registration_id': registration_id, 'quran': 80, 'arabic': 70, 'interview': 75,
    })
    assert scored.status_code == 200
    registration = scored.get_json()['registration']
    assert registration['test_score']['total'] == 75
    assert registration['test_result'] == 'PASSED'
    assert registration['status'] == 'PASSED'

    verified = admin_client.post('/api/ppdb/admin/verify', json={'registration_id': registration_id})
    assert verified.status_code == 200
    registration = verified.get_json()['registration']
    assert registration['status'] == 'REGISTERED'
    assert registration['student_id'] is not None

    again = admin_client.post('/api/ppdb/admin/verify', json={'registration_id': registration_id})
    assert again.status_code == 409

    with app.app_context():
        student = db.session.get(Student, registration['student_id'])
        assert student.nis.startswith('PONDOK')
        assert student.full_name == 'Abdullah Hakim'
        assert student.parent.phone == '081211112222'
        parent_user = User.query.filter_by(username='081211112222').first()
        assert parent_user.role == UserRole.WALI_MURID
        bills = Bill.query.filter_by(student_id=student.id).all()
        assert [bill.amount for bill in bills] == [1000000]


def test_failed_score(admin_client, client):
    registration_id = _register(client, submit=True).get_json()['registration']['id']
    admin_client.post('/api/ppdb/admin/test-schedule', json={
        'registration_id': registration_id, 'test_schedule': '2025-06-10 08:00',
    })

    response = admin_client.post('/api/ppdb/admin/test-score', json={
        'registration_id': registration_id, 'quran': 50, 'arabic': 60, 'interview': 55,
    })

    assert response.get_json()['registration']['status'] == 'FAILED'


def test_test_score_out_of_range(admin_client, client):
    registration_id = _register(client, submit=True).get_json()['registration']['id']

    response = admin_client.post('/api/ppdb/admin/test-score', json={
        'registration_id': registration_id, 'quran': 101, 'arabic': 60, 'interview': 55,
    })

    assert response.status_code == 400


def test_rankings_order_by_total(app, admin_client, client):
    low = _register(client, submit=True, full_name='Santri Satu').get_json()['registration']['id']
    high = _register(client, submit=True, full_name='Santri Dua').get_json()['registration']['id']
    for registration_id, score in ((low, 72), (high, 90)):
        admin_client.post('/api/ppdb/admin/test-score', json={
            'registration_id': registration_id, 'quran': score, 'arabic': score, 'interview': score,
        })

    response = admin_client.get('/api/ppdb/admin/test-score')

    rankings = response.get_json()['rankings']
    assert [row['id'] for row in rankings] == [high, low]
    assert [row['ranking'] for row in rankings] == [1, 2]
    with app.app_context():
        assert db.session.get(Registration, high).ranking == 1


def test_change_status_rejects_unknown(admin_client, client):
    registration_id = _register(client, submit=True).get_json()['registration']['id']

    invalid = admin_client.post('/api/ppdb/admin/status', json={'registration_id': registration_id, 'status': 'LULUS'})
    valid = admin_client.post('/api/ppdb/admin/status', json={
        'registration_id': registration_id, 'status': 'DOCUMENT_CHECK', 'reason': 'Akta belum diunggah',
    })

    assert invalid.status_code == 400
    assert valid.status_code == 200
    assert valid.get_json()['registration']['rejection_reason'] == 'Akta belum diunggah'


def test_admin_list_and_stats(admin_client, client):
    _register(client)
    _register(client, submit=True, full_name='Santri Dua')

    listed = admin_client.get('/api/ppdb/admin/registrations?status=SUBMITTED').get_json()
    stats = admin_client.get('/api/ppdb/admin/stats').get_json()

    assert [r['full_name'] for r in listed['registrations']] == ['Santri Dua']
    assert stats['total'] == 2
    assert stats['by_status'] == {'DRAFT': 1, 'SUBMITTED': 1}


def test_admin_note(admin_client, client):
    registration_id = _register(client).get_json()['registration']['id']

    response = admin_client.post('/api/ppdb/admin/notes', json={'registration_id': registration_id, 'note': 'Telepon wali'})

    assert response.status_code == 201
    assert response.get_json()['note']['author'] == 'admin'
    detail = admin_client.get(f'/api/ppdb/admin/registrations/{registration_id}').get_json()['registration']
    assert [n['note'] for n in detail['admin_notes']] == ['Telepon wali']


def test_admin_routes_need_staff(client):
    assert client.get('/api/ppdb/admin/registrations').status_code == 401
