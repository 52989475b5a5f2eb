import pytest

from conftest import login


@pytest.fixture
def family(app, factory):
    """Akun wali dengan dua anak: satu lewat parent_id, satu lewat No HP ayah."""
    _, parent_id = factory.parent('wali01', phone='081234567890')
    linked = factory.student('PONDOK25001', full_name='Muhammad Arsyad', parent_id=parent_id)
    by_phone = factory.student('SD25001', full_name='Aisyah Zahra', grade='3',
                               father_phone='+6281234567890')
    stranger = factory.student('PONDOK25002', full_name='Santri Lain')

    client = app.test_client()
    login(client, 'wali01')
    return client, linked, by_phone, stranger


def test_children_found_by_link_and_phone(family):
    client, linked, by_phone, _ = family

    response = client.get('/api/parent/children')

    assert response.status_code == 200
    children = response.get_json()['children']
    assert [c['id'] for c in children] == [by_phone, linked]
    assert children[0]['hafalan']['level'] == 'PEMULA'
    assert children[0]['outstanding_total'] == 0


def test_child_access_is_scoped(family):
    client, linked, _, stranger = family

    assert client.get(f'/api/parent/payments/{linked}').status_code == 200
    assert client.get(f'/api/parent/payments/{stranger}').status_code == 403
    assert client.get('/api/parent/payments/999').status_code == 404
    assert client.get(f'/api/parent/attendance/{stranger}').status_code == 403


def test_hafalan_requires_student_id(family):
    client, _, _, _ = family

    assert client.get('/api/parent/hafalan').status_code == 400


def test_hafalan_for_child(family, guru):
    client, linked, _, _ = family
    guru_client, _, _ = guru
    guru_client.post('/api/hafalan/record', json={
        'student_id': linked, 'surah_number': 112, 'start_ayat': 1, 'end_ayat': 4, 'status': 'LANCAR',
    })

    response = client.get(f'/api/parent/hafalan?student_id={linked}')

    assert response.status_code == 200
    body = response.get_json()
    assert body['progress']['total_ayat'] == 4
    assert len(body['records']) == 1


def test_admin_is_not_a_parent(admin_client):
    assert admin_client.get('/api/parent/children').status_code == 403


def test_payments_and_dashboard(family, admin_client, factory):
    client, linked, by_phone, _ = family
    bill_type_id = factory.bill_type(allow_sibling_discount=False)
    admin_client.post('/api/billing/generate', json={
        'bill_type_id': bill_type_id, 'period': '2025-01', 'due_date': '2025-01-10',
        'student_ids': [linked],
    })

    payments = client.get(f'/api/parent/payments/{linked}').get_json()
    assert [b['amount'] for b in payments['bills']] == [750000]
    assert payments['outstanding_total'] == 750000

    dashboard = client.get('/api/parent/dashboard')
    assert dashboard.status_code == 200
    body = dashboard.get_json()
    assert set(body) == {
        'parent', 'children', 'total_outstanding', 'recent_hafalan', 'recent_payments',
        'announcements', 'unread_announcements',
    }
    assert body['parent']['phone'] == '081234567890'
    assert body['total_outstanding'] == 750000
    assert {c['id'] for c in body['children']} == {linked, by_phone}


def test_grades_include_report_card(family):
    client, linked, _, _ = family

    response = client.get(f'/api/parent/grades/{linked}')

    assert response.status_code == 200
    body = response.get_json()
    assert body['grades'] == []
    assert body['report_card']['average'] == 0


def test_announcements_mark_read(family, admin_client):
    client, _, _, _ = family
    admin_client.post('/api/announcements', json={'title': 'Libur', 'content': 'Libur semester mulai Senin'})
    admin_client.post('/api/announcements', json={
        'title': 'Rapat guru', 'content': 'Rapat Kamis', 'target_scope': 'ROLE', 'target_role': 'GURU',
    })

    first = client.get('/api/parent/announcements?mark_read=true').get_json()
    second = client.get('/api/parent/announcements').get_json()

    assert [a['title'] for a in first['announcements']] == ['Libur']
    assert first['unread_count'] == 1
    assert first['announcements'][0]['author_label'] == 'Admin'
    assert second['unread_count'] == 0
    assert second['announcements'][0]['is_unread'] is False


def test_announcement_targeting_validation(admin_client):
    missing_role = admin_client.post('/api/announcements', json={
        'title': 'Info', 'content': 'Isi', 'target_scope': 'ROLE',
    })
    unknown_class = admin_client.post('/api/announcements', json={
        'title': 'Info', 'content': 'Isi', 'target_scope': 'CLASS', 'target_class_id': 999,
    })

    assert missing_role.status_code == 400
    assert unknown_class.status_code == 404
