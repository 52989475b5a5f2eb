from pondok.models import InstitutionType

from conftest import login


def test_health(client):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.get_json()['status'] == 'ok'


def test_unknown_route_returns_json(client):
    response = client.get('/api/tidak-ada')

    assert response.status_code == 404
    assert 'error' in response.get_json()


def test_method_not_allowed_returns_json(client):
    response = client.delete('/health')

    assert response.status_code == 405
    assert 'error' in response.get_json()


def test_public_statistics(client, factory):
    factory.student('PONDOK25001')
    factory.student('SD25001', institution_type=InstitutionType.SD, grade='3')
    factory.student('PONDOK25002', is_deleted=True)

    response = client.get('/api/public/statistics')

    assert response.status_code == 200
    body = response.get_json()
    assert body['students'] == {'TK': 0, 'SD': 1, 'PONDOK': 1}
    assert body['total_students'] == 2
    assert body['total_hafalan_ayat'] == 0
    assert body['active_campaigns'] == 0


def test_dashboard_stats(admin_client, factory):
    factory.student('PONDOK25001')
    bill_type_id = factory.bill_type()
    admin_client.post('/api/billing/generate', json={
        'bill_type_id': bill_type_id, 'period': '2025-01', 'due_date': '2025-01-10',
    })

    response = admin_client.get('/api/dashboard/stats')

    assert response.status_code == 200
    body = response.get_json()
    assert body['students']['total_active'] == 1
    assert body['billing']['outstanding_total'] == 750000
    assert body['ppdb'] == {'pending': 0}


def test_dashboard_stats_for_staff_only(app, client, factory):
    factory.parent('wali01')
    parent_client = app.test_client()
    login(parent_client, 'wali01')

    assert client.get('/api/dashboard/stats').status_code == 401
    assert parent_client.get('/api/dashboard/stats').status_code == 403


def test_list_announcements_for_teacher(guru, admin_client):
    client, _, _ = guru
    admin_client.post('/api/announcements', json={
        'title': 'Rapat guru', 'content': 'Rapat Kamis', 'target_scope': 'ROLE', 'target_role': 'GURU',
    })

    body = client.get('/api/announcements').get_json()

    assert [a['title'] for a in body['announcements']] == ['Rapat guru']
    assert body['unread_count'] == 1


# ==========================================
# CLI
# ==========================================
def test_cli_seed_quran_is_idempotent(app):
    result = app.test_cli_runner().invoke(args=['seed-quran'])

    assert result.exit_code == 0
    assert '0 surat ditambahkan' in result.output


def test_cli_generate_monthly_bills(app):
    result = app.test_cli_runner().invoke(args=['generate-monthly-bills'])

    assert result.exit_code == 0
    assert '0 tagihan diterbitkan' in result.output


def test_cli_send_notifications(app):
    result = app.test_cli_runner().invoke(args=['send-notifications', '--limit', '10'])

    assert result.exit_code == 0
    assert 'Terkirim: 0, Gagal: 0' in result.output


def test_cli_ota_monthly_reset(app):
    result = app.test_cli_runner().invoke(args=['ota-monthly-reset'])

    assert result.exit_code == 0
    assert 'dibuat, 0 program direset' in result.output
