from datetime import date

import pytest

from pondok.extensions import db
from pondok.models import OTAProgram, OTAReport
from pondok.services.ota_service import OTAService, initials, previous_month

CRON_HEADERS = {'Authorization': 'Bearer test-cron-secret'}


def test_initials():
    assert initials('Muhammad Arsyad') == 'M.A.'
    assert initials('  ahmad  ') == 'A.'
    assert initials('') == '-'


def test_previous_month():
    assert previous_month('2025-03') == '2025-02'
    assert previous_month('2025-01') == '2024-12'


@pytest.fixture
def program_id(factory):
    student_id = factory.student('PONDOK25001')
    return factory.ota_program(student_id)


def test_public_programs_hide_student_name(client, program_id):
    response = client.get('/api/ota/public')

    assert response.status_code == 200
    body = response.get_json()
    assert body['total_programs'] == 1
    program = body['programs'][0]
    assert program['student_initials'] == 'M.A.'
    assert program['collected'] == 0
    assert program['progress'] == 0
    assert 'Muhammad Arsyad' not in response.get_data(as_text=True)


def test_pledge_and_mark_paid(app, client, admin_client, program_id):
    month = OTAService.current_month()
    pledged = client.post('/api/ota/sponsors', json={
        'program_id': program_id, 'donor_name': 'Ibu Khadijah', 'donor_email': 'khadijah@example.com',
        'amount': 400000,
    })

    assert pledged.status_code == 201
    sponsor = pledged.get_json()['sponsor']
    assert sponsor['month'] == month
    assert sponsor['is_paid'] is False

    paid = admin_client.post(f"/api/ota/sponsors/{sponsor['id']}/paid")
    assert paid.status_code == 200
    body = paid.get_json()
    assert body['sponsor']['is_paid'] is True
    assert body['program']['current_month'] == month
    assert body['program']['monthly_progress'] == 400000

    assert admin_client.post(f"/api/ota/sponsors/{sponsor['id']}/paid").status_code == 409
    assert admin_client.post('/api/ota/sponsors/999/paid').status_code == 404

    public = client.get('/api/ota/public').get_json()['programs'][0]
    assert public['collected'] == 400000
    assert public['progress'] == 40
    assert public['sponsor_count'] == 1


def test_pledge_validation(client, program_id):
    bad_month = client.post('/api/ota/sponsors', json={
        'program_id': program_id, 'donor_name': 'Hamba Allah', 'amount': 100000, 'month': '2025/01',
    })
    unknown_program = client.post('/api/ota/sponsors', json={
        'program_id': 999, 'donor_name': 'Hamba Allah', 'amount': 100000,
    })

    assert bad_month.status_code == 400
    assert unknown_program.status_code == 404


def test_list_sponsors_shows_contact_to_staff(client, admin_client, program_id):
    client.post('/api/ota/sponsors', json={
        'program_id': program_id, 'donor_name': 'Ibu Khadijah', 'donor_phone': '081277776666',
        'amount': 100000, 'month': '2025-01',
    })

    response = admin_client.get('/api/ota/sponsors?month=2025-01&is_paid=false')

    sponsors = response.get_json()['sponsors']
    assert [s['donor_phone'] for s in sponsors] == ['081277776666']
    assert client.get('/api/ota/sponsors').status_code == 401


def test_monthly_reset_builds_report_once(app, client, admin_client, factory, program_id):
    unfunded_id = factory.ota_program(factory.student('PONDOK25002', full_name='Ali Ridho'), monthly_target=500000)
    sponsor_id = client.post('/api/ota/sponsors', json={
        'program_id': program_id, 'donor_name': 'Ibu Khadijah', 'donor_email': 'khadijah@example.com',
        'amount': 1000000, 'month': '2025-01',
    }).get_json()['sponsor']['id']
    admin_client.post(f'/api/ota/sponsors/{sponsor_id}/paid')

    with app.app_context():
        first = OTAService.monthly_reset(today=date(2025, 2, 1))
        second = OTAService.monthly_reset(today=date(2025, 2, 1))

        assert first['previous_month'] == '2025-01'
        assert first['report_generated'] is True
        assert first['total_programs_reset'] == 2
        assert first['total_programs_promoted'] == 1
        assert second['report_generated'] is False
        assert second['total_programs_reset'] == 0

        report = OTAReport.query.filter_by(month='2025-01').one()
        assert report.total_target == 1500000
        assert report.total_collected == 1000000
        assert report.fully_funded_count == 1
        assert report.unfunded_count == 1
        assert report.total_donors == 1
        assert report.new_donors == 1
        assert report.surplus_amount == 0

        funded = db.session.get(OTAProgram, program_id)
        assert funded.months_completed == 1
        assert funded.current_month == '2025-02'
        assert funded.monthly_progress == 0
        assert db.session.get(OTAProgram, unfunded_id).months_completed == 0

    reports = admin_client.get('/api/ota/reports?year=2025').get_json()['reports']
    assert [r['month'] for r in reports] == ['2025-01']


def test_cron_monthly_reset_needs_secret(client):
    assert client.post('/api/ota/cron/monthly-reset').status_code == 401
    assert client.post('/api/ota/cron/monthly-reset', headers={'Authorization': 'Bearer salah'}).status_code == 401

    response = client.post('/api/ota/cron/monthly-reset', headers=CRON_HEADERS)

    assert response.status_code == 200
    assert response.get_json()['report_generated'] is True


def test_create_program(admin_client, factory):
    student_id = factory.student('PONDOK25001')

    created = admin_client.post('/api/ota/programs', json={'student_id': student_id, 'monthly_target': 750000})
    unknown_student = admin_client.post('/api/ota/programs', json={'student_id': 999, 'monthly_target': 750000})
    bad_target = admin_client.post('/api/ota/programs', json={'student_id': student_id, 'monthly_target': 0})

    assert created.status_code == 201
    assert unknown_student.status_code == 404
    assert bad_target.status_code == 400
