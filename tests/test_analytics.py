from datetime import datetime, timedelta

from pondok.utils.error_log import ErrorLogBuffer
from pondok.utils.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_rate_limiter_window():
    clock = FakeClock()
    limiter = RateLimiter(limit=2, window=60, clock=clock)

    assert limiter.check('10.0.0.1') == (True, 1, 1060.0)
    assert limiter.check('10.0.0.1') == (True, 0, 1060.0)
    assert limiter.check('10.0.0.1') == (False, 0, 1060.0)
    assert limiter.check('10.0.0.2')[0] is True

    clock.now = 1060.0
    assert limiter.check('10.0.0.1') == (True, 1, 1120.0)


def test_error_buffer_keeps_latest():
    buffer = ErrorLogBuffer(capacity=3)
    for number in range(5):
        buffer.add({'message': f'error {number}', 'level': 'error'})

    items, matched = buffer.query()

    assert len(buffer) == 3
    assert [e['message'] for e in items] == ['error 4', 'error 3', 'error 2']
    assert len(matched) == 3


def test_error_buffer_query_filters():
    buffer = ErrorLogBuffer()
    old = buffer.add({'message': 'lama', 'level': 'error'})
    old['timestamp'] = datetime.utcnow() - timedelta(days=2)
    buffer.add({'message': 'peringatan', 'level': 'warning'})
    latest = buffer.add({'message': 'baru', 'level': 'error'})
    buffer.resolve(latest['id'])

    assert [e['message'] for e in buffer.query(time_range='24h')[0]] == ['baru', 'peringatan']
    assert [e['message'] for e in buffer.query(time_range='7d', level='error')[0]] == ['baru', 'lama']
    assert [e['message'] for e in buffer.query(resolved=False)[0]] == ['peringatan']
    assert buffer.resolve(999) is None


def test_summarize():
    items = [
        {'message': 'TypeError', 'level': 'error', 'resolved': False},
        {'message': 'TypeError', 'level': 'error', 'resolved': True},
        {'message': 'Lambat', 'level': 'warning', 'resolved': False},
    ]

    summary = ErrorLogBuffer.summarize(items)

    assert summary['total'] == 3
    assert summary['by_level'] == {'error': 2, 'warning': 1}
    assert summary['unresolved'] == 2
    assert summary['top_messages'][0] == {'message': 'TypeError', 'count': 2}


def test_report_and_list_errors(client, admin_client):
    created = client.post('/api/analytics/errors', json={
        'message': 'Cannot read properties of undefined',
        'component': 'DashboardWali',
        'url': '/wali/dashboard',
    }, headers={'User-Agent': 'Mozilla/5.0'})

    assert created.status_code == 201
    error_id = created.get_json()['id']

    response = admin_client.get('/api/analytics/errors')
    assert response.status_code == 200
    body = response.get_json()
    assert body['range'] == '24h'
    entry = body['errors'][0]
    assert entry['id'] == error_id
    assert entry['level'] == 'error'
    assert entry['user_agent'] == 'Mozilla/5.0'
    assert body['summary']['unresolved'] == 1

    resolved = admin_client.patch(f'/api/analytics/errors/{error_id}')
    assert resolved.status_code == 200
    assert resolved.get_json()['error']['resolved'] is True
    assert resolved.get_json()['error']['resolved_at']

    unresolved = admin_client.get('/api/analytics/errors?resolved=false').get_json()
    assert unresolved['errors'] == []


def test_report_error_validation(client):
    missing = client.post('/api/analytics/errors', json={'level': 'error'})
    bad_level = client.post('/api/analytics/errors', json={'message': 'x', 'level': 'fatal'})

    assert missing.status_code == 400
    assert bad_level.status_code == 400


def test_list_errors_admin_only(client, tu_client):
    assert client.get('/api/analytics/errors').status_code == 401
    assert tu_client.get('/api/analytics/errors').status_code == 403


def test_list_errors_bad_range(admin_client):
    assert admin_client.get('/api/analytics/errors?range=1y').status_code == 400


def test_resolve_unknown_error(admin_client):
    assert admin_client.patch('/api/analytics/errors/999').status_code == 404


def test_buffer_capacity_from_config(app, client, admin_client):
    for number in range(7):
        client.post('/api/analytics/errors', json={'message': f'error {number}'})

    body = admin_client.get('/api/analytics/errors').get_json()

    assert app.extensions['error_log'].capacity == 5
    assert body['summary']['total'] == 5
    assert body['errors'][0]['message'] == 'error 6'
