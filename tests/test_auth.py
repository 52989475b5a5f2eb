from pondok.models import UserRole

from conftest import PASSWORD, login


def test_login_with_username(client, factory):
    factory.user('admin')

    response = client.post('/auth/login', json={'login_id': 'admin', 'password': PASSWORD})

    assert response.status_code == 200
    body = response.get_json()
    assert body['user']['role'] == 'ADMIN'
    assert body['user']['role_label'] == 'Admin'
    assert body['must_change_password'] is False


def test_login_wrong_password(client, factory):
    factory.user('admin')

    response = client.post('/auth/login', json={'login_id': 'admin', 'password': 'salah'})

    assert response.status_code == 401
    assert 'Login gagal' in response.get_json()['error']


def test_login_requires_fields(client):
    response = client.post('/auth/login', json={'login_id': 'admin'})

    assert response.status_code == 400
    assert 'password' in response.get_json()['details']


def test_login_with_parent_phone_variant(client, factory):
    factory.parent('wali01', phone='081234567890')

    response = client.post('/auth/login', json={'login_id': '+6281234567890', 'password': PASSWORD})

    assert response.status_code == 200
    assert response.get_json()['user']['username'] == 'wali01'


def test_login_with_teacher_nip(client, factory):
    factory.teacher('guru01', nip='19900101')

    response = client.post('/auth/login', json={'login_id': '19900101', 'password': PASSWORD})

    assert response.status_code == 200
    assert response.get_json()['user']['role'] == 'GURU'


def test_login_ambiguous_identifier(client, factory):
    factory.teacher('guru01', phone='0811223344')
    factory.teacher('guru02', phone='0811223344')

    response = client.post('/auth/login', json={'login_id': '0811223344', 'password': PASSWORD})

    assert response.status_code == 409


def test_me_requires_login(client):
    response = client.get('/auth/me')

    assert response.status_code == 401
    assert response.get_json() == {'error': 'Silakan login terlebih dahulu'}


def test_forced_password_change(client, factory):
    factory.user('tu01', role=UserRole.TU, must_change_password=True)
    body = login(client, 'tu01').get_json()
    assert body['must_change_password'] is True

    blocked = client.get('/api/academic/years')
    assert blocked.status_code == 403
    assert blocked.get_json()['must_change_password'] is True

    assert client.get('/auth/me').status_code == 200

    changed = client.post('/auth/change-password', json={
        'old_password': PASSWORD,
        'new_password': 'baru12345',
        'confirm_password': 'baru12345',
    })
    assert changed.status_code == 200

    assert client.get('/api/academic/years').status_code == 200


def test_change_password_rejects_same_password(client, factory):
    factory.user('admin')
    login(client, 'admin')

    response = client.post('/auth/change-password', json={
        'old_password': PASSWORD,
        'new_password': PASSWORD,
        'confirm_password': PASSWORD,
    })

    assert response.status_code == 400


def test_change_password_confirmation_mismatch(client, factory):
    factory.user('admin')
    login(client, 'admin')

    response = client.post('/auth/change-password', json={
        'old_password': PASSWORD,
        'new_password': 'baru12345',
        'confirm_password': 'beda12345',
    })

    assert response.status_code == 400
    assert 'confirm_password' in response.get_json()['details']


def test_logout(client, factory):
    factory.user('admin')
    login(client, 'admin')

    assert client.post('/auth/logout').status_code == 200
    assert client.get('/auth/me').status_code == 401
