"""Registration, login, refresh rotation and logout."""

from datetime import datetime, timedelta, timezone

from models import db, utcnow, Employee, RefreshToken, User


def test_register_creates_user_and_employee(register):
    response = register(email='Anna@Flowie.test', first_name='Anna', last_name='de Vries')

    assert response.status_code == 201
    body = response.get_json()
    assert body['user']['email'] == 'anna@flowie.test'
    assert body['user']['name'] == 'Anna de Vries'

    employee = db.session.get(Employee, body['user']['employee_id'])
    assert employee.user.email == 'anna@flowie.test'
    assert employee.active is True


def test_register_duplicate_email_conflicts(register):
    assert register().status_code == 201

    response = register()

    assert response.status_code == 409
    assert response.get_json()['error'] == 'conflict'
    assert User.query.count() == 1


def test_register_validates_fields(register):
    response = register(email='not-an-email', password='short')

    assert response.status_code == 400
    body = response.get_json()
    assert body['error'] == 'validation_failed'
    assert 'email' in body['details']
    assert 'password' in body['details']


def test_register_without_json_body_is_bad_request(client):
    response = client.post('/auth/register', data='plain text')

    assert response.status_code == 400
    assert response.get_json()['error'] == 'bad_request'


def test_login_returns_token_pair(register, login):
    register()

    response = login()

    assert response.status_code == 200
    body = response.get_json()
    assert body['token_type'] == 'Bearer'
    assert body['access_token']
    assert body['refresh_token']
    assert body['expires_at']


def test_login_with_wrong_password(register, login):
    register()

    response = login(password='wrong-password')

    assert response.status_code == 401
    assert response.get_json()['error'] == 'invalid_credentials'


def test_login_with_unknown_email_gives_same_error(login):
    response = login(email='nobody@flowie.test')

    assert response.status_code == 401
    assert response.get_json()['error'] == 'invalid_credentials'


def test_login_of_inactive_employee_is_forbidden(register, login):
    register()
    employee = Employee.query.filter_by(email='jan@flowie.test').one()
    employee.active = False
    db.session.commit()

    response = login()

    assert response.status_code == 403
    assert response.get_json()['error'] == 'account_disabled'


def test_me_returns_current_user(client, auth_headers):
    response = client.get('/auth/me', headers=auth_headers)

    assert response.status_code == 200
    body = response.get_json()
    assert body['email'] == 'jan@flowie.test'
    assert body['name'] == 'Jan Jansen'


def test_me_requires_token(client):
    response = client.get('/auth/me')

    assert response.status_code == 401
    assert response.get_json()['error'] == 'authorization_required'


def test_garbage_token_is_invalid(client):
    response = client.get('/auth/me', headers={'Authorization': 'Bearer not.a.jwt'})

    assert response.status_code == 401
    assert response.get_json()['error'] == 'invalid_token'


def test_refresh_rotates_token(client, tokens):
    response = client.post('/auth/refresh', json={'refresh_token': tokens['refresh_token']})

    assert response.status_code == 200
    new_tokens = response.get_json()
    assert new_tokens['refresh_token'] != tokens['refresh_token']

    old = RefreshToken.query.filter_by(token=tokens['refresh_token']).one()
    assert old.is_revoked is True

    # The rotated-out token cannot be used again
    replay = client.post('/auth/refresh', json={'refresh_token': tokens['refresh_token']})
    assert replay.status_code == 401
    assert replay.get_json()['error'] == 'invalid_refresh_token'


def test_refresh_with_unknown_token(client):
    response = client.post('/auth/refresh', json={'refresh_token': 'does-not-exist'})

    assert response.status_code == 401


def test_logout_revokes_tokens(client, tokens, auth_headers):
    response = client.post('/auth/logout', headers=auth_headers)
    assert response.status_code == 200

    user = User.query.filter_by(email='jan@flowie.test').one()
    assert user.token_version == 2
    assert all(token.is_revoked for token in user.refresh_tokens)

    # Access tokens issued before the logout are rejected
    me = client.get('/auth/me', headers=auth_headers)
    assert me.status_code == 401
    assert me.get_json()['error'] == 'token_revoked'

    refresh = client.post('/auth/refresh', json={'refresh_token': tokens['refresh_token']})
    assert refresh.status_code == 401


def test_login_after_logout_works_again(client, auth_headers, login):
    client.post('/auth/logout', headers=auth_headers)

    response = login()
    assert response.status_code == 200

    headers = {'Authorization': f"Bearer {response.get_json()['access_token']}"}
    assert client.get('/auth/me', headers=headers).status_code == 200


def test_expires_at_matches_access_token_lifetime(app, register, login):
    register()
    before = utcnow().replace(tzinfo=timezone.utc)

    body = login().get_json()

    lifetime = app.config['JWT_ACCESS_TOKEN_EXPIRES']
    expires_at = datetime.fromisoformat(body['expires_at'])
    assert before + lifetime <= expires_at <= before + lifetime + timedelta(seconds=5)


def test_refresh_of_inactive_employee_is_forbidden(client, tokens):
    employee = Employee.query.filter_by(email='jan@flowie.test').one()
    employee.active = False
    db.session.commit()

    response = client.post('/auth/refresh', json={'refresh_token': tokens['refresh_token']})

    assert response.status_code == 403
    assert response.get_json()['error'] == 'account_disabled'
    assert RefreshToken.query.filter_by(token=tokens['refresh_token']).one().is_revoked is True
    assert RefreshToken.query.filter_by(is_revoked=False).count() == 0


def test_login_is_rate_limited(app, register, login, monkeypatch):
    register()
    monkeypatch.setitem(app.config, 'AUTH_RATE_LIMIT', '5 per minute')

    statuses = [login(password='wrong-password').status_code for _ in range(5)]
    response = login()

    assert statuses == [401] * 5
    assert response.status_code == 429
    body = response.get_json()
    assert body['error'] == 'rate_limit_exceeded'
    assert body['status'] == 429
