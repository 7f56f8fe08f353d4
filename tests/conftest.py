"""Pytest configuration and fixtures for the Flowie API.

The app is imported once with FLASK_ENV=testing (in-memory SQLite, generous
rate limits, cheap bcrypt). Every test gets freshly created tables and
empty rate-limit counters.
"""

import os
from datetime import timedelta

os.environ['FLASK_ENV'] = 'testing'

import pytest

from app import app as flask_app
from extensions import limiter
from models import db, utcnow, Company, Employee, TaskType, User

DEFAULT_PASSWORD = 'Sup3rSecret!'


def future_date(days=7):
    """ISO date a number of days after today (UTC)."""
    return (utcnow().date() + timedelta(days=days)).isoformat()


@pytest.fixture
def app():
    """Application with an app context pushed and empty tables."""
    with flask_app.app_context():
        limiter.reset()
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register(client):
    """Register a user through the API, returns the response."""

    def _register(email='jan@flowie.test', password=DEFAULT_PASSWORD,
                  first_name='Jan', last_name='Jansen'):
        return client.post('/auth/register', json={
            'email': email,
            'password': password,
            'first_name': first_name,
            'last_name': last_name,
        })

    return _register


@pytest.fixture
def login(client):
    def _login(email='jan@flowie.test', password=DEFAULT_PASSWORD):
        return client.post('/auth/login', json={'email': email, 'password': password})

    return _login


@pytest.fixture
def tokens(register, login):
    """Token pair of a freshly registered user."""
    assert register().status_code == 201
    response = login()
    assert response.status_code == 200
    return response.get_json()


@pytest.fixture
def auth_headers(tokens):
    return {'Authorization': f"Bearer {tokens['access_token']}"}


@pytest.fixture
def current_employee(auth_headers):
    """Employee row behind auth_headers."""
    user = User.query.filter_by(email='jan@flowie.test').one()
    return user.employee


@pytest.fixture
def task_type(app):
    task_type = TaskType(name='Development')
    db.session.add(task_type)
    db.session.commit()
    return task_type


@pytest.fixture
def make_employee(app):
    """Employee with its own user account, created directly in the database."""
    counter = {'n': 0}

    def _make_employee(first_name='Piet', last_name='Pieters', active=True):
        counter['n'] += 1
        email = f"{first_name.lower()}.{counter['n']}@flowie.test"
        user = User(email=email, password_hash='not-used')
        employee = Employee(first_name=first_name, last_name=last_name,
                            email=email, user=user, active=active)
        db.session.add_all([user, employee])
        db.session.commit()
        return employee

    return _make_employee


@pytest.fixture
def create_project(client, auth_headers):
    """Create a project through the API, returns its id."""

    def _create_project(title='Kantoor Amsterdam', company=Company.IMMOSEED.value,
                        description=None):
        response = client.post('/api/projects', headers=auth_headers, json={
            'title': title,
            'description': description,
            'company': company,
        })
        assert response.status_code == 201, response.get_json()
        return response.get_json()['id']

    return _create_project


@pytest.fixture
def create_task(client, auth_headers, current_employee, task_type):
    """Create a task (or a subtask with parent_task_id) through the API, returns its id."""

    def _create_task(project_id, title='Offerte opvragen', parent_task_id=None,
                     due_date=None, employee_id=None, description=None):
        response = client.post('/api/tasks', headers=auth_headers, json={
            'project_id': project_id,
            'title': title,
            'description': description,
            'due_date': due_date or future_date(),
            'task_type_id': task_type.id,
            'employee_id': employee_id or current_employee.id,
            'parent_task_id': parent_task_id,
        })
        assert response.status_code == 201, response.get_json()
        return response.get_json()['id']

    return _create_task
