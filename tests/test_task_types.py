"""Task type management."""

import pytest

from models import db, TaskType


def test_list_is_ordered_by_name(client, auth_headers):
    db.session.add_all([TaskType(name='Onderhoud'), TaskType(name='Aankoop')])
    db.session.commit()

    response = client.get('/api/task-types', headers=auth_headers)

    assert response.status_code == 200
    assert [tt['name'] for tt in response.get_json()['task_types']] == ['Aankoop', 'Onderhoud']


@pytest.mark.parametrize('name, status', [
    ('A', 400),
    ('AB', 201),
    ('A' * 50, 201),
    ('A' * 51, 400),
])
def test_name_length_bounds(client, auth_headers, name, status):
    response = client.post('/api/task-types', headers=auth_headers, json={'name': name})

    assert response.status_code == status


def test_duplicate_name_is_rejected(client, auth_headers, task_type):
    response = client.post('/api/task-types', headers=auth_headers, json={'name': task_type.name})

    assert response.status_code == 400
    assert 'name' in response.get_json()['details']


def test_rename_and_deactivate(client, auth_headers, task_type):
    response = client.patch(f'/api/task-types/{task_type.id}', headers=auth_headers,
                            json={'name': 'Ontwikkeling', 'active': False})

    assert response.status_code == 200
    assert response.get_json()['task_type'] == {
        'id': task_type.id,
        'name': 'Ontwikkeling',
        'active': False,
    }


def test_rename_to_taken_name(client, auth_headers, task_type):
    other = TaskType(name='Onderhoud')
    db.session.add(other)
    db.session.commit()

    response = client.patch(f'/api/task-types/{other.id}', headers=auth_headers,
                            json={'name': task_type.name})

    assert response.status_code == 400


def test_update_missing_task_type(client, auth_headers):
    response = client.patch('/api/task-types/999', headers=auth_headers, json={'active': False})

    assert response.status_code == 404


def test_delete_unused_task_type(client, auth_headers, task_type):
    task_type_id = task_type.id

    response = client.delete(f'/api/task-types/{task_type_id}', headers=auth_headers)

    assert response.status_code == 200
    assert db.session.get(TaskType, task_type_id) is None


def test_delete_task_type_in_use(client, auth_headers, task_type, create_project, create_task):
    create_task(create_project())

    response = client.delete(f'/api/task-types/{task_type.id}', headers=auth_headers)

    assert response.status_code == 400
    assert db.session.get(TaskType, task_type.id) is not None


def test_delete_missing_task_type(client, auth_headers):
    response = client.delete('/api/task-types/999', headers=auth_headers)

    assert response.status_code == 404
