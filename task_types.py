from flask import Blueprint, jsonify
from flask_jwt_extended import jwt_required
from marshmallow import Schema, fields, validate, validates, ValidationError
from models import db, Task, TaskType
from auth import load_request_data
from errors import EntityNotFoundError, ValidationFailedError
import logging

task_types_bp = Blueprint('task_types', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class CreateTaskTypeSchema(Schema):
    name = fields.Str(
        required=True,
        validate=validate.Length(min=2, max=50, error='Name must be between 2 and 50 characters.'),
        error_messages={'required': 'Name is required.'}
    )

    @validates('name')
    def validate_name(self, value, **kwargs):
        if not value.strip():
            raise ValidationError('Name is required.')

class UpdateTaskTypeSchema(CreateTaskTypeSchema):
    name = fields.Str(
        validate=validate.Length(min=2, max=50, error='Name must be between 2 and 50 characters.')
    )
    active = fields.Bool()

# ============================================
# Validators that need the database
# ============================================

def validate_unique_name(name, exclude_task_type_id=None):
    query = TaskType.query.filter(TaskType.name == name)
    if exclude_task_type_id is not None:
        query = query.filter(TaskType.id != exclude_task_type_id)

    if db.session.query(query.exists()).scalar():
        raise ValidationFailedError({'name': [f"Task type with name '{name}' already exists."]})

def validate_not_in_use(task_type_id):
    """Task types referenced by any task cannot be deleted"""
    in_use = db.session.query(
        Task.query.filter(Task.task_type_id == task_type_id).exists()
    ).scalar()

    if in_use:
        raise ValidationFailedError({
            'id': ['Task type is in use by one or more tasks and cannot be deleted.']
        })

def get_task_type_or_404(task_type_id):
    task_type = db.session.get(TaskType, task_type_id)
    if task_type is None:
        raise EntityNotFoundError('TaskType', task_type_id)
    return task_type

def serialize_task_type(task_type):
    return {
        'id': task_type.id,
        'name': task_type.name,
        'active': task_type.active
    }

# ============================================
# Endpoints
# ============================================

@task_types_bp.route('', methods=['GET'])
@jwt_required()
def get_task_types():
    task_types = TaskType.query.order_by(TaskType.name.asc()).all()
    return jsonify({'task_types': [serialize_task_type(tt) for tt in task_types]}), 200

@task_types_bp.route('', methods=['POST'])
@jwt_required()
def create_task_type():
    result = load_request_data(CreateTaskTypeSchema)
    validate_unique_name(result['name'])

    task_type = TaskType(name=result['name'])
    db.session.add(task_type)
    db.session.commit()

    logger.info(f"Task type created: {task_type.name} ({task_type.id})")

    return jsonify({
        'message': 'Task type created successfully',
        'id': task_type.id
    }), 201

@task_types_bp.route('/<int:task_type_id>', methods=['PATCH'])
@jwt_required()
def update_task_type(task_type_id):
    result = load_request_data(UpdateTaskTypeSchema)
    task_type = get_task_type_or_404(task_type_id)

    if 'name' in result:
        validate_unique_name(result['name'], exclude_task_type_id=task_type.id)
        task_type.name = result['name']

    if 'active' in result:
        task_type.active = result['active']

    db.session.commit()

    logger.info(f"Task type {task_type_id} updated")

    return jsonify({
        'message': 'Task type updated successfully',
        'task_type': serialize_task_type(task_type)
    }), 200

@task_types_bp.route('/<int:task_type_id>', methods=['DELETE'])
@jwt_required()
def delete_task_type(task_type_id):
    # In-use check comes before the existence check
    validate_not_in_use(task_type_id)
    task_type = get_task_type_or_404(task_type_id)

    db.session.delete(task_type)
    db.session.commit()

    logger.info(f"Task type deleted: {task_type_id}")

    return jsonify({'message': 'Task type deleted successfully'}), 200
