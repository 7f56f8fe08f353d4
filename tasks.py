from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy.orm import joinedload, selectinload
from marshmallow import Schema, fields, validate, validates, pre_load, ValidationError
from models import db, Task, TaskType, Employee, TaskStatus, utcnow
from auth import load_request_data, get_current_employee
from projects import get_project_or_404
from errors import EntityNotFoundError, ValidationFailedError
import logging

tasks_bp = Blueprint('tasks', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class TaskFieldsSchema(Schema):
    """Fields shared by create and update"""
    title = fields.Str(
        required=True,
        validate=validate.Length(min=3, max=200, error='Title must be between 3 and 200 characters.'),
        error_messages={'required': 'Title is required.'}
    )
    description = fields.Str(
        allow_none=True,
        load_default=None,
        validate=validate.Length(max=4000, error='Description cannot exceed 4000 characters.')
    )
    due_date = fields.Date(required=True, error_messages={'required': 'Due date is required.'})
    task_type_id = fields.Int(required=True, strict=True)
    employee_id = fields.Int(required=True, strict=True)

class CreateTaskSchema(TaskFieldsSchema):
    project_id = fields.Int(required=True, strict=True)
    parent_task_id = fields.Int(allow_none=True, load_default=None, strict=True)

    @validates('due_date')
    def validate_due_date(self, value, **kwargs):
        if value <= utcnow().date():
            raise ValidationError('Due date must be in the future.')

class UpdateTaskSchema(TaskFieldsSchema):
    pass

class TaskStatusSchema(Schema):
    status = fields.Enum(TaskStatus, by_value=True, required=True)

    @pre_load
    def accept_completed_alias(self, data, **kwargs):
        # Older clients send "Completed" for Done
        if isinstance(data, dict) and data.get('status') == 'Completed':
            data = dict(data, status=TaskStatus.DONE.value)
        return data

class TaskOrderItemSchema(Schema):
    task_id = fields.Int(required=True, strict=True)
    display_order = fields.Int(required=True, strict=True)

class ReorderTasksSchema(Schema):
    items = fields.List(
        fields.Nested(TaskOrderItemSchema),
        required=True,
        validate=validate.Length(min=1, error='Items must not be empty.')
    )

# ============================================
# Status and due date rules
# ============================================

def apply_status(task, status, now):
    """
    Move a task to a status and stamp the lifecycle timestamps

    Pending clears both timestamps, Ongoing restarts the clock, Done keeps
    an existing start time and records completion.
    """
    task.status = status

    if status == TaskStatus.PENDING:
        task.started_at = None
        task.completed_at = None
    elif status == TaskStatus.ONGOING:
        task.started_at = now
        task.completed_at = None
    elif status == TaskStatus.DONE:
        if task.started_at is None:
            task.started_at = now
        task.completed_at = now

def rollup_status(subtask_statuses):
    """Parent status derived from its subtasks, None when there are none"""
    statuses = list(subtask_statuses)
    if not statuses:
        return None
    if all(status == TaskStatus.DONE for status in statuses):
        return TaskStatus.DONE
    if any(status == TaskStatus.ONGOING for status in statuses):
        return TaskStatus.ONGOING
    return TaskStatus.PENDING

def update_parent_status(task, now):
    """Recompute every ancestor of task from its subtasks"""
    parent = task.parent_task
    while parent is not None:
        new_status = rollup_status(subtask.status for subtask in parent.subtasks)
        if new_status is None or new_status == parent.status:
            break
        apply_status(parent, new_status, now)
        logger.info(f"Parent task {parent.id} status rolled up to {new_status.value}")
        parent = parent.parent_task

def extend_parent_due_date(task):
    """A parent is never due before any of its subtasks"""
    child = task
    parent = task.parent_task
    while parent is not None and child.due_date > parent.due_date:
        parent.due_date = child.due_date
        child, parent = parent, parent.parent_task

# ============================================
# Lookups
# ============================================

def get_task_or_404(task_id):
    task = Task.visible().filter(Task.id == task_id).first()
    if task is None:
        raise EntityNotFoundError('Task', task_id)
    return task

def _get_or_404(model, entity_name, entity_id):
    entity = db.session.get(model, entity_id)
    if entity is None:
        raise EntityNotFoundError(entity_name, entity_id)
    return entity

def _parse_bool(value):
    return str(value).lower() in ('1', 'true', 'yes')

def _iso(value):
    return value.isoformat() if value else None

def serialize_subtask(task):
    return {
        'id': task.id,
        'parent_task_id': task.parent_task_id,
        'title': task.title,
        'description': task.description,
        'task_type_id': task.task_type_id,
        'task_type_name': task.task_type.name,
        'due_date': task.due_date.isoformat(),
        'status': task.status.value,
        'display_order': task.display_order,
        'employee_id': task.employee_id,
        'employee_name': task.employee.name if task.employee else None,
        'created_at': _iso(task.created_at),
        'updated_at': _iso(task.updated_at),
        'started_at': _iso(task.started_at),
        'completed_at': _iso(task.completed_at)
    }

# ============================================
# List tasks of a project
# ============================================

@tasks_bp.route('', methods=['GET'])
@jwt_required()
def get_tasks():
    """
    Top level tasks of a project with their subtasks nested

    ?project_id= is required, ?only_show_my_tasks=true keeps the tasks
    assigned to the caller.
    """
    project_id = request.args.get('project_id', type=int)
    if project_id is None:
        raise ValidationFailedError({'project_id': ['project_id is required.']})

    get_project_or_404(project_id)

    query = Task.visible().filter(
        Task.project_id == project_id,
        Task.parent_task_id.is_(None)
    ).options(
        joinedload(Task.task_type),
        joinedload(Task.employee),
        selectinload(Task.subtasks).joinedload(Task.task_type),
        selectinload(Task.subtasks).joinedload(Task.employee)
    )

    if _parse_bool(request.args.get('only_show_my_tasks', 'false')):
        employee = get_current_employee()
        query = query.filter(Task.employee_id == employee.id)

    tasks = query.order_by(Task.display_order.asc(), Task.id.asc()).all()

    tasks_list = []
    for task in tasks:
        subtasks = [subtask for subtask in task.subtasks if not subtask.is_deleted]
        item = serialize_subtask(task)
        item.update({
            'project_id': task.project_id,
            'subtask_count': len(subtasks),
            'completed_subtask_count': sum(1 for st in subtasks if st.status == TaskStatus.DONE),
            'subtasks': [serialize_subtask(st) for st in subtasks]
        })
        tasks_list.append(item)

    return jsonify({'tasks': tasks_list}), 200

# ============================================
# Single task
# ============================================

@tasks_bp.route('/<int:task_id>', methods=['GET'])
@jwt_required()
def get_task(task_id):
    task = get_task_or_404(task_id)

    item = serialize_subtask(task)
    item.update({
        'project_id': task.project_id,
        'subtask_count': len([st for st in task.subtasks if not st.is_deleted])
    })

    return jsonify(item), 200

# ============================================
# Create task
# ============================================

@tasks_bp.route('', methods=['POST'])
@jwt_required()
def create_task():
    """
    Create a task or, with parent_task_id, a subtask

    New tasks start as Pending. A subtask due after its parent pushes the
    parent's due date out.
    """
    result = load_request_data(CreateTaskSchema)

    project = get_project_or_404(result['project_id'])
    task_type = _get_or_404(TaskType, 'TaskType', result['task_type_id'])
    employee = _get_or_404(Employee, 'Employee', result['employee_id'])

    parent = None
    if result.get('parent_task_id') is not None:
        parent = get_task_or_404(result['parent_task_id'])
        if parent.project_id != project.id:
            raise ValidationFailedError({
                'parent_task_id': [
                    f'Parent task with ID {parent.id} does not belong to project with ID {project.id}.'
                ]
            })

    task = Task(
        title=result['title'],
        description=result.get('description'),
        due_date=result['due_date'],
        status=TaskStatus.PENDING,
        project=project,
        task_type=task_type,
        employee=employee,
        parent_task=parent
    )
    db.session.add(task)

    if parent is not None:
        extend_parent_due_date(task)
        # A new Pending subtask can pull a Done parent back
        update_parent_status(task, utcnow())

    db.session.commit()

    logger.info(f"Task created: {task.title} ({task.id}) in project {project.id}")

    return jsonify({
        'message': 'Task created successfully',
        'id': task.id
    }), 201

# ============================================
# Update task
# ============================================

@tasks_bp.route('/<int:task_id>', methods=['PATCH'])
@jwt_required()
def update_task(task_id):
    result = load_request_data(UpdateTaskSchema)
    task = get_task_or_404(task_id)

    task.title = result['title']
    task.description = result.get('description')
    task.due_date = result['due_date']
    task.task_type = _get_or_404(TaskType, 'TaskType', result['task_type_id'])
    task.employee = _get_or_404(Employee, 'Employee', result['employee_id'])

    extend_parent_due_date(task)

    db.session.commit()

    logger.info(f"Task {task_id} updated")

    return jsonify({'message': 'Task updated successfully'}), 200

# ============================================
# Update status
# ============================================

@tasks_bp.route('/<int:task_id>/status', methods=['PATCH'])
@jwt_required()
def update_task_status(task_id):
    result = load_request_data(TaskStatusSchema)
    task = get_task_or_404(task_id)

    now = utcnow()
    apply_status(task, result['status'], now)
    update_parent_status(task, now)

    db.session.commit()

    logger.info(f"Task {task_id} status set to {task.status.value}")

    return jsonify({
        'message': 'Task status updated successfully',
        'status': task.status.value
    }), 200

# ============================================
# Reorder
# ============================================

@tasks_bp.route('/reorder', methods=['PATCH'])
@jwt_required()
def reorder_tasks():
    result = load_request_data(ReorderTasksSchema)
    orders = {item['task_id']: item['display_order'] for item in result['items']}

    tasks = Task.visible().filter(Task.id.in_(list(orders))).all()
    for task in tasks:
        task.display_order = orders[task.id]

    db.session.commit()

    return '', 204

# ============================================
# Delete task
# ============================================

@tasks_bp.route('/<int:task_id>', methods=['DELETE'])
@jwt_required()
def delete_task(task_id):
    """
    Hard delete, subtasks cascade

    Removing a subtask re-evaluates the parent from the subtasks left.
    """
    task = get_task_or_404(task_id)
    parent = task.parent_task

    db.session.delete(task)
    db.session.flush()

    if parent is not None:
        # Reload the collection without the deleted row
        db.session.expire(parent, ['subtasks'])
        new_status = rollup_status(st.status for st in parent.subtasks)
        if new_status is not None and new_status != parent.status:
            now = utcnow()
            apply_status(parent, new_status, now)
            update_parent_status(parent, now)

    db.session.commit()

    logger.info(f"Task deleted: {task_id}")

    return jsonify({'message': 'Task deleted successfully'}), 200
