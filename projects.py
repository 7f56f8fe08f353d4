from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy import func, case
from marshmallow import Schema, fields, validate, validates, ValidationError
from models import db, Project, Task, Company, TaskStatus
from auth import load_request_data
from errors import EntityNotFoundError, ValidationFailedError
import logging

projects_bp = Blueprint('projects', __name__)
logger = logging.getLogger(__name__)

TITLE_LENGTH_MESSAGE = 'Title must be between 3 and 200 characters.'

# ============================================
# Input Validation Schemas
# ============================================

class ProjectSchema(Schema):
    """Create / update project input"""
    title = fields.Str(
        required=True,
        validate=validate.Length(min=3, max=200, error=TITLE_LENGTH_MESSAGE),
        error_messages={'required': 'Title is required.'}
    )
    description = fields.Str(
        allow_none=True,
        load_default=None,
        validate=validate.Length(max=4000, error='Description cannot exceed 4000 characters.')
    )
    company = fields.Enum(
        Company,
        by_value=True,
        required=True,
        error_messages={'required': 'Company is required.'}
    )

    @validates('title')
    def validate_title(self, value, **kwargs):
        if not value.strip():
            raise ValidationError('Title is required.')

# ============================================
# Validators that need the database
# ============================================

def validate_unique_title(title, exclude_project_id=None):
    """Titles are unique among projects that are not deleted"""
    query = Project.visible().filter(Project.title == title)
    if exclude_project_id is not None:
        query = query.filter(Project.id != exclude_project_id)

    if db.session.query(query.exists()).scalar():
        raise ValidationFailedError({'title': [f"Project with title '{title}' already exists."]})

def get_project_or_404(project_id):
    project = Project.visible().filter(Project.id == project_id).first()
    if project is None:
        raise EntityNotFoundError('Project', project_id)
    return project

def _task_counts():
    """Per project task totals, subquery joined by the list/detail queries"""
    return db.session.query(
        Task.project_id,
        func.count(Task.id).label('task_count'),
        func.sum(case((Task.status == TaskStatus.DONE, 1), else_=0)).label('completed_task_count')
    ).filter(
        Task.is_deleted.is_(False)
    ).group_by(Task.project_id).subquery()

def _project_rows(query):
    counts = _task_counts()
    return query.add_columns(
        counts.c.task_count,
        counts.c.completed_task_count
    ).outerjoin(
        counts, Project.id == counts.c.project_id
    )

# ============================================
# List projects
# ============================================

@projects_bp.route('', methods=['GET'])
@jwt_required()
def get_projects():
    """
    Projects that are not deleted, newest first

    Optional ?company= filter.
    """
    query = Project.visible()

    company = request.args.get('company')
    if company:
        try:
            query = query.filter(Project.company == Company(company))
        except ValueError:
            raise ValidationFailedError({'company': [f"Unknown company '{company}'."]})

    rows = _project_rows(query).order_by(Project.created_at.desc(), Project.id.desc()).all()

    return jsonify({
        'projects': [{
            'id': project.id,
            'title': project.title,
            'company': project.company.value,
            'task_count': task_count or 0,
            'completed_task_count': completed_task_count or 0,
            'created_at': project.created_at.isoformat()
        } for project, task_count, completed_task_count in rows]
    }), 200

# ============================================
# Single project
# ============================================

@projects_bp.route('/<int:project_id>', methods=['GET'])
@jwt_required()
def get_project(project_id):
    row = _project_rows(Project.visible().filter(Project.id == project_id)).first()

    if row is None:
        raise EntityNotFoundError('Project', project_id)

    project, task_count, completed_task_count = row

    return jsonify({
        'id': project.id,
        'title': project.title,
        'description': project.description,
        'company': project.company.value,
        'task_count': task_count or 0,
        'completed_task_count': completed_task_count or 0,
        'created_at': project.created_at.isoformat(),
        'updated_at': project.updated_at.isoformat() if project.updated_at else None
    }), 200

# ============================================
# Create project
# ============================================

@projects_bp.route('', methods=['POST'])
@jwt_required()
def create_project():
    result = load_request_data(ProjectSchema)
    validate_unique_title(result['title'])

    project = Project(
        title=result['title'],
        description=result.get('description'),
        company=result['company']
    )

    db.session.add(project)
    db.session.commit()

    logger.info(f"Project created: {project.title} ({project.id})")

    return jsonify({
        'message': 'Project created successfully',
        'id': project.id
    }), 201

# ============================================
# Update project
# ============================================

@projects_bp.route('/<int:project_id>', methods=['PATCH'])
@jwt_required()
def update_project(project_id):
    result = load_request_data(ProjectSchema)
    project = get_project_or_404(project_id)
    validate_unique_title(result['title'], exclude_project_id=project.id)

    project.title = result['title']
    project.description = result.get('description')
    project.company = result['company']

    db.session.commit()

    logger.info(f"Project {project_id} updated")

    return jsonify({'message': 'Project updated successfully'}), 200

# ============================================
# Delete project (soft)
# ============================================

@projects_bp.route('/<int:project_id>', methods=['DELETE'])
@jwt_required()
def delete_project(project_id):
    """
    Soft delete, the project's tasks are flagged as well

    Deleted rows stay in the database but disappear from every query.
    """
    project = get_project_or_404(project_id)

    project.is_deleted = True
    Task.query.filter_by(project_id=project.id).update({'is_deleted': True})

    db.session.commit()

    logger.info(f"Project {project_id} deleted")

    return jsonify({'message': 'Project deleted successfully'}), 200
