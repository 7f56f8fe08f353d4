from flask import Blueprint, request, jsonify, current_app, Response, url_for
from flask_jwt_extended import jwt_required
from sqlalchemy.orm import joinedload
from models import db, Employee, Task, TaskStatus
from auth import get_current_employee
from errors import EntityNotFoundError
from datetime import timedelta
import uuid
import logging

calendar_bp = Blueprint('calendar', __name__)
logger = logging.getLogger(__name__)

ICAL_DATE = '%Y%m%d'
ICAL_DATETIME = '%Y%m%dT%H%M%SZ'

# ============================================
# iCalendar rendering
# ============================================

def escape_ical_text(value):
    """Escape a TEXT value, carriage returns are dropped"""
    return (value or '')\
        .replace('\\', '\\\\')\
        .replace(';', '\\;')\
        .replace(',', '\\,')\
        .replace('\r', '')\
        .replace('\n', '\\n')

def build_event(task, uid_domain):
    """VEVENT lines for one task, all day on its due date"""
    stamp = (task.updated_at or task.created_at).strftime(ICAL_DATETIME)

    lines = [
        'BEGIN:VEVENT',
        f'UID:task-{task.id}@{uid_domain}',
        f'DTSTAMP:{stamp}',
        f'LAST-MODIFIED:{stamp}',
        f'DTSTART;VALUE=DATE:{task.due_date.strftime(ICAL_DATE)}',
        f'DTEND;VALUE=DATE:{(task.due_date + timedelta(days=1)).strftime(ICAL_DATE)}',
        f'SUMMARY:{escape_ical_text(task.title)}'
    ]
    if task.description:
        lines.append(f'DESCRIPTION:{escape_ical_text(task.description)}')
    lines.append(f'CATEGORIES:{escape_ical_text(task.project.title)}')
    lines.append('END:VEVENT')
    return lines

def build_calendar(tasks):
    config = current_app.config
    lines = [
        'BEGIN:VCALENDAR',
        'VERSION:2.0',
        f"PRODID:{config['CALENDAR_PRODID']}",
        'CALSCALE:GREGORIAN',
        'METHOD:PUBLISH'
    ]
    for task in tasks:
        lines += build_event(task, config['CALENDAR_UID_DOMAIN'])
    lines.append('END:VCALENDAR')

    return '\r\n'.join(lines) + '\r\n'

def build_feed_url(token):
    base_url = current_app.config.get('CALENDAR_FEED_BASE_URL') or request.host_url
    path = url_for('calendar.get_feed', token=token)
    return base_url.rstrip('/') + path

def new_feed_token():
    return str(uuid.uuid4())

# ============================================
# Public feed
# ============================================

@calendar_bp.route('/<token>/feed.ics', methods=['GET'])
def get_feed(token):
    """
    Open tasks assigned to the token's employee

    No bearer token, calendar clients only know the URL.
    """
    employee = Employee.query.filter_by(calendar_feed_token=token).first()
    if employee is None:
        logger.warning("Calendar feed requested with unknown token")
        raise EntityNotFoundError('Calendar feed', message='Calendar feed not found.')

    tasks = Task.visible().options(joinedload(Task.project)).filter(
        Task.employee_id == employee.id,
        Task.status != TaskStatus.DONE
    ).order_by(Task.due_date.asc(), Task.id.asc()).all()

    return Response(
        build_calendar(tasks),
        status=200,
        content_type='text/calendar; charset=utf-8',
        headers={'Content-Disposition': 'inline; filename="flowie.ics"'}
    )

# ============================================
# Feed URL management
# ============================================

@calendar_bp.route('/url', methods=['GET'])
@jwt_required()
def get_feed_url():
    employee = get_current_employee()

    if not employee.calendar_feed_token:
        employee.calendar_feed_token = new_feed_token()
        db.session.commit()
        logger.info(f"Calendar feed token issued for employee {employee.id}")

    return jsonify({'url': build_feed_url(employee.calendar_feed_token)}), 200

@calendar_bp.route('/regenerate', methods=['POST'])
@jwt_required()
def regenerate_feed_url():
    """New token, the previous URL stops working"""
    employee = get_current_employee()

    employee.calendar_feed_token = new_feed_token()
    db.session.commit()

    logger.info(f"Calendar feed token regenerated for employee {employee.id}")

    return jsonify({'url': build_feed_url(employee.calendar_feed_token)}), 200
