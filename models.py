from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone
import enum

db = SQLAlchemy()


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================
# Enums
# ============================================

class TaskStatus(str, enum.Enum):
    PENDING = 'Pending'
    ONGOING = 'Ongoing'
    DONE = 'Done'


class Company(str, enum.Enum):
    IMMOSEED = 'Immoseed'
    NOVARA_REAL_ESTATE = 'NovaraRealEstate'


def _enum_values(enum_class):
    return [member.value for member in enum_class]


# ============================================
# 1. User
# ============================================
class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    # Bumped on logout, every access token carrying an older version is rejected
    token_version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, onupdate=utcnow)

    employee = db.relationship('Employee', back_populates='user', uselist=False)
    refresh_tokens = db.relationship('RefreshToken', back_populates='user', lazy=True,
                                     cascade='all,delete-orphan')

# ============================================
# 2. RefreshToken
# ============================================
class RefreshToken(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(255), unique=True, nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship('User', back_populates='refresh_tokens')

    @property
    def is_expired(self):
        return utcnow() >= self.expires_at

    @property
    def is_active(self):
        return not self.is_revoked and not self.is_expired

# ============================================
# 3. Employee
# ============================================
class Employee(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    active = db.Column(db.Boolean, nullable=False, default=True)

    # Public iCalendar feed, regenerating replaces the old value
    calendar_feed_token = db.Column(db.String(36), unique=True, nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, onupdate=utcnow)

    user = db.relationship('User', back_populates='employee')
    assigned_tasks = db.relationship('Task', back_populates='employee', lazy=True)

    @property
    def name(self):
        return f'{self.first_name} {self.last_name}'

# ============================================
# 4. Project
# ============================================
class Project(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(4000), nullable=True)
    company = db.Column(
        db.Enum(Company, native_enum=False, length=50, values_callable=_enum_values),
        nullable=False
    )
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, onupdate=utcnow)

    tasks = db.relationship('Task', back_populates='project', lazy=True,
                            cascade='all,delete-orphan')

    __table_args__ = (
        db.Index('idx_project_company', 'company'),
    )

    @classmethod
    def visible(cls):
        """Query without soft-deleted projects"""
        return cls.query.filter(cls.is_deleted.is_(False))

# ============================================
# 5. TaskType
# ============================================
class TaskType(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, onupdate=utcnow)

# ============================================
# 6. Task
# ============================================
class Task(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(4000), nullable=True)
    status = db.Column(
        db.Enum(TaskStatus, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=TaskStatus.PENDING
    )
    due_date = db.Column(db.Date, nullable=False)
    display_order = db.Column(db.Integer, nullable=False, default=0)

    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=False)
    task_type_id = db.Column(db.Integer, db.ForeignKey('task_type.id'), nullable=False)
    employee_id = db.Column(db.Integer, db.ForeignKey('employee.id'), nullable=False)
    parent_task_id = db.Column(db.Integer, db.ForeignKey('task.id'), nullable=True)

    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, onupdate=utcnow)

    project = db.relationship('Project', back_populates='tasks')
    task_type = db.relationship('TaskType')
    employee = db.relationship('Employee', back_populates='assigned_tasks')

    # Subtasks go with their parent
    subtasks = db.relationship(
        'Task',
        backref=db.backref('parent_task', remote_side=[id]),
        cascade='all,delete-orphan',
        order_by='Task.display_order'
    )

    __table_args__ = (
        db.Index('idx_task_project_parent', 'project_id', 'parent_task_id'),
        db.Index('idx_task_employee_status', 'employee_id', 'status'),
        db.Index('idx_task_due_date', 'due_date'),
    )

    @classmethod
    def visible(cls):
        """Query without soft-deleted tasks"""
        return cls.query.filter(cls.is_deleted.is_(False))
