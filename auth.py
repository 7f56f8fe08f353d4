from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity, get_jwt
from marshmallow import Schema, fields, validate
from werkzeug.exceptions import BadRequest
from models import db, User, Employee, RefreshToken, utcnow
from extensions import limiter
from errors import EntityNotFoundError
from datetime import timezone
import secrets
import logging

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class RegisterSchema(Schema):
    """Registration input"""
    email = fields.Email(required=True, error_messages={
        'required': 'Email is required',
        'invalid': 'Invalid email format'
    })
    password = fields.Str(
        required=True,
        validate=validate.Length(min=8, max=128, error='Password must be 8-128 characters'),
        error_messages={'required': 'Password is required'}
    )
    first_name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=100, error='First name must be 1-100 characters'),
        error_messages={'required': 'First name is required'}
    )
    last_name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=100, error='Last name must be 1-100 characters'),
        error_messages={'required': 'Last name is required'}
    )

class LoginSchema(Schema):
    """Login input"""
    email = fields.Email(required=True)
    password = fields.Str(required=True)

class RefreshTokenSchema(Schema):
    refresh_token = fields.Str(required=True, validate=validate.Length(min=1))

# ============================================
# Helper Functions
# ============================================

def get_bcrypt():
    """bcrypt instance registered by app.py"""
    return current_app.extensions['bcrypt']

def load_request_data(schema_class):
    """
    Parse the JSON body with a marshmallow schema

    A missing or non-JSON body is a BadRequest, invalid fields raise
    marshmallow.ValidationError. app.py maps both to 400.
    """
    data = request.get_json(silent=True)
    if data is None:
        raise BadRequest('Request body must be JSON')
    return schema_class().load(data)

def issue_tokens(user):
    """
    Access token plus a fresh opaque refresh token stored server side

    The caller commits the session.
    """
    employee = user.employee
    access_token = create_access_token(
        identity=str(user.id),
        additional_claims={
            'email': user.email,
            'employee_id': employee.id if employee else None,
            'name': employee.name if employee else user.email,
            'token_type': 'access_token',
            'version': user.token_version
        }
    )

    refresh_token = RefreshToken(
        token=secrets.token_urlsafe(64),
        user_id=user.id,
        expires_at=utcnow() + current_app.config['REFRESH_TOKEN_EXPIRES']
    )
    db.session.add(refresh_token)

    expires_at = (utcnow() + current_app.config['JWT_ACCESS_TOKEN_EXPIRES']).replace(tzinfo=timezone.utc)

    return {
        'access_token': access_token,
        'refresh_token': refresh_token.token,
        'expires_at': expires_at.isoformat(),
        'token_type': 'Bearer'
    }

def account_disabled_response():
    return jsonify({
        'error': 'account_disabled',
        'message': 'Account is disabled',
        'status': 403
    }), 403

def is_account_disabled(user):
    return user.employee is not None and not user.employee.active

def _auth_rate_limit():
    return current_app.config['AUTH_RATE_LIMIT']

def _refresh_rate_limit():
    return current_app.config['REFRESH_RATE_LIMIT']

# ============================================
# Register
# ============================================

@auth_bp.route('/register', methods=['POST'])
@limiter.limit(_auth_rate_limit)
def register():
    """
    Create a user account and its employee record

    Both rows are written in a single transaction.
    """
    result = load_request_data(RegisterSchema)
    email = result['email'].lower()

    if User.query.filter_by(email=email).first():
        return jsonify({
            'error': 'conflict',
            'message': 'Email already exists',
            'status': 409
        }), 409

    hashed_password = get_bcrypt().generate_password_hash(result['password']).decode('utf-8')

    user = User(email=email, password_hash=hashed_password)
    employee = Employee(
        first_name=result['first_name'],
        last_name=result['last_name'],
        email=email,
        user=user
    )

    db.session.add(user)
    db.session.add(employee)
    db.session.commit()

    logger.info(f"New user registered: {user.email}")

    return jsonify({
        'message': 'User registered successfully',
        'user': {
            'id': user.id,
            'email': user.email,
            'employee_id': employee.id,
            'name': employee.name
        }
    }), 201

# ============================================
# Login
# ============================================

@auth_bp.route('/login', methods=['POST'])
@limiter.limit(_auth_rate_limit)
def login():
    """
    Exchange credentials for an access/refresh token pair

    The error never says whether the email or the password was wrong.
    """
    result = load_request_data(LoginSchema)

    user = User.query.filter_by(email=result['email'].lower()).first()

    if not user or not get_bcrypt().check_password_hash(user.password_hash, result['password']):
        logger.warning(f"Failed login attempt for email: {result['email']}")
        return jsonify({
            'error': 'invalid_credentials',
            'message': 'Invalid email or password',
            'status': 401
        }), 401

    if is_account_disabled(user):
        logger.warning(f"Inactive user login attempt: {user.email}")
        return account_disabled_response()

    tokens = issue_tokens(user)
    db.session.commit()

    logger.info(f"User logged in: {user.email}")

    return jsonify(tokens), 200

# ============================================
# Refresh
# ============================================

@auth_bp.route('/refresh', methods=['POST'])
@limiter.limit(_refresh_rate_limit)
def refresh():
    """
    Rotate a refresh token

    The presented token is revoked and a new pair is issued. A disabled
    account only loses the presented token.
    """
    result = load_request_data(RefreshTokenSchema)

    stored = RefreshToken.query.filter_by(token=result['refresh_token']).first()

    if stored is None or not stored.is_active:
        logger.warning("Refresh attempt with invalid or expired token")
        return jsonify({
            'error': 'invalid_refresh_token',
            'message': 'The refresh token is invalid or expired',
            'status': 401
        }), 401

    stored.is_revoked = True

    if is_account_disabled(stored.user):
        db.session.commit()
        logger.warning(f"Inactive user refresh attempt: {stored.user.email}")
        return account_disabled_response()

    tokens = issue_tokens(stored.user)
    db.session.commit()

    return jsonify(tokens), 200

# ============================================
# Logout
# ============================================

@auth_bp.route('/logout', methods=['POST'])
@jwt_required()
def logout():
    """
    Sign out everywhere

    Revokes every active refresh token of the user and bumps the token
    version, which invalidates all access tokens issued before now.
    """
    user = get_current_user()

    RefreshToken.query.filter_by(user_id=user.id, is_revoked=False)\
        .update({'is_revoked': True})
    user.token_version = (user.token_version or 1) + 1
    db.session.commit()

    logger.info(f"User logged out: {user.email}")

    return jsonify({'message': 'Logout successful'}), 200

# ============================================
# Current user
# ============================================

@auth_bp.route('/me', methods=['GET'])
@jwt_required()
def get_me():
    user = get_current_user()
    employee = user.employee

    return jsonify({
        'id': user.id,
        'email': user.email,
        'employee_id': employee.id if employee else None,
        'name': employee.name if employee else None,
        'created_at': user.created_at.isoformat() if user.created_at else None
    }), 200

# ============================================
# Helpers for the other blueprints
# ============================================

def get_current_user():
    """User behind the bearer token, EntityNotFoundError when it is gone"""
    user_id = get_jwt_identity()
    user = db.session.get(User, int(user_id)) if user_id else None
    if user is None:
        logger.warning(f"Token valid but user not found: {user_id}")
        raise EntityNotFoundError('User', user_id)
    return user

def get_current_employee():
    """Employee linked to the bearer token"""
    employee_id = get_jwt().get('employee_id')
    employee = db.session.get(Employee, employee_id) if employee_id else None
    if employee is None:
        raise EntityNotFoundError('Employee', employee_id,
                                  message='Employee not found for current user')
    return employee

def is_token_version_current(jwt_payload):
    """False once the user logged out after this token was issued"""
    user = db.session.get(User, int(jwt_payload['sub']))
    if user is None:
        return False
    return jwt_payload.get('version') == user.token_version
