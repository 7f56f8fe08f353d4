from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_bcrypt import Bcrypt
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException
from config import get_config
from models import db, utcnow
from extensions import limiter
from errors import FlowieError, EntityNotFoundError
from sqlalchemy import text
import logging
from logging.handlers import RotatingFileHandler
import os

# ============================================
# Flask app
# ============================================

app = Flask(__name__)
app.config.from_object(get_config())
get_config().validate()

CORS(app,
     supports_credentials=True,
     origins=app.config['CORS_ORIGINS'],
     methods=['GET', 'POST', 'PATCH', 'DELETE', 'OPTIONS'],
     allow_headers=['Content-Type', 'Authorization'])

# ============================================
# Extensions
# ============================================

db.init_app(app)
jwt = JWTManager(app)
bcrypt = Bcrypt(app)

app.extensions['bcrypt'] = bcrypt

# Limits, storage and strategy come from the RATELIMIT_* settings
limiter.init_app(app)

# ============================================
# Logging
# ============================================

def setup_logging(app):
    """
    Rotating file logs

    logs/app.log gets INFO and up, logs/error.log only errors.
    """
    log_dir = app.config['LOG_DIR']
    if not os.path.exists(log_dir):
        os.mkdir(log_dir)

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    info_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'error.log'),
        maxBytes=10240000,
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    # app.logger and the blueprint module loggers all propagate to the root
    root_logger = logging.getLogger()
    root_logger.addHandler(info_handler)
    root_logger.addHandler(error_handler)
    level = getattr(logging, app.config['LOG_LEVEL'].upper(), logging.INFO)
    app.logger.setLevel(level)
    root_logger.setLevel(level)

    app.logger.info('Flowie API startup')

if not app.debug and not app.testing:
    setup_logging(app)

# ============================================
# Database
# ============================================

with app.app_context():
    db.create_all()
    app.logger.info('Database schema ready')

# ============================================
# Blueprints
# ============================================

from auth import auth_bp, is_token_version_current
app.register_blueprint(auth_bp, url_prefix='/auth')

from projects import projects_bp
app.register_blueprint(projects_bp, url_prefix='/api/projects')

from tasks import tasks_bp
app.register_blueprint(tasks_bp, url_prefix='/api/tasks')

from task_types import task_types_bp
app.register_blueprint(task_types_bp, url_prefix='/api/task-types')

from employees import employees_bp
app.register_blueprint(employees_bp, url_prefix='/api/employees')

from calendar_feed import calendar_bp
app.register_blueprint(calendar_bp, url_prefix='/api/calendar')

# ============================================
# JWT callbacks
# ============================================

@jwt.token_in_blocklist_loader
def check_token_version(jwt_header, jwt_payload):
    """Tokens issued before the user's last logout are revoked"""
    return not is_token_version_current(jwt_payload)

@jwt.expired_token_loader
def handle_expired_token(jwt_header, jwt_payload):
    app.logger.warning(f"Expired access token for user {jwt_payload.get('sub')} from {request.remote_addr}")
    return jsonify({
        'error': 'token_expired',
        'message': 'Access token expired, use the refresh token or log in again.',
        'status': 401
    }), 401

@jwt.invalid_token_loader
def handle_invalid_token(reason):
    app.logger.warning(f"Rejected token from {request.remote_addr}: {reason}")
    return jsonify({
        'error': 'invalid_token',
        'message': 'The access token could not be verified.',
        'status': 401
    }), 401

@jwt.unauthorized_loader
def handle_missing_token(reason):
    app.logger.warning(f"Request without token to {request.path} from {request.remote_addr}: {reason}")
    return jsonify({
        'error': 'authorization_required',
        'message': 'A bearer access token is required.',
        'status': 401
    }), 401

@jwt.revoked_token_loader
def handle_revoked_token(jwt_header, jwt_payload):
    app.logger.warning(f"Revoked token used by user {jwt_payload.get('sub')}")
    return jsonify({
        'error': 'token_revoked',
        'message': 'The access token was revoked by a logout, log in again.',
        'status': 401
    }), 401

# ============================================
# Error handlers
# ============================================

@app.errorhandler(FlowieError)
def handle_flowie_error(error):
    if isinstance(error, EntityNotFoundError):
        app.logger.warning(f"Not found: {error.message} ({request.method} {request.path})")
    return jsonify(error.to_dict()), error.status_code

@app.errorhandler(ValidationError)
def handle_validation_error(error):
    """marshmallow schema failures"""
    return jsonify({
        'error': 'validation_failed',
        'message': 'Validation failed',
        'status': 400,
        'details': error.normalized_messages()
    }), 400

@app.errorhandler(400)
def handle_bad_request(error):
    return jsonify({
        'error': 'bad_request',
        'message': error.description or 'The request is malformed or invalid',
        'status': 400
    }), 400

@app.errorhandler(404)
def handle_not_found(error):
    return jsonify({
        'error': 'not_found',
        'message': 'Resource not found.',
        'status': 404
    }), 404

@app.errorhandler(405)
def handle_method_not_allowed(error):
    return jsonify({
        'error': 'method_not_allowed',
        'message': 'Method not allowed on this endpoint.',
        'status': 405
    }), 405

@app.errorhandler(429)
def handle_rate_limit(error):
    app.logger.warning(f"Rate limit hit on {request.path} by {request.remote_addr}: {error.description}")
    return jsonify({
        'error': 'rate_limit_exceeded',
        'message': 'Too many requests, slow down and retry later.',
        'status': 429
    }), 429

@app.errorhandler(500)
def handle_server_error(error):
    """
    Generic 500

    The stack trace goes to the log, the client only gets a generic message.
    """
    db.session.rollback()

    app.logger.error(f"Server error on {request.method} {request.path}: {error}", exc_info=True)

    return jsonify({
        'error': 'internal_server_error',
        'message': 'An internal error occurred. Please try again later.',
        'status': 500
    }), 500

@app.errorhandler(Exception)
def handle_unexpected_error(error):
    """Last resort for anything no other handler claimed"""
    if isinstance(error, HTTPException):
        return error

    db.session.rollback()

    app.logger.error(f"Unhandled {type(error).__name__} on {request.method} {request.path}: {error}", exc_info=True)

    return jsonify({
        'error': 'internal_server_error',
        'message': 'An internal error occurred. Please try again later.',
        'status': 500
    }), 500

# ============================================
# Request/Response logging
# ============================================

@app.before_request
def log_request():
    if not app.debug:
        app.logger.info(f"--> {request.method} {request.path} ({request.remote_addr})")

@app.after_request
def log_and_secure_response(response):
    if not app.debug:
        app.logger.info(f"<-- {response.status_code} {request.method} {request.path}")

    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-XSS-Protection'] = '1; mode=block'

    return response

# ============================================
# Health check
# ============================================

@app.route('/health', methods=['GET'])
@limiter.exempt
def health_check():
    try:
        db.session.execute(text('SELECT 1'))

        return jsonify({
            'status': 'healthy',
            'database': 'connected',
            'timestamp': utcnow().isoformat()
        }), 200
    except Exception as e:
        app.logger.error(f"Health check could not reach the database: {e}")
        return jsonify({
            'status': 'unhealthy',
            'database': 'disconnected',
            'error': 'Database unreachable'
        }), 503

# ============================================
# API index
# ============================================

@app.route('/')
def home():
    return jsonify({
        'message': 'Flowie API',
        'version': app.config['API_VERSION'],
        'endpoints': {
            'health': {'path': '/health', 'methods': ['GET']},
            'auth': {
                'register': {'path': '/auth/register', 'methods': ['POST']},
                'login': {'path': '/auth/login', 'methods': ['POST']},
                'refresh': {'path': '/auth/refresh', 'methods': ['POST']},
                'logout': {'path': '/auth/logout', 'methods': ['POST']},
                'me': {'path': '/auth/me', 'methods': ['GET']}
            },
            'projects': {
                'list': {'path': '/api/projects', 'methods': ['GET', 'POST']},
                'detail': {'path': '/api/projects/:id', 'methods': ['GET', 'PATCH', 'DELETE']}
            },
            'tasks': {
                'list': {'path': '/api/tasks?project_id=:id', 'methods': ['GET', 'POST']},
                'detail': {'path': '/api/tasks/:id', 'methods': ['GET', 'PATCH', 'DELETE']},
                'status': {'path': '/api/tasks/:id/status', 'methods': ['PATCH']},
                'reorder': {'path': '/api/tasks/reorder', 'methods': ['PATCH']}
            },
            'task_types': {
                'list': {'path': '/api/task-types', 'methods': ['GET', 'POST']},
                'detail': {'path': '/api/task-types/:id', 'methods': ['PATCH', 'DELETE']}
            },
            'employees': {'path': '/api/employees', 'methods': ['GET']},
            'calendar': {
                'feed': {'path': '/api/calendar/:token/feed.ics', 'methods': ['GET']},
                'url': {'path': '/api/calendar/url', 'methods': ['GET']},
                'regenerate': {'path': '/api/calendar/regenerate', 'methods': ['POST']}
            }
        }
    })

# ============================================
# Run
# ============================================

if __name__ == '__main__':
    # Use gunicorn or similar in production
    debug_mode = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    port = int(os.getenv('FLASK_PORT', 8888))

    app.run(
        debug=debug_mode,
        port=port,
        host='0.0.0.0'
    )
