"""
Application exceptions

Handlers and validators raise these, app.py maps each class to a status
code in one place so views never build error responses themselves.
"""


class FlowieError(Exception):
    """Base class, carries a machine readable code and optional details"""

    status_code = 400
    error_code = 'flowie_error'

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        body = {
            'error': self.error_code,
            'message': self.message,
            'status': self.status_code
        }
        if self.details:
            body['details'] = self.details
        return body


class EntityNotFoundError(FlowieError):
    status_code = 404
    error_code = 'not_found'

    def __init__(self, entity_name, entity_id=None, message=None):
        if message is None:
            if entity_id is None:
                message = f'{entity_name} not found.'
            else:
                message = f'{entity_name} with ID {entity_id} not found.'
        super().__init__(message)
        self.entity_name = entity_name
        self.entity_id = entity_id


class ValidationFailedError(FlowieError):
    """Business rule failures that need the database to decide"""

    status_code = 400
    error_code = 'validation_failed'

    def __init__(self, errors, message='Validation failed'):
        # errors: {field: [messages]}
        super().__init__(message, details=errors)
        self.errors = errors
