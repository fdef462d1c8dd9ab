"""
services/errors.py - Domain errors of the grading engine
Each error knows the HTTP status and machine-readable code it maps to,
so callers can tell "already exists" from "nothing to grade" from "not found".
"""


class GradingError(Exception):
    """Base class for errors raised by the grading services"""
    status_code = 400
    code = 'error'

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {
            'success': False,
            'error': self.code,
            'message': self.message,
        }
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(GradingError):
    status_code = 400
    code = 'validation_error'


class NotFoundError(GradingError):
    status_code = 404
    code = 'not_found'


class ConflictError(GradingError):
    """A report card already exists for (student, period, school year)"""
    status_code = 409
    code = 'conflict'


class PreconditionFailedError(GradingError):
    """No grade recorded for the student in the requested period"""
    status_code = 422
    code = 'no_grades'


class ForbiddenError(GradingError):
    """The current user may not touch this record"""
    status_code = 403
    code = 'forbidden'
