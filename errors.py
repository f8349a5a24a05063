"""Exceptions raised by handlers, validators and stores.

Each carries the HTTP status it maps to; ``app.py`` renders them as
``{'ok': False, 'msg': ...}`` JSON bodies.
"""


class ApiError(Exception):
    status = 500
    default_msg = 'Internal server error'

    def __init__(self, msg=None, errors=None):
        super().__init__(msg or self.default_msg)
        self.msg = msg or self.default_msg
        self.errors = errors

    def to_dict(self):
        body = {'ok': False, 'msg': self.msg}
        if self.errors:
            body['errors'] = self.errors
        return body


class ValidationFailed(ApiError):
    status = 400
    default_msg = 'Validation failed'


class BadRequest(ApiError):
    status = 400
    default_msg = 'Bad request'


class Conflict(ApiError):
    # duplicate username/email is reported as a plain 400
    status = 400
    default_msg = 'Already exists'


class Unauthorized(ApiError):
    status = 401
    default_msg = 'Access token required'


class Forbidden(ApiError):
    status = 403
    default_msg = 'Insufficient permissions'


class NotFound(ApiError):
    status = 404
    default_msg = 'Not found'
