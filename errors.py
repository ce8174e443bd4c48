"""Error kinds raised by the lifecycle engine and rendered by the API."""


class LifecycleError(Exception):
    kind = 'LifecycleError'
    status_code = 500
    retryable = False

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        error = {
            'kind': self.kind,
            'message': self.message,
            'retryable': self.retryable,
        }
        if self.details:
            error['details'] = self.details
        return {'success': False, 'error': error}


class AuthError(LifecycleError):
    """Caller could not be resolved (401) or lacks the required role (403)."""
    kind = 'AuthError'
    status_code = 403

    def __init__(self, message, status_code=403):
        super().__init__(message)
        self.status_code = status_code


class PreconditionFailed(LifecycleError):
    kind = 'PreconditionFailed'
    status_code = 409


class NotFound(LifecycleError):
    kind = 'NotFound'
    status_code = 404


class TaskLocked(LifecycleError):
    kind = 'TaskLocked'
    status_code = 423


class ValidationError(LifecycleError):
    kind = 'ValidationError'
    status_code = 400


class DependencyFailure(LifecycleError):
    kind = 'DependencyFailure'
    status_code = 500
    retryable = True
