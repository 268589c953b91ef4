"""Error taxonomy shared by validation, storage, analytics and the HTTP layer."""


class FinanceError(Exception):
    status_code = 500
    message = 'Something went wrong, please try again'

    def __init__(self, message=None, errors=None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.errors = list(errors or [])

    def to_dict(self):
        payload = {'message': self.message}
        if self.errors:
            payload['errors'] = self.errors
        return payload


class ValidationError(FinanceError):
    """Malformed or missing input. Carries one entry per offending field."""
    status_code = 400
    message = 'Invalid data'

    def __init__(self, path=None, message=None, errors=None):
        errors = list(errors or [])
        if path is not None:
            errors.append({'path': path, 'message': message or 'Invalid value'})
        super().__init__(None, errors)

    @property
    def paths(self):
        return [e['path'] for e in self.errors]


class UnauthorizedError(FinanceError):
    status_code = 401
    message = 'Unauthorized'


class NotFoundError(FinanceError):
    # Same answer for "missing" and "belongs to someone else".
    status_code = 404
    message = 'Not found'


class StorageError(FinanceError):
    status_code = 500
