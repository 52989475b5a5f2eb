class ServiceError(Exception):
    """Kesalahan bisnis yang diteruskan ke client sebagai JSON."""
    status_code = 400

    def __init__(self, message, status_code=None, details=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self):
        payload = {'error': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationFailed(ServiceError):
    status_code = 400


class Forbidden(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class Conflict(ServiceError):
    status_code = 409
