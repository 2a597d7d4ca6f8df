"""Exceptions shared by the HTTP routes and the sync relay."""


class BlueMeError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'success': False, 'error': self.message}


class ValidationError(BlueMeError):
    status_code = 400


class AuthError(BlueMeError):
    status_code = 401


class ForbiddenError(BlueMeError):
    status_code = 403


class NotFound(BlueMeError):
    status_code = 404


class DeviceNotFound(NotFound):
    def __init__(self, device_id):
        super().__init__('Device not found')
        self.device_id = device_id


class TransportFailure(BlueMeError):
    """A single device could not be reached over its transport."""
    status_code = 502


class ConversionError(BlueMeError):
    status_code = 500


class StorageError(BlueMeError):
    status_code = 500
