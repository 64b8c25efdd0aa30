"""
Error taxonomy shared by the lease services.

Every error carries a human readable ``message`` and an optional ``errors``
mapping of field name to a list of messages, mirroring the shape of Django's
``ValidationError.message_dict`` so views can serialize either the same way.
"""


class LeaseError(Exception):
    default_message = "Lease operation failed."
    status_code = 400

    def __init__(self, message=None, errors=None):
        self.message = message or self.default_message
        self.errors = dict(errors or {})
        super().__init__(self.message)

    def as_dict(self):
        data = {"error": self.message}
        if self.errors:
            data["errors"] = self.errors
        return data


class ValidationError(LeaseError):
    default_message = "Validation failed."
    status_code = 400


class NotFoundError(LeaseError):
    default_message = "Resource not found."
    status_code = 404


class ConflictError(LeaseError):
    default_message = "Resource is in a conflicting state."
    status_code = 409


class ForbiddenError(LeaseError):
    default_message = "You are not authorized to perform this action."
    status_code = 403


class ExternalServiceError(LeaseError):
    default_message = "External service request failed."
    status_code = 502
