"""Business-rule failures raised by the service modules.

Resolvers turn these into the `error` field of a mutation result; anything
else is treated as an unexpected failure and logged.
"""
from pydantic import ValidationError as PydanticValidationError


class ServiceError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message


class ValidationError(ServiceError):
    pass


class NotFoundError(ServiceError):
    pass


class ConflictError(ServiceError):
    pass


class PermissionDenied(ServiceError):
    pass


def from_pydantic(exc: PydanticValidationError) -> ValidationError:
    first = exc.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ()))
    message = first.get("msg", "Invalid input")
    return ValidationError(f"{field}: {message}" if field else message)
