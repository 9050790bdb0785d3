"""Error taxonomy shared by the data layer, the access policy and the routes.

Every error carries the HTTP status the boundary answers with; ``main.py``
registers one handler for the whole family.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, detail: str, status_code: int = None):
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


# Missing or malformed field
class ValidationError(AppError):
    status_code = 400


# Missing, malformed or expired bearer token / wrong password
class AuthenticationError(AppError):
    status_code = 401


# Role or ownership check failed
class AuthorizationError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class StorageError(AppError):
    """Data access failure.

    Known constraint violations (duplicate unique value, unknown foreign key,
    CHECK failure) are client errors and use 400; anything else is 500.
    """
    status_code = 500
