from fastapi import HTTPException, status

# Codes shared with the web client's error-message table.
PERMISSION_DENIED_CODE = "permission/denied"
NOT_FOUND_CODE = "db/record-not-found"
CONSTRAINT_VIOLATION_CODE = "db/constraint-violation"
INVALID_REFERENCE_CODE = "general/validation-error"


class PermissionDenied(HTTPException):
    def __init__(self, message: str = "You don't have permission to perform this action."):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": PERMISSION_DENIED_CODE, "message": message},
        )


class NotFound(HTTPException):
    def __init__(self, message: str = "The requested record was not found."):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": NOT_FOUND_CODE, "message": message},
        )


class ConstraintViolation(HTTPException):
    def __init__(self, message: str = "This operation violates database constraints."):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": CONSTRAINT_VIOLATION_CODE, "message": message},
        )


class InvalidRoleReference(ValueError):
    """A role id that does not resolve to a role of the expected group."""

    def __init__(self, role_id, group_id):
        self.role_id = role_id
        self.group_id = group_id
        super().__init__(f"Role {role_id!r} does not belong to group {group_id!r}")


def invalid_reference_response(exc: InvalidRoleReference) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": INVALID_REFERENCE_CODE, "message": str(exc)},
    )
