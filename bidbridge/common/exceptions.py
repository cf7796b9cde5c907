from fastapi import HTTPException, status


class BidBridgeException(HTTPException):
    code = "internal_error"

    def __init__(self, detail: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        super().__init__(status_code=status_code, detail=detail)


class NotFoundError(BidBridgeException):
    code = "not_found"

    def __init__(self, resource: str, resource_id: str | None = None):
        detail = f"{resource} not found"
        if resource_id:
            detail = f"{resource} '{resource_id}' not found"
        super().__init__(detail=detail, status_code=status.HTTP_404_NOT_FOUND)


class PermissionDeniedError(BidBridgeException):
    code = "forbidden"

    def __init__(self, detail: str = "You do not have permission to perform this action"):
        super().__init__(detail=detail, status_code=status.HTTP_403_FORBIDDEN)


class BadRequestError(BidBridgeException):
    code = "invalid_argument"

    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=status.HTTP_400_BAD_REQUEST)


class ConflictError(BidBridgeException):
    code = "conflict"

    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=status.HTTP_409_CONFLICT)


class InvalidStateError(ConflictError):
    code = "invalid_state"

    def __init__(self, resource: str, resource_id: str, current_status: str, action: str):
        super().__init__(f"Cannot {action} {resource.lower()} '{resource_id}': it is {current_status}")
        self.current_status = current_status


class DuplicateQuoteError(ConflictError):
    code = "duplicate_quote"

    def __init__(self, project_id: str, provider_id: str):
        super().__init__(
            f"Provider '{provider_id}' already has an active quote on project '{project_id}'"
        )


class IllegalTransitionError(ConflictError):
    code = "illegal_transition"

    def __init__(self, resource: str, resource_id: str, from_status: str, to_status: str):
        super().__init__(
            f"{resource} '{resource_id}' cannot move from '{from_status}' to '{to_status}'"
        )
        self.from_status = from_status
        self.to_status = to_status


class TransientError(BidBridgeException):
    code = "transient"

    def __init__(self, detail: str = "Temporary storage failure, retry the request"):
        super().__init__(detail=detail, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
