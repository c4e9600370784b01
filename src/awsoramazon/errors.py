from fastapi.responses import JSONResponse


# --- API error taxonomy ---
class ApiError(Exception):
    """An error that maps to a client-visible status code and error code."""

    status_code: int = 500
    code: str = "InternalError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> JSONResponse:
        return error_response(self.status_code, self.code, self.message)


class BadRequest(ApiError):
    status_code = 400
    code = "BadRequest"


class NotFound(ApiError):
    status_code = 404
    code = "NotFound"


class Conflict(ApiError):
    status_code = 409
    code = "Conflict"


class PreconditionFailed(ApiError):
    status_code = 412
    code = "PreconditionFailed"


class PreconditionRequired(ApiError):
    status_code = 428
    code = "PreconditionRequired"


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        {"error": {"code": code, "message": message}}, status_code=status_code
    )
