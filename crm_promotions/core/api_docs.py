from crm_promotions.core.observability import ERROR_CODES
from crm_promotions.schemas.common import ErrorOut

_DEFAULT_MESSAGES: dict[int, str] = {
    400: "Bad request",
    401: "Invalid or missing cron secret",
    404: "Promotion not found",
    422: "Validation failed",
    500: "Internal server error",
}


def error_responses(*status_codes: int, path: str = "/promotions") -> dict[int, dict]:
    """OpenAPI `responses` entries for the shared error envelope."""
    responses: dict[int, dict] = {}
    for status_code in status_codes:
        message = _DEFAULT_MESSAGES.get(status_code, "HTTP error")
        example = {
            "error": {
                "code": ERROR_CODES.get(status_code, "http_error"),
                "message": message,
                "request_id": "request-id",
                "path": path,
                "details": None,
            }
        }
        responses[status_code] = {
            "model": ErrorOut,
            "description": message,
            "content": {"application/json": {"example": example}},
        }
    return responses
