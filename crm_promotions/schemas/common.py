from pydantic import BaseModel, ConfigDict, Field


class FieldErrorOut(BaseModel):
    field: str = Field(description="Dotted location of the rejected value, or `body`")
    message: str
    type: str | None = None


class ErrorBodyOut(BaseModel):
    code: str = Field(description="Stable machine-readable code, e.g. `unauthorized` or `not_found`")
    message: str
    request_id: str = Field(description="Echoed in the `X-Request-ID` response header")
    path: str
    details: list[FieldErrorOut] | None = None


class ErrorOut(BaseModel):
    """Envelope returned by every non-2xx response."""

    error: ErrorBodyOut

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": {
                    "code": "unauthorized",
                    "message": "Invalid or missing cron secret",
                    "request_id": "8d8f2b00-6c79-4a45-8ff4-b0a5f2bc4bc2",
                    "path": "/promotions/triggers/run",
                    "details": None,
                }
            }
        }
    )
