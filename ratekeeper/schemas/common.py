from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    field: str | None = None
    message: str | None = None
