"""Wire schemas for the HTTP API (camelCase on the wire)."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadResponse(WireModel):
    """Returned once per upload. The delete token is never shown again."""

    id: str
    delete_token: str


class FileInfo(WireModel):
    """Non-consuming metadata for a stored blob."""

    size: int = Field(description="Ciphertext size in bytes")
    expires_at: int = Field(description="Unix timestamp (seconds)")
    burn_after_read: bool


class DeleteResponse(WireModel):
    ok: bool = True


class ErrorResponse(WireModel):
    error: str
    code: str


class HealthResponse(WireModel):
    status: str
    version: str
