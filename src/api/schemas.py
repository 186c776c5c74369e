"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class HealthResponse(BaseModel):
    status: str = "ok"
    sessions: int


class AssetUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    context_key: str | None = Field(default=None, alias="contextKey")
    manifest_key: str | None = Field(default=None, alias="manifestKey")

    @model_validator(mode="after")
    def require_a_key(self) -> AssetUpdateRequest:
        if not self.context_key and not self.manifest_key:
            raise ValueError("Provide contextKey and/or manifestKey.")
        return self


class AssetUpdateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    call_sid: str = Field(serialization_alias="callSid")
    context_key: str | None = Field(default=None, serialization_alias="contextKey")
    manifest_key: str | None = Field(default=None, serialization_alias="manifestKey")
    tools: list[str] = Field(description="Tool names visible to the model after the update.")


class ConversationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(default=None, alias="sessionId")
    message: str | None = None
    role: str = "user"


class ConversationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    session_id: str = Field(serialization_alias="sessionId")
    response: str
