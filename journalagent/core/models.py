"""Inbound/outbound transport models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from journalagent.config.settings import settings


class ImageAttachment(BaseModel):
    url: str | None = None
    data: str | None = None  # base64 payload
    mime_type: str = Field(default="image/png", validation_alias=AliasChoices("mime_type", "mimeType"))

    @model_validator(mode="after")
    def _require_source(self) -> "ImageAttachment":
        if not (self.url or self.data):
            raise ValueError("image requires url or data")
        return self


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant", "model"]
    content: str = ""


class UserCredentials(BaseModel):
    llm_api_key: str | None = Field(default=None, validation_alias=AliasChoices("llm_api_key", "apiKey"))


class AgentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message: str | None = None
    images: list[ImageAttachment] = Field(default_factory=list)
    caller_identity: str = Field(validation_alias=AliasChoices("caller_identity", "userId", "user_id"))
    scope_identifier: str | None = Field(
        default=None, validation_alias=AliasChoices("scope_identifier", "calendarId", "calendar_id")
    )
    conversation_history: list[HistoryMessage] = Field(
        default_factory=list, validation_alias=AliasChoices("conversation_history", "conversationHistory")
    )
    user_supplied_credentials: UserCredentials | None = Field(
        default=None, validation_alias=AliasChoices("user_supplied_credentials", "credentials")
    )
    user_api_key: str | None = Field(default=None, validation_alias=AliasChoices("user_api_key", "userApiKey"))
    focused_entity_id: str | None = Field(
        default=None, validation_alias=AliasChoices("focused_entity_id", "focusedTradeId")
    )
    scope_context: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("scope_context", "calendarContext")
    )
    stream: bool | None = None

    @field_validator("caller_identity")
    @classmethod
    def _non_empty_caller(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("caller_identity must not be empty")
        return value

    @model_validator(mode="after")
    def _require_content(self) -> "AgentRequest":
        if not (self.message and self.message.strip()) and not self.images:
            raise ValueError("message or at least one image is required")
        if len(self.images) > settings.max_request_images:
            raise ValueError(f"at most {settings.max_request_images} images are allowed")
        return self

    def completion_key(self) -> str:
        """User-supplied key wins over the server key; empty string when neither exists."""

        if self.user_supplied_credentials and self.user_supplied_credentials.llm_api_key:
            return self.user_supplied_credentials.llm_api_key
        if self.user_api_key:
            return self.user_api_key
        return settings.llm_api_key


class Citation(BaseModel):
    id: str
    title: str
    url: str
    tool_name: str


class AgentResponse(BaseModel):
    success: bool
    final_text: str
    final_html: str = ""
    citations: list[Citation] = Field(default_factory=list)
    embedded_data: dict[str, dict[str, dict]] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
