from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ─── Chat Jobs ───────────────────────────────────────────────────────────────

class ChatMessageIn(BaseModel):
    role: Literal["user", "model"]
    text: str


class ChatJobRequest(BaseModel):
    messages: List[ChatMessageIn] = Field(..., min_length=1)
    model: Optional[str] = None

    @field_validator("messages")
    @classmethod
    def last_message_is_user_question(cls, messages: List[ChatMessageIn]) -> List[ChatMessageIn]:
        last = messages[-1]
        if last.role != "user":
            raise ValueError("The last message must come from the user.")
        if not last.text.strip():
            raise ValueError("The last message must not be empty.")
        return messages


class JobAccepted(BaseModel):
    jobId: str


class JobStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    status_message: str = Field(alias="statusMessage")
    result: Optional[str] = None
    error: Optional[str] = None


# ─── Auth ────────────────────────────────────────────────────────────────────

class AdminLoginRequest(BaseModel):
    password: Optional[str] = None


# ─── Meta ────────────────────────────────────────────────────────────────────

class PromptStartersResponse(BaseModel):
    questions: List[str]
