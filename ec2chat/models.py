"""
Pydantic models for instance status, chat turns and sessions.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

NEW_CHAT_TITLE = "New chat"


class InstanceState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
    STOPPING = "stopping"
    STOPPED = "stopped"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "InstanceState":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class Provider(str, Enum):
    LOCAL = "local"
    CLOUD = "cloud"


class PowerAction(str, Enum):
    START = "start"
    STOP = "stop"


class InstanceStatus(BaseModel):
    state: InstanceState = InstanceState.UNKNOWN
    public_address: Optional[str] = None

    @classmethod
    def unknown(cls) -> "InstanceStatus":
        return cls(state=InstanceState.UNKNOWN, public_address=None)


class ChatTurn(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Literal["user", "assistant"]
    content: str = ""
    images: Optional[List[str]] = None


class ConversationSession(BaseModel):
    id: str
    title: str = NEW_CHAT_TITLE
    status: str = "inactive"
    created_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    turns: List[ChatTurn] = Field(default_factory=list)


class SessionSummary(BaseModel):
    id: str
    title: str
    status: str
    created_at: Optional[datetime] = None


class ChatRequest(BaseModel):
    messages: List[ChatTurn]
    provider: Provider = Provider.LOCAL


class SessionMessageRequest(BaseModel):
    content: str = ""
    images: Optional[List[str]] = None
    provider: Provider = Provider.LOCAL


class TitleRequest(BaseModel):
    message: str
    provider: Provider = Provider.LOCAL


class TitleResponse(BaseModel):
    title: str


class PowerRequest(BaseModel):
    action: PowerAction
    password: str


class ToggleRequest(BaseModel):
    password: str


class PowerResult(BaseModel):
    success: bool
    error: Optional[str] = None


class StatusResponse(BaseModel):
    state: InstanceState
    public_address: Optional[str] = None
    polling: bool
    model_name: str
    cloud_model_name: Optional[str] = None
    has_cloud_model: bool


class SessionCreateResponse(BaseModel):
    session_id: str
