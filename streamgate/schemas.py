from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MediaStatus(str, Enum):
    UPLOADING = "uploading"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class MediaType(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


class MediaObject(BaseModel):
    """A stored media file as seen by the streaming core. Read-only."""

    media_id: int
    file_path: str = Field(..., description="Path of the file relative to the media store root.")
    file_type: MediaType = MediaType.VIDEO
    mime_type: str = "application/octet-stream"
    file_size_bytes: int = 0
    status: MediaStatus = Field(MediaStatus.UPLOADING, alias="upload_status")
    is_public: bool = False
    is_active: bool = True
    uploaded_by: Optional[int] = Field(None, description="User id of the owner.")
    entity_type: Optional[str] = Field(None, description="Kind of entity the media is bound to, e.g. exercise.")
    entity_id: Optional[int] = None

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @property
    def is_ready(self) -> bool:
        return self.status == MediaStatus.READY


class ManifestResponse(BaseModel):
    manifest_url: str = Field(..., description="URL of the generated master playlist.")
    available_qualities: list[str] = Field(default_factory=list)
    recommended_quality: str
    expires_at: datetime


class StreamingTokenResponse(BaseModel):
    streaming_token: str
    expires_at: datetime
    streaming_url: str


@dataclass(frozen=True)
class Requester:
    user_id: int
    bearer_token: Optional[str] = None


@dataclass(frozen=True)
class RequestContext:
    """Everything the gateway needs to know about an incoming request."""

    requester: Optional[Requester] = None
    token: Optional[str] = None
    range_header: Optional[str] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    method: str = "GET"
    base_url: str = ""

    @property
    def user_id(self) -> Optional[int]:
        return self.requester.user_id if self.requester else None
