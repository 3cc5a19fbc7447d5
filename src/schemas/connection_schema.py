# src/schemas/connection_schema.py
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Platform(str, Enum):
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    YOUTUBE = "youtube"
    LINKEDIN = "linkedin"


# platforms that can start an authorization flow; instagram is only ever derived
AUTHORIZABLE_PLATFORMS = (Platform.FACEBOOK, Platform.YOUTUBE, Platform.LINKEDIN)


class TokenVariant(str, Enum):
    FACEBOOK_PAGE = "facebook_page"
    INSTAGRAM_VIA_FACEBOOK = "instagram_via_facebook"
    YOUTUBE_REFRESH = "youtube_refresh"
    LINKEDIN = "linkedin"


class InstagramAccount(BaseModel):
    id: str
    username: Optional[str] = None


class Organization(BaseModel):
    id: str
    name: str


class _ConnectionBase(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None  # None means the credential never expires
    connected_at: datetime = Field(default_factory=utcnow)

    provider_fields: ClassVar[tuple] = ()

    @property
    def provider_metadata(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", include=set(self.provider_fields))


class FacebookConnection(_ConnectionBase):
    platform: Literal["facebook"] = "facebook"
    token_type: Literal["facebook_page"] = "facebook_page"
    page_id: str
    page_name: Optional[str] = None
    instagram_account: Optional[InstagramAccount] = None

    provider_fields = ("page_id", "page_name", "instagram_account")


class InstagramConnection(_ConnectionBase):
    platform: Literal["instagram"] = "instagram"
    token_type: Literal["instagram_via_facebook"] = "instagram_via_facebook"
    page_id: str
    page_name: Optional[str] = None
    instagram_account: InstagramAccount

    provider_fields = ("page_id", "page_name", "instagram_account")


class YouTubeConnection(_ConnectionBase):
    platform: Literal["youtube"] = "youtube"
    token_type: Literal["youtube_refresh"] = "youtube_refresh"
    channel_id: str
    channel_name: Optional[str] = None

    provider_fields = ("channel_id", "channel_name")


class LinkedInConnection(_ConnectionBase):
    platform: Literal["linkedin"] = "linkedin"
    token_type: Literal["linkedin"] = "linkedin"
    user_id: str
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    organizations: List[Organization] = Field(default_factory=list)

    provider_fields = ("user_id", "user_name", "user_email", "organizations")


PlatformConnection = Annotated[
    Union[FacebookConnection, InstagramConnection, YouTubeConnection, LinkedInConnection],
    Field(discriminator="platform"),
]

platform_connection_adapter: TypeAdapter = TypeAdapter(PlatformConnection)


# --- status reporting ---
class ConnectionState(str, Enum):
    NOT_CONFIGURED = "not_configured"
    READY_TO_CONNECT = "ready_to_connect"
    CONNECTED = "connected"
    NEEDS_RECONNECT = "needs_reconnect"


class ConnectionStatus(BaseModel):
    state: ConnectionState
    connected: bool
    status: str
    details: Dict[str, Any] = Field(default_factory=dict)
    expires_at: Optional[datetime] = None
    connected_at: Optional[datetime] = None
    days_left: Optional[int] = None


class ProbeResult(BaseModel):
    success: bool
    message: str
