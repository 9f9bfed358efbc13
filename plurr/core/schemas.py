from pydantic import BaseModel, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from datetime import datetime

HEX_COLOR_PATTERN = r"^#[0-9a-fA-F]{6}$"

CAMEL_CONFIG = {
    "alias_generator": to_camel,
    "populate_by_name": True,
    "from_attributes": True,
}


# Lobby schemas
class LobbyChanges(BaseModel):
    """Allow-list of lobby fields an owner may patch."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    background_color: Optional[str] = Field(None, pattern=HEX_COLOR_PATTERN)
    viewers_can_edit: Optional[bool] = None
    is_draft: Optional[bool] = None
    images: Optional[List[str]] = None

    # camelCase keys only
    model_config = {
        "alias_generator": to_camel,
        "from_attributes": True,
        "extra": "forbid",
        "strict": True,
    }


class LobbyUpdateRequest(BaseModel):
    changes: Dict[str, Any] = {}
    added_images: List[str] = []
    deleted_images: List[str] = []

    model_config = CAMEL_CONFIG


class LobbyCreated(BaseModel):
    message: str = "Created New Lobby"
    lobby_id: str
    lobby_code: str
    images: List[str] = []

    model_config = CAMEL_CONFIG


class ImageEntry(BaseModel):
    id: str
    reaction_string: Optional[str] = None
    current_user_reaction: Optional[str] = None

    model_config = CAMEL_CONFIG


class LobbyEntry(BaseModel):
    id: str
    lobby_code: str
    created_on: datetime
    first_upload_on: Optional[datetime] = None
    is_joined: bool = False
    owner_id: str
    title: str
    background_color: str
    viewers_can_edit: bool
    is_draft: bool
    images: List[ImageEntry] = []

    model_config = CAMEL_CONFIG


class Lobby(BaseModel):
    id: str
    lobby_code: str
    created_on: datetime
    first_upload_on: Optional[datetime] = None
    owner_id: str
    title: str
    background_color: str
    viewers_can_edit: bool
    is_draft: bool
    images: List[str] = []

    model_config = CAMEL_CONFIG


class LobbySummary(BaseModel):
    id: str
    created_on: datetime
    title: str
    first_image_id: Optional[str] = None

    model_config = CAMEL_CONFIG


class LobbyIdResponse(BaseModel):
    lobby_id: str

    model_config = CAMEL_CONFIG


class JoinResponse(BaseModel):
    is_joined: bool

    model_config = CAMEL_CONFIG


# Image schemas
class ReactionResult(BaseModel):
    reaction_string: str
    user_reaction: Optional[str] = None

    model_config = CAMEL_CONFIG


class UploadResponse(BaseModel):
    message: str = "Added Images to Lobby"
    images: List[str]

    model_config = CAMEL_CONFIG


# Report schemas
class ReportCreate(BaseModel):
    lobby_id: str = Field(..., min_length=1)
    email: EmailStr
    msg: str = Field(..., min_length=1)

    @field_validator('msg')
    @classmethod
    def strip_msg(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Message must not be blank")
        return v

    model_config = CAMEL_CONFIG


class Report(BaseModel):
    id: str
    status: str
    lobby_id: str
    creator_id: str
    created_on: datetime
    email: str
    msg: str

    model_config = CAMEL_CONFIG
