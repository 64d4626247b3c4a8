"""
Pydantic schemas for provider payloads and API request bodies.
"""
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

MAX_BATCH_LOOKUP_IDS = 50


class ProfilePicture(BaseModel):
    url: Optional[str] = None


class ProfileBio(BaseModel):
    text: Optional[str] = None


class Profile(BaseModel):
    bio: Optional[ProfileBio] = None


class FollowGraphUser(BaseModel):
    """
    One user entry in a follow-graph page.
    """
    model_config = ConfigDict(extra="ignore")

    fid: int
    username: Optional[str] = None
    displayName: Optional[str] = None
    pfp: Optional[ProfilePicture] = None
    profile: Optional[Profile] = None


class FollowGraphResult(BaseModel):
    # Entries are validated one by one so a bad user only drops that user
    users: List[Dict[str, Any]]


class FollowGraphCursor(BaseModel):
    cursor: Optional[str] = None


class FollowGraphPage(BaseModel):
    """
    Pydantic schema for a follow-graph page response
    """
    model_config = ConfigDict(extra="ignore")

    result: FollowGraphResult
    next: Optional[FollowGraphCursor] = None

    @property
    def cursor(self) -> Optional[str]:
        if self.next is None:
            return None
        return self.next.cursor or None


class ModerationLabel(BaseModel):
    label: str
    score: float


class AiLabels(BaseModel):
    moderation: Optional[List[ModerationLabel]] = None


class UserLabels(BaseModel):
    """
    Moderation labels for one user as returned by the scoring provider.
    """
    model_config = ConfigDict(extra="ignore")

    user_id: str
    ai_labels: Optional[AiLabels] = None

    @field_validator("user_id", mode="before")
    @classmethod
    def _stringify_user_id(cls, value: Union[str, int]) -> str:
        return str(value)


class ModerationResponse(BaseModel):
    """
    Pydantic schema for the scoring provider response envelope
    """
    model_config = ConfigDict(extra="ignore")

    status_code: int
    # Entries are validated one by one so a bad entry only loses that identity
    body: Optional[List[Dict[str, Any]]] = None


class BatchModerationRequest(BaseModel):
    """
    Request body for the batch moderation lookup endpoint.
    """
    identity_ids: List[str] = Field(
        ...,
        min_length=1,
        max_length=MAX_BATCH_LOOKUP_IDS,
        validation_alias=AliasChoices("identityIds", "fids"),
    )
    skip_cache: bool = Field(False, validation_alias=AliasChoices("skipCache", "skip_cache"))

    @field_validator("identity_ids", mode="before")
    @classmethod
    def _stringify_ids(cls, value):
        if not isinstance(value, list):
            raise ValueError("identityIds must be an array")
        ids = []
        for raw in value:
            text = str(raw).strip()
            if not text.isdigit() or int(text) <= 0:
                raise ValueError(f"Invalid identity ID: {raw!r}")
            ids.append(text)
        return ids
