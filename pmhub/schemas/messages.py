from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field


class GroupCreate(BaseModel):
    name: Optional[str] = None
    user_ids: List[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("userIds", "participantIds", "user_ids"),
    )


class MemberAdd(BaseModel):
    user_id: int = Field(validation_alias=AliasChoices("userId", "user_id"))


class MessageEdit(BaseModel):
    content: str = Field(min_length=1)
