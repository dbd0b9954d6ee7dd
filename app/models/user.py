from enum import Enum

from pydantic import BaseModel, Field


class UserType(str, Enum):
    PROVIDER = "service_provider"
    CONSUMER = "consumer"

    @property
    def counterpart(self) -> "UserType":
        return UserType.CONSUMER if self is UserType.PROVIDER else UserType.PROVIDER

    @property
    def collection(self) -> str:
        return "providers" if self is UserType.PROVIDER else "consumers"


class OnlineUser(BaseModel):
    user_id: int
    user_type: UserType
    connection_id: str


class ParticipantRef(BaseModel):
    user_id: int = Field(..., gt=0)
    user_type: UserType
