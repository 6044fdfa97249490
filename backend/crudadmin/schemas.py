from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


# Auth
class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class DevLoginIn(BaseModel):
    email: EmailStr


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


# Batch actions
class BatchActionPayload(BaseModel):
    """Decoded ``data`` parameter of a batch request.

    Unknown keys are kept so they can be merged back into the request body
    for the batch handler.
    """

    model_config = ConfigDict(extra="allow")

    action: str = Field(min_length=1)
    idx: List[Union[str, int]] = Field(default_factory=list)
    all_elements: bool = False

    @field_validator("idx", mode="before")
    @classmethod
    def normalize_idx(cls, value):
        if value is None:
            return []
        if isinstance(value, (str, int)):
            return [value]
        return value

    @field_validator("idx")
    @classmethod
    def stringify_idx(cls, value: List[Union[str, int]]) -> List[str]:
        return [str(v) for v in value]


# Health
class HealthOut(BaseModel):
    status: str
    database: str
    version: Optional[str] = None
