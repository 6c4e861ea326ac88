from pydantic import BaseModel, Field, FiniteFloat, field_validator

from .models import SHARING_CATEGORIES


def normalize_category(value: str | None) -> str:
    if value is None or value == "":
        return "All"
    if value not in SHARING_CATEGORIES:
        raise ValueError(f"sharing_category must be one of: {', '.join(SHARING_CATEGORIES)}")
    return value


class HitRequest(BaseModel):
    session_id: str = Field(max_length=128)
    magnitude: FiniteFloat
    vector_hash: str | None = None
    sharing_category: str | None = "All"
    client_timestamp: FiniteFloat | None = None
    hit_number: int | None = None

    @field_validator("session_id")
    @classmethod
    def _session_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("session_id is required")
        return value

    @field_validator("sharing_category")
    @classmethod
    def _sharing_category(cls, value: str | None) -> str:
        return normalize_category(value)


class InitiateRequest(BaseModel):
    session_id: str = Field(max_length=128)
    sharing_category: str | None = "All"

    @field_validator("session_id")
    @classmethod
    def _session_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("session_id is required")
        return value

    @field_validator("sharing_category")
    @classmethod
    def _sharing_category(cls, value: str | None) -> str:
        return normalize_category(value)


class RespondRequest(BaseModel):
    accept: bool
