"""
bitsynq.services.schemas — Request models
==========================================

Pydantic models validating the inputs of the service operations.  Services
accept either a model instance or a plain mapping and run it through
:func:`parse_request`, which turns pydantic failures into
:class:`~bitsynq.services.errors.ValidationError`.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

import pydantic
from pydantic import BaseModel, Field, field_validator

from bitsynq.services.errors import ValidationError

M = TypeVar("M", bound=BaseModel)


# ---------------------------------------------------------------------------
# Contributions
# ---------------------------------------------------------------------------
class CreateContributionRequest(BaseModel):
    user_id: str
    ratio: float = Field(ge=0, le=100)
    description: str | None = None


# ---------------------------------------------------------------------------
# Meetings
# ---------------------------------------------------------------------------
class CreateMeetingRequest(BaseModel):
    transcript: str
    title: str | None = None
    meeting_date: str | None = None

    @field_validator("transcript")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("transcript must not be blank")
        return value


class MeetingContributionInput(BaseModel):
    user_id: str
    ratio: float = Field(ge=0, le=100)
    description: str | None = None


class ProcessMeetingRequest(BaseModel):
    contributions: list[MeetingContributionInput] = Field(min_length=1)


# ---------------------------------------------------------------------------
# Distributions
# ---------------------------------------------------------------------------
class DistributeTokensRequest(BaseModel):
    total_tokens: int = Field(gt=0)
    milestone_name: str | None = None
    on_chain: bool = False


class PreviewDistributionRequest(BaseModel):
    total_tokens: int = Field(gt=0)


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------
def parse_request(model: type[M], data: M | Mapping[str, Any]) -> M:
    """Coerce *data* into *model*, raising the service ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            f"Invalid {model.__name__}",
            details=exc.errors(include_url=False),
        ) from exc
