from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

Dimension = Literal["E/I", "S/N", "T/F", "J/P"]
Methodology = Literal["scenarios", "traits", "sais"]
QuestionType = Literal["core", "extended"]


class _ResponseBase(BaseModel):
    """
    Fields shared by every response shape. A response is immutable once created;
    answering the same question again replaces the whole record.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    response_id: str = ""
    question_id: str
    session_id: str
    question_type: QuestionType = "core"
    mbti_dimension: Dimension
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    tendency: Optional[str] = None
    score: int = 0


class BinaryResponse(_ResponseBase):
    response_type: Literal["binary"] = "binary"
    selected_option: Literal["A", "B"]


class DistributionResponse(_ResponseBase):
    response_type: Literal["distribution"] = "distribution"
    distribution_a: int = Field(ge=0, le=5)
    distribution_b: int = Field(ge=0, le=5)


QuestionResponse = Annotated[
    Union[BinaryResponse, DistributionResponse],
    Field(discriminator="response_type"),
]

_adapter = TypeAdapter(QuestionResponse)
_list_adapter = TypeAdapter(List[QuestionResponse])


def parse_response(raw: dict) -> Union[BinaryResponse, DistributionResponse]:
    return _adapter.validate_python(raw)


def parse_responses(raw: List[dict]) -> List[Union[BinaryResponse, DistributionResponse]]:
    """Raises pydantic.ValidationError; callers validate first."""
    return _list_adapter.validate_python(raw)


def dump_response(response: Union[BinaryResponse, DistributionResponse]) -> dict:
    return response.model_dump(by_alias=True, mode="json")
