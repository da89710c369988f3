from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt
from pydantic.alias_generators import to_camel

from mbti_assess.schemas.response import Methodology


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StartSessionRequest(_CamelModel):
    language: Literal["en", "ar"] = "en"


class SelectFormatRequest(_CamelModel):
    # Kept as str so an unknown methodology yields a 400, not a schema error
    methodology: str


class InterimLanguageRequest(_CamelModel):
    language: Optional[Literal["en", "ar"]] = None


class ProgressSessionData(_CamelModel):
    """Client snapshot sent to the progress backup; unknown fields are kept as-is."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    language: Literal["en", "ar"]
    current_step: str
    progress: Union[StrictInt, StrictFloat]
    selected_format: Optional[Methodology] = None
    core_responses: List[Dict[str, Any]] = []
    extended_responses: List[Dict[str, Any]] = []


class ProgressSaveRequest(_CamelModel):
    session_id: str
    session_data: ProgressSessionData


class ImportRequest(_CamelModel):
    exported: str
