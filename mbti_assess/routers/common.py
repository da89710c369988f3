from __future__ import annotations

from typing import Any, Optional

from fastapi.responses import JSONResponse

from mbti_assess.schemas.scoring import APIResponse


def _envelope(response: APIResponse) -> dict:
    # Only the envelope drops empty keys; nulls inside data are kept
    body = response.model_dump(by_alias=True, mode="json")
    return {k: v for k, v in body.items() if not (k in ("data", "error") and v is None)}


def ok(data: Any = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=_envelope(APIResponse(success=True, data=data)))


def fail(status_code: int, error: str, data: Optional[Any] = None, **extra: Any) -> JSONResponse:
    """Error envelope {success: false, error, data?, timestamp} plus any extra top-level keys."""
    body = _envelope(APIResponse(success=False, error=error, data=data))
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


def dump(model: Any) -> Any:
    return model.model_dump(by_alias=True, mode="json")
