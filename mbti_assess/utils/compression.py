from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ValidationError

from mbti_assess.config import DIMENSIONS, TOTAL_QUESTIONS
from mbti_assess.schemas.response import DistributionResponse, dump_response
from mbti_assess.utils.log import get_logger
from mbti_assess.utils.storage import TieredStorage
from mbti_assess.utils.timing import utcnow

logger = get_logger(__name__)

COMPRESSION_PREFIX = "sais_compressed_"
EXPORT_FORMAT = "sais-optimized"
EXPORT_VERSION = "1.0"

_DIMENSION_BY_CHAR = {d[0]: d for d in DIMENSIONS}


@dataclass
class CompressionResult:
    compressed: str
    original_size: int
    compressed_size: int
    compression_ratio: float


# --------------------- Records ---------------------

def _as_dict(response: Any) -> Dict[str, Any]:
    if isinstance(response, BaseModel):
        return dump_response(response)
    return dict(response)


def _epoch(moment: datetime) -> float:
    # Naive datetimes are UTC throughout the service
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()


def _timestamp_seconds(value: Any) -> int:
    if isinstance(value, datetime):
        return int(_epoch(value))
    if isinstance(value, str):
        try:
            return int(_epoch(datetime.fromisoformat(value.replace("Z", "+00:00"))))
        except ValueError:
            pass
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return int(_epoch(utcnow()))


def _compact_question_id(question_id: Any) -> Any:
    # Numeric ids shrink to numbers; anything else is kept verbatim
    qid = str(question_id)
    return int(qid) if qid.isdigit() and str(int(qid)) == qid else qid


def _compressible(response: Any) -> bool:
    r = _as_dict(response)
    return (
        r.get("responseType") == "distribution"
        and r.get("distributionA") is not None
        and r.get("distributionB") is not None
    )


def compress_sais_responses(responses: Sequence[Any], clock: Callable[[], datetime] = utcnow) -> CompressionResult:
    """
    Packs distribution responses into positional records
    {q: question id, a: points A, b: points B, d: dimension char, t: epoch seconds}.
    Binary responses and incomplete distributions are left out.
    """
    sais = [_as_dict(r) for r in responses if _compressible(r)]

    records = [
        {
            "q": _compact_question_id(r.get("questionId")),
            "a": r["distributionA"],
            "b": r["distributionB"],
            "d": str(r.get("mbtiDimension") or "")[:1],
            "t": _timestamp_seconds(r.get("timestamp")),
        }
        for r in sais
    ]

    payload = {
        "format": "sais",
        "responses": records,
        "metadata": {
            "totalQuestions": TOTAL_QUESTIONS["sais"],
            "completed": len(records),
            "lastModified": int(_epoch(clock()) * 1000),
        },
    }

    original = json.dumps(sais, ensure_ascii=False, default=str, separators=(",", ":"))
    optimized = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    ratio = (1 - len(optimized) / len(original)) * 100 if original else 0.0

    return CompressionResult(
        compressed=optimized,
        original_size=len(original),
        compressed_size=len(optimized),
        compression_ratio=ratio,
    )


def _decode(compressed: Any, session_id: str) -> Optional[List[DistributionResponse]]:
    try:
        data = json.loads(compressed)
        if not isinstance(data, dict) or data.get("format") != "sais":
            return None
        restored: List[DistributionResponse] = []
        for rec in data["responses"]:
            q = rec["q"]
            dimension = _DIMENSION_BY_CHAR[rec["d"]]
            restored.append(DistributionResponse(
                response_id=f"sais-{q}-{int(rec['t'])}",
                question_id=str(q),
                session_id=session_id,
                question_type="extended",
                mbti_dimension=dimension,
                distribution_a=rec["a"],
                distribution_b=rec["b"],
                timestamp=datetime.utcfromtimestamp(int(rec["t"])),
            ))
        return restored
    except (ValueError, TypeError, KeyError, ValidationError, OverflowError, OSError):
        return None


def decompress_sais_responses(compressed: Any, session_id: str = "") -> List[DistributionResponse]:
    """Inverse of compress_sais_responses. Corrupt input yields [] instead of an error."""
    restored = _decode(compressed, session_id)
    if restored is None:
        logger.warning("Failed to decompress SAIS responses")
        return []
    return restored


# --------------------- Side storage ---------------------

class SAISStorage:
    """
    Session snapshots on top of TieredStorage. For the sais format the extended
    responses go to a separate compressed key (sais_compressed_<id>) and the main
    record carries a marker instead. A set holding anything other than complete
    distributions is stored uncompressed so nothing is dropped.
    """

    def __init__(self, storage: TieredStorage, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.clock = clock

    @staticmethod
    def compressed_key(session_id: str) -> str:
        return f"{COMPRESSION_PREFIX}{session_id}"

    def store_assessment(self, session_id: str, data: Dict[str, Any]) -> bool:
        other = {k: v for k, v in data.items() if k != "extendedResponses"}
        extended = data.get("extendedResponses") or []

        if extended and data.get("selectedFormat") == "sais" and all(_compressible(r) for r in extended):
            compression = compress_sais_responses(extended, clock=self.clock)
            blob = self.storage.set_raw(self.compressed_key(session_id), compression.compressed)
            if not blob.success:
                logger.warning("Compressed write failed, storing uncompressed", extra={"errors": blob.errors})
                return self.storage.set_item(session_id, data).success

            main = {
                **other,
                "extendedResponsesCompressed": True,
                "compressionStats": {
                    "originalSize": compression.original_size,
                    "compressedSize": compression.compressed_size,
                    "ratio": compression.compression_ratio,
                },
            }
            if compression.compression_ratio > 0:
                logger.debug("SAIS compression saved %.1f%% space", compression.compression_ratio)
            return self.storage.set_item(session_id, main).success

        result = self.storage.set_item(session_id, data)
        # A format change must not leave an old compressed blob behind
        self.storage.remove_item(self.compressed_key(session_id))
        return result.success

    def retrieve_assessment(self, session_id: str) -> Optional[Tuple[Dict[str, Any], Optional[str]]]:
        """Returns (data, tier) or None when missing or unreadable."""
        result = self.storage.get_item(session_id)
        if not result.success or not isinstance(result.data, dict):
            return None

        main = result.data
        if not main.get("extendedResponsesCompressed"):
            return main, result.layer

        blob = self.storage.get_raw(self.compressed_key(session_id))
        restored = _decode(blob, session_id) if blob is not None else None
        if restored is None:
            logger.warning("Compressed responses missing or corrupt", extra={"key": session_id})
            return None

        data = {k: v for k, v in main.items() if k not in ("extendedResponsesCompressed", "compressionStats")}
        data["extendedResponses"] = [dump_response(r) for r in restored]
        return data, result.layer

    def cleanup(self, session_id: str) -> None:
        self.storage.remove_item(self.compressed_key(session_id))
        self.storage.remove_item(session_id)

    def check_health(self) -> Dict[str, Any]:
        used = 0
        compressed_sessions = 0
        for key in self.storage.keys():
            raw = self.storage.get_raw(key)
            if raw is None:
                continue
            used += len(key) + len(raw)
            if key.startswith(COMPRESSION_PREFIX):
                compressed_sessions += 1
        return {
            "tiers": self.storage.check_health(),
            "usedSpace": used,
            "compressedSessions": compressed_sessions,
        }

    # ---------- backup ----------

    def export_assessment(self, session_id: str) -> Optional[str]:
        found = self.retrieve_assessment(session_id)
        if found is None:
            return None
        data, _ = found
        encoded = base64.b64encode(json.dumps(data, ensure_ascii=False, default=str).encode("utf-8")).decode("ascii")
        return json.dumps({
            "version": EXPORT_VERSION,
            "format": EXPORT_FORMAT,
            "sessionId": session_id,
            "timestamp": self.clock().isoformat(),
            "data": encoded,
        })

    def import_assessment(self, exported: str) -> bool:
        try:
            envelope = json.loads(exported)
            if envelope.get("format") != EXPORT_FORMAT:
                return False
            data = json.loads(base64.b64decode(envelope["data"]).decode("utf-8"))
            session_id = str(envelope["sessionId"])
        except (ValueError, TypeError, KeyError, AttributeError):
            logger.warning("Rejected malformed SAIS import")
            return False
        if not isinstance(data, dict):
            return False
        return self.store_assessment(session_id, data)
