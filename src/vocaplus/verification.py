"""Verification codes for finished sessions.

The code is a short digest of a canonical JSON record of the session
(configuration, question identities, raw answers and score). It shows
that a reported score matches a given answer set; it does not prove the
answers were honestly produced, since the client computes it itself.
"""

import asyncio
import hashlib
import json
import logging
from typing import Any, Callable, Dict, Sequence

from .models import Question, SessionConfig
from .text import normalize_text, sort_labels

logger = logging.getLogger(__name__)

CODE_LENGTH = 12

_FNV_OFFSET_A = 2166136261
_FNV_OFFSET_B = 2246822519
_FNV_PRIME_A = 16777619
_FNV_PRIME_B = 1597334677
_MASK_32 = 0xFFFFFFFF


def canonical_json(value: Any) -> str:
    """Byte-stable JSON: object keys sorted recursively, array order kept."""
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def fallback_hash_hex(text: str) -> str:
    """Two FNV-1a style 32-bit accumulators plus the length, hex-joined.

    Deterministic and good enough for spotting accidental duplicates; not
    meant to resist a deliberate forgery.
    """
    data = text.encode("utf-16-le")
    code_units = [data[i] | (data[i + 1] << 8) for i in range(0, len(data), 2)]

    hash_a = _FNV_OFFSET_A
    hash_b = _FNV_OFFSET_B
    for code in code_units:
        hash_a = ((hash_a ^ code) * _FNV_PRIME_A) & _MASK_32
        hash_b = ((hash_b ^ code) * _FNV_PRIME_B) & _MASK_32

    return f"{hash_a:08x}{hash_b:08x}{len(code_units) & _MASK_32:08x}"


def _to_code(hex_digest: str) -> str:
    return hex_digest[:CODE_LENGTH].upper()


def verification_code(payload: Dict[str, Any], digest: Callable[[str], str] = sha256_hex) -> str:
    canonical = canonical_json(payload)
    try:
        return _to_code(digest(canonical))
    except Exception as e:
        logger.debug(f"Digest failed, using fallback hash: {e}")
        return _to_code(fallback_hash_hex(canonical))


async def compute_verification_code(
    payload: Dict[str, Any], digest: Callable[[str], str] = sha256_hex
) -> str:
    """Async variant; the digest runs off the event loop thread."""
    canonical = canonical_json(payload)
    try:
        hex_digest = await asyncio.to_thread(digest, canonical)
        return _to_code(hex_digest)
    except Exception as e:
        logger.debug(f"Digest failed, using fallback hash: {e}")
        return _to_code(fallback_hash_hex(canonical))


def build_verification_payload(
    finished_at: str,
    config: SessionConfig,
    questions: Sequence[Question],
    answers: Sequence[str],
    correct: int,
    total: int,
    accuracy: float,
    time_spent_ms: int,
) -> Dict[str, Any]:
    config_data = config.model_dump(mode="json")
    config_data["selected_tocs"] = sort_labels(config_data.get("selected_tocs") or [])
    return {
        "finishedAt": finished_at,
        "config": config_data,
        "questions": [
            {
                "cardId": question.card_id,
                "direction": question.direction.value,
                "prompt": question.prompt,
            }
            for question in questions
        ],
        "answers": [normalize_text(answer or "") for answer in answers],
        "score": {
            "correct": correct,
            "total": total,
            "accuracy": accuracy,
            "timeSpentMs": time_spent_ms,
        },
    }
