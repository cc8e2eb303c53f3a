"""Token usage estimation and metering for LLM-backed features."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from services.ledger import debit_tokens

logger = logging.getLogger(__name__)

_WORD_PATTERN = re.compile(r"\S+")
_SPACE_PATTERN = re.compile(r"\s")


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def estimate_tokens(text: Optional[str]) -> int:
    """Approximate BPE token count (~3.5 characters per token for English)."""
    if not text or not text.strip():
        return 0

    count = 0
    for word in _WORD_PATTERN.findall(text):
        length = len(word)
        if length <= 3:
            count += 1
        elif length <= 7:
            count += math.ceil(length / 3.5)
        else:
            count += math.ceil(length / 3)

    count += math.ceil(len(_SPACE_PATTERN.findall(text)) * 0.1)
    return max(1, count)


def calculate_token_usage(input_text: Optional[str], output_text: Optional[str]) -> TokenUsage:
    return TokenUsage(input_tokens=estimate_tokens(input_text), output_tokens=estimate_tokens(output_text))


async def track_usage(
    user_id: str,
    db: AsyncSession,
    *,
    input_text: Optional[str],
    output_text: Optional[str],
    feature_type: str,
    description: str,
) -> Dict[str, Any]:
    """Debit the estimated usage of one LLM call."""
    if not input_text or not output_text:
        default_tokens = max(int(settings.DEFAULT_USAGE_TOKENS), 0)
        logger.warning("Usage tracked without input/output user=%s feature=%s", user_id, feature_type)
        result = await debit_tokens(
            user_id,
            db,
            amount=default_tokens,
            description=f"{description} (default token count)",
            feature_type=feature_type,
        )
        return {**result, "input_tokens": 0, "output_tokens": 0, "total_tokens": default_tokens}

    usage = calculate_token_usage(input_text, output_text)
    result = await debit_tokens(
        user_id,
        db,
        amount=usage.total_tokens,
        description=f"{description} ({usage.input_tokens} input + {usage.output_tokens} output tokens)",
        feature_type=feature_type,
    )
    return {
        **result,
        "input_tokens": usage.input_tokens,
        "output_tokens": usage.output_tokens,
        "total_tokens": usage.total_tokens,
    }
