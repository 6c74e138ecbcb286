"""Pull the machine-readable itinerary block out of a model reply."""

from __future__ import annotations

import json
import logging
import re
from typing import NamedTuple, Optional

from tripchat.api.models import Itinerary

logger = logging.getLogger(__name__)

ITINERARY_FENCE = "```json_itinerary"

# Non-greedy body, so only the first fenced block is matched.
_BLOCK_RE = re.compile(r"```json_itinerary\s*([\s\S]*?)\s*```")


class ExtractionResult(NamedTuple):
    cleaned_text: str
    itinerary: Optional[Itinerary]

    @property
    def has_itinerary(self) -> bool:
        return self.itinerary is not None


def extract_itinerary(full_text: str) -> ExtractionResult:
    """Split a reply into display prose and its embedded itinerary.

    A missing block, a block that is not valid JSON, or a payload without a
    list-valued ``points`` field all yield the original text untouched and no
    itinerary. Only the first block is considered; later ones stay in the
    text as-is.
    """
    match = _BLOCK_RE.search(full_text)
    if match is None:
        return ExtractionResult(full_text, None)

    try:
        payload = json.loads(match.group(1))
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse itinerary JSON from model reply: %s", exc)
        return ExtractionResult(full_text, None)

    if not isinstance(payload, dict) or not isinstance(payload.get("points"), list):
        logger.warning("Itinerary block has no points list; leaving reply as plain text")
        return ExtractionResult(full_text, None)

    cleaned = (full_text[: match.start()] + full_text[match.end():]).strip()
    itinerary = Itinerary.from_dict(payload)
    logger.debug("Extracted itinerary with %d points", len(itinerary.points))
    return ExtractionResult(cleaned, itinerary)
