"""
callsight/analytics.py
Text analytics engine. Runs the detector pipeline over one transcript and
returns (Metadata, exports) — nothing is written to the store here.

The engine is the single swappable capability the ingestion service calls.
Individual steps live in callsight.detectors and are pure and total; an
exception escaping process() means a bug, and the caller leaves the
transcription unprocessed.
"""

import logging
from typing import Any, Dict, Tuple

from callsight.detectors.keyword_detector import analyze_sentiment, detect_topics
from callsight.detectors.pattern_detector import (
    chunk_for_vectors,
    extract_action_items,
    extract_key_insights,
    extract_speakers,
    summarize,
)
from callsight.models.record import Metadata

logger = logging.getLogger(__name__)


class AnalyticsEngine:
    """Deterministic keyword/pattern analytics over transcript text."""

    def __init__(self, chunk_words: int = 200):
        self.chunk_words = chunk_words

    def build_metadata(self, text: str) -> Metadata:
        return Metadata(
            word_count   = len((text or '').split()),
            speakers     = set(extract_speakers(text)),
            topics       = detect_topics(text),
            action_items = extract_action_items(text),
            sentiment    = analyze_sentiment(text),
        )

    def build_exports(self, text: str, sid: str) -> Dict[str, Any]:
        return {
            'summary':       summarize(text),
            'key_insights':  extract_key_insights(text),
            'vector_chunks': chunk_for_vectors(text, sid, size=self.chunk_words),
        }

    def process(self, text: str, sid: str) -> Tuple[Metadata, Dict[str, Any]]:
        metadata = self.build_metadata(text)
        exports  = self.build_exports(text, sid)
        logger.debug(
            f"Analytics for {sid}: {metadata.word_count} words, "
            f"{len(metadata.topics)} topics, {len(metadata.action_items)} action items, "
            f"sentiment={metadata.sentiment}"
        )
        return metadata, exports
