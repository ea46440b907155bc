"""
callsight/detectors — pure, total transcript heuristics.

No I/O, no model. Each function is independently testable; the
AnalyticsEngine in callsight.analytics composes them.
"""

from callsight.detectors.keyword_detector import analyze_sentiment, count_formality, detect_topics
from callsight.detectors.pattern_detector import (
    chunk_for_vectors,
    extract_action_items,
    extract_key_insights,
    extract_speakers,
    summarize,
)

__all__ = [
    "analyze_sentiment",
    "count_formality",
    "detect_topics",
    "chunk_for_vectors",
    "extract_action_items",
    "extract_key_insights",
    "extract_speakers",
    "summarize",
]
