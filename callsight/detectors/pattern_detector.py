"""
callsight/detectors/pattern_detector.py
Regex-based transcript extraction — action items, speakers, summary,
key insights and fixed-size chunks for vector indexing.

Each pattern captures up to the next sentence terminator (. ! ?) or the
end of the text. All functions are total: no match → empty result.
"""

import re
from typing import Any, Dict, List

MIN_ACTION_ITEM_LENGTH = 5     # items must be longer than this
MIN_SENTENCE_LENGTH    = 10    # summary sentences must be longer than this
SUMMARY_SENTENCES      = 3
CHUNK_WORDS            = 200

ACTION_PATTERNS = [
    # modal clause: "we need to send the contract." → "send the contract"
    re.compile(r'\b(?:need to|will|should|must)\s+([^.!?]+)', re.IGNORECASE),
    # explicit marker: "Action item: ..." / "TODO: ..." / "task: ..."
    re.compile(r'\b(?:action item|todo|task)\s*:\s*([^.!?]+)', re.IGNORECASE),
    # decision marker: "Decision: ..." / "decided: ..."
    re.compile(r'\b(?:decision|decided)\s*:\s*([^.!?]+)', re.IGNORECASE),
]

INSIGHT_PATTERNS = [
    re.compile(r'\b(?:important|key|critical|essential)\s*:\s*([^.!?]+)', re.IGNORECASE),
    re.compile(r'\b(?:note that|remember that|keep in mind)\s*:?\s*([^.!?]+)', re.IGNORECASE),
]

SPEAKER_PATTERN  = re.compile(r'\b(speaker|participant|caller)\s*#?\s*(\d+)', re.IGNORECASE)
SENTENCE_SPLIT   = re.compile(r'[.!?]+')


def _captures(patterns, text: str) -> List[str]:
    found: List[str] = []
    for pattern in patterns:
        for match in pattern.finditer(text or ''):
            found.append(' '.join(match.group(1).split()))
    return found


def extract_action_items(text: str) -> List[str]:
    return [item for item in _captures(ACTION_PATTERNS, text)
            if len(item) > MIN_ACTION_ITEM_LENGTH]


def extract_key_insights(text: str) -> List[str]:
    return [item for item in _captures(INSIGHT_PATTERNS, text) if item]


def extract_speakers(text: str) -> List[str]:
    """'speaker 1', 'Caller 2' → ['Caller 2', 'Speaker 1'] (sorted, deduplicated)."""
    speakers = {
        f"{label.capitalize()} {number}"
        for label, number in SPEAKER_PATTERN.findall(text or '')
    }
    return sorted(speakers)


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in SENTENCE_SPLIT.split(text or '') if s.strip()]


def summarize(text: str) -> str:
    """First three sentences longer than ten characters, period-terminated."""
    sentences = [s for s in split_sentences(text) if len(s) > MIN_SENTENCE_LENGTH]
    if not sentences:
        return ''
    return '. '.join(sentences[:SUMMARY_SENTENCES]) + '.'


def chunk_for_vectors(text: str, sid: str, size: int = CHUNK_WORDS) -> List[Dict[str, Any]]:
    """
    Non-overlapping windows of `size` words with positional ids.
    The last chunk holds the remainder.
    """
    words = (text or '').split()
    chunks: List[Dict[str, Any]] = []
    for index, start in enumerate(range(0, len(words), size)):
        window = words[start:start + size]
        chunks.append({
            'id':         f"{sid}_chunk_{index}",
            'index':      index,
            'start_word': start,
            'end_word':   start + len(window),
            'word_count': len(window),
            'text':       ' '.join(window),
        })
    return chunks
