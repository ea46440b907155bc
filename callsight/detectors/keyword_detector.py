"""
callsight/detectors/keyword_detector.py
Vocabulary-based transcript heuristics — pure Python, no model, no I/O.

  detect_topics      — substring membership against TOPIC_KEYWORDS
  analyze_sentiment  — positive vs negative word hits, tie → neutral
  count_formality    — formal vs informal word hits

NOTE ON TOPICS:
  Matching is a plain lower-cased substring test with no word boundary,
  so 'bug' also matches 'debugging' and 'sales' matches 'wholesales'.
  Known false-positive source — acceptable for briefing hints.

Every function is total: empty or malformed input yields empty results.
"""

import string
from typing import Dict, List

# ── VOCABULARIES ─────────────────────────────────────────────
# Extend freely. Order of TOPIC_KEYWORDS is the order topics are reported in.

TOPIC_KEYWORDS: List[str] = [
    'pricing', 'budget', 'contract', 'proposal', 'demo', 'meeting',
    'schedule', 'deadline', 'timeline', 'project', 'product', 'feature',
    'integration', 'support', 'billing', 'invoice', 'payment', 'renewal',
    'onboarding', 'training', 'delivery', 'shipping', 'partnership',
    'marketing', 'sales', 'hiring', 'launch', 'feedback', 'bug',
    'security', 'legal', 'insurance', 'appointment', 'travel',
]

POSITIVE_WORDS = frozenset({
    'good', 'great', 'excellent', 'amazing', 'awesome', 'fantastic',
    'wonderful', 'happy', 'glad', 'pleased', 'love', 'like', 'perfect',
    'thanks', 'thank', 'appreciate', 'helpful', 'excited', 'brilliant',
    'nice', 'success', 'successful', 'agree', 'yes', 'absolutely',
})

NEGATIVE_WORDS = frozenset({
    'bad', 'terrible', 'awful', 'horrible', 'hate', 'angry', 'upset',
    'disappointed', 'frustrated', 'frustrating', 'problem', 'issue',
    'wrong', 'poor', 'unhappy', 'annoyed', 'broken', 'fail', 'failed',
    'failure', 'cancel', 'complaint', 'worried', 'concern', 'no',
})

FORMAL_WORDS = frozenset({
    'please', 'thank', 'regarding', 'sincerely', 'appreciate', 'kindly',
    'therefore', 'however', 'furthermore', 'accordingly', 'certainly',
    'mr', 'mrs', 'ms', 'dr', 'sir', 'madam', 'respectfully',
})

INFORMAL_WORDS = frozenset({
    'hey', 'yeah', 'yep', 'nope', 'gonna', 'wanna', 'gotta', 'cool',
    'awesome', 'kinda', 'sorta', 'lol', 'ok', 'okay', 'dude', 'guys',
    'stuff', 'hi', 'sure',
})

_PUNCT = string.punctuation + '“”‘’'


def _tokens(text: str) -> List[str]:
    return [t.strip(_PUNCT).lower() for t in (text or '').split() if t.strip(_PUNCT)]


def detect_topics(text: str) -> List[str]:
    """Vocabulary topics present in text, in vocabulary order, deduplicated."""
    lowered = (text or '').lower()
    if not lowered.strip():
        return []
    topics: List[str] = []
    for kw in TOPIC_KEYWORDS:
        if kw in lowered and kw not in topics:
            topics.append(kw)
    return topics


def sentiment_counts(text: str) -> Dict[str, int]:
    positive = negative = 0
    for token in _tokens(text):
        if token in POSITIVE_WORDS:
            positive += 1
        elif token in NEGATIVE_WORDS:
            negative += 1
    return {'positive': positive, 'negative': negative}


def analyze_sentiment(text: str) -> str:
    """positive / negative / neutral by majority of word-list hits."""
    counts = sentiment_counts(text)
    if counts['positive'] > counts['negative']:
        return 'positive'
    if counts['negative'] > counts['positive']:
        return 'negative'
    return 'neutral'


def count_formality(text: str) -> Dict[str, int]:
    formal = informal = 0
    for token in _tokens(text):
        if token in FORMAL_WORDS:
            formal += 1
        if token in INFORMAL_WORDS:
            informal += 1
    return {'formal': formal, 'informal': informal}
