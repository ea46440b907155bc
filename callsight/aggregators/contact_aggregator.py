"""
callsight/aggregators/contact_aggregator.py
Contact-level conversation aggregation.

Folds every transcription belonging to one contact into a chronological
history and derives relationship insights and communication patterns.
The ConversationContext is computed fresh on every call and never written
back — it always reflects current store state.

NOTE ON RELATIONSHIP:
  calls_per_month = total_calls / (max(days_since_first_contact, 30) / 30)
  ≥4 → frequent, ≥2 → regular, ≥3 total calls → occasional, else new.
  The observation window is at least one month, so a brand-new contact with
  a single call is 'new' rather than an infinitely frequent caller.
  Contact.relationship is a cached copy written with the same function.

NOTE ON SENTIMENT TREND:
  'insufficient' with fewer than 2 analysed conversations. Otherwise the
  oldest and newest of the last 3 are compared: equal → stable, else changing.

All ratios guard zero-division — an empty history gives defined defaults.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Dict, List, Optional

from callsight.detectors.keyword_detector import count_formality
from callsight.models.record import Contact, ConversationEntry, Transcription
from callsight.phone import CallerLookup, call_sid_as_phone, normalize, resolve_phone_key
from callsight.store import EventStore

logger = logging.getLogger(__name__)

# ── THRESHOLDS ───────────────────────────────────────────────
FREQUENT_CALLS_PER_MONTH = 4.0
REGULAR_CALLS_PER_MONTH  = 2.0
OCCASIONAL_MIN_CALLS     = 3
MIN_WINDOW_DAYS          = 30

QUICK_FOLLOW_UP_DAYS     = 7
TREND_WINDOW             = 3

HIGH_ENGAGEMENT_WORDS    = 200
MEDIUM_ENGAGEMENT_WORDS  = 100
HIGH_RESPONSIVENESS      = 3
MODERATE_RESPONSIVENESS  = 1

# (bucket, start hour inclusive, end hour exclusive); any other hour is night
TIME_BUCKETS = [
    ('morning',   5, 12),
    ('afternoon', 12, 17),
    ('evening',   17, 21),
]
BUCKET_ORDER = ['morning', 'afternoon', 'evening', 'night']


# ── DATA MODEL ───────────────────────────────────────────────

@dataclass
class TopicConsistency:
    frequency:   Dict[str, int]        = field(default_factory=dict)
    recurring:   List[Dict[str, object]] = field(default_factory=list)   # [{'topic', 'count'}] desc
    consistency: float                 = 0.0   # recurring / unique


@dataclass
class SentimentTrend:
    distribution: Dict[str, float] = field(
        default_factory=lambda: {'positive': 0.0, 'negative': 0.0, 'neutral': 0.0}
    )
    trend:        str              = 'insufficient'   # stable / changing / insufficient
    current:      Optional[str]    = None


@dataclass
class TimingPattern:
    buckets:   Dict[str, int] = field(default_factory=lambda: {b: 0 for b in BUCKET_ORDER})
    preferred: Optional[str]  = None


@dataclass
class FollowUpPattern:
    quick_follow_ups: int             = 0
    gaps_days:        List[float]     = field(default_factory=list)
    average_gap_days: Optional[float] = None


@dataclass
class CommunicationStyle:
    formality:      str   = 'neutral'   # formal / casual / neutral
    engagement:     str   = 'unknown'   # high / medium / low / unknown
    responsiveness: str   = 'low'       # high / moderate / low
    average_words:  float = 0.0


@dataclass
class RelationshipInsights:
    relationship:            str
    calls_per_month:         float
    days_since_first_contact: float
    days_since_last_contact: float
    topic_consistency:       TopicConsistency
    sentiment_trend:         SentimentTrend


@dataclass
class CommunicationPatterns:
    timing:     TimingPattern
    follow_ups: FollowUpPattern
    style:      CommunicationStyle


@dataclass
class ContextSummary:
    total_conversations:  int
    total_words:          int
    average_confidence:   float
    first_conversation:   Optional[datetime]
    last_conversation:    Optional[datetime]
    pending_action_items: int
    top_topics:           List[str]


@dataclass
class ConversationContext:
    contact:      Contact
    entries:      List[ConversationEntry]
    history:      List[Transcription]      # ascending by created_at
    insights:     RelationshipInsights
    patterns:     CommunicationPatterns
    summary:      ContextSummary
    generated_at: datetime


# ── RELATIONSHIP ─────────────────────────────────────────────

def _days_between(earlier: datetime, later: datetime) -> float:
    return max((later - earlier).total_seconds() / 86400.0, 0.0)


def calls_per_month(total_calls: int, first_contact: datetime, now: datetime) -> float:
    days = max(_days_between(first_contact, now), MIN_WINDOW_DAYS)
    return total_calls / (days / 30.0)


def classify_relationship(total_calls: int, first_contact: datetime, now: datetime) -> str:
    rate = calls_per_month(total_calls, first_contact, now)
    if rate >= FREQUENT_CALLS_PER_MONTH:
        return 'frequent'
    if rate >= REGULAR_CALLS_PER_MONTH:
        return 'regular'
    if total_calls >= OCCASIONAL_MIN_CALLS:
        return 'occasional'
    return 'new'


# ── HISTORY ──────────────────────────────────────────────────

def collect_history(
    store:         EventStore,
    phone_key:     str,
    caller_lookup: CallerLookup = call_sid_as_phone,
) -> List[Transcription]:
    """
    Every transcription whose recording's call maps to phone_key, oldest first.
    Falls back to the transcription's own call sid when the recording is gone.
    """
    history: List[Transcription] = []
    for t in store.list_transcriptions():
        recording = store.get_recording(t.recording_sid) if t.recording_sid else None
        call_sid  = recording.call_sid if recording else t.call_sid
        if resolve_phone_key(call_sid, caller_lookup) == phone_key:
            history.append(t)
    history.sort(key=lambda t: t.created_at)
    return history


def _word_count(t: Transcription) -> int:
    if t.metadata is not None:
        return t.metadata.word_count
    return len((t.text or '').split())


def _sentiments(history: List[Transcription]) -> List[str]:
    return [t.metadata.sentiment for t in history if t.metadata is not None]


# ── ANALYSES ─────────────────────────────────────────────────

def analyze_topic_consistency(history: List[Transcription]) -> TopicConsistency:
    frequency: Counter = Counter()
    for t in history:
        if t.metadata is not None:
            frequency.update(t.metadata.topics)

    recurring = [
        {'topic': topic, 'count': count}
        for topic, count in sorted(frequency.items(), key=lambda x: (-x[1], x[0]))
        if count > 1
    ]
    unique = len(frequency)
    return TopicConsistency(
        frequency   = dict(sorted(frequency.items(), key=lambda x: (-x[1], x[0]))),
        recurring   = recurring,
        consistency = round(len(recurring) / unique, 4) if unique else 0.0,
    )


def analyze_sentiment_trend(history: List[Transcription]) -> SentimentTrend:
    sentiments = _sentiments(history)
    total = len(sentiments)
    if not total:
        return SentimentTrend()

    counts = Counter(sentiments)
    distribution = {
        label: round(counts.get(label, 0) / total, 4)
        for label in ('positive', 'negative', 'neutral')
    }
    if total < 2:
        trend = 'insufficient'
    else:
        recent = sentiments[-TREND_WINDOW:]
        trend  = 'stable' if recent[0] == recent[-1] else 'changing'

    return SentimentTrend(distribution=distribution, trend=trend, current=sentiments[-1])


def time_bucket(moment: datetime, tz: Optional[tzinfo] = None) -> str:
    hour = moment.astimezone(tz).hour
    for bucket, start, end in TIME_BUCKETS:
        if start <= hour < end:
            return bucket
    return 'night'


def analyze_timing(history: List[Transcription], tz: Optional[tzinfo] = None) -> TimingPattern:
    pattern = TimingPattern()
    for t in history:
        pattern.buckets[time_bucket(t.created_at, tz)] += 1
    if history:
        # max() keeps the first bucket in BUCKET_ORDER on ties
        pattern.preferred = max(BUCKET_ORDER, key=lambda b: pattern.buckets[b])
    return pattern


def analyze_follow_ups(history: List[Transcription]) -> FollowUpPattern:
    gaps = [
        round(_days_between(prev.created_at, cur.created_at), 4)
        for prev, cur in zip(history, history[1:])
    ]
    return FollowUpPattern(
        quick_follow_ups = sum(1 for g in gaps if g <= QUICK_FOLLOW_UP_DAYS),
        gaps_days        = gaps,
        average_gap_days = round(sum(gaps) / len(gaps), 2) if gaps else None,
    )


def analyze_style(history: List[Transcription], follow_ups: FollowUpPattern) -> CommunicationStyle:
    style = CommunicationStyle()

    formal = informal = 0
    for t in history:
        counts = count_formality(t.text)
        formal   += counts['formal']
        informal += counts['informal']
    if formal > informal:
        style.formality = 'formal'
    elif informal > formal:
        style.formality = 'casual'

    if history:
        style.average_words = round(sum(_word_count(t) for t in history) / len(history), 1)
        if style.average_words > HIGH_ENGAGEMENT_WORDS:
            style.engagement = 'high'
        elif style.average_words > MEDIUM_ENGAGEMENT_WORDS:
            style.engagement = 'medium'
        else:
            style.engagement = 'low'

    if follow_ups.quick_follow_ups >= HIGH_RESPONSIVENESS:
        style.responsiveness = 'high'
    elif follow_ups.quick_follow_ups >= MODERATE_RESPONSIVENESS:
        style.responsiveness = 'moderate'
    return style


def pending_action_items(contact: Contact):
    return [item for item in contact.action_items if not item.completed]


def _summarize(contact: Contact, history: List[Transcription],
               topics: TopicConsistency) -> ContextSummary:
    confidences = [t.confidence for t in history]
    top_topics  = list(topics.frequency.keys())[:5] or sorted(contact.topics)[:5]
    return ContextSummary(
        total_conversations  = len(history),
        total_words          = sum(_word_count(t) for t in history),
        average_confidence   = round(sum(confidences) / len(confidences), 4) if confidences else 0.0,
        first_conversation   = history[0].created_at if history else None,
        last_conversation    = history[-1].created_at if history else None,
        pending_action_items = len(pending_action_items(contact)),
        top_topics           = top_topics,
    )


# ── ENTRY POINTS ─────────────────────────────────────────────

def build_context(
    store:         EventStore,
    phone_key:     str,
    now:           Optional[datetime] = None,
    tz:            Optional[tzinfo] = None,
    caller_lookup: CallerLookup = call_sid_as_phone,
) -> Optional[ConversationContext]:
    """
    Assemble the full conversation context for one contact.
    Returns None if no contact exists for the key.
    """
    key     = normalize(phone_key)
    contact = store.get_contact(key)
    if contact is None:
        return None

    now     = now or datetime.now(timezone.utc)
    history = collect_history(store, key, caller_lookup)

    topics     = analyze_topic_consistency(history)
    sentiment  = analyze_sentiment_trend(history)
    follow_ups = analyze_follow_ups(history)

    insights = RelationshipInsights(
        relationship             = classify_relationship(contact.total_calls, contact.first_contact, now),
        calls_per_month          = round(calls_per_month(contact.total_calls, contact.first_contact, now), 2),
        days_since_first_contact = round(_days_between(contact.first_contact, now), 2),
        days_since_last_contact  = round(_days_between(contact.last_contact, now), 2),
        topic_consistency        = topics,
        sentiment_trend          = sentiment,
    )
    patterns = CommunicationPatterns(
        timing     = analyze_timing(history, tz),
        follow_ups = follow_ups,
        style      = analyze_style(history, follow_ups),
    )

    logger.debug(f"Context built for {key}: {len(history)} conversations")
    return ConversationContext(
        contact      = contact,
        entries      = store.get_conversation(key),
        history      = history,
        insights     = insights,
        patterns     = patterns,
        summary      = _summarize(contact, history, topics),
        generated_at = now,
    )


def contact_rollup(store: EventStore, contact: Contact, now: Optional[datetime] = None) -> Dict[str, object]:
    """Lightweight per-contact row for contact listings — no history scan."""
    now = now or datetime.now(timezone.utc)
    return {
        'phone_key':              contact.phone_key,
        'relationship':           classify_relationship(contact.total_calls, contact.first_contact, now),
        'total_calls':            contact.total_calls,
        'total_duration_seconds': contact.total_duration_seconds,
        'first_contact':          contact.first_contact,
        'last_contact':           contact.last_contact,
        'topic_count':            len(contact.topics),
        'pending_action_items':   len(pending_action_items(contact)),
        'conversation_entries':   len(store.get_conversation(contact.phone_key)),
        'sentiment_counts':       dict(contact.sentiment_counts),
    }
