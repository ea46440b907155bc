"""
callsight/briefing.py
Pre-call briefing generation.

Input: ConversationContext (aggregator).
Output: Briefing — relationship status, last-interaction snapshot, pending
action items, preferred topics, style guidance and prioritized suggestions.

Suggestion rules are independent checks evaluated in a fixed order; every
rule that applies fires (no early exit), so output is order-stable.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from callsight.aggregators.contact_aggregator import ConversationContext, pending_action_items

MAX_PENDING_ITEMS   = 5
MAX_PREFERRED_TOPICS = 3
RECONNECT_AFTER_DAYS = 30


@dataclass
class Suggestion:
    type:     str
    priority: str       # high / medium / low
    message:  str


@dataclass
class Briefing:
    phone_key:           str
    relationship_status: Dict[str, object]
    last_interaction:    Optional[Dict[str, object]]
    pending_items:       List[Dict[str, object]]
    preferred_topics:    List[str]
    communication_tips:  List[str]
    suggestions:         List[Suggestion] = field(default_factory=list)
    generated_at:        str = ''


def _age_days(created_at: datetime, now: datetime) -> int:
    return max(int((now - created_at).total_seconds() // 86400), 0)


def _relationship_status(context: ConversationContext) -> Dict[str, object]:
    contact  = context.contact
    insights = context.insights
    return {
        'relationship':            insights.relationship,
        'total_calls':             contact.total_calls,
        'total_duration_seconds':  contact.total_duration_seconds,
        'calls_per_month':         insights.calls_per_month,
        'first_contact':           contact.first_contact.isoformat(),
        'last_contact':            contact.last_contact.isoformat(),
        'days_since_last_contact': int(insights.days_since_last_contact),
    }


def _last_interaction(context: ConversationContext) -> Optional[Dict[str, object]]:
    if not context.history:
        return None
    latest = context.history[-1]
    meta   = latest.metadata
    return {
        'sid':       latest.sid,
        'date':      latest.created_at.isoformat(),
        'summary':   (latest.exports or {}).get('summary', ''),
        'sentiment': meta.sentiment if meta else None,
        'topics':    list(meta.topics) if meta else [],
    }


def _pending_items(context: ConversationContext, now: datetime) -> List[Dict[str, object]]:
    pending = sorted(pending_action_items(context.contact), key=lambda i: i.created_at, reverse=True)
    return [
        {
            'id':                item.id,
            'text':              item.text,
            'age_days':          _age_days(item.created_at, now),
            'transcription_sid': item.transcription_sid,
        }
        for item in pending[:MAX_PENDING_ITEMS]
    ]


def _communication_tips(context: ConversationContext) -> List[str]:
    style  = context.patterns.style
    timing = context.patterns.timing
    tips: List[str] = []

    if style.formality == 'formal':
        tips.append('Keep a professional, formal tone.')
    elif style.formality == 'casual':
        tips.append('A relaxed, conversational tone works well.')

    if style.engagement == 'high':
        tips.append('Expect detailed discussion; allow time for a longer call.')
    elif style.engagement == 'low':
        tips.append('Keep it brief and come with specific questions.')

    if style.responsiveness == 'high':
        tips.append('Responds quickly; a same-week follow-up is expected.')

    if timing.preferred:
        tips.append(f'Conversations usually happen in the {timing.preferred}.')
    return tips


# ── SUGGESTION RULES ─────────────────────────────────────────
# Each rule returns a Suggestion or None. Order here is the output order.

def _rule_pending_items(context, pending, now) -> Optional[Suggestion]:
    if not pending:
        return None
    return Suggestion(
        type     = 'follow_up',
        priority = 'high',
        message  = f'Follow up on {len(pending)} pending action item(s).',
    )


def _rule_reconnect(context, pending, now) -> Optional[Suggestion]:
    days = context.insights.days_since_last_contact
    if context.insights.relationship != 'frequent' or days <= RECONNECT_AFTER_DAYS:
        return None
    return Suggestion(
        type     = 'reconnect',
        priority = 'medium',
        message  = f'No contact for {int(days)} days with a frequent contact — reconnect.',
    )


def _rule_sentiment(context, pending, now) -> Optional[Suggestion]:
    trend = context.insights.sentiment_trend
    if trend.current != 'negative' or trend.trend != 'changing':
        return None
    return Suggestion(
        type     = 'improve_relationship',
        priority = 'high',
        message  = 'Recent sentiment turned negative — address concerns early in the call.',
    )


def _rule_engagement(context, pending, now) -> Optional[Suggestion]:
    if context.patterns.style.engagement != 'low':
        return None
    return Suggestion(
        type     = 'engagement',
        priority = 'medium',
        message  = 'Engagement has been low — ask open questions to draw them in.',
    )


def _rule_topics(context, pending, now) -> Optional[Suggestion]:
    topics = context.summary.top_topics[:MAX_PREFERRED_TOPICS]
    if not topics:
        return None
    return Suggestion(
        type     = 'topic_focus',
        priority = 'medium',
        message  = f"Focus on their usual topics: {', '.join(topics)}.",
    )


SUGGESTION_RULES = [
    _rule_pending_items,
    _rule_reconnect,
    _rule_sentiment,
    _rule_engagement,
    _rule_topics,
]


def brief(context: ConversationContext, now: Optional[datetime] = None) -> Briefing:
    """Deterministic briefing for an operator about to call this contact."""
    now     = now or context.generated_at or datetime.now(timezone.utc)
    pending = _pending_items(context, now)

    suggestions = []
    for rule in SUGGESTION_RULES:
        suggestion = rule(context, pending, now)
        if suggestion is not None:
            suggestions.append(suggestion)

    return Briefing(
        phone_key           = context.contact.phone_key,
        relationship_status = _relationship_status(context),
        last_interaction    = _last_interaction(context),
        pending_items       = pending,
        preferred_topics    = context.summary.top_topics[:MAX_PREFERRED_TOPICS],
        communication_tips  = _communication_tips(context),
        suggestions         = suggestions,
        generated_at        = now.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ'),
    )
