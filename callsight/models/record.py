"""
callsight/models/record.py
Shared dataclass schema. The store, analytics engine, aggregator and
exporters all use these types. Do not add logic here — data only.

All timestamps are timezone-aware UTC datetimes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set


SENTIMENTS = ('positive', 'negative', 'neutral')
RELATIONSHIPS = ('new', 'occasional', 'regular', 'frequent')


@dataclass
class Recording:
    """One completed call recording, as reported by the provider."""
    sid:              str
    url:              str
    duration_seconds: int
    channel_count:    int
    call_sid:         str
    status:           str
    start_time:       Optional[str]
    end_time:         Optional[str]
    created_at:       datetime


@dataclass
class Metadata:
    """Derived by the analytics engine, attached to a Transcription once."""
    word_count:   int        = 0
    speakers:     Set[str]   = field(default_factory=set)
    topics:       List[str]  = field(default_factory=list)
    action_items: List[str]  = field(default_factory=list)
    sentiment:    str        = 'neutral'


@dataclass
class Transcription:
    """Transcript text for one recording."""
    sid:               str
    text:              str
    status:            str
    recording_sid:     str
    call_sid:          str
    confidence:        float
    created_at:        datetime
    transcription_url: str                       = ''
    audio_url:         str                       = ''
    processed:         bool                      = False
    metadata:          Optional[Metadata]        = None
    exports:           Optional[Dict[str, Any]]  = None   # summary / key_insights / vector_chunks


@dataclass
class ActionItem:
    id:                str
    text:              str
    created_at:        datetime
    completed:         bool    = False
    source:            str     = 'transcription'
    transcription_sid: str     = ''


@dataclass
class Contact:
    """Rolling relationship profile for one PhoneKey."""
    phone_key:              str
    first_contact:          datetime
    last_contact:           datetime
    total_calls:            int                = 0
    total_duration_seconds: int                = 0
    topics:                 Set[str]           = field(default_factory=set)
    action_items:           List[ActionItem]   = field(default_factory=list)
    sentiment_counts:       Dict[str, int]     = field(
        default_factory=lambda: {'positive': 0, 'negative': 0, 'neutral': 0}
    )
    relationship:           str                = 'new'   # cached, recomputed on every write


@dataclass
class ConversationEntry:
    """One recording or transcription event in a contact's rolling history."""
    type:             str          # recording / transcription
    sid:              str
    call_sid:         str
    created_at:       datetime
    duration_seconds: int          = 0
    word_count:       int          = 0
    sentiment:        Optional[str] = None
    topics:           List[str]    = field(default_factory=list)
    summary:          str          = ''
