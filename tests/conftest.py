"""
tests/conftest.py
Shared fixtures — in-memory store, controllable clock, callback builders.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to Python path
project_root = str(Path(__file__).parent.parent)
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from callsight.ingest import CallbackProcessor
from callsight.models.callbacks import RecordingCallback, TranscriptionCallback
from callsight.store import EventStore

T0 = datetime(2024, 3, 4, 15, 30, tzinfo=timezone.utc)   # a Monday afternoon, UTC


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return EventStore()


@pytest.fixture
def processor(store, clock):
    return CallbackProcessor(store=store, clock=clock)


def recording_cb(sid: str = "RE001", call_sid: str = "CA123", duration: int = 42) -> RecordingCallback:
    return RecordingCallback.model_validate({
        "RecordingSid":      sid,
        "RecordingUrl":      f"https://api.example.test/Recordings/{sid}",
        "RecordingDuration": str(duration),
        "RecordingChannels": "1",
        "CallSid":           call_sid,
        "RecordingStatus":   "completed",
    })


def transcription_cb(
    sid: str = "TR001",
    text: str = "Speaker 1: Thanks for the great demo. We need to send the contract by Friday.",
    call_sid: str = "CA123",
    recording_sid: str = "RE001",
    status: str = "completed",
    confidence: str = "0.91",
) -> TranscriptionCallback:
    return TranscriptionCallback.model_validate({
        "TranscriptionSid":    sid,
        "TranscriptionText":   text,
        "TranscriptionStatus": status,
        "RecordingSid":        recording_sid,
        "CallSid":             call_sid,
        "Confidence":          confidence,
    })
