"""
callsight/models/callbacks.py
Explicit form-body schema per provider callback type.

Fields outside a schema are ignored — handlers never reach into the raw
form dict. Field names on the wire are the provider's (CallSid, ...);
attribute names are snake_case.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Callback(BaseModel):
    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    @field_validator('*', mode='before')
    @classmethod
    def _blank_to_none(cls, value):
        # Provider sends empty strings for unset fields
        if isinstance(value, str) and not value.strip():
            return None
        return value


class StatusCallback(_Callback):
    call_sid:    str            = Field(alias='CallSid')
    call_status: Optional[str]  = Field(None, alias='CallStatus')
    from_:       Optional[str]  = Field(None, alias='From')
    to:          Optional[str]  = Field(None, alias='To')
    direction:   Optional[str]  = Field(None, alias='Direction')
    timestamp:   Optional[str]  = Field(None, alias='Timestamp')


class RecordingCallback(_Callback):
    recording_sid:        str            = Field(alias='RecordingSid')
    call_sid:             str            = Field(alias='CallSid')
    recording_url:        Optional[str]  = Field(None, alias='RecordingUrl')
    recording_duration:   Optional[int]  = Field(None, alias='RecordingDuration', ge=0)
    recording_channels:   Optional[int]  = Field(None, alias='RecordingChannels', ge=0)
    recording_status:     Optional[str]  = Field(None, alias='RecordingStatus')
    recording_start_time: Optional[str]  = Field(None, alias='RecordingStartTime')
    recording_end_time:   Optional[str]  = Field(None, alias='RecordingEndTime')


class TranscriptionCallback(_Callback):
    transcription_sid:    str              = Field(alias='TranscriptionSid')
    transcription_text:   Optional[str]    = Field(None, alias='TranscriptionText')
    transcription_status: Optional[str]    = Field(None, alias='TranscriptionStatus')
    transcription_url:    Optional[str]    = Field(None, alias='TranscriptionUrl')
    recording_sid:        Optional[str]    = Field(None, alias='RecordingSid')
    call_sid:             Optional[str]    = Field(None, alias='CallSid')
    confidence:           Optional[float]  = Field(None, alias='Confidence', allow_inf_nan=False)
    audio_url:            Optional[str]    = Field(None, alias='AudioUrl')

    @field_validator('confidence')
    @classmethod
    def _clamp_confidence(cls, value):
        # NaN and infinities are rejected by the field itself
        if value is None:
            return None
        return min(max(float(value), 0.0), 1.0)
