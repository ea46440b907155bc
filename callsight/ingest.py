"""
callsight/ingest.py
Callback ingestion — turns authenticated provider callbacks into store
mutations.

  status         → logged only
  recording      → Recording, contact call/duration counters, conversation entry
  transcription  → Transcription, analytics, contact topics/action items/sentiment,
                   conversation entry (only for status 'completed' with text)

Analytics failures never propagate: the raw Transcription stays stored with
processed=False (metadata/exports untouched) and can be retried through
process_transcription(). Each store write is a single atomic upsert.

PRIVACY: transcript text is never logged — sids and counts only.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from callsight.aggregators.contact_aggregator import classify_relationship
from callsight.analytics import AnalyticsEngine
from callsight.errors import NotFound
from callsight.models.callbacks import RecordingCallback, StatusCallback, TranscriptionCallback
from callsight.models.record import ActionItem, Contact, ConversationEntry, Recording, Transcription
from callsight.phone import CallerLookup, call_sid_as_phone, resolve_phone_key
from callsight.store import EventStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallbackProcessor:
    """
    Applies provider callbacks to the EventStore.

    Args:
        store:         shared EventStore
        engine:        analytics capability (swappable)
        caller_lookup: call sid → raw phone number; defaults to treating the
                       call sid as the number (see callsight.phone)
        clock:         returns the current UTC time — injectable for tests
    """

    def __init__(
        self,
        store:         EventStore,
        engine:        Optional[AnalyticsEngine] = None,
        caller_lookup: CallerLookup = call_sid_as_phone,
        clock:         Callable[[], datetime] = _utcnow,
    ):
        self.store         = store
        self.engine        = engine or AnalyticsEngine()
        self.caller_lookup = caller_lookup
        self.clock         = clock

    def phone_key_for(self, call_sid: str) -> str:
        return resolve_phone_key(call_sid, self.caller_lookup)

    # ── STATUS ────────────────────────────────────────────────

    def handle_status(self, cb: StatusCallback) -> None:
        logger.info(
            f"Call status | sid={cb.call_sid} status={cb.call_status} "
            f"direction={cb.direction} timestamp={cb.timestamp}"
        )

    # ── RECORDING ─────────────────────────────────────────────

    def handle_recording(self, cb: RecordingCallback) -> Recording:
        now = self.clock()
        recording = Recording(
            sid              = cb.recording_sid,
            url              = cb.recording_url or '',
            duration_seconds = cb.recording_duration or 0,
            channel_count    = cb.recording_channels or 1,
            call_sid         = cb.call_sid,
            status           = cb.recording_status or 'completed',
            start_time       = cb.recording_start_time,
            end_time         = cb.recording_end_time,
            created_at       = now,
        )
        recording, is_new = self.store.put_recording(recording)

        if not is_new:
            # Provider retry: record refreshed, counters already applied
            logger.info(f"Recording {recording.sid} re-delivered — counters unchanged")
            return recording

        phone_key = self.phone_key_for(cb.call_sid)

        def _apply(contact: Contact) -> None:
            contact.total_calls            += 1
            contact.total_duration_seconds += recording.duration_seconds
            contact.last_contact            = max(contact.last_contact, now)
            contact.relationship            = classify_relationship(
                contact.total_calls, contact.first_contact, now
            )

        contact = self.store.upsert_contact(phone_key, _apply, now=now)
        self.store.append_conversation_entry(phone_key, ConversationEntry(
            type             = 'recording',
            sid              = recording.sid,
            call_sid         = recording.call_sid,
            created_at       = now,
            duration_seconds = recording.duration_seconds,
        ))
        logger.info(
            f"Recording {recording.sid} stored | contact={phone_key} "
            f"calls={contact.total_calls} duration={recording.duration_seconds}s"
        )
        return recording

    # ── TRANSCRIPTION ─────────────────────────────────────────

    def handle_transcription(self, cb: TranscriptionCallback) -> Optional[Transcription]:
        status = (cb.transcription_status or '').lower()
        text   = (cb.transcription_text or '').strip()
        if status != 'completed' or not text:
            logger.info(
                f"Transcription {cb.transcription_sid} ignored | status={status or 'missing'} "
                f"has_text={bool(text)}"
            )
            return None

        now = self.clock()
        recording = self.store.get_recording(cb.recording_sid) if cb.recording_sid else None
        transcription = Transcription(
            sid               = cb.transcription_sid,
            text              = text,
            status            = status,
            recording_sid     = cb.recording_sid or '',
            call_sid          = cb.call_sid or (recording.call_sid if recording else ''),
            confidence        = cb.confidence if cb.confidence is not None else 0.0,
            created_at        = now,
            transcription_url = cb.transcription_url or '',
            audio_url         = cb.audio_url or '',
        )
        transcription, is_new = self.store.put_transcription(transcription)
        if not is_new:
            logger.info(f"Transcription {transcription.sid} re-delivered — ignored")
            return transcription
        logger.info(f"Transcription {transcription.sid} stored | words={len(text.split())}")

        return self._analyze(transcription, now)

    def process_transcription(self, sid: str) -> Transcription:
        """Run (or retry) analytics on a stored transcription. No-op once processed."""
        transcription = self.store.get_transcription(sid)
        if transcription is None:
            raise NotFound(f"Transcription not found: {sid}")
        if transcription.processed:
            return transcription
        return self._analyze(transcription, self.clock())

    def _analyze(self, transcription: Transcription, now: datetime) -> Transcription:
        recording = self.store.get_recording(transcription.recording_sid) \
            if transcription.recording_sid else None
        call_sid  = recording.call_sid if recording else transcription.call_sid
        phone_key = self.phone_key_for(call_sid)

        try:
            metadata, exports = self.engine.process(transcription.text, transcription.sid)
        except Exception as exc:
            logger.error(
                f"Analytics failed for transcription {transcription.sid} — left unprocessed: {exc}",
                exc_info=True,
            )
            self.store.upsert_contact(
                phone_key,
                lambda c: setattr(c, 'last_contact', max(c.last_contact, now)),
                now=now,
            )
            return transcription

        attached = []

        def _attach(t: Transcription) -> None:
            if t.processed:
                return
            t.metadata  = metadata
            t.exports   = exports
            t.processed = True
            attached.append(t.sid)

        updated = self.store.update_transcription(transcription.sid, _attach)
        if updated is None:
            # Swept between insert and analysis
            logger.warning(f"Transcription {transcription.sid} vanished before analysis completed")
            return transcription
        if not attached:
            # A concurrent retry already processed it and updated the contact
            return updated

        def _apply(contact: Contact) -> None:
            contact.topics.update(metadata.topics)
            for text in metadata.action_items:
                contact.action_items.append(ActionItem(
                    id                = uuid.uuid4().hex,
                    text              = text,
                    created_at        = now,
                    source            = 'transcription',
                    transcription_sid = transcription.sid,
                ))
            contact.sentiment_counts[metadata.sentiment] = \
                contact.sentiment_counts.get(metadata.sentiment, 0) + 1
            contact.last_contact = max(contact.last_contact, now)
            contact.relationship = classify_relationship(contact.total_calls, contact.first_contact, now)

        self.store.upsert_contact(phone_key, _apply, now=now)
        self.store.append_conversation_entry(phone_key, ConversationEntry(
            type       = 'transcription',
            sid        = transcription.sid,
            call_sid   = call_sid,
            created_at = transcription.created_at,
            word_count = metadata.word_count,
            sentiment  = metadata.sentiment,
            topics     = list(metadata.topics),
            summary    = exports.get('summary', ''),
        ))
        logger.info(
            f"Transcription {transcription.sid} processed | contact={phone_key} "
            f"topics={len(metadata.topics)} action_items={len(metadata.action_items)} "
            f"sentiment={metadata.sentiment}"
        )
        return updated

    # ── ACTION ITEMS ──────────────────────────────────────────

    def complete_action_item(self, phone_key: str, item_id: str) -> ActionItem:
        contact = self.store.get_contact(phone_key)
        if contact is None:
            raise NotFound(f"Contact not found: {phone_key}")
        if not any(item.id == item_id for item in contact.action_items):
            raise NotFound(f"Action item not found: {item_id}")

        def _complete(c: Contact) -> None:
            for item in c.action_items:
                if item.id == item_id:
                    item.completed = True

        updated = self.store.upsert_contact(phone_key, _complete)
        return next(item for item in updated.action_items if item.id == item_id)
