"""
callsight/store.py
In-memory event store — recordings, transcriptions, contacts and
per-contact conversation histories.

CONCURRENCY:
  Each collection is a KeyedMap guarded by its own lock, so callbacks for
  different calls may run concurrently without corrupting shared state.
  Every write path is a single atomic replace: upsert/update mutators run on
  a copy, and the copy is stored only if the mutator returns cleanly.
  Redelivery checks and inserts share one critical section (insert_or_merge),
  so two deliveries of the same sid cannot both be treated as new.

RETENTION:
  sweep() drops Recordings and Transcriptions whose created_at is older than
  the retention window (default 7 days). Contacts and conversation entries
  are NEVER swept — raw media/text decays, relationship state persists.
  The sweep snapshots keys first and deletes key by key, so no lock is held
  for the whole scan.

No persistence: state lives for the lifetime of the process.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, Generic, List, Optional, Tuple, TypeVar

from callsight.models.record import ConversationEntry, Contact, Recording, Transcription

logger = logging.getLogger(__name__)

RETENTION_DAYS        = 7
MAX_CONVERSATION_SIZE = 50

K = TypeVar('K')
V = TypeVar('V')


class KeyedMap(Generic[K, V]):
    """Dict guarded by a single re-entrant lock."""

    def __init__(self):
        self._data: Dict[K, V] = {}
        self._lock = threading.RLock()

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            return self._data.get(key)

    def insert_or_merge(self, key: K, value: V,
                        merge: Callable[[V, V], V]) -> Tuple[V, bool]:
        """
        Store value under a free key, or merge(current, value) under a taken one,
        in one critical section. Returns (stored value, was the key new).
        """
        with self._lock:
            current = self._data.get(key)
            if current is None:
                self._data[key] = value
                return value, True
            merged = merge(current, value)
            self._data[key] = merged
            return merged, False

    def delete(self, key: K) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def update(self, key: K, mutator: Callable[[V], None],
               factory: Optional[Callable[[], V]] = None) -> Optional[V]:
        """
        Apply mutator to a copy of the stored value and store the copy.
        Missing key: uses factory() if given, else returns None untouched.
        """
        with self._lock:
            current = self._data.get(key)
            if current is None:
                if factory is None:
                    return None
                working = factory()
            else:
                working = copy.deepcopy(current)
            mutator(working)
            self._data[key] = working
            return working

    def keys(self) -> List[K]:
        with self._lock:
            return list(self._data.keys())

    def values(self) -> List[V]:
        with self._lock:
            return list(self._data.values())

    def __contains__(self, key: K) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class EventStore:
    """
    Owns the lifetimes of every Recording, Transcription, Contact and
    ConversationEntry. Constructed once per app.
    """

    def __init__(
        self,
        retention_days:    int = RETENTION_DAYS,
        max_conversation:  int = MAX_CONVERSATION_SIZE,
    ):
        self.retention      = timedelta(days=retention_days)
        self.max_conversation = max_conversation
        self.recordings:     KeyedMap[str, Recording]                       = KeyedMap()
        self.transcriptions: KeyedMap[str, Transcription]                   = KeyedMap()
        self.contacts:       KeyedMap[str, Contact]                         = KeyedMap()
        self.conversations:  KeyedMap[str, Deque[ConversationEntry]]        = KeyedMap()

    # ── RECORDINGS ────────────────────────────────────────────

    def put_recording(self, recording: Recording) -> Tuple[Recording, bool]:
        """
        Insert, or refresh a re-delivered sid keeping its original created_at.
        Returns (stored recording, True if the sid was new).
        """
        return self.recordings.insert_or_merge(
            recording.sid,
            recording,
            lambda old, new: dataclasses.replace(new, created_at=old.created_at),
        )

    def get_recording(self, sid: str) -> Optional[Recording]:
        return self.recordings.get(sid)

    def list_recordings(self) -> List[Recording]:
        return sorted(self.recordings.values(), key=lambda r: r.created_at, reverse=True)

    # ── TRANSCRIPTIONS ────────────────────────────────────────

    def put_transcription(self, transcription: Transcription) -> Tuple[Transcription, bool]:
        """First delivery wins; a repeated sid returns the stored transcription untouched."""
        return self.transcriptions.insert_or_merge(
            transcription.sid, transcription, lambda old, new: old,
        )

    def get_transcription(self, sid: str) -> Optional[Transcription]:
        return self.transcriptions.get(sid)

    def update_transcription(self, sid: str, mutator: Callable[[Transcription], None]) -> Optional[Transcription]:
        return self.transcriptions.update(sid, mutator)

    def list_transcriptions(self) -> List[Transcription]:
        return sorted(self.transcriptions.values(), key=lambda t: t.created_at, reverse=True)

    # ── CONTACTS ──────────────────────────────────────────────

    def upsert_contact(self, phone_key: str, mutator: Callable[[Contact], None],
                       now: Optional[datetime] = None) -> Contact:
        """Create the contact lazily on first reference, then apply mutator atomically."""
        stamp = now or datetime.now(timezone.utc)

        def _new() -> Contact:
            return Contact(phone_key=phone_key, first_contact=stamp, last_contact=stamp)

        return self.contacts.update(phone_key, mutator, factory=_new)

    def get_contact(self, phone_key: str) -> Optional[Contact]:
        return self.contacts.get(phone_key)

    def list_contacts(self) -> List[Contact]:
        return sorted(self.contacts.values(), key=lambda c: c.last_contact, reverse=True)

    # ── CONVERSATIONS ─────────────────────────────────────────

    def append_conversation_entry(self, phone_key: str, entry: ConversationEntry) -> int:
        """Append to the contact's bounded history; the oldest entry falls off past the cap."""
        history = self.conversations.update(
            phone_key,
            lambda h: h.append(entry),
            factory=lambda: deque(maxlen=self.max_conversation),
        )
        return len(history)

    def get_conversation(self, phone_key: str) -> List[ConversationEntry]:
        history = self.conversations.get(phone_key)
        return list(history) if history else []

    # ── RETENTION ─────────────────────────────────────────────

    def sweep(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Delete recordings and transcriptions older than the retention window."""
        cutoff = (now or datetime.now(timezone.utc)) - self.retention

        stale_recordings = [r.sid for r in self.recordings.values() if r.created_at < cutoff]
        stale_transcriptions = [t.sid for t in self.transcriptions.values() if t.created_at < cutoff]

        removed_r = sum(1 for sid in stale_recordings if self.recordings.delete(sid))
        removed_t = sum(1 for sid in stale_transcriptions if self.transcriptions.delete(sid))

        if removed_r or removed_t:
            logger.info(
                f"Retention sweep: removed {removed_r} recording(s), "
                f"{removed_t} transcription(s) older than {cutoff.isoformat()}"
            )
        return {'recordings': removed_r, 'transcriptions': removed_t}

    def counts(self) -> Dict[str, int]:
        return {
            'recordings':     len(self.recordings),
            'transcriptions': len(self.transcriptions),
            'contacts':       len(self.contacts),
            'conversations':  len(self.conversations),
        }


class RetentionSweeper:
    """Background daemon thread calling store.sweep() every interval."""

    def __init__(self, store: EventStore, interval_hours: float = 24.0):
        self.store    = store
        self.interval = max(float(interval_hours), 0.0) * 3600.0
        self._stop    = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        if self.interval <= 0:
            logger.warning("Retention sweeper not started — interval must be positive")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name='retention-sweeper', daemon=True)
        self._thread.start()
        logger.info(f"Retention sweeper started (interval {self.interval / 3600:.1f}h)")

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.store.sweep()
            except Exception as exc:
                logger.error(f"Retention sweep failed: {exc}", exc_info=True)
