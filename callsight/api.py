"""
callsight/api.py
─────────────────────────────────────────────────────────────────────────────
Callsight — Dual-mode API layer

TWO USAGE MODES:
  1. Importable module:
         from callsight.api import CallsightAPI
         api = CallsightAPI()
         api.processor.handle_recording(...)
         briefing = api.get_briefing("+16125550001")

  2. FastAPI HTTP server (provider callbacks + operator UI via fetch()):
         python -m callsight.api                  # default: port 5001
         python -m callsight.api --port 9000
         python -m callsight.api --init-config    # write callsight_config.json, exit
         uvicorn callsight.api:app --port 5001

CALLBACK ENDPOINTS (form-encoded, signature-checked, 204 on success):
  POST /api/voice/status         — call status, logged only
  POST /api/voice/recording      — recording completed
  POST /api/voice/transcription  — transcription completed

READ ENDPOINTS:
  GET  /api/recordings[/{sid}]
  GET  /api/transcriptions[/{sid}]
  GET  /api/transcriptions/{sid}/export?format=json|markdown|ldm|vector
  POST /api/transcriptions/{sid}/process   — retry analytics
  GET  /api/search?q=&topic=&sentiment=&limit=
  GET  /api/contacts
  GET  /api/contacts/{phone}/history|context|insights|briefing
  POST /api/contacts/{phone}/action-items/{item_id}/complete
  GET  /healthz

SECURITY NOTES:
  - Callback signatures are verified with the provider auth token. If the
    token or PUBLIC_BASE_URL is not configured, verification is BYPASSED;
    /healthz reports auth.configured=false and the bypass count.
  - CORS limited to configured origins.
  - /api/ routes are rate limited per client address (config rate_limit,
    default 120/minute; 429 beyond it). Every response carries the
    SECURITY_HEADERS set; uvicorn's Server header is switched off.
  - All state is in memory; nothing survives a restart.
"""

from __future__ import annotations

import argparse
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.datastructures import FormData

from callsight import __version__
from callsight.aggregators.contact_aggregator import build_context, contact_rollup
from callsight.analytics import AnalyticsEngine
from callsight.briefing import brief
from callsight.config import DEFAULT_CONFIG, ensure_config, is_production, load_config, save_config
from callsight.errors import (
    AuthenticationFailure,
    CallsightError,
    InternalProcessingFailure,
    ValidationFailure,
)
from callsight.exporters.transcript_exporter import MEDIA_TYPES, export_transcription
from callsight.ingest import CallbackProcessor
from callsight.models.callbacks import RecordingCallback, StatusCallback, TranscriptionCallback
from callsight.models.record import SENTIMENTS, Transcription
from callsight.phone import CallerLookup, call_sid_as_phone, normalize
from callsight.serialize import to_dict
from callsight.store import EventStore, RetentionSweeper
from callsight.webhook_auth import AUTH_STATS, SIGNATURE_HEADER, AuthStats, build_callback_url, verify

logger = logging.getLogger(__name__)

MAX_SEARCH_LIMIT = 100

# Browser hardening headers set on every response
SECURITY_HEADERS = {
    "X-Content-Type-Options":            "nosniff",
    "X-Frame-Options":                   "SAMEORIGIN",
    "Referrer-Policy":                   "no-referrer",
    "Cross-Origin-Opener-Policy":        "same-origin",
    "Cross-Origin-Resource-Policy":      "cross-origin",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Strict-Transport-Security":         "max-age=15552000; includeSubDomains",
}


def _resolve_tz(name: Optional[str]):
    if not name:
        return None
    from zoneinfo import ZoneInfo
    try:
        return ZoneInfo(name)
    except Exception:
        logger.warning(f"Unknown timezone {name!r} — using server local time")
        return None


# ═══════════════════════════════════════════════════════════════════════════
# IMPORTABLE CLASS
# ═══════════════════════════════════════════════════════════════════════════

class CallsightAPI:
    """
    Pure-Python API over one EventStore. No HTTP layer required.

    Usage:
        api = CallsightAPI()
        contacts = api.get_contacts()
        context  = api.get_context("+16125550001")
        briefing = api.get_briefing("+16125550001")
    """

    def __init__(
        self,
        config:        Optional[Dict[str, Any]] = None,
        store:         Optional[EventStore] = None,
        engine:        Optional[AnalyticsEngine] = None,
        caller_lookup: CallerLookup = call_sid_as_phone,
        clock:         Optional[Callable[[], datetime]] = None,
        auth_stats:    AuthStats = AUTH_STATS,
    ):
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.store  = store or EventStore(
            retention_days   = int(self.config["retention_days"]),
            max_conversation = int(self.config["max_conversation_entries"]),
        )
        self.caller_lookup = caller_lookup
        self.clock         = clock or (lambda: datetime.now(timezone.utc))
        self.tz            = _resolve_tz(self.config.get("timezone"))
        self.auth_stats    = auth_stats
        self.processor     = CallbackProcessor(
            store         = self.store,
            engine        = engine,
            caller_lookup = caller_lookup,
            clock         = self.clock,
        )

    # ── AUTH ──────────────────────────────────────────────────────────────

    def verify_callback(self, signature: Optional[str], path: str, query: str,
                        form: Mapping[str, str]) -> bool:
        url = build_callback_url(self.config.get("public_base_url"), path, query)
        return verify(self.config.get("auth_token"), signature, url, form, stats=self.auth_stats)

    # ── QUERY: RECORDINGS / TRANSCRIPTIONS ────────────────────────────────

    def get_recordings(self, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        limit, offset = min(int(limit), 500), max(int(offset), 0)
        return [to_dict(r) for r in self.store.list_recordings()[offset:offset + limit]]

    def get_recording(self, sid: str) -> Optional[Dict[str, Any]]:
        recording = self.store.get_recording(sid)
        return to_dict(recording) if recording else None

    @staticmethod
    def _transcription_dict(t: Transcription, full: bool = True) -> Dict[str, Any]:
        d = to_dict(t)
        if not full and d.get("exports"):
            d["exports"] = {k: v for k, v in d["exports"].items() if k != "vector_chunks"}
        return d

    def get_transcriptions(self, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        limit, offset = min(int(limit), 500), max(int(offset), 0)
        return [
            self._transcription_dict(t, full=False)
            for t in self.store.list_transcriptions()[offset:offset + limit]
        ]

    def get_transcription(self, sid: str) -> Optional[Dict[str, Any]]:
        t = self.store.get_transcription(sid)
        return self._transcription_dict(t) if t else None

    def export(self, sid: str, fmt: str) -> Optional[str]:
        """Rendered export, or None if the transcription does not exist."""
        t = self.store.get_transcription(sid)
        if t is None:
            return None
        return export_transcription(t, fmt)

    def process_transcription(self, sid: str) -> Dict[str, Any]:
        return self._transcription_dict(self.processor.process_transcription(sid))

    def search(
        self,
        q:         Optional[str] = None,
        topic:     Optional[str] = None,
        sentiment: Optional[str] = None,
        limit:     int = 20,
    ) -> List[Dict[str, Any]]:
        """
        Full scan over transcriptions, newest first.
        q: case-insensitive substring of the text; topic/sentiment: exact match.
        """
        if sentiment and sentiment.lower() not in SENTIMENTS:
            raise ValidationFailure(f"Unknown sentiment: {sentiment!r}")
        if not 1 <= int(limit) <= MAX_SEARCH_LIMIT:
            raise ValidationFailure(f"limit must be between 1 and {MAX_SEARCH_LIMIT}")

        needle = (q or "").lower()
        topic  = (topic or "").lower()
        sentiment = (sentiment or "").lower()

        results = []
        for t in self.store.list_transcriptions():
            if needle and needle not in t.text.lower():
                continue
            if topic and (t.metadata is None or topic not in t.metadata.topics):
                continue
            if sentiment and (t.metadata is None or t.metadata.sentiment != sentiment):
                continue
            results.append(self._transcription_dict(t, full=False))
            if len(results) >= int(limit):
                break
        return results

    # ── QUERY: CONTACTS ───────────────────────────────────────────────────

    def get_contacts(self) -> List[Dict[str, Any]]:
        now = self.clock()
        return [to_dict(contact_rollup(self.store, c, now)) for c in self.store.list_contacts()]

    def get_history(self, phone: str) -> Optional[List[Dict[str, Any]]]:
        key = normalize(phone)
        if self.store.get_contact(key) is None:
            return None
        return [to_dict(e) for e in self.store.get_conversation(key)]

    def _context(self, phone: str):
        try:
            return build_context(self.store, phone, now=self.clock(), tz=self.tz,
                                 caller_lookup=self.caller_lookup)
        except Exception as exc:
            logger.error(f"Context aggregation failed for {normalize(phone)}: {exc}", exc_info=True)
            raise InternalProcessingFailure("Context aggregation failed") from exc

    def get_context(self, phone: str) -> Optional[Dict[str, Any]]:
        context = self._context(phone)
        if context is None:
            return None
        d = to_dict(context)
        d["history"] = [self._transcription_dict(t, full=False) for t in context.history]
        return d

    def get_insights(self, phone: str) -> Optional[Dict[str, Any]]:
        context = self._context(phone)
        if context is None:
            return None
        return {
            "phone_key": context.contact.phone_key,
            "insights":  to_dict(context.insights),
            "patterns":  to_dict(context.patterns),
            "summary":   to_dict(context.summary),
        }

    def get_briefing(self, phone: str) -> Optional[Dict[str, Any]]:
        context = self._context(phone)
        if context is None:
            return None
        return to_dict(brief(context, now=context.generated_at))

    def complete_action_item(self, phone: str, item_id: str) -> Dict[str, Any]:
        return to_dict(self.processor.complete_action_item(normalize(phone), item_id))

    # ── HEALTH ────────────────────────────────────────────────────────────

    def health(self) -> Dict[str, Any]:
        configured = bool(self.config.get("auth_token") and self.config.get("public_base_url"))
        return {
            "status":  "ok",
            "time":    datetime.now(timezone.utc).isoformat(),
            "version": __version__,
            "auth":    {"configured": configured, **self.auth_stats.snapshot()},
            "counts":  self.store.counts(),
        }


# ═══════════════════════════════════════════════════════════════════════════
# FASTAPI HTTP APP
# ═══════════════════════════════════════════════════════════════════════════

def _build_app(
    config:        Optional[Dict[str, Any]] = None,
    api:           Optional[CallsightAPI] = None,
) -> FastAPI:
    """
    Build and return the FastAPI application instance.
    Pass an existing CallsightAPI to share its store (tests, embedding).
    """
    _api = api or CallsightAPI(config=config if config is not None else ensure_config())
    sweeper = RetentionSweeper(_api.store, interval_hours=float(_api.config["sweep_interval_hours"]))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if is_production(_api.config):
            sweeper.start()
        else:
            logger.info("Development mode — periodic retention sweep disabled")
        try:
            yield
        finally:
            sweeper.stop()

    _app = FastAPI(
        title       = "Callsight API",
        description = "Call-event ingestion, transcript analytics and pre-call briefings",
        version     = __version__,
        docs_url    = "/docs",
        redoc_url   = None,
        lifespan    = lifespan,
    )
    _app.state.api = _api

    rate_limit = _api.config.get("rate_limit")
    limiter = Limiter(
        key_func       = get_remote_address,
        default_limits = [rate_limit] if rate_limit else [],
        enabled        = bool(rate_limit),
    )
    _app.state.limiter = limiter
    _app.add_middleware(SlowAPIMiddleware)

    @_app.middleware("http")
    async def _security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    _app.add_middleware(
        CORSMiddleware,
        allow_origins     = list(_api.config.get("cors_origins") or []),
        allow_methods     = ["GET", "POST", "OPTIONS"],
        allow_headers     = ["Content-Type"],
        allow_credentials = True,
    )

    @_app.exception_handler(CallsightError)
    async def _callsight_error(request: Request, exc: CallsightError):
        if exc.status_code >= 500:
            logger.error(f"{request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @_app.exception_handler(RequestValidationError)
    async def _malformed_query(request: Request, exc: RequestValidationError):
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        return JSONResponse(status_code=400, content={"detail": f"Malformed request: {fields}"})

    # Called synchronously from SlowAPIMiddleware
    def _rate_limited(request: Request, exc: RateLimitExceeded):
        logger.warning(f"Rate limit exceeded on {request.url.path} by {get_remote_address(request)}")
        return JSONResponse(status_code=429, content={"detail": f"Rate limit exceeded: {exc.detail}"})

    _app.add_exception_handler(RateLimitExceeded, _rate_limited)

    # ── CALLBACK HELPERS ────────────────────────────────────────────────

    async def _authenticated_form(request: Request) -> FormData:
        # Repeated fields keep every value; the signature covers all of them
        raw  = await request.form()
        form = FormData([(k, str(v)) for k, v in raw.multi_items()])
        ok = _api.verify_callback(
            signature = request.headers.get(SIGNATURE_HEADER),
            path      = request.url.path,
            query     = request.url.query,
            form      = form,
        )
        if not ok:
            raise AuthenticationFailure("Invalid Twilio signature")
        return form

    def _parse(schema, form: FormData):
        try:
            # Last value wins for a repeated field
            return schema.model_validate(dict(form))
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
            raise ValidationFailure(f"Invalid callback payload: {fields}")

    # ── CALLBACK ENDPOINTS ──────────────────────────────────────────────
    # Form parsing is async; the processor (locks, analytics) runs in the
    # threadpool so it never blocks the event loop.

    @_app.post("/api/voice/status", status_code=204, summary="Call status callback")
    async def voice_status(request: Request):
        form = await _authenticated_form(request)
        await run_in_threadpool(_api.processor.handle_status, _parse(StatusCallback, form))
        return Response(status_code=204)

    @_app.post("/api/voice/recording", status_code=204, summary="Recording completed callback")
    async def voice_recording(request: Request):
        form = await _authenticated_form(request)
        await run_in_threadpool(_api.processor.handle_recording, _parse(RecordingCallback, form))
        return Response(status_code=204)

    @_app.post("/api/voice/transcription", status_code=204, summary="Transcription completed callback")
    async def voice_transcription(request: Request):
        form = await _authenticated_form(request)
        await run_in_threadpool(_api.processor.handle_transcription, _parse(TranscriptionCallback, form))
        return Response(status_code=204)

    @_app.post("/api/voice/validate", summary="Webhook wiring check")
    def voice_validate():
        return {"ok": True}

    # ── READ ENDPOINTS ──────────────────────────────────────────────────

    @_app.get("/api/recordings", summary="List recordings")
    def list_recordings(
        limit:  int = Query(100, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ):
        data = _api.get_recordings(limit=limit, offset=offset)
        return {"count": len(data), "recordings": data}

    @_app.get("/api/recordings/{sid}", summary="Get recording")
    def get_recording(sid: str):
        data = _api.get_recording(sid)
        if data is None:
            raise HTTPException(status_code=404, detail=f"Recording not found: {sid}")
        return data

    @_app.get("/api/transcriptions", summary="List transcriptions")
    def list_transcriptions(
        limit:  int = Query(100, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ):
        data = _api.get_transcriptions(limit=limit, offset=offset)
        return {"count": len(data), "transcriptions": data}

    @_app.get("/api/transcriptions/{sid}", summary="Get transcription")
    def get_transcription(sid: str):
        data = _api.get_transcription(sid)
        if data is None:
            raise HTTPException(status_code=404, detail=f"Transcription not found: {sid}")
        return data

    @_app.get("/api/transcriptions/{sid}/export", summary="Export transcription")
    def export_endpoint(sid: str, format: str = Query("json")):
        content = _api.export(sid, format)
        if content is None:
            raise HTTPException(status_code=404, detail=f"Transcription not found: {sid}")
        return PlainTextResponse(content, media_type=MEDIA_TYPES[format.lower()])

    @_app.post("/api/transcriptions/{sid}/process", summary="Retry transcript analytics")
    def process_endpoint(sid: str):
        return _api.process_transcription(sid)

    @_app.get("/api/search", summary="Search transcriptions")
    def search(
        q:         Optional[str] = Query(None, description="Substring of transcript text"),
        topic:     Optional[str] = Query(None),
        sentiment: Optional[str] = Query(None, description="positive, negative, neutral"),
        limit:     int           = Query(20),
    ):
        data = _api.search(q=q, topic=topic, sentiment=sentiment, limit=limit)
        return {"count": len(data), "results": data}

    @_app.get("/api/contacts", summary="List contacts")
    def list_contacts():
        data = _api.get_contacts()
        return {"count": len(data), "contacts": data}

    def _or_404(data, phone: str):
        if data is None:
            raise HTTPException(status_code=404, detail=f"Contact not found: {phone}")
        return data

    @_app.get("/api/contacts/{phone}/history", summary="Conversation history")
    def contact_history(phone: str):
        entries = _or_404(_api.get_history(phone), phone)
        return {"phone_key": normalize(phone), "count": len(entries), "entries": entries}

    @_app.get("/api/contacts/{phone}/context", summary="Aggregated conversation context")
    def contact_context(phone: str):
        return _or_404(_api.get_context(phone), phone)

    @_app.get("/api/contacts/{phone}/insights", summary="Relationship insights")
    def contact_insights(phone: str):
        return _or_404(_api.get_insights(phone), phone)

    @_app.get("/api/contacts/{phone}/briefing", summary="Pre-call briefing")
    def contact_briefing(phone: str):
        return _or_404(_api.get_briefing(phone), phone)

    @_app.post("/api/contacts/{phone}/action-items/{item_id}/complete", summary="Complete action item")
    def complete_action_item(phone: str, item_id: str):
        return _api.complete_action_item(phone, item_id)

    @_app.get("/healthz", summary="Health check")
    def healthz():
        return _api.health()

    # Only /api/ routes count against the per-client limit
    for route in _app.routes:
        if not getattr(route, "path", "").startswith("/api/") and hasattr(route, "endpoint"):
            limiter.exempt(route.endpoint)

    return _app


# Module-level app instance — used by uvicorn callsight.api:app
app = _build_app()


# ═══════════════════════════════════════════════════════════════════════════
# CLI ENTRYPOINT — python -m callsight.api
# ═══════════════════════════════════════════════════════════════════════════

def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog        = "callsight",
        description = "Callsight API server — provider callbacks and operator briefings",
    )
    parser.add_argument("--host", type=str, default=None,
                        help="Host to bind (default: config / 127.0.0.1)")
    parser.add_argument("--port", type=int, default=None,
                        help="Port to bind (default: config / 5001)")
    parser.add_argument("--config-dir", type=Path, default=None,
                        help="Directory holding callsight_config.json (default: cwd)")
    parser.add_argument("--init-config", action="store_true",
                        help="Write callsight_config.json (defaults merged with any existing file) and exit")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level   = logging.DEBUG if args.verbose else logging.INFO,
        format  = "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt = "%H:%M:%S",
    )

    if args.init_config:
        # File values only; env overrides such as the auth token stay out of the file
        path = save_config(load_config(args.config_dir), args.config_dir)
        logger.info(f"Wrote {path}")
        return

    import uvicorn

    config = ensure_config(args.config_dir)
    host = args.host or config["host"]
    port = args.port or int(config["port"])
    server_app = _build_app(config=config)

    logger.info(f"Callsight API v{__version__} listening on http://{host}:{port}")
    uvicorn.run(server_app, host=host, port=port, log_level="info", server_header=False)


if __name__ == "__main__":
    main()
