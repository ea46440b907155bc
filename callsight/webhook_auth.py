"""
callsight/webhook_auth.py
Provider callback authenticity check.

The provider signs each callback with HMAC-SHA1 over the full callback URL
followed by every POST field (sorted by name, name+value concatenated),
base64-encoded, sent in the X-Twilio-Signature header. Verification is
delegated to twilio.request_validator.RequestValidator.
A field repeated in the body contributes every one of its values, so form
bodies are passed through as multi-dicts (read via getlist), never flattened.

UNCONFIGURED BYPASS:
  If the auth token, the signature header or the public base URL is absent,
  verification is SKIPPED and the request is accepted. This keeps local/dev
  wiring simple but leaves the callback endpoints unauthenticated.
  Every bypass is logged at WARNING and counted in AUTH_STATS, which the
  /healthz endpoint reports. Do not run production with bypass_count > 0.

Fail closed: any exception during verification is a reject.
The auth token is never logged.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Mapping, Optional

from twilio.request_validator import RequestValidator

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = 'X-Twilio-Signature'


@dataclass
class AuthStats:
    """Process-wide verification counters, surfaced by /healthz."""
    verified_count: int = 0
    rejected_count: int = 0
    bypass_count:   int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, outcome: str) -> None:
        with self._lock:
            if outcome == 'verified':
                self.verified_count += 1
            elif outcome == 'rejected':
                self.rejected_count += 1
            elif outcome == 'bypass':
                self.bypass_count += 1

    def snapshot(self) -> dict:
        with self._lock:
            return {
                'verified_count': self.verified_count,
                'rejected_count': self.rejected_count,
                'bypass_count':   self.bypass_count,
            }


AUTH_STATS = AuthStats()


def build_callback_url(public_base_url: Optional[str], path: str, query: str = '') -> Optional[str]:
    """Rebuild the URL the provider signed: public base + request path (+ query)."""
    if not public_base_url:
        return None
    url = public_base_url.rstrip('/') + path
    if query:
        url += '?' + query
    return url


def compute_signature(secret: str, url: str, form_body: Mapping[str, str]) -> str:
    return RequestValidator(secret).compute_signature(url, form_body)


def verify(
    secret:           Optional[str],
    signature_header: Optional[str],
    callback_url:     Optional[str],
    form_body:        Mapping[str, str],
    stats:            AuthStats = AUTH_STATS,
) -> bool:
    """
    Returns True if the callback may be trusted.

    callback_url is None when no public base URL is configured — that,
    a missing secret or a missing header all trigger the bypass.
    """
    if not secret or not signature_header or not callback_url:
        missing = [
            name for name, value in (
                ('auth_token', secret),
                ('signature_header', signature_header),
                ('public_base_url', callback_url),
            ) if not value
        ]
        logger.warning(
            f"Webhook signature check BYPASSED — not configured: {', '.join(missing)}"
        )
        stats.record('bypass')
        return True

    try:
        valid = RequestValidator(secret).validate(callback_url, form_body, signature_header)
    except Exception as exc:
        logger.error(f"Webhook signature check failed with {type(exc).__name__} — rejecting")
        stats.record('rejected')
        return False

    if not valid:
        logger.warning(f"Webhook signature mismatch for {callback_url}")
        stats.record('rejected')
        return False

    stats.record('verified')
    return True
