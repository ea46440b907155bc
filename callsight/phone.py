"""
callsight/phone.py
Phone-number canonicalization and call-sid → phone resolution.

normalize() produces the PhoneKey used to aggregate everything per contact:
  "+<countrycode><digits>"
It is pure, total and idempotent: normalize(normalize(x)) == normalize(x).
"""

import logging
import re
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

_NON_DIGIT = re.compile(r'\D')

# Resolves a provider call sid to a raw phone-number string.
CallerLookup = Callable[[str], str]


def normalize(raw: Optional[str]) -> str:
    """
    Canonicalize a raw phone-number string.

    Keeps digits and a leading '+'. Already '+'-prefixed → returned as-is.
    10 digits → '+1' + digits (NANP). 11 digits starting with '1' → '+' + digits.
    Anything else → '+' + digits.
    """
    text = (raw or '').strip()
    digits = _NON_DIGIT.sub('', text)
    if text.startswith('+'):
        return '+' + digits
    if len(digits) == 10:
        return '+1' + digits
    if len(digits) == 11 and digits.startswith('1'):
        return '+' + digits
    return '+' + digits


def call_sid_as_phone(call_sid: str) -> str:
    """
    Default CallerLookup: treat the call sid itself as the phone number.

    Kept for compatibility with the upstream callback flow, which never
    carries the caller's number on recording/transcription callbacks.
    This conflates two identifiers — inject a MappingCallerLookup (or any
    CallerLookup) when the real number is known.
    """
    return call_sid or ''


class MappingCallerLookup:
    """CallerLookup backed by an explicit call_sid → phone mapping."""

    def __init__(self, mapping: Optional[Dict[str, str]] = None,
                 fallback: Optional[CallerLookup] = call_sid_as_phone):
        self.mapping  = dict(mapping or {})
        self.fallback = fallback

    def __call__(self, call_sid: str) -> str:
        phone = self.mapping.get(call_sid)
        if phone:
            return phone
        if self.fallback is None:
            return ''
        logger.debug(f"No phone mapping for call {call_sid} — using fallback")
        return self.fallback(call_sid)


def resolve_phone_key(call_sid: str, lookup: CallerLookup = call_sid_as_phone) -> str:
    return normalize(lookup(call_sid))
