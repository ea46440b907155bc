"""
tests/test_webhook_auth.py
Tests for provider callback signature verification.
Signatures are produced with the provider's own RequestValidator.
"""

import pytest
from starlette.datastructures import ImmutableMultiDict

from callsight.webhook_auth import AuthStats, build_callback_url, compute_signature, verify

SECRET = "test-auth-token"
URL    = "https://calls.example.test/api/voice/recording"
FORM   = {
    "CallSid":           "CA123",
    "RecordingSid":      "RE001",
    "RecordingDuration": "42",
}


@pytest.fixture
def stats():
    return AuthStats()


class TestVerify:

    def test_valid_signature_accepted(self, stats):
        sig = compute_signature(SECRET, URL, FORM)
        assert verify(SECRET, sig, URL, FORM, stats=stats) is True
        assert stats.snapshot()["verified_count"] == 1

    def test_mutated_url_rejected(self, stats):
        sig = compute_signature(SECRET, URL, FORM)
        tampered = URL.replace("recording", "recordinG")
        assert verify(SECRET, sig, tampered, FORM, stats=stats) is False
        assert stats.snapshot()["rejected_count"] == 1

    def test_mutated_body_rejected(self, stats):
        sig = compute_signature(SECRET, URL, FORM)
        tampered = {**FORM, "RecordingDuration": "43"}
        assert verify(SECRET, sig, URL, tampered, stats=stats) is False

    def test_extra_field_rejected(self, stats):
        sig = compute_signature(SECRET, URL, FORM)
        assert verify(SECRET, sig, URL, {**FORM, "Extra": "x"}, stats=stats) is False

    def test_wrong_secret_rejected(self, stats):
        sig = compute_signature("other-token", URL, FORM)
        assert verify(SECRET, sig, URL, FORM, stats=stats) is False

    def test_field_order_irrelevant(self, stats):
        sig = compute_signature(SECRET, URL, FORM)
        reordered = dict(reversed(list(FORM.items())))
        assert verify(SECRET, sig, URL, reordered, stats=stats) is True

    def test_repeated_field_covers_every_value(self, stats):
        form = ImmutableMultiDict([*FORM.items(), ("Tag", "b"), ("Tag", "a")])
        sig = compute_signature(SECRET, URL, form)
        assert verify(SECRET, sig, URL, form, stats=stats) is True

        last_value_only = ImmutableMultiDict([*FORM.items(), ("Tag", "a")])
        assert verify(SECRET, sig, URL, last_value_only, stats=stats) is False


class TestBypass:

    def test_missing_secret_bypasses(self, stats):
        assert verify(None, "anything", URL, FORM, stats=stats) is True
        assert stats.snapshot()["bypass_count"] == 1

    def test_missing_header_bypasses(self, stats):
        assert verify(SECRET, None, URL, FORM, stats=stats) is True
        assert stats.snapshot()["bypass_count"] == 1

    def test_missing_base_url_bypasses(self, stats):
        url = build_callback_url(None, "/api/voice/recording")
        assert url is None
        assert verify(SECRET, "sig", url, FORM, stats=stats) is True

    def test_bypass_logged(self, stats, caplog):
        with caplog.at_level("WARNING", logger="callsight.webhook_auth"):
            verify(None, None, None, FORM, stats=stats)
        assert "BYPASSED" in caplog.text
        assert SECRET not in caplog.text


class TestFailClosed:

    def test_validator_exception_rejects(self, stats, monkeypatch):
        def _boom(self, *args, **kwargs):
            raise RuntimeError("validator exploded")

        monkeypatch.setattr("callsight.webhook_auth.RequestValidator.validate", _boom)
        assert verify(SECRET, "sig", URL, FORM, stats=stats) is False
        assert stats.snapshot()["rejected_count"] == 1


class TestCallbackUrl:

    def test_joins_base_and_path(self):
        assert build_callback_url("https://x.test/", "/api/voice/status") == \
            "https://x.test/api/voice/status"

    def test_keeps_query(self):
        assert build_callback_url("https://x.test", "/cb", "a=1") == "https://x.test/cb?a=1"
