"""
tests/test_aggregator.py
Tests for contact-level aggregation — relationship classification,
sentiment trend, timing buckets, follow-up gaps and style.
"""

from datetime import datetime, timedelta, timezone

import pytest

from callsight.aggregators.contact_aggregator import (
    analyze_follow_ups,
    analyze_sentiment_trend,
    analyze_style,
    analyze_timing,
    analyze_topic_consistency,
    build_context,
    calls_per_month,
    classify_relationship,
    collect_history,
    time_bucket,
)
from callsight.ingest import CallbackProcessor
from callsight.models.record import Metadata, Transcription
from callsight.phone import MappingCallerLookup

from conftest import T0, recording_cb, transcription_cb

UTC = timezone.utc


def _t(sid, created_at, sentiment="neutral", topics=None, text="short text", words=None):
    meta = Metadata(
        word_count = words if words is not None else len(text.split()),
        topics     = list(topics or []),
        sentiment  = sentiment,
    )
    return Transcription(
        sid=sid, text=text, status="completed", recording_sid="", call_sid="CA123",
        confidence=0.8, created_at=created_at, processed=True, metadata=meta,
    )


class TestRelationship:

    def test_single_call_is_new(self):
        assert classify_relationship(1, T0, T0) == "new"

    def test_window_is_at_least_a_month(self):
        assert calls_per_month(2, T0, T0) == pytest.approx(2.0)
        assert calls_per_month(2, T0, T0 + timedelta(days=60)) == pytest.approx(1.0)

    def test_frequent(self):
        assert classify_relationship(4, T0, T0 + timedelta(days=10)) == "frequent"

    def test_regular(self):
        assert classify_relationship(2, T0, T0 + timedelta(days=10)) == "regular"

    def test_occasional(self):
        assert classify_relationship(3, T0, T0 + timedelta(days=90)) == "occasional"

    def test_few_calls_over_long_window_is_new(self):
        assert classify_relationship(2, T0, T0 + timedelta(days=120)) == "new"


class TestSentimentTrend:

    def test_empty_history_defaults(self):
        trend = analyze_sentiment_trend([])
        assert trend.trend == "insufficient"
        assert trend.current is None
        assert trend.distribution == {"positive": 0.0, "negative": 0.0, "neutral": 0.0}

    def test_single_entry_insufficient(self):
        trend = analyze_sentiment_trend([_t("TR1", T0, "positive")])
        assert trend.trend == "insufficient"
        assert trend.current == "positive"
        assert trend.distribution["positive"] == 1.0

    def test_stable(self):
        history = [_t("TR1", T0, "negative"), _t("TR2", T0, "positive"), _t("TR3", T0, "positive")]
        assert analyze_sentiment_trend(history).trend == "changing"
        history.append(_t("TR4", T0, "positive"))
        assert analyze_sentiment_trend(history).trend == "stable"

    def test_changing_to_negative(self):
        history = [_t("TR1", T0, "positive"), _t("TR2", T0, "negative")]
        trend = analyze_sentiment_trend(history)
        assert trend.trend == "changing"
        assert trend.current == "negative"


class TestTiming:

    @pytest.mark.parametrize("hour, bucket", [
        (5, "morning"), (11, "morning"), (12, "afternoon"), (16, "afternoon"),
        (17, "evening"), (20, "evening"), (21, "night"), (0, "night"), (4, "night"),
    ])
    def test_bucket_boundaries(self, hour, bucket):
        assert time_bucket(datetime(2024, 3, 4, hour, tzinfo=UTC), UTC) == bucket

    def test_preferred_bucket(self):
        history = [
            _t("TR1", datetime(2024, 3, 4, 9, tzinfo=UTC)),
            _t("TR2", datetime(2024, 3, 5, 14, tzinfo=UTC)),
            _t("TR3", datetime(2024, 3, 6, 15, tzinfo=UTC)),
        ]
        pattern = analyze_timing(history, UTC)
        assert pattern.buckets == {"morning": 1, "afternoon": 2, "evening": 0, "night": 0}
        assert pattern.preferred == "afternoon"

    def test_empty_has_no_preference(self):
        assert analyze_timing([], UTC).preferred is None


class TestFollowUps:

    def test_quick_follow_up_counted(self):
        history = [_t("TR1", T0), _t("TR2", T0 + timedelta(days=3)), _t("TR3", T0 + timedelta(days=20))]
        follow_ups = analyze_follow_ups(history)
        assert follow_ups.quick_follow_ups == 1
        assert follow_ups.gaps_days == [3.0, 17.0]
        assert follow_ups.average_gap_days == 10.0

    def test_seven_days_is_still_quick(self):
        history = [_t("TR1", T0), _t("TR2", T0 + timedelta(days=7))]
        assert analyze_follow_ups(history).quick_follow_ups == 1

    def test_single_entry_no_gaps(self):
        follow_ups = analyze_follow_ups([_t("TR1", T0)])
        assert follow_ups.gaps_days == []
        assert follow_ups.average_gap_days is None


class TestStyle:

    def test_empty_history_defaults(self):
        style = analyze_style([], analyze_follow_ups([]))
        assert style.engagement == "unknown"
        assert style.formality == "neutral"
        assert style.responsiveness == "low"
        assert style.average_words == 0.0

    def test_engagement_thresholds(self):
        high = [_t("TR1", T0, words=250)]
        medium = [_t("TR1", T0, words=150)]
        low = [_t("TR1", T0, words=100)]
        assert analyze_style(high, analyze_follow_ups(high)).engagement == "high"
        assert analyze_style(medium, analyze_follow_ups(medium)).engagement == "medium"
        assert analyze_style(low, analyze_follow_ups(low)).engagement == "low"

    def test_formality(self):
        formal = [_t("TR1", T0, text="Please kindly confirm, sir.")]
        casual = [_t("TR1", T0, text="hey yeah cool stuff")]
        assert analyze_style(formal, analyze_follow_ups(formal)).formality == "formal"
        assert analyze_style(casual, analyze_follow_ups(casual)).formality == "casual"

    def test_responsiveness(self):
        history = [_t(f"TR{i}", T0 + timedelta(days=i)) for i in range(4)]
        assert analyze_style(history, analyze_follow_ups(history)).responsiveness == "high"


class TestTopicConsistency:

    def test_recurring_topics(self):
        history = [
            _t("TR1", T0, topics=["pricing", "demo"]),
            _t("TR2", T0, topics=["pricing", "contract"]),
        ]
        topics = analyze_topic_consistency(history)
        assert topics.frequency == {"pricing": 2, "contract": 1, "demo": 1}
        assert topics.recurring == [{"topic": "pricing", "count": 2}]
        assert topics.consistency == pytest.approx(1 / 3, abs=1e-4)

    def test_empty(self):
        assert analyze_topic_consistency([]).consistency == 0.0


class TestBuildContext:

    def test_unknown_contact_is_none(self, store):
        assert build_context(store, "+15550000000", now=T0) is None

    def test_single_call_context(self, store, processor, clock):
        processor.handle_recording(recording_cb())
        processor.handle_transcription(transcription_cb())

        context = build_context(store, "+123", now=clock(), tz=UTC)

        assert context.insights.relationship == "new"
        assert context.insights.sentiment_trend.trend == "insufficient"
        assert context.summary.total_conversations == 1
        assert context.summary.pending_action_items == 1
        assert context.patterns.timing.preferred == "afternoon"
        assert [e.type for e in context.entries] == ["recording", "transcription"]

    def test_phone_key_normalized(self, store, processor, clock):
        processor.handle_recording(recording_cb())
        assert build_context(store, "123", now=clock()) is not None

    def test_history_follows_recording_call(self, store, clock):
        lookup = MappingCallerLookup({"CAabc": "6125550001"})
        proc = CallbackProcessor(store=store, caller_lookup=lookup, clock=clock)

        proc.handle_recording(recording_cb(sid="RE9", call_sid="CAabc"))
        proc.handle_transcription(transcription_cb(sid="TR9", call_sid="", recording_sid="RE9"))

        history = collect_history(store, "+16125550001", lookup)
        assert [t.sid for t in history] == ["TR9"]
