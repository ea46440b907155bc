"""
tests/test_briefing.py
Tests for pre-call briefing generation — suggestion rules and their order,
pending item capping, last-interaction snapshot.
"""

from datetime import timezone

from callsight.aggregators.contact_aggregator import build_context
from callsight.briefing import MAX_PENDING_ITEMS, brief

from conftest import T0, recording_cb, transcription_cb

POSITIVE_WITH_TASK = "Thanks, great demo today. We need to send the pricing sheet."
NEGATIVE_NO_TASK   = "The pricing is a problem and the invoice was wrong."


def _types(briefing):
    return [s.type for s in briefing.suggestions]


class TestSuggestionRules:

    def test_no_history_no_suggestions(self, store, processor, clock):
        processor.handle_recording(recording_cb())
        briefing = brief(build_context(store, "+123", now=clock()))
        assert briefing.suggestions == []
        assert briefing.last_interaction is None
        assert briefing.pending_items == []

    def test_pending_items_high_priority_first(self, store, processor, clock):
        processor.handle_recording(recording_cb())
        processor.handle_transcription(transcription_cb(text=POSITIVE_WITH_TASK))

        briefing = brief(build_context(store, "+123", now=clock()))

        first = briefing.suggestions[0]
        assert first.type == "follow_up"
        assert first.priority == "high"
        assert "1 pending" in first.message

    def test_all_rules_fire_in_order(self, store, processor, clock):
        for i in range(1, 6):
            processor.handle_recording(recording_cb(sid=f"RE{i}"))
        processor.handle_transcription(transcription_cb(sid="TR1", recording_sid="RE1", text=POSITIVE_WITH_TASK))
        clock.advance(hours=1)
        processor.handle_transcription(transcription_cb(sid="TR2", recording_sid="RE2", text=NEGATIVE_NO_TASK))
        clock.advance(days=35)

        context  = build_context(store, "+123", now=clock())
        briefing = brief(context)

        assert context.insights.relationship == "frequent"
        assert _types(briefing) == [
            "follow_up", "reconnect", "improve_relationship", "engagement", "topic_focus",
        ]
        assert [s.priority for s in briefing.suggestions] == ["high", "medium", "high", "medium", "medium"]

    def test_no_reconnect_for_recent_contact(self, store, processor, clock):
        for i in range(1, 6):
            processor.handle_recording(recording_cb(sid=f"RE{i}"))
        clock.advance(days=10)
        briefing = brief(build_context(store, "+123", now=clock()))
        assert "reconnect" not in _types(briefing)

    def test_stable_negative_does_not_fire(self, store, processor, clock):
        processor.handle_recording(recording_cb())
        processor.handle_transcription(transcription_cb(sid="TR1", text=NEGATIVE_NO_TASK))
        processor.handle_transcription(transcription_cb(sid="TR2", text=NEGATIVE_NO_TASK))
        briefing = brief(build_context(store, "+123", now=clock()))
        assert "improve_relationship" not in _types(briefing)

    def test_topic_focus_lists_top_three(self, store, processor, clock):
        processor.handle_recording(recording_cb())
        processor.handle_transcription(transcription_cb(
            text="We covered pricing, the contract, the demo and the renewal.",
        ))
        briefing = brief(build_context(store, "+123", now=clock()))
        assert briefing.preferred_topics == ["contract", "demo", "pricing"]
        focus = [s for s in briefing.suggestions if s.type == "topic_focus"][0]
        assert "contract, demo, pricing" in focus.message


class TestBriefingContent:

    def test_pending_items_capped_newest_first(self, store, processor, clock):
        processor.handle_recording(recording_cb())
        processor.handle_transcription(transcription_cb(
            sid="TR1",
            text="We need to call the bank. We need to email finance. We need to book travel.",
        ))
        clock.advance(days=2)
        processor.handle_transcription(transcription_cb(
            sid="TR2",
            text="We need to send the slides. We need to fix billing. We need to hire help.",
        ))

        briefing = brief(build_context(store, "+123", now=clock()))

        assert len(briefing.pending_items) == MAX_PENDING_ITEMS
        assert briefing.pending_items[0]["transcription_sid"] == "TR2"
        assert briefing.pending_items[0]["age_days"] == 0
        assert briefing.pending_items[-1]["transcription_sid"] == "TR1"
        assert briefing.pending_items[-1]["age_days"] == 2

    def test_completed_items_excluded(self, store, processor, clock):
        processor.handle_recording(recording_cb())
        processor.handle_transcription(transcription_cb(text=POSITIVE_WITH_TASK))
        item = store.get_contact("+123").action_items[0]
        processor.complete_action_item("+123", item.id)

        briefing = brief(build_context(store, "+123", now=clock()))
        assert briefing.pending_items == []
        assert "follow_up" not in _types(briefing)

    def test_last_interaction_and_timestamp(self, store, processor, clock):
        processor.handle_recording(recording_cb())
        processor.handle_transcription(transcription_cb(sid="TR7", text=POSITIVE_WITH_TASK))

        briefing = brief(build_context(store, "+123", now=clock(), tz=timezone.utc))

        assert briefing.phone_key == "+123"
        assert briefing.last_interaction["sid"] == "TR7"
        assert briefing.last_interaction["sentiment"] == "positive"
        assert briefing.relationship_status["total_calls"] == 1
        assert briefing.generated_at == "2024-03-04T15:30:00Z"
        assert any("afternoon" in tip for tip in briefing.communication_tips)

    def test_deterministic(self, store, processor, clock):
        processor.handle_recording(recording_cb())
        processor.handle_transcription(transcription_cb())
        context = build_context(store, "+123", now=clock())
        assert brief(context) == brief(context)
