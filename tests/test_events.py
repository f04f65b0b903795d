"""Tests for the in-process event bus."""

from icracy.engine.events import EventBus


class TestEventBus:
    """Tests for publish/subscribe semantics."""

    def test_delivers_to_subscribers_of_the_debate(self):
        bus = EventBus()
        received, other = [], []
        bus.subscribe("d1", received.append)
        bus.subscribe("d2", other.append)

        event = bus.publish("d1", "human_vote", {"vote": "Idiotic"})

        assert received == [event]
        assert other == []
        assert event["type"] == "human_vote"
        assert event["payload"] == {"vote": "Idiotic"}
        assert event["at"].endswith("Z")

    def test_no_replay_for_late_subscribers(self):
        bus = EventBus()
        bus.publish("d1", "debate_started", {})
        received = []
        bus.subscribe("d1", received.append)

        bus.publish("d1", "debate_completed", {})

        assert [e["type"] for e in received] == ["debate_completed"]

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe("d1", received.append)

        unsubscribe()
        unsubscribe()
        bus.publish("d1", "ping", {})

        assert received == []
        assert bus.subscriber_count("d1") == 0

    def test_failing_listener_does_not_block_others(self, caplog):
        bus = EventBus()
        received = []

        def broken(_event):
            raise RuntimeError("listener bug")

        bus.subscribe("d1", broken)
        bus.subscribe("d1", received.append)

        bus.publish("d1", "human_argument", {"content": "hi"})

        assert len(received) == 1
        assert "Listener failed" in caplog.text
