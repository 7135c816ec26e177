from __future__ import annotations

import pytest

from filecatalog.progress import JOB_STATE, MOVE_OUTCOME, MOVE_SUMMARY, ProgressChannel


class TestProgressChannel:
    def test_callback_receives_events(self, channel: ProgressChannel) -> None:
        received = []
        channel.register_callback(received.append)

        channel.publish(MOVE_OUTCOME, {"file_id": 1}, job_id="abc")

        assert len(received) == 1
        assert received[0].topic == MOVE_OUTCOME
        assert received[0].payload == {"file_id": 1}
        assert received[0].job_id == "abc"

    def test_callback_topic_filter(self, channel: ProgressChannel) -> None:
        received = []
        channel.register_callback(received.append, topics=[MOVE_SUMMARY])

        channel.publish(MOVE_OUTCOME, {})
        channel.publish(MOVE_SUMMARY, {"moved": 2})

        assert [event.topic for event in received] == [MOVE_SUMMARY]

    def test_failing_callback_is_suppressed(self, channel: ProgressChannel) -> None:
        received = []

        def broken(_event) -> None:
            raise RuntimeError("subscriber bug")

        channel.register_callback(broken)
        channel.register_callback(received.append)

        channel.publish(JOB_STATE, {"state": "Running"})

        assert len(received) == 1

    def test_callback_registered_once(self, channel: ProgressChannel) -> None:
        received = []
        channel.register_callback(received.append)
        channel.register_callback(received.append)

        channel.publish(JOB_STATE)

        assert len(received) == 1

    def test_unregister_callback(self, channel: ProgressChannel) -> None:
        received = []
        channel.register_callback(received.append)
        channel.unregister_callback(received.append)

        channel.publish(JOB_STATE)

        assert received == []
        assert channel.subscriber_count == 0

    def test_full_subscription_drops_events(self, channel: ProgressChannel) -> None:
        subscription = channel.subscribe(maxsize=2)

        for index in range(5):
            channel.publish(MOVE_OUTCOME, {"index": index})

        events = subscription.drain()
        assert [event.payload["index"] for event in events] == [0, 1]
        assert subscription.dropped == 3

    def test_subscription_filters_topics(self, channel: ProgressChannel) -> None:
        with channel.subscribe([JOB_STATE]) as subscription:
            channel.publish(MOVE_OUTCOME, {})
            channel.publish(JOB_STATE, {"state": "Queued"})

            event = subscription.get()
            assert event is not None
            assert event.topic == JOB_STATE
            assert subscription.get(timeout=0.01) is None

        assert channel.subscriber_count == 0

    def test_unsubscribed_consumers_miss_events(self, channel: ProgressChannel) -> None:
        channel.publish(JOB_STATE, {"state": "Queued"})
        subscription = channel.subscribe()

        assert subscription.get() is None

    def test_payload_is_copied(self, channel: ProgressChannel) -> None:
        received = []
        channel.register_callback(received.append)
        payload = {"moved": 1}

        channel.publish(MOVE_SUMMARY, payload)
        payload["moved"] = 99

        assert received[0].payload == {"moved": 1}

    def test_invalid_default_size(self) -> None:
        with pytest.raises(ValueError):
            ProgressChannel(default_maxsize=0)
