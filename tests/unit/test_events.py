"""
Unit tests for event payloads and EventPublisher.
"""
import json

import redis

from shared.events import Event, EventType, code_redeemed_event, vote_event
from shared.pubsub import EventPublisher, GLOBAL_CHANNEL


class TestEvent:
    """Tests for Event serialization."""

    def test_defaults(self):
        event = Event(type=EventType.VOTE_CAST)
        assert event.data == {}
        assert event.timestamp.endswith('Z')

    def test_to_json(self):
        event = vote_event(EventType.VOTE_CAST, 'epic-cup', 7, 5)
        payload = json.loads(event.to_json())

        assert payload['type'] == 'vote.cast'
        assert payload['tournament_id'] == 'epic-cup'
        assert payload['data'] == {'submission_id': 7, 'score': 5}

    def test_from_json(self):
        original = code_redeemed_event(3, 11, None)
        restored = Event.from_json(original.to_json())

        assert restored.type == EventType.CODE_REDEEMED
        assert restored.data['redeemer_id'] == 11
        assert restored.data['referrer_id'] is None

    def test_unknown_type_kept_as_string(self):
        restored = Event.from_dict({'type': 'custom.thing', 'data': {}})
        assert restored.type == 'custom.thing'


class TestEventPublisher:
    """Tests for EventPublisher."""

    def test_publish(self, mock_redis):
        publisher = EventPublisher(mock_redis)

        assert publisher.publish_global(Event(type=EventType.CODES_GENERATED)) is True
        channel, payload = mock_redis.publish.call_args[0]
        assert channel == GLOBAL_CHANNEL
        assert json.loads(payload)['type'] == 'codes.generated'

    def test_channels(self, mock_redis):
        publisher = EventPublisher(mock_redis)
        event = Event(type=EventType.SUBMISSION_MODERATED)

        publisher.publish_tournament_event('epic-cup', event)
        publisher.publish_user_notification(42, event)

        channels = [c[0][0] for c in mock_redis.publish.call_args_list]
        assert channels == ['tournament:epic-cup:events', 'user:42:notifications']

    def test_without_client_is_noop(self):
        publisher = EventPublisher()
        assert publisher.enabled is False
        assert publisher.publish_global(Event(type=EventType.VOTE_CAST)) is False
        assert publisher.ping() is False

    def test_from_empty_url(self):
        assert EventPublisher.from_url('').enabled is False

    def test_from_url(self, mocker):
        from_url = mocker.patch('shared.pubsub.redis.from_url')
        publisher = EventPublisher.from_url('redis://cache:6379')

        assert publisher.enabled is True
        assert from_url.call_args[0][0] == 'redis://cache:6379'

    def test_redis_failure_is_swallowed(self, mock_redis):
        mock_redis.publish.side_effect = redis.ConnectionError("connection refused")
        publisher = EventPublisher(mock_redis)

        assert publisher.publish_global(Event(type=EventType.VOTE_CAST)) is False

    def test_ping(self, mock_redis):
        assert EventPublisher(mock_redis).ping() is True

        mock_redis.ping.side_effect = redis.TimeoutError()
        assert EventPublisher(mock_redis).ping() is False
