"""
NATS Event Bus Mock for Component Testing

Mocks the event bus for testing event publishing and subscription.
"""
import fnmatch
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional


class MockEventBus:
    """Mock for NATS event bus"""

    def __init__(self):
        self.published_events: List[Dict[str, Any]] = []
        self.subscriptions: Dict[str, Callable] = {}
        self.subscription_options: Dict[str, Dict[str, Any]] = {}
        self._should_raise: Optional[Exception] = None
        self.is_connected = True

    async def publish_event(self, event: Any) -> bool:
        """Mock event publishing"""
        if self._should_raise:
            raise self._should_raise

        self.published_events.append({
            "id": getattr(event, 'id', 'mock_event_id'),
            "type": getattr(event, 'type', 'unknown'),
            "source": str(getattr(event, 'source', 'unknown')),
            "data": getattr(event, 'data', {}),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        return True

    async def subscribe_to_events(
        self, pattern: str, handler: Callable, durable: Optional[str] = None, new_only: bool = False
    ):
        """Mock event subscription"""
        self.subscriptions[pattern] = handler
        self.subscription_options[pattern] = {"durable": durable, "new_only": new_only}
        return durable or pattern

    async def close(self):
        """Mock close"""
        pass

    # Test helper methods

    def get_published(self, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get published events, optionally filtered by type"""
        if event_type:
            return [e for e in self.published_events if e.get("type") == event_type]
        return self.published_events

    def set_error(self, error: Exception):
        """Set an error to be raised on publish"""
        self._should_raise = error

    def clear_error(self):
        """Clear any pending error"""
        self._should_raise = None

    def assert_event_published(self, event_type: str, data_match: Optional[Dict] = None):
        """Assert that an event was published"""
        events = self.get_published(event_type)
        assert len(events) > 0, f"No events of type '{event_type}' were published. Published: {self.published_events}"

        if data_match:
            for event in events:
                if all(event.get("data", {}).get(k) == v for k, v in data_match.items()):
                    return event
            raise AssertionError(
                f"No event of type '{event_type}' matched data {data_match}. Events: {events}"
            )
        return events[0]

    def assert_no_events_published(self, event_type: Optional[str] = None):
        """Assert that no events were published"""
        events = self.get_published(event_type)
        assert len(events) == 0, f"Expected no events, but got: {events}"

    async def simulate_event(self, subject: str, data: Dict[str, Any]):
        """Simulate receiving an event for handler testing"""
        for pattern, handler in self.subscriptions.items():
            if self._matches_pattern(pattern, subject):
                class MockEvent:
                    def __init__(self, data):
                        self.data = data
                        self.type = subject
                        self.source = "test"
                        self.id = "mock_id"

                await handler(MockEvent(data))

    def _matches_pattern(self, pattern: str, subject: str) -> bool:
        """Check if subject matches pattern (NATS-style wildcards)"""
        fnmatch_pattern = pattern.replace(".", "/").replace(">", "*")
        fnmatch_subject = subject.replace(".", "/")
        return fnmatch.fnmatch(fnmatch_subject, fnmatch_pattern)
