"""
Unit tests for job lifecycle events.
"""

from datetime import datetime

from jobqueue.constants import EVENT_JOB_ENQUEUED, EVENT_JOB_REMOVED
from jobqueue.types.events import EventEmitter, JobEvent


class TestJobEvent:
    """Tests for JobEvent factories."""

    def test_job_enqueued(self, frozen_clock):
        """Test the enqueued event carries scheduling data."""
        run_at = datetime(2026, 1, 2, 0, 0, 0)
        event = JobEvent.job_enqueued(1, "EchoJob", 5, run_at)

        assert event.event_type == EVENT_JOB_ENQUEUED
        assert event.timestamp == frozen_clock.now
        assert event.data == {"priority": 5, "run_at": run_at.isoformat()}

    def test_job_removed(self):
        """Test the removal event records the total attempts."""
        event = JobEvent.job_removed(3, "EchoJob", "w1", "boom", 25)

        assert event.event_type == EVENT_JOB_REMOVED
        assert event.worker_id == "w1"
        assert event.data == {"error": "boom", "total_attempts": 25}


class TestEventEmitter:
    """Tests for EventEmitter."""

    def test_emit_to_all_sinks(self):
        """Test that every subscriber receives the event."""
        first, second = [], []
        emitter = EventEmitter([first.append])
        emitter.subscribe(second.append)

        event = JobEvent.job_locked(1, "EchoJob", "w1")
        emitter.emit(event)

        assert first == [event]
        assert second == [event]

    def test_unsubscribe(self):
        """Test that an unsubscribed sink stops receiving events."""
        received = []
        emitter = EventEmitter()
        sink = emitter.subscribe(received.append)
        emitter.unsubscribe(sink)

        emitter.emit(JobEvent.job_locked(1, "EchoJob", "w1"))

        assert received == []

    def test_failing_sink_is_isolated(self):
        """Test that one broken sink does not stop the others."""
        received = []

        def broken(event):
            raise RuntimeError("sink down")

        emitter = EventEmitter([broken, received.append])
        emitter.emit(JobEvent.job_locked(1, "EchoJob", "w1"))

        assert len(received) == 1
