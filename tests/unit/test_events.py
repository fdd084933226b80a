"""
Unit tests for event signals.
"""

from recordsync.events import Signal, SyncEvents


class TestSignal:
    """Tests for Signal."""

    def test_emit_calls_handlers_in_order(self):
        """Handlers run in connection order."""
        calls = []
        signal = Signal("test")
        signal.connect(lambda x: calls.append(("a", x)))
        signal.connect(lambda x: calls.append(("b", x)))

        assert signal.emit(1) == 2
        assert calls == [("a", 1), ("b", 1)]

    def test_connect_twice_is_noop(self):
        """The same handler is registered once."""
        signal = Signal("test")

        def handler():
            pass

        signal.connect(handler)
        signal.connect(handler)

        assert len(signal) == 1

    def test_failing_handler_isolated(self):
        """A raising handler does not stop the others."""
        calls = []
        signal = Signal("test")

        def broken(_):
            raise RuntimeError("boom")

        signal.connect(broken)
        signal.connect(calls.append)

        assert signal.emit("x") == 1
        assert calls == ["x"]

    def test_disconnect(self):
        """Disconnected handlers are not called."""
        calls = []
        signal = Signal("test")
        signal.connect(calls.append)
        signal.disconnect(calls.append)

        signal.emit(1)

        assert calls == []

    def test_sync_events_names(self):
        """Signal names are stable."""
        events = SyncEvents()
        assert events.records_changed.name == "didImportRecords"
        assert events.share_accepted.name == "didAcceptShare"
