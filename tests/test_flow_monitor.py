"""Tests for the flow state monitor."""

import threading
from unittest import TestCase
from unittest.mock import MagicMock

from resender.flow_monitor import FlowState, FlowStateMonitor


class TestFlowStateMonitor(TestCase):
    """Tests for FlowStateMonitor.handle_event."""

    def setUp(self):
        self.on_abort = MagicMock()
        self.monitor = FlowStateMonitor("DMQ", on_abort=self.on_abort)

    def test_active_takes_no_action(self):
        self.monitor.handle_event(FlowState.ACTIVE)
        self.assertFalse(self.monitor.aborted)
        self.assertIsNone(self.monitor.abort_state)
        self.on_abort.assert_not_called()

    def test_cancelled_sets_abort_flag(self):
        self.monitor.handle_event(FlowState.CANCELLED)
        self.assertTrue(self.monitor.aborted)
        self.assertEqual(self.monitor.abort_state, FlowState.CANCELLED)
        self.on_abort.assert_called_once_with(FlowState.CANCELLED)

    def test_first_abort_state_is_kept(self):
        self.monitor.handle_event(FlowState.BLOCKED)
        self.monitor.handle_event(FlowState.CANCELLED)
        self.assertEqual(self.monitor.abort_state, FlowState.BLOCKED)
        self.on_abort.assert_called_once_with(FlowState.BLOCKED)

    def test_active_after_abort_does_not_clear_flag(self):
        self.monitor.handle_event(FlowState.BLOCKED)
        self.monitor.handle_event(FlowState.ACTIVE)
        self.assertTrue(self.monitor.aborted)

    def test_abort_from_another_thread_is_visible(self):
        worker = threading.Thread(target=self.monitor.handle_event, args=(FlowState.CANCELLED,))
        worker.start()
        self.assertTrue(self.monitor.wait(timeout=5))
        worker.join()
        self.assertTrue(self.monitor.aborted)

    def test_wait_times_out_without_abort(self):
        self.assertFalse(self.monitor.wait(timeout=0.01))

    def test_without_abort_hook(self):
        monitor = FlowStateMonitor("DMQ")
        monitor.handle_event(FlowState.CANCELLED)
        self.assertTrue(monitor.aborted)
