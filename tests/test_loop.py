import threading
import unittest

from tcpview_live.collectors.loop import collector_loop
from tcpview_live.tracking import TickResult


class ScriptedEngine:
    """Returns (or raises) the scripted outcomes, then stops the loop."""

    def __init__(self, outcomes, stop):
        self.outcomes = list(outcomes)
        self.stop = stop
        self.ticks = 0

    def tick(self):
        self.ticks += 1
        if not self.outcomes:
            self.stop.set()
            return TickResult()
        item = self.outcomes.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class TestCollectorLoop(unittest.TestCase):
    def test_runs_until_stopped(self):
        stop = threading.Event()
        engine = ScriptedEngine([TickResult(changed=True), TickResult(skipped=True)], stop)
        collector_loop(engine, 0.0, stop)
        self.assertEqual(engine.ticks, 3)

    def test_survives_unexpected_tick_errors(self):
        stop = threading.Event()
        engine = ScriptedEngine([RuntimeError("boom"), TickResult()], stop)
        with self.assertLogs("tcpview_live.collectors.loop", level="ERROR") as cm:
            collector_loop(engine, 0.0, stop)
        self.assertEqual(engine.ticks, 3)
        self.assertTrue(any("tick failed" in line for line in cm.output))

    def test_exits_on_fatal(self):
        stop = threading.Event()
        engine = ScriptedEngine([TickResult(fatal=True), TickResult()], stop)
        collector_loop(engine, 0.0, stop)
        self.assertEqual(engine.ticks, 1)
        self.assertFalse(stop.is_set())

    def test_stop_before_start(self):
        stop = threading.Event()
        stop.set()
        engine = ScriptedEngine([], stop)
        collector_loop(engine, 5.0, stop)
        self.assertEqual(engine.ticks, 0)


if __name__ == '__main__':
    unittest.main()
