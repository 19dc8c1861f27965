from __future__ import annotations
import logging
import threading
import time

logger = logging.getLogger(__name__)

def collector_loop(engine, interval: float, stop: threading.Event):
    """Tick ``engine`` every ``interval`` seconds until ``stop`` is set.

    A tick always finishes (reconcile + notify) before the next one starts.
    The loop ends on its own when the engine reports a fatal error.
    """
    logger.info("polling every %.2fs", interval)
    while not stop.is_set():
        started = time.monotonic()
        try:
            result = engine.tick()
        except Exception:
            logger.exception("tick failed")
        else:
            if result.fatal:
                logger.error("polling stopped: %s", result.error)
                break
        stop.wait(max(0.0, interval - (time.monotonic() - started)))
    logger.info("polling loop exited")
