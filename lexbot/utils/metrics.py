from __future__ import annotations
from typing import Dict
import time
from threading import RLock

class Metrics:
    def __init__(self) -> None:
        self.started = time.time()
        self._counters: Dict[str, int] = {}
        self._lock = RLock()

    def inc(self, key: str, n: int = 1) -> None:
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + n

    def get(self, key: str) -> int:
        with self._lock:
            return self._counters.get(key, 0)

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            data = dict(self._counters)
        data["uptime_seconds"] = int(time.time() - self.started)
        return data

metrics = Metrics()

def record_workflow_state(state: str) -> None:
    metrics.inc(f"workflow.{state}", 1)

def record_media(kind: str, n: int = 1) -> None:
    metrics.inc(f"media.{kind}", n)

def record_delivery() -> None:
    metrics.inc("delivery.sent", 1)
