"""Progress reporting and structured run logging for pipeline stages.

Long loops (coherence extraction, masking, adaptation) report to an explicit
``progress`` observer that is threaded through each call. The default
observer does nothing. ``PipelineLogger`` writes JSONL events and a timing
summary for a run; writes are best-effort and never interrupt the model.
"""
from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import asdict, is_dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ProgressObserver:
    """No-op progress observer; subclasses override what they need."""

    def start(self, stage: str, total: int) -> None:
        pass

    def advance(self, stage: str, index: int) -> None:
        pass

    def finish(self, stage: str) -> None:
        pass


NULL_PROGRESS = ProgressObserver()


class LoggingProgress(ProgressObserver):
    """Report progress through ``logging``, roughly every ``every`` percent."""

    def __init__(self, every: float = 10.0, log: Optional[logging.Logger] = None):
        self.every = float(every)
        self.log = log or logger
        self._totals: Dict[str, int] = {}
        self._next: Dict[str, float] = {}

    def start(self, stage: str, total: int) -> None:
        self._totals[stage] = int(total)
        self._next[stage] = self.every
        self.log.info("%s: %d steps", stage, total)

    def advance(self, stage: str, index: int) -> None:
        total = self._totals.get(stage, 0)
        if total <= 0:
            return
        pct = 100.0 * (index + 1) / total
        if pct >= self._next.get(stage, 100.0):
            self.log.info("%s: %3.0f%%", stage, pct)
            while self._next[stage] <= pct:
                self._next[stage] += self.every

    def finish(self, stage: str) -> None:
        self.log.info("%s: done", stage)
        self._totals.pop(stage, None)
        self._next.pop(stage, None)


def resolve_progress(progress: Optional[ProgressObserver]) -> ProgressObserver:
    return NULL_PROGRESS if progress is None else progress


class PipelineLogger(ProgressObserver):
    """Structured logger that emits JSONL events and timing summaries."""

    def __init__(self, base_dir: str = "results", run_name: Optional[str] = None):
        self.base_dir = base_dir
        self.run_name = run_name or f"run_{int(time.time())}"
        self.run_dir = os.path.join(self.base_dir, self.run_name)
        os.makedirs(self.run_dir, exist_ok=True)
        self.logs_path = os.path.join(self.run_dir, "logs.jsonl")
        self.timing_path = os.path.join(self.run_dir, "timing.json")
        self._timing: Dict[str, float] = {}
        self._start_time = time.perf_counter()
        self.log_event("pipeline", "start", {"run_dir": self.run_dir})

    def log_event(self, stage: str, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        entry: Dict[str, Any] = {
            "stage": stage,
            "event": event,
            "timestamp": time.time(),
        }
        if payload:
            for key, value in payload.items():
                try:
                    json.dumps(value, default=str)  # validate serializable
                    entry[key] = value
                except Exception:
                    entry[key] = str(value)
        try:
            with open(self.logs_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=str) + "\n")
        except OSError as exc:
            # Never break the model due to logging failures
            logger.debug("Could not write pipeline event: %s", exc)

    def record_timing(self, stage: str, duration_s: float, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._timing[stage] = float(duration_s)
        payload: Dict[str, Any] = {"duration_s": float(duration_s)}
        if metadata:
            payload.update(metadata)
        self.log_event(stage, "timing", payload)

    def finalize(self) -> None:
        if "total" not in self._timing:
            self._timing["total"] = float(time.perf_counter() - self._start_time)
        try:
            with open(self.timing_path, "w", encoding="utf-8") as f:
                json.dump(self._timing, f, indent=2)
        except OSError as exc:
            logger.debug("Could not write timing summary: %s", exc)

    @property
    def timing(self) -> Dict[str, float]:
        return dict(self._timing)

    def emit_config(self, stage: str, config_obj: Any, extras: Optional[Dict[str, Any]] = None) -> None:
        payload: Dict[str, Any] = {"config": {}}
        if is_dataclass(config_obj):
            payload["config"] = asdict(config_obj)
        else:
            payload["config"] = str(config_obj)
        if extras:
            payload.update(extras)
        self.log_event(stage, "config", payload)

    # progress observer interface
    def start(self, stage: str, total: int) -> None:
        self.log_event(stage, "progress_start", {"total": int(total)})

    def advance(self, stage: str, index: int) -> None:
        self.log_event(stage, "progress", {"index": int(index)})

    def finish(self, stage: str) -> None:
        self.log_event(stage, "progress_done")
