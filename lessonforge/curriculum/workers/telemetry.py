"""
In-memory telemetry for the curriculum pipeline and quiz engine.

Intent:
    Count what matters operationally (pages transcribed or skipped, synthesis
    outcomes, quiz submissions, runs in flight) without pulling in a metrics
    stack. Tests read the snapshots; an exporter can scrape them later.
"""
from __future__ import annotations

from collections import defaultdict
from threading import Lock
from typing import Dict, Tuple

LabelKey = Tuple[Tuple[str, str], ...]
_counters: Dict[str, Dict[LabelKey, int]] = defaultdict(dict)
_gauges: Dict[str, Dict[LabelKey, float]] = defaultdict(dict)
_lock = Lock()

PAGES = "curriculum_pages_total"
SYNTHESIS = "curriculum_synthesis_total"
RUNS = "curriculum_runs_total"
RUNS_INFLIGHT = "curriculum_runs_inflight"
QUIZ_SUBMISSIONS = "quiz_submissions_total"
REAPED = "curriculum_runs_reaped_total"


def _label_key(labels: dict[str, str] | None) -> LabelKey:
    if not labels:
        return tuple()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def increment_counter(name: str, *, amount: int = 1, **labels: str) -> None:
    if amount == 0:
        return
    key = _label_key(labels)
    with _lock:
        _counters[name][key] = _counters[name].get(key, 0) + amount


def adjust_gauge(name: str, delta: float, **labels: str) -> None:
    """Adjust a gauge by `delta`, never below zero."""
    key = _label_key(labels)
    with _lock:
        value = _gauges[name].get(key, 0.0) + float(delta)
        _gauges[name][key] = value if value > 0.0 else 0.0


def counter_value(name: str, **labels: str) -> int:
    with _lock:
        return _counters.get(name, {}).get(_label_key(labels), 0)


def gauge_value(name: str, **labels: str) -> float:
    with _lock:
        return _gauges.get(name, {}).get(_label_key(labels), 0.0)


def snapshot() -> Dict[str, list]:
    """Flatten counters and gauges into `{name: [{labels, value}]}`."""
    with _lock:
        out: Dict[str, list] = {}
        for store in (_counters, _gauges):
            for name, series in store.items():
                out[name] = [{"labels": dict(key), "value": value} for key, value in sorted(series.items())]
        return out


def record_page(outcome: str) -> None:
    """outcome: transcribed | failed"""
    increment_counter(PAGES, outcome=outcome)


def record_synthesis(outcome: str) -> None:
    """outcome: ok | parse_failure | empty_input"""
    increment_counter(SYNTHESIS, outcome=outcome)


def record_run(outcome: str) -> None:
    """outcome: ready | error | lease_lost"""
    increment_counter(RUNS, outcome=outcome)


def record_quiz_submission(passed: bool) -> None:
    increment_counter(QUIZ_SUBMISSIONS, passed="true" if passed else "false")


def reset_for_tests() -> None:
    with _lock:
        _counters.clear()
        _gauges.clear()
