from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Metrics:
    counters: dict[str, int] = field(default_factory=dict)
    timings: dict[str, list[int]] = field(default_factory=dict)

    def inc(self, name: str, value: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + int(value)

    def observe(self, name: str, value_ms: int) -> None:
        self.timings.setdefault(name, []).append(int(value_ms))

    def get(self, name: str) -> int:
        return int(self.counters.get(name, 0))

    def get_timings(self, name: str) -> list[int]:
        return list(self.timings.get(name, []))

    def percentile(self, name: str, p: float) -> int | None:
        arr = sorted(self.timings.get(name, []))
        if not arr:
            return None
        idx = int(round((max(0.0, min(100.0, p)) / 100.0) * (len(arr) - 1)))
        return arr[idx]

    def snapshot(self) -> dict[str, Any]:
        return {
            "counters": dict(self.counters),
            "timings": {k: list(v) for k, v in self.timings.items()},
        }


METRIC_KEYS = {
    "turns_started_total": "turn.started_total",
    "turn_duration_ms": "turn.duration_ms",
    "attempts_total": "turn.attempts_total",
    "reprompts_total": "turn.reprompts_total",
    "echo_discarded_total": "turn.echo_discarded_total",
    "barge_in_total": "turn.barge_in_total",
    "synthesis_failed_total": "speech.synthesis_failed_total",
    "recognition_failed_total": "speech.recognition_failed_total",
    "inbound_bad_schema_total": "channel.inbound_bad_schema_total",
    "outbound_enqueued_total": "channel.outbound_enqueued_total",
    "sessions_ended_total": "session.ended_total",
}


def outcome_key(outcome: str) -> str:
    return f"turn.outcome.{outcome}_total"
