"""
Metainference — Stopwatch
=========================
Named wall-clock timers for profiling the bias.

Usage:
    sw = Stopwatch()
    with sw.start_stop('energy'):
        ...                    # one cycle of 'energy'

    for chunk in chunks:
        with sw.start_pause('loop'):
            ...                # accumulates into the same cycle
    sw.stop('loop')

    print(sw.report())

A paused watch keeps accumulating on the next start; stop closes the cycle
and updates the lap statistics.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator


@dataclass
class Watch:
    """Accumulated timings of one named stopwatch (nanoseconds)."""
    last_start: int = 0
    total: int = 0
    lap: int = 0
    max: int = 0
    min: int = 0
    cycles: int = 0
    running: int = 0
    paused: bool = False

    def start(self):
        self.running += 1
        self.last_start = time.perf_counter_ns()

    def _accumulate(self, name: str):
        if self.running == 0:
            raise RuntimeError(f"Stopwatch '{name}' is not running")
        elapsed = time.perf_counter_ns() - self.last_start
        self.total += elapsed
        self.lap += elapsed
        self.running -= 1

    def stop(self, name: str):
        # a paused watch can be stopped without restarting it
        if self.running or not self.paused:
            self._accumulate(name)
        self.cycles += 1
        if self.lap > self.max:
            self.max = self.lap
        if self.min == 0 or self.lap < self.min:
            self.min = self.lap
        self.lap = 0
        self.paused = False

    def pause(self, name: str):
        self._accumulate(name)
        self.paused = True


class Stopwatch:
    """Container of named watches. The empty name is the anonymous watch."""

    def __init__(self):
        self.watches: Dict[str, Watch] = {}

    def start(self, name: str = '') -> 'Stopwatch':
        self.watches.setdefault(name, Watch()).start()
        return self

    def stop(self, name: str = '') -> 'Stopwatch':
        self._get(name).stop(name)
        return self

    def pause(self, name: str = '') -> 'Stopwatch':
        self._get(name).pause(name)
        return self

    def _get(self, name: str) -> Watch:
        if name not in self.watches:
            raise RuntimeError(f"Stopwatch '{name}' was never started")
        return self.watches[name]

    @contextmanager
    def start_stop(self, name: str = '') -> Iterator[Watch]:
        self.start(name)
        try:
            yield self.watches[name]
        finally:
            self.stop(name)

    @contextmanager
    def start_pause(self, name: str = '') -> Iterator[Watch]:
        self.start(name)
        try:
            yield self.watches[name]
        finally:
            self.pause(name)

    def report(self) -> str:
        """Timing table in seconds, one line per watch."""
        lines = [f"{'':<24} {'Cycles':>8} {'Total':>12} {'Average':>12} "
                 f"{'Minimum':>12} {'Maximum':>12}"]
        for name in sorted(self.watches):
            w = self.watches[name]
            average = w.total / w.cycles if w.cycles else 0.0
            lines.append(f"{name or '(total)':<24} {w.cycles:>8d} {w.total * 1e-9:>12.6f} "
                         f"{average * 1e-9:>12.6f} {w.min * 1e-9:>12.6f} "
                         f"{w.max * 1e-9:>12.6f}")
        return "\n".join(lines)
