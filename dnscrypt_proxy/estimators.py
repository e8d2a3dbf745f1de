"""Adaptive estimate of the minimum padded question size."""

from __future__ import annotations

import threading

from .common import INITIAL_MIN_QUESTION_SIZE, MAX_DNS_UDP_PACKET_SIZE

AVG_METRIC_AGE = 30.0
DECAY = 2 / (AVG_METRIC_AGE + 1)


class SimpleEWMA:
    """Exponentially weighted moving average over about 30 samples."""

    def __init__(self) -> None:
        self.value = 0.0

    def add(self, value: float) -> None:
        if self.value == 0:
            self.value = float(value)
        else:
            self.value = value * DECAY + self.value * (1 - DECAY)

    def set(self, value: float) -> None:
        self.value = float(value)


class QuestionSizeEstimator:
    """Tracks how much encrypted UDP questions should be padded."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._min_question_size = INITIAL_MIN_QUESTION_SIZE
        self._ewma = SimpleEWMA()

    @property
    def min_question_size(self) -> int:
        with self._lock:
            return self._min_question_size

    def blind_adjust(self) -> None:
        """Double the minimum size after a truncated response."""
        with self._lock:
            if MAX_DNS_UDP_PACKET_SIZE - self._min_question_size < self._min_question_size:
                self._min_question_size = MAX_DNS_UDP_PACKET_SIZE
            else:
                self._min_question_size *= 2
            self._ewma.set(self._min_question_size)

    def adjust(self, packet_size: int) -> None:
        """Feed a response size; shrink the minimum when answers stay small."""
        with self._lock:
            self._ewma.add(packet_size)
            moving_average = int(self._ewma.value)
            current = self._min_question_size
            if INITIAL_MIN_QUESTION_SIZE < moving_average < current // 2:
                self._min_question_size = max(INITIAL_MIN_QUESTION_SIZE, current // 2)