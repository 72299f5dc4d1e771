"""Revision tokens: opaque markers compared only for equality."""

from enum import Enum
from typing import Callable, Optional
import itertools
import secrets
import time


RevisionToken = str


class Comparison(Enum):
    EQUAL = "equal"
    DIFFERENT = "different"


class RevisionClock:
    """Generates revision tokens.

    A token is ``<ms>-<counter>-<random>`` in hex. The counter keeps tokens
    from one clock distinct within a millisecond; the random part keeps
    tokens from different clocks distinct with overwhelming probability.
    Tokens carry no ordering.
    """

    def __init__(self, now_ms: Optional[Callable[[], int]] = None):
        self._now_ms = now_ms or (lambda: time.time_ns() // 1_000_000)
        self._counter = itertools.count()

    def next(self) -> RevisionToken:
        return f"{self._now_ms():x}-{next(self._counter):x}-{secrets.token_hex(4)}"

    @staticmethod
    def compare(a: Optional[RevisionToken], b: Optional[RevisionToken]) -> Comparison:
        return Comparison.EQUAL if a == b else Comparison.DIFFERENT
