"""
Tagged stage outcomes.

Confirmed: the model produced the value.
Fallback:  a local heuristic produced the value; `reason` says why.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Confirmed(Generic[T]):
    value: T
    confidence: str = "high"

    @property
    def is_fallback(self) -> bool:
        return False


@dataclass(frozen=True)
class Fallback(Generic[T]):
    value: T
    reason: str

    @property
    def is_fallback(self) -> bool:
        return True


Outcome = Union[Confirmed[T], Fallback[T]]
