"""
Result type returned by CRM accessors.

A lookup either finds the record, confirms it does not exist, or fails to
reach the store. Callers branch on the three outcomes explicitly instead of
treating ``None`` and exceptions as the same thing.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union


T = TypeVar("T")


@dataclass(frozen=True)
class Found(Generic[T]):
    record: T


@dataclass(frozen=True)
class NotFound:
    key: str


@dataclass(frozen=True)
class TransportFailure:
    detail: str


LookupResult = Union[Found[T], NotFound, TransportFailure]
