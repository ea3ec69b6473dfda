"""Derived lists memoized on an owner's version counter."""

from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class VersionedMemo(Generic[T]):
    """Caches one computed value per owner version.

    The owner passes its current version explicitly; a different version
    recomputes, the same version returns the cached object.
    """

    def __init__(self, compute: Callable[[], T]):
        self._compute = compute
        self._version: int | None = None
        self._value: T | None = None

    def get(self, version: int) -> T:
        if self._version != version:
            self._value = self._compute()
            self._version = version
        return self._value

    def invalidate(self) -> None:
        self._version = None
        self._value = None
