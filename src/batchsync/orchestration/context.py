"""Shared key/value store threaded through every step of a run."""

from __future__ import annotations

from collections.abc import Iterator, Mapping, MutableMapping
from typing import Any


class SharedContext(MutableMapping[str, Any]):
    """
    The single mutable mapping a run hands to each of its steps.

    A run creates exactly one instance; steps read and write its keys but
    cannot replace it (``Step.shared`` has no setter). ``reset`` swaps the
    contents while keeping the object's identity.
    """

    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._data: dict[str, Any] = dict(initial or {})

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def reset(self, data: Mapping[str, Any] | None = None) -> None:
        """Replace the contents in place."""
        self._data.clear()
        self._data.update(data or {})

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    def __repr__(self) -> str:
        return f"SharedContext({self._data!r})"


__all__ = ["SharedContext"]
