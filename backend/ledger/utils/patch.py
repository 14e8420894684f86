"""Field-presence-aware update payloads.

A ``Patch`` keeps only the keys the caller actually sent, so "field omitted"
and "field explicitly set to null" stay distinguishable:

    patch = Patch.from_payload({'notes': None}, allowed=('quantity', 'notes'))
    'quantity' in patch   # False -> leave untouched
    'notes' in patch      # True  -> clear the note
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple


class Patch:
    def __init__(self, fields: Optional[Mapping[str, Any]] = None):
        self._fields: Dict[str, Any] = dict(fields or {})

    @classmethod
    def from_payload(cls, data: Optional[Mapping[str, Any]], allowed: Iterable[str]) -> 'Patch':
        data = data or {}
        return cls({name: data[name] for name in allowed if name in data})

    def __contains__(self, name: str) -> bool:
        return name in self._fields

    def __getitem__(self, name: str) -> Any:
        return self._fields[name]

    def __bool__(self) -> bool:
        return bool(self._fields)

    def __repr__(self) -> str:
        return f'Patch({self._fields!r})'

    def get(self, name: str, default: Any = None) -> Any:
        return self._fields.get(name, default)

    def items(self) -> Iterator[Tuple[str, Any]]:
        return iter(self._fields.items())

    def keys(self):
        return self._fields.keys()

    def without(self, *names: str) -> 'Patch':
        return Patch({k: v for k, v in self._fields.items() if k not in names})


__all__ = ['Patch']
