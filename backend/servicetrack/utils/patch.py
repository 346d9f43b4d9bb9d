from __future__ import annotations
"""Explicit partial-update structs.

A field left at UNSET was absent from the payload and is not touched; a field set
to None was sent as null and clears the column. Fields named in ``REQUIRED`` may
be changed but never cleared.
"""
from dataclasses import dataclass, fields
from typing import Any, ClassVar, Dict, Mapping, Tuple
from servicetrack.errors import ValidationFailed


class _Unset:
    def __repr__(self):
        return 'UNSET'

    def __bool__(self):
        return False


UNSET: Any = _Unset()


@dataclass
class Patch:
    REQUIRED: ClassVar[Tuple[str, ...]] = ()

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]):
        names = {f.name for f in fields(cls)}
        return cls(**{k: data[k] for k in names if k in data})

    def changes(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not UNSET}

    def validate(self) -> Dict[str, Any]:
        changes = self.changes()
        cleared = [k for k in self.REQUIRED if k in changes and changes[k] in (None, '')]
        if cleared:
            raise ValidationFailed(f"{', '.join(cleared)} cannot be empty", details={k: 'cannot be empty' for k in cleared})
        return changes

    def apply_to(self, obj) -> Dict[str, Any]:
        changes = self.validate()
        for key, value in changes.items():
            setattr(obj, key, value)
        return changes

__all__ = ['UNSET', 'Patch']
