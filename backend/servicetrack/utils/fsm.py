from __future__ import annotations
"""Finite state machine utility for status transitions.

A validator built with ``graph=None`` is *open*: any known status may follow any
other (service rounds default to this). Passing a graph turns it into a whitelist.
Usage:
    from servicetrack.utils.fsm import TransitionValidator
    SHIP_FSM = TransitionValidator(('PENDING', 'IN_TRANSIT'), {
        'PENDING': {'IN_TRANSIT'},
        'IN_TRANSIT': set(),
    })
    SHIP_FSM.assert_can_transition(current_status, target_status)

Raises ValidationFailed (400) if the target is unknown or not allowed.
"""
from typing import Dict, Iterable, Optional, Set
from servicetrack.errors import ValidationFailed


class TransitionValidator:
    def __init__(self, statuses: Iterable[str], graph: Optional[Dict[str, Set[str]]] = None, field_name: str = 'status'):
        self.statuses = tuple(statuses)
        self.graph = graph
        self.field_name = field_name

    @property
    def is_open(self) -> bool:
        return self.graph is None

    def can_transition(self, current: Optional[str], target: str) -> bool:
        if target not in self.statuses:
            return False
        if self.graph is None or current is None:
            return True
        return target in self.graph.get(current, set())

    def assert_can_transition(self, current: Optional[str], target: str):
        if target not in self.statuses:
            raise ValidationFailed(
                f"{self.field_name} invalid",
                details={self.field_name: f"must be one of {', '.join(self.statuses)}"},
            )
        if not self.can_transition(current, target):
            raise ValidationFailed(
                f"Invalid {self.field_name} transition {current} -> {target}",
                details={'from': current, 'to': target},
            )
        return True

__all__ = ['TransitionValidator']
