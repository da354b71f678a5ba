"""
Scheduled-trigger registry interface and an in-memory implementation.
"""

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from shared.errors import TriggerNotFoundError
from shared.logging import get_logger

from ..schedule import cron_expression, truncate_to_minute


@dataclass(frozen=True)
class TriggerRule:
    rule_id: str
    fire_at: datetime
    schedule_expression: str
    payload: Mapping[str, Any] = field(default_factory=dict)


class TriggerRegistry(ABC):
    """External facility that fires a payload at a given minute."""

    @abstractmethod
    async def register_at(self, when: datetime, payload: Mapping[str, Any], name: Optional[str] = None) -> str:
        """Create (or replace, when ``name`` exists) a one-shot rule; return its id."""

    @abstractmethod
    async def cancel(self, rule_id: str) -> None:
        """Delete a rule. Raises ``TriggerNotFoundError`` if it does not exist."""


class InMemoryTriggerRegistry(TriggerRegistry):
    """Keeps rules in a dict; rules with the same name are upserted."""

    def __init__(self):
        self._rules: Dict[str, TriggerRule] = {}
        self._ids = itertools.count(1)
        self.logger = get_logger("rotation.triggers")

    async def register_at(self, when: datetime, payload: Mapping[str, Any], name: Optional[str] = None) -> str:
        rule_id = name or f"rule-{next(self._ids)}"
        self._rules[rule_id] = TriggerRule(
            rule_id=rule_id,
            fire_at=truncate_to_minute(when),
            schedule_expression=cron_expression(when),
            payload=dict(payload),
        )
        self.logger.info("Trigger registered", rule_id=rule_id, schedule=self._rules[rule_id].schedule_expression)
        return rule_id

    async def cancel(self, rule_id: str) -> None:
        if self._rules.pop(rule_id, None) is None:
            raise TriggerNotFoundError(rule_id)
        self.logger.info("Trigger cancelled", rule_id=rule_id)

    def get(self, rule_id: str) -> Optional[TriggerRule]:
        return self._rules.get(rule_id)

    def rules(self) -> List[TriggerRule]:
        return sorted(self._rules.values(), key=lambda rule: (rule.fire_at, rule.rule_id))

    def due(self, now: datetime) -> List[TriggerRule]:
        """Rules whose minute has arrived."""
        cutoff = truncate_to_minute(now)
        return [rule for rule in self.rules() if rule.fire_at <= cutoff]
