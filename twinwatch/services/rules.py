from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from twinwatch.schemas.faults import Condition, FaultRule, FaultType, Severity


def default_rules() -> list[FaultRule]:
    """Built-in rule set loaded at start-up."""
    return [
        FaultRule(
            id="rule-temp-critical",
            name="Critical Temperature Alert",
            fault_type=FaultType.ENVIRONMENTAL,
            severity=Severity.CRITICAL,
            conditions=[Condition(parameter="temperature", operator="gt", value=85)],
            description="Temperature exceeds critical threshold",
        ),
        FaultRule(
            id="rule-vibration-high",
            name="High Vibration Detection",
            fault_type=FaultType.STRUCTURAL,
            severity=Severity.HIGH,
            conditions=[Condition(parameter="vibration", operator="gt", value=8, duration=30)],
            description="Sustained high vibration levels detected",
        ),
        FaultRule(
            id="rule-connectivity-loss",
            name="Connectivity Loss",
            fault_type=FaultType.CONNECTIVITY,
            severity=Severity.MEDIUM,
            conditions=[Condition(parameter="signal_strength", operator="lt", value=20)],
            description="Poor connectivity detected",
        ),
    ]


class RuleStore:
    """
    In-memory registry of fault rules, keyed by rule id.

    Built once at start-up and handed to the services that need it. Rules are
    never removed; they can only be switched off.
    """

    def __init__(self, rules: Optional[Iterable[FaultRule]] = None):
        self._rules: dict[str, FaultRule] = {}
        for rule in default_rules() if rules is None else rules:
            self._rules[rule.id] = rule

    def __len__(self) -> int:
        return len(self._rules)

    def all(self) -> list[FaultRule]:
        return list(self._rules.values())

    def get(self, rule_id: str) -> Optional[FaultRule]:
        return self._rules.get(rule_id)

    def list_active(self, model_id: Optional[str]) -> list[FaultRule]:
        """Active rules that are either unscoped or scoped to ``model_id``."""
        return [
            rule
            for rule in self._rules.values()
            if rule.is_active and (rule.model_id is None or rule.model_id == model_id)
        ]

    def mark_triggered(self, rule_id: str, when: Optional[datetime] = None) -> None:
        rule = self._rules.get(rule_id)
        if rule is not None:
            rule.last_triggered = when or datetime.utcnow()

    def set_active(self, rule_id: str, active: bool) -> Optional[FaultRule]:
        rule = self._rules.get(rule_id)
        if rule is not None:
            rule.is_active = active
        return rule
