"""
Workflow Planning
=================
Decides which commands an agent may run without confirmation and breaks
composite commands into atomic steps.

    policy = AutoExecutionPolicy(DEFAULT_RULES)
    validator = CommandSafetyValidator(policy)
    steps = WorkflowPlanner().plan({"type": "complex-task", "branch_id": "b1", "content": "..."})
    runnable = [s for s in steps if validator.is_safe(s.as_command())]
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern, Union

from loguru import logger


@dataclass(frozen=True)
class PolicyRule:
    """
    A rule for one command type.

    With a ``pattern`` the rule only applies when the command content
    matches it; otherwise the rule applies to every command of the type.
    """
    type: str
    safe: bool
    pattern: Optional[Pattern[str]] = None

    def applies_to(self, command_type: str, content: Optional[str]) -> bool:
        if self.type != command_type:
            return False
        if self.pattern is None:
            return True
        return bool(content) and self.pattern.search(content) is not None


def _compile(pattern: Union[str, Pattern[str], None]) -> Optional[Pattern[str]]:
    if pattern is None or isinstance(pattern, re.Pattern):
        return pattern
    return re.compile(pattern)


class AutoExecutionPolicy:
    """Ordered rules; the first applicable rule decides, unmatched commands are unsafe."""

    def __init__(self, rules: Optional[Iterable[PolicyRule]] = None):
        self._rules: List[PolicyRule] = list(rules or [])

    def is_auto_executable(self, command: Mapping[str, Any]) -> bool:
        command_type = command.get("type", "")
        content = command.get("content")
        for rule in self._rules:
            if rule.applies_to(command_type, content):
                return rule.safe
        return False

    def add_rule(self, type: str, safe: bool, pattern: Union[str, Pattern[str], None] = None) -> PolicyRule:
        rule = PolicyRule(type=type, safe=safe, pattern=_compile(pattern))
        self._rules.append(rule)
        return rule

    def remove_rule(self, type: str, pattern: Union[str, Pattern[str], None] = None) -> int:
        """
        Remove rules for ``type``: all of them, or only those with the given pattern.

        Returns the number of rules removed.
        """
        compiled = _compile(pattern)
        before = len(self._rules)
        self._rules = [
            r for r in self._rules
            if r.type != type or (compiled is not None and (r.pattern is None or r.pattern.pattern != compiled.pattern))
        ]
        return before - len(self._rules)

    def list_rules(self) -> List[PolicyRule]:
        return list(self._rules)


DEFAULT_RULES = (
    PolicyRule(type="create-branch", safe=True),
    PolicyRule(type="focus", safe=True),
    PolicyRule(type="add-thought", safe=True),
)


class CommandSafetyValidator:
    def __init__(self, policy: AutoExecutionPolicy):
        self.policy = policy

    def is_safe(self, command: Mapping[str, Any]) -> bool:
        return self.policy.is_auto_executable(command)


@dataclass
class WorkflowStep:
    type: str
    params: Dict[str, Any] = field(default_factory=dict)

    def as_command(self) -> Dict[str, Any]:
        return {"type": self.type, **self.params}

    def to_dict(self) -> dict:
        return {"type": self.type, "params": dict(self.params)}


class WorkflowPlanner:
    """Breaks composite commands into atomic steps; other commands pass through as one step."""

    def plan(self, command: Mapping[str, Any]) -> List[WorkflowStep]:
        command_type = command.get("type", "")
        if command_type == "complex-task":
            branch_id = command.get("branch_id")
            steps = [
                WorkflowStep("create-branch", {"branch_id": branch_id}),
                WorkflowStep("focus", {"branch_id": branch_id}),
                WorkflowStep("add-thought", {"branch_id": branch_id, "content": command.get("content")}),
            ]
            logger.debug(f"Planned complex-task into {len(steps)} steps for branch {branch_id}")
            return steps
        params = {k: v for k, v in command.items() if k != "type"}
        return [WorkflowStep(command_type, params)]


__all__ = [
    "AutoExecutionPolicy",
    "CommandSafetyValidator",
    "DEFAULT_RULES",
    "PolicyRule",
    "WorkflowPlanner",
    "WorkflowStep",
]
