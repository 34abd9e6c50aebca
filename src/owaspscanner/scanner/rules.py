"""Security rules — pre-filter regex gated before a contextual check."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass

from owaspscanner.scanner.context import RuleContext
from owaspscanner.scanner.models import Severity

ViolationCheck = Callable[[str, int, RuleContext], bool]


@dataclass(frozen=True)
class SecurityRule:
    """A vulnerability heuristic with a cheap pre-filter and a detailed check.

    The pre-filter ``pattern`` runs against one line in isolation and may be
    loose. ``check`` runs only on a pre-filter hit and may consult the
    context's line windows or whole-file content. Rules hold no per-call
    state and are shared across concurrently scanned files.
    """

    id: str
    description: str
    severity: Severity
    remediation: str
    reference: str
    pattern: re.Pattern[str]
    check: ViolationCheck

    def is_violated_by(self, line: str, line_number: int, context: RuleContext) -> bool:
        if not self.pattern.search(line):
            return False
        return self.check(line, line_number, context)


class RuleRegistry:
    """Rule id → rule instance, in registration order."""

    def __init__(self, rules: Iterable[SecurityRule] = ()) -> None:
        self._rules: dict[str, SecurityRule] = {}
        for rule in rules:
            self.register(rule)

    def register(self, rule: SecurityRule) -> None:
        if rule.id in self._rules:
            raise ValueError(f"Duplicate rule id: {rule.id}")
        self._rules[rule.id] = rule

    def get(self, rule_id: str) -> SecurityRule | None:
        return self._rules.get(rule_id)

    def select(self, rule_ids: Iterable[str]) -> list[SecurityRule]:
        """Return the rules for ``rule_ids``, in the order given."""
        selected: list[SecurityRule] = []
        for rule_id in rule_ids:
            rule = self._rules.get(rule_id)
            if rule is None:
                raise KeyError(f"Unknown rule id: {rule_id}")
            selected.append(rule)
        return selected

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(self._rules)

    def __iter__(self) -> Iterator[SecurityRule]:
        return iter(tuple(self._rules.values()))

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules


def compile_prefilter(rules: Iterable[SecurityRule]) -> tuple[re.Pattern[str], ...]:
    """Combine rule pre-filters into one alternation per distinct flag set.

    A line matches any rule's pre-filter iff it matches one of the returned
    patterns. Pre-filter patterns must pass flags to ``re.compile`` rather
    than inline (``(?i)``), and must not use numbered backreferences.
    """
    by_flags: dict[int, list[str]] = {}
    for rule in rules:
        by_flags.setdefault(rule.pattern.flags, []).append(rule.pattern.pattern)
    return tuple(
        re.compile("|".join(f"(?:{p})" for p in patterns), flags)
        for flags, patterns in by_flags.items()
    )
