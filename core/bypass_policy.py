"""
Bypass policy: tables deliberately excluded from the data copy, each with a reason.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BypassRule:
    table: str
    reason: str


class BypassPolicy:
    """Static, configuration-supplied set of bypass rules"""

    def __init__(self, rules: Iterable[BypassRule] = ()):
        self._rules: Dict[str, BypassRule] = {}
        for rule in rules:
            self._rules[rule.table] = rule

    @classmethod
    def from_config(cls, entries: Union[None, Dict[str, str], Iterable]) -> 'BypassPolicy':
        """Accepts {table: reason}, [{"table": ..., "reason": ...}] or ["table:reason", ...]"""
        rules: List[BypassRule] = []
        if not entries:
            return cls()
        if isinstance(entries, dict):
            entries = [{'table': table, 'reason': reason} for table, reason in entries.items()]
        for entry in entries:
            if isinstance(entry, BypassRule):
                rules.append(entry)
            elif isinstance(entry, dict):
                if not entry.get('table'):
                    raise ValueError(f"Bypass rule missing table name: {entry}")
                rules.append(BypassRule(entry['table'], entry.get('reason') or 'bypassed by policy'))
            elif isinstance(entry, str):
                table, _, reason = entry.partition(':')
                if not table.strip():
                    raise ValueError(f"Bypass rule missing table name: {entry!r}")
                rules.append(BypassRule(table.strip(), reason.strip() or 'bypassed by policy'))
            else:
                raise ValueError(f"Unsupported bypass rule: {entry!r}")
        logger.debug(f"Loaded {len(rules)} bypass rules")
        return cls(rules)

    def is_bypassed(self, table: str) -> bool:
        return table in self._rules

    def reason_for(self, table: str) -> Optional[str]:
        rule = self._rules.get(table)
        return rule.reason if rule else None

    def partition(self, tables: Iterable[str]) -> Tuple[List[str], List[BypassRule]]:
        """Split tables into (to_copy, bypassed), preserving order"""
        to_copy: List[str] = []
        bypassed: List[BypassRule] = []
        for table in tables:
            rule = self._rules.get(table)
            if rule:
                bypassed.append(rule)
            else:
                to_copy.append(table)
        return to_copy, bypassed

    @property
    def rules(self) -> List[BypassRule]:
        return list(self._rules.values())

    def __len__(self):
        return len(self._rules)

    def __contains__(self, table):
        return table in self._rules
