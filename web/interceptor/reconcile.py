from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Dict, Iterable, Mapping, Tuple, Union

from interceptor.policy import BlockRule


ActiveRules = Union[AbstractSet[int], Mapping[int, str]]


@dataclass(frozen=True)
class ReconcilePlan:
    to_remove: frozenset
    to_add: Tuple[BlockRule, ...]
    new_active: Mapping[int, str]

    @property
    def is_empty(self) -> bool:
        return not self.to_remove and not self.to_add


def reconcile(old: ActiveRules, new_rules: Iterable[BlockRule]) -> ReconcilePlan:
    """Compute the instructions that turn the engine's active rules into `new_rules`.

    With a plain id set the old contents are unknown, so every old id is
    removed and every new rule added. With an id -> pattern mapping only the
    ids that vanished or changed pattern are removed and only new or changed
    rules are added; an unchanged rule set gives an empty plan.
    """
    rules = tuple(new_rules)
    new_active: Dict[int, str] = {r.id: r.pattern for r in rules}

    if not isinstance(old, Mapping):
        return ReconcilePlan(to_remove=frozenset(old), to_add=rules, new_active=new_active)

    to_remove = frozenset(i for i, pat in old.items() if new_active.get(i) != pat)
    to_add = tuple(r for r in rules if old.get(r.id) != r.pattern)
    return ReconcilePlan(to_remove=to_remove, to_add=to_add, new_active=new_active)
