"""Context routing: which execution context may claim which command."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, Optional, Tuple

from hostbridge.broker.mode import ModeTracker
from hostbridge.broker.models import (
    ACTIVE_CONTEXT,
    IDLE_CONTEXT,
    Command,
    ExecutionContext,
    normalise_context,
)
from hostbridge.config.settings import (
    DEFAULT_ACTIVE_PREFERRED_ACTIONS,
    DEFAULT_ANY_CONTEXT_ACTIONS,
    DEFAULT_EDIT_ONLY_ACTIONS,
)


def poller_targets(poller_context: str) -> Tuple[str, ...]:
    """Target contexts a poller declaring ``poller_context`` may claim from."""
    context = normalise_context(poller_context)
    if context == ExecutionContext.ANY.value:
        return (context,)
    return (context, ExecutionContext.ANY.value)


class ActionPolicy(str, Enum):
    EDIT_ONLY = "edit_only"
    ACTIVE_PREFERRED = "active_preferred"
    ANY_CONTEXT = "any_context"
    DEFAULT = "default"


class ContextRouter:
    """
    Pure routing decisions. The only state consulted is the mode tracker.

    Every (action, mode) pair resolves to exactly one context so that the
    idle and active presences of the host never both answer a command.
    """

    def __init__(
        self,
        mode: ModeTracker,
        *,
        edit_only: Iterable[str] = DEFAULT_EDIT_ONLY_ACTIONS,
        active_preferred: Iterable[str] = DEFAULT_ACTIVE_PREFERRED_ACTIONS,
        any_context: Iterable[str] = DEFAULT_ANY_CONTEXT_ACTIONS,
    ) -> None:
        self.mode = mode
        self._policies: Dict[str, ActionPolicy] = {}
        # Later classes never override an earlier one: edit-only wins.
        for names, policy in (
            (edit_only, ActionPolicy.EDIT_ONLY),
            (active_preferred, ActionPolicy.ACTIVE_PREFERRED),
            (any_context, ActionPolicy.ANY_CONTEXT),
        ):
            for name in names:
                self._policies.setdefault(str(name), policy)

    def policy_for(self, action: str) -> ActionPolicy:
        return self._policies.get(action, ActionPolicy.DEFAULT)

    def classify(self, action: str, policy: ActionPolicy) -> None:
        self._policies[str(action)] = ActionPolicy(policy)

    def resolve_target(self, action: str, *, active: Optional[bool] = None) -> str:
        policy = self.policy_for(action)
        if policy is ActionPolicy.EDIT_ONLY:
            return IDLE_CONTEXT.value
        live = self.mode.active if active is None else bool(active)
        # active-preferred falls through to the any-context rule when idle,
        # which is also the default rule.
        return ACTIVE_CONTEXT.value if live else IDLE_CONTEXT.value

    def deliverable_targets(self, poller_context: str) -> Tuple[str, ...]:
        """Buckets the queue walks when ``poller_context`` polls."""
        return poller_targets(poller_context)

    def is_deliverable(self, command: Command, poller_context: str) -> bool:
        return command.target_context in self.deliverable_targets(poller_context)

    def describe(self) -> Dict[str, list[str]]:
        table: Dict[str, list[str]] = {policy.value: [] for policy in ActionPolicy}
        for name, policy in sorted(self._policies.items()):
            table[policy.value].append(name)
        return table
