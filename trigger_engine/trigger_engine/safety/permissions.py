"""Permission checks for trigger actions.

Defines a three-tier role hierarchy (VIEWER, OPERATOR, ADMIN) and the
minimum role for each action.  The authorization decision itself belongs
to the host: :class:`PermissionChecker` delegates to a policy callable and
allows everything when none is configured.  :func:`role_policy` is a ready
made policy that compares ``actor.role`` with the action's minimum role.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum, IntEnum

from trigger_engine.errors import PermissionError
from trigger_engine.safety.context import Actor

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Role hierarchy (higher int = more authority)
# ---------------------------------------------------------------------------


class Role(IntEnum):
    VIEWER = 0
    OPERATOR = 1
    ADMIN = 2


_ROLE_LOOKUP: dict[str, Role] = {r.name.lower(): r for r in Role}


def parse_role(raw: str) -> Role:
    """Convert a role name into a :class:`Role`.

    Raises :class:`ValueError` if the string does not map to a known role.
    """
    try:
        return _ROLE_LOOKUP[raw.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown role '{raw}'. Valid roles: {sorted(_ROLE_LOOKUP)}") from None


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class Action(str, Enum):
    # Viewer
    VIEW_TRIGGERS = "view_triggers"
    VIEW_DIFFS = "view_diffs"

    # Operator
    ENABLE_TRIGGER = "enable_trigger"
    DISABLE_TRIGGER = "disable_trigger"
    APPLY_TRIGGER = "apply_trigger"
    DRY_RUN_SQL = "dry_run_sql"
    GENERATE_TRIGGER = "generate_trigger"
    TEST_TRIGGER = "test_trigger"

    # Admin
    DROP_TRIGGER = "drop_trigger"
    EXECUTE_SQL = "execute_sql"
    OVERRIDE_DRIFT = "override_drift"


REQUIRED_ROLE: dict[Action, Role] = {
    Action.VIEW_TRIGGERS: Role.VIEWER,
    Action.VIEW_DIFFS: Role.VIEWER,
    Action.ENABLE_TRIGGER: Role.OPERATOR,
    Action.DISABLE_TRIGGER: Role.OPERATOR,
    Action.APPLY_TRIGGER: Role.OPERATOR,
    Action.DRY_RUN_SQL: Role.OPERATOR,
    Action.GENERATE_TRIGGER: Role.OPERATOR,
    Action.TEST_TRIGGER: Role.OPERATOR,
    Action.DROP_TRIGGER: Role.ADMIN,
    Action.EXECUTE_SQL: Role.ADMIN,
    Action.OVERRIDE_DRIFT: Role.ADMIN,
}


def required_role(action: Action | str) -> Role:
    return REQUIRED_ROLE[Action(action)]


# ---------------------------------------------------------------------------
# Checker
# ---------------------------------------------------------------------------

Policy = Callable[[Actor, Action, str], bool]


def role_policy(actor: Actor, action: Action, environment: str) -> bool:
    """Allow *action* when the actor's role is at least the action's minimum."""
    if not actor.role:
        return False
    try:
        role = parse_role(actor.role)
    except ValueError:
        logger.warning("Unknown role %r for actor %s", actor.role, actor.label)
        return False
    return role >= required_role(action)


class PermissionChecker:
    """Pluggable authorization gate.  Allows everything without a policy."""

    def __init__(self, policy: Policy | None = None) -> None:
        self._policy = policy

    def can(self, actor: Actor, action: Action | str, environment: str) -> bool:
        action = Action(action)
        if self._policy is None:
            return True
        return bool(self._policy(actor, action, environment))

    def check(self, actor: Actor, action: Action | str, environment: str) -> bool:
        """Return ``True`` or raise :class:`~trigger_engine.errors.PermissionError`."""
        action = Action(action)
        if self.can(actor, action, environment):
            return True

        role = required_role(action)
        logger.warning(
            "Permission denied: actor=%s action=%s environment=%s required_role=%s",
            actor.label,
            action.value,
            environment,
            role.name.lower(),
        )
        raise PermissionError(
            f"Permission denied: {action.value} requires {role.name.lower()} level access",
            recovery_suggestion=f"Contact your administrator to request {role.name.lower()} level access.",
            context={
                "action": action.value,
                "required_role": role.name.lower(),
                "environment": environment,
                "actor": actor.label,
            },
        )
