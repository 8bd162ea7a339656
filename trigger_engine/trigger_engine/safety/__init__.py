"""Safety gates: operation context, kill switch and permission checks."""

from trigger_engine.safety.context import Actor, OperationContext
from trigger_engine.safety.kill_switch import KillSwitch, KillSwitchConfig
from trigger_engine.safety.permissions import Action, PermissionChecker, Role, role_policy

__all__ = [
    "Action",
    "Actor",
    "KillSwitch",
    "KillSwitchConfig",
    "OperationContext",
    "PermissionChecker",
    "Role",
    "role_policy",
]
