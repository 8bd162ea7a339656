"""Environment kill switch for mutating trigger operations.

In protected environments (``production`` and ``staging`` by default) a
mutating operation proceeds only when the caller supplies the exact
confirmation phrase for that operation, e.g. ``EXECUTE TRIGGER_DROP``.
Every outcome is logged with a ``[KILL_SWITCH]`` tag:

* ``ALLOWED`` (info) when the environment is not protected;
* ``OVERRIDDEN`` (warning) when a protected operation proceeds;
* ``BLOCKED`` (error) when it does not.

Usage::

    switch = KillSwitch(settings.kill_switch_config())
    switch.check("trigger_drop", ctx)

    with switch.override(ctx):
        await lifecycle.drop("audit_users", ctx, reason="cleanup")
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from pydantic import BaseModel, Field, field_validator

from trigger_engine.errors import KillSwitchError
from trigger_engine.safety.context import OperationContext

logger = logging.getLogger(__name__)

CONFIRMATION_ENV_VAR = "TRIGGER_CONFIRMATION_TEXT"


class KillSwitchConfig(BaseModel):
    """Kill switch policy, normally built from :class:`~trigger_engine.config.Settings`."""

    enabled: bool = Field(default=True, description="Global on/off for the kill switch.")
    protected_environments: list[str] = Field(
        default_factory=lambda: ["production", "staging"],
        description="Environments in which mutating operations are guarded.",
    )
    confirmation_required: bool = Field(
        default=True,
        description="When false, protected operations only log a warning (soft mode).",
    )
    confirmation_pattern: str = Field(
        default="EXECUTE {operation}",
        description="Template for the expected phrase; {operation} is upper-cased.",
    )

    @field_validator("protected_environments")
    @classmethod
    def _lowercase(cls, value: list[str]) -> list[str]:
        return [env.strip().lower() for env in value if env.strip()]


class KillSwitch:
    """Guard consulted by every mutating operation."""

    def __init__(self, config: KillSwitchConfig | None = None) -> None:
        self.config = config or KillSwitchConfig()

    def active(self, environment: str | None) -> bool:
        """Return ``True`` when *environment* is protected and the switch is on."""
        if not self.config.enabled or not environment:
            return False
        return environment.strip().lower() in self.config.protected_environments

    def expected_confirmation(self, operation: str) -> str:
        return self.config.confirmation_pattern.format(operation=operation.upper())

    def check(self, operation: str, context: OperationContext) -> bool:
        """Allow *operation* or raise :class:`KillSwitchError`.

        Parameters
        ----------
        operation:
            Operation name, e.g. ``trigger_drop`` or ``migration_up``.
        context:
            Caller context carrying environment, actor, confirmation text
            and the scoped override flag.
        """
        environment = context.environment
        actor = context.actor.label

        if not self.active(environment):
            logger.info(
                "[KILL_SWITCH] ALLOWED: operation=%s environment=%s actor=%s (not protected)",
                operation,
                environment,
                actor,
                extra={"operation": operation, "environment": environment},
            )
            return True

        if context.kill_switch_override:
            logger.warning(
                "[KILL_SWITCH] OVERRIDDEN: operation=%s environment=%s actor=%s via scoped override",
                operation,
                environment,
                actor,
                extra={"operation": operation, "environment": environment},
            )
            return True

        if not self.config.confirmation_required:
            logger.warning(
                "[KILL_SWITCH] OVERRIDDEN: operation=%s environment=%s actor=%s (confirmation not required)",
                operation,
                environment,
                actor,
                extra={"operation": operation, "environment": environment},
            )
            return True

        expected = self.expected_confirmation(operation)
        supplied = (context.confirmation or "").strip()
        if supplied == expected:
            logger.warning(
                "[KILL_SWITCH] OVERRIDDEN: operation=%s environment=%s actor=%s confirmation=%r",
                operation,
                environment,
                actor,
                supplied,
                extra={"operation": operation, "environment": environment},
            )
            return True

        logger.error(
            "[KILL_SWITCH] BLOCKED: operation=%s environment=%s actor=%s reason=%s",
            operation,
            environment,
            actor,
            "invalid confirmation" if supplied else "no confirmation",
            extra={"operation": operation, "environment": environment},
        )
        if supplied:
            message = (
                f"Invalid confirmation text for '{operation}' in {environment}. "
                f"Expected '{expected}', got '{supplied}'."
            )
        else:
            message = f"Kill switch is active for environment '{environment}'. Operation '{operation}' is blocked."
        raise KillSwitchError(
            message,
            recovery_suggestion=(
                f"Supply the confirmation text '{expected}' with --confirm or the "
                f"{CONFIRMATION_ENV_VAR} environment variable, or run the call inside "
                "KillSwitch.override()."
            ),
            context={
                "operation": operation,
                "environment": environment,
                "actor": actor,
                "expected_confirmation": expected,
            },
        )

    @contextmanager
    def override(self, context: OperationContext) -> Iterator[OperationContext]:
        """Bypass the switch for calls made with *context* inside the block.

        The previous flag value is restored on exit, including when the
        block raises.
        """
        previous = context.kill_switch_override
        context.kill_switch_override = True
        logger.warning(
            "[KILL_SWITCH] override scope entered: environment=%s actor=%s",
            context.environment,
            context.actor.label,
        )
        try:
            yield context
        finally:
            context.kill_switch_override = previous
            logger.info("[KILL_SWITCH] override scope exited: actor=%s", context.actor.label)
