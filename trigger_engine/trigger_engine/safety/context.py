"""Per-call operation context: who is acting, where, with what confirmation."""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, Field


class Actor(BaseModel):
    """The principal performing an operation (a user, the console, a job)."""

    type: str = Field(default="console", description="Kind of principal, e.g. user, console, job.")
    id: str = Field(default="unknown", description="Identifier within the principal kind.")
    role: str | None = Field(default=None, description="Role name consulted by role-based policies.")

    @property
    def label(self) -> str:
        return f"{self.type}:{self.id}"

    def to_audit(self) -> dict[str, str | None]:
        return self.model_dump()


@dataclass
class OperationContext:
    """Everything a guarded operation needs to know about its caller.

    The ``kill_switch_override`` flag lives here rather than in process
    state, so an override can only affect the call that carries it.
    """

    environment: str
    actor: Actor = field(default_factory=Actor)
    confirmation: str | None = None
    kill_switch_override: bool = False
