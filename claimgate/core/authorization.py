"""
Authorization

One capability-checked gate for every mutating operation.

authorize() fails with Unauthorized when:
- the actor is not registered
- the actor is deactivated
- the actor's role lacks the capability
- the private key does not match the registered public key

Actor identity is part of the journal: registration, role changes and
deactivation are events, and this registry is their projection.
"""

from dataclasses import dataclass, replace
from typing import Optional
from uuid import UUID

from ..schemas import (
    ActorDeactivatedPayload,
    ActorRegisteredPayload,
    ActorRoleChangedPayload,
    Capability,
    Role,
    role_allows,
)
from .errors import ClaimGateError, ErrorCode
from .signer import Signer


@dataclass(frozen=True)
class RegisteredActor:
    """
    Record of a registered actor.

    public_key never changes; it anchors every signature the actor makes.
    """
    actor_id: UUID
    name: str
    role: Role
    public_key: str
    is_active: bool
    registered_by: Optional[UUID]  # None for the genesis admin


def _unauthorized(message: str, actor_id: UUID, **details) -> ClaimGateError:
    return ClaimGateError(ErrorCode.UNAUTHORIZED, message, actor_id=actor_id, **details)


class Authorizer:
    """Actor registry plus the single authorize() check."""

    def __init__(self):
        self._actors: dict[UUID, RegisteredActor] = {}
        self._public_key_to_actor: dict[str, UUID] = {}

    @property
    def has_genesis(self) -> bool:
        return bool(self._actors)

    def get(self, actor_id: UUID) -> Optional[RegisteredActor]:
        return self._actors.get(actor_id)

    def list_actors(self, active_only: bool = False) -> list[RegisteredActor]:
        actors = list(self._actors.values())
        if active_only:
            actors = [a for a in actors if a.is_active]
        return actors

    def authorize(
        self,
        actor_id: UUID,
        private_key: str,
        capability: Capability,
    ) -> RegisteredActor:
        """Return the actor if they may exercise capability, else raise Unauthorized."""
        actor = self._actors.get(actor_id)
        if actor is None:
            raise _unauthorized(f"Actor {actor_id} is not registered", actor_id)

        if not actor.is_active:
            raise _unauthorized(f"Actor {actor_id} ({actor.name}) is deactivated", actor_id)

        if not role_allows(actor.role, capability):
            raise _unauthorized(
                f"Role '{actor.role.value}' lacks capability '{capability.value}'",
                actor_id,
                capability=capability.value,
            )

        if not Signer.key_matches(private_key, actor.public_key):
            raise _unauthorized(
                f"Private key does not match the registered public key for actor {actor_id}",
                actor_id,
            )

        return actor

    # ------------------------------------------------------------
    # Validation (raises, never mutates)
    # ------------------------------------------------------------

    def check_register(self, payload: ActorRegisteredPayload) -> None:
        """
        Genesis registration must be an admin with registered_by=None and is
        self-signed; every later registration names the admin who made it.
        """
        if payload.actor_id in self._actors:
            raise ClaimGateError(
                ErrorCode.INVALID_INPUT,
                f"Actor {payload.actor_id} already exists",
                actor_id=payload.actor_id,
            )

        existing = self._public_key_to_actor.get(payload.public_key)
        if existing is not None:
            raise ClaimGateError(
                ErrorCode.INVALID_INPUT,
                f"Public key already registered to actor {existing}",
                actor_id=existing,
            )

        if not self.has_genesis:
            if payload.registered_by is not None:
                raise ClaimGateError(
                    ErrorCode.INVALID_INPUT, "Genesis actor must have registered_by=None"
                )
            if payload.role != Role.ADMIN:
                raise ClaimGateError(ErrorCode.INVALID_INPUT, "Genesis actor must be an admin")
        elif payload.registered_by is None:
            raise ClaimGateError(
                ErrorCode.INVALID_INPUT, "Non-genesis actors must specify registered_by"
            )

    def check_target(self, actor_id: UUID) -> RegisteredActor:
        actor = self._actors.get(actor_id)
        if actor is None:
            raise ClaimGateError(
                ErrorCode.ACTOR_NOT_FOUND, f"Actor {actor_id} does not exist", actor_id=actor_id
            )
        if not actor.is_active:
            raise ClaimGateError(
                ErrorCode.INVALID_STATE_TRANSITION,
                f"Actor {actor_id} is already deactivated",
                actor_id=actor_id,
            )
        return actor

    # ------------------------------------------------------------
    # Projection (apply journaled events)
    # ------------------------------------------------------------

    def apply_registered(self, payload: ActorRegisteredPayload) -> RegisteredActor:
        actor = RegisteredActor(
            actor_id=payload.actor_id,
            name=payload.name,
            role=payload.role,
            public_key=payload.public_key,
            is_active=True,
            registered_by=payload.registered_by,
        )
        self._actors[actor.actor_id] = actor
        self._public_key_to_actor[actor.public_key] = actor.actor_id
        return actor

    def apply_role_changed(self, payload: ActorRoleChangedPayload) -> RegisteredActor:
        actor = replace(self._actors[payload.actor_id], role=payload.new_role)
        self._actors[actor.actor_id] = actor
        return actor

    def apply_deactivated(self, payload: ActorDeactivatedPayload) -> RegisteredActor:
        actor = replace(self._actors[payload.actor_id], is_active=False)
        self._actors[actor.actor_id] = actor
        return actor
