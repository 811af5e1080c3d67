"""Rollenprüfung an der Grenze zum Identitätsdienst."""

from typing import Iterable

from config.schema import Role
from engine.errors import PermissionDenied
from models.actor import Actor

STAFF = (Role.ADMIN, Role.INSTRUCTOR)


def require_role(actor: Actor, roles: Iterable[Role], action: str) -> None:
    """Wirft PermissionDenied, wenn die Rolle des Akteurs nicht zugelassen ist."""
    allowed = tuple(roles)
    if actor.role not in allowed:
        raise PermissionDenied(
            f"{actor} darf '{action}' nicht ausführen "
            f"(erlaubt: {', '.join(r.value for r in allowed)})",
            actor_id=actor.id,
        )


def require_staff(actor: Actor, action: str) -> None:
    require_role(actor, STAFF, action)
