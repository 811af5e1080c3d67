"""Referenz auf einen Akteur aus dem Identitätsdienst."""

from pydantic import BaseModel

from config.schema import Role


class Actor(BaseModel):
    """Wer eine Operation auslöst. Rollenprüfung erfolgt in den Engines."""

    id: str
    role: Role

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.ADMIN, Role.INSTRUCTOR)

    def __str__(self) -> str:
        return f"{self.role.value}:{self.id}"


SYSTEM_ACTOR = Actor(id="system", role=Role.ADMIN)
