"""Access key variants and the authenticated principal."""

from __future__ import annotations

from dataclasses import dataclass

from krelease.errors import AccessDenied

KEY_SEPARATOR = "-"


@dataclass(frozen=True)
class AdminKey:
    """Credential validated verbatim against the configured keys."""

    secret: str

    @property
    def full_key(self) -> str:
        return self.secret


@dataclass(frozen=True)
class TenantKey:
    """Credential of the form ``<client><KEY_SEPARATOR><secret>``."""

    client_name: str
    secret: str

    @property
    def full_key(self) -> str:
        return f"{self.client_name}{KEY_SEPARATOR}{self.secret}"


AccessKey = AdminKey | TenantKey


@dataclass(frozen=True)
class Principal:
    """Result of classifying a validated credential.

    ``client_name`` is None for admins, who may address any tenant.
    """

    client_name: str | None
    is_admin: bool

    @classmethod
    def admin(cls) -> Principal:
        return cls(client_name=None, is_admin=True)

    @classmethod
    def for_client(cls, client_name: str) -> Principal:
        return cls(client_name=client_name, is_admin=False)

    def can_access(self, client_name: str) -> bool:
        return self.is_admin or self.client_name == client_name

    def authorize(self, client_name: str) -> None:
        """Raise AccessDenied unless this principal may address *client_name*."""
        if not self.can_access(client_name):
            raise AccessDenied(client_name)
