from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from fleetdesk.core.permissions import Role


class Principal(BaseModel):
    model_config = ConfigDict(frozen=True)

    subject_id: str
    role: Role = Role.USER
    primary_organization: str | None = None
    organizations: frozenset[str] = Field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def memberships(self) -> list[str]:
        """Primary organization first, then the remaining memberships sorted."""
        names = sorted(self.organizations - {self.primary_organization})
        if self.primary_organization:
            return [self.primary_organization, *names]
        return names


class PrincipalDTO(BaseModel):
    subject_id: str
    role: Role
    primary_organization: str | None
    organizations: list[str]

    @classmethod
    def from_principal(cls, principal: Principal) -> "PrincipalDTO":
        return cls(
            subject_id=principal.subject_id,
            role=principal.role,
            primary_organization=principal.primary_organization,
            organizations=principal.memberships,
        )
