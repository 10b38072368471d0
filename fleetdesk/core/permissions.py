from enum import Enum
from typing import Iterable, List


class Role(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    USER = "user"

    @classmethod
    def _missing_(cls, value):  # type: ignore[override]
        if isinstance(value, str):
            cleaned = value.strip().lower()
            for member in cls:
                if member.value == cleaned:
                    return member
        return None


class Permission(str, Enum):
    # Insured objects (boats, trailers, motors)
    INSURED_OBJECT_CREATE = "INSURED_OBJECT_CREATE"
    INSURED_OBJECT_READ = "INSURED_OBJECT_READ"
    INSURED_OBJECT_UPDATE = "INSURED_OBJECT_UPDATE"
    INSURED_OBJECT_DELETE = "INSURED_OBJECT_DELETE"

    # Policies
    POLICY_CREATE = "POLICY_CREATE"
    POLICY_EDIT = "POLICY_EDIT"
    POLICY_DELETE = "POLICY_DELETE"
    POLICY_VIEW = "POLICY_VIEW"
    POLICY_APPROVE = "POLICY_APPROVE"

    # Organizations
    ORG_CREATE = "ORG_CREATE"
    ORG_EDIT = "ORG_EDIT"
    ORG_DELETE = "ORG_DELETE"
    ORG_VIEW = "ORG_VIEW"
    ORG_MANAGE_USERS = "ORG_MANAGE_USERS"
    ORG_EDIT_ADDRESS = "ORG_EDIT_ADDRESS"
    ORG_EDIT_FIELD_CONFIG = "ORG_EDIT_FIELD_CONFIG"
    ORG_EDIT_ACCEPTANCE_RULES = "ORG_EDIT_ACCEPTANCE_RULES"

    # Users
    USER_CREATE = "USER_CREATE"
    USER_EDIT = "USER_EDIT"
    USER_DELETE = "USER_DELETE"
    USER_VIEW = "USER_VIEW"
    USER_ASSIGN_ROLES = "USER_ASSIGN_ROLES"

    # System
    CHANGELOG_VIEW = "CHANGELOG_VIEW"
    SYSTEM_CONFIG = "SYSTEM_CONFIG"

    @classmethod
    def list_all(cls) -> List[str]:
        return [code.value for code in cls]

    @classmethod
    def normalize(cls, values: Iterable[str]) -> List[str]:
        """Return unique permission codes that are valid members."""
        seen = set()
        normalized: list[str] = []
        for value in values:
            try:
                code = cls(value)
            except ValueError:
                continue
            if code.value not in seen:
                seen.add(code.value)
                normalized.append(code.value)
        return normalized


ROLE_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.ADMIN: frozenset(Permission.list_all()),
    Role.EDITOR: frozenset(
        Permission.normalize(
            [
                Permission.INSURED_OBJECT_CREATE,
                Permission.INSURED_OBJECT_READ,
                Permission.INSURED_OBJECT_UPDATE,
                Permission.ORG_VIEW,
                Permission.ORG_EDIT_ADDRESS,
                Permission.POLICY_CREATE,
                Permission.POLICY_VIEW,
                Permission.POLICY_EDIT,
            ]
        )
    ),
    Role.USER: frozenset(
        Permission.normalize(
            [
                Permission.INSURED_OBJECT_READ,
                Permission.POLICY_VIEW,
                Permission.ORG_VIEW,
            ]
        )
    ),
}


def permissions_for(role: Role) -> frozenset[str]:
    return ROLE_PERMISSIONS[Role(role)]
