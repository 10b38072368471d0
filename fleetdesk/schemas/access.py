from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class FieldSetting(BaseModel):
    model_config = ConfigDict(frozen=True)

    visible: bool = True
    required: bool = False


# field key -> setting; one organization's config, or the merge of several
FieldConfig = dict[str, FieldSetting]


class OrganizationScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["organization"] = "organization"
    name: str


class AllMembershipsScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["all_memberships"] = "all_memberships"


class UnrestrictedScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["unrestricted"] = "unrestricted"


Scope = Annotated[
    Union[OrganizationScope, AllMembershipsScope, UnrestrictedScope],
    Field(discriminator="kind"),
]

ALL_MEMBERSHIPS = AllMembershipsScope()
UNRESTRICTED = UnrestrictedScope()


class FieldConfigResponse(BaseModel):
    scope: Scope
    unrestricted: bool
    fields: FieldConfig = Field(default_factory=dict)


class OrganizationAccessResponse(BaseModel):
    organization: str
    accessible: bool
