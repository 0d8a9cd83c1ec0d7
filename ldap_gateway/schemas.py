"""Request bodies of the HTTP API (JSON field names follow AD attribute names)."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("*", mode="before")
    @classmethod
    def _strip(cls, v: Any, info: ValidationInfo) -> Any:
        # пароль передаётся как есть
        if info.field_name == "password":
            return v
        return v.strip() if isinstance(v, str) else v


class NewUserIn(_Body):
    sam_account_name: str = Field(default="", alias="sAMAccountName")
    display_name: str = Field(default="", alias="displayName")
    ou: str = Field(default="", alias="OU")
    password: str = Field(default="")
    primary_domain: str = Field(default="", alias="primaryDomain")


class PasswordIn(_Body):
    password: str = Field(default="")


class UserUpdateIn(_Body):
    sam_account_name: str = Field(default="", alias="sAMAccountName")
    display_name: str = Field(default="", alias="displayName")
    description: str = Field(default="")
    user_account_control: int = Field(default=0, alias="userAccountControl")
    proxy_addresses: list[str] = Field(default_factory=list, alias="proxyAddresses")
    mail: str = Field(default="")
    ou: str = Field(default="", alias="OU")

    def replace_fields(self) -> dict[str, Any]:
        """Attribute name -> requested value; empty values are dropped later."""
        return {
            "sAMAccountName": self.sam_account_name,
            "displayName": self.display_name,
            "description": self.description,
            "userAccountControl": self.user_account_control,
            "proxyAddresses": self.proxy_addresses,
            "mail": self.mail,
        }


class NewGroupIn(_Body):
    sam_account_name: str = Field(default="", alias="sAMAccountName")
    display_name: str = Field(default="", alias="displayName")
    ou: str = Field(default="", alias="OU")
    description: str = Field(default="")
    group_type: int = Field(default=0, alias="groupType")


class GroupUpdateIn(_Body):
    display_name: str = Field(default="", alias="displayName")
    description: str = Field(default="")
    proxy_addresses: list[str] = Field(default_factory=list, alias="proxyAddresses")
    mail: str = Field(default="")

    def replace_fields(self) -> dict[str, Any]:
        return {
            "displayName": self.display_name,
            "description": self.description,
            "proxyAddresses": self.proxy_addresses,
            "mail": self.mail,
        }


class GroupMembersIn(_Body):
    add_members: list[str] = Field(default_factory=list)
    remove_members: list[str] = Field(default_factory=list)
