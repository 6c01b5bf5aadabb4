from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class ActivateRequest(BaseModel):
    code: str = Field(max_length=200)
    device_id: str = Field(
        max_length=500, validation_alias=AliasChoices("deviceId", "device_id")
    )


class LoginRequest(BaseModel):
    password: str = Field(
        min_length=1, max_length=512, validation_alias=AliasChoices("password", "key")
    )


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(
        min_length=1,
        max_length=512,
        validation_alias=AliasChoices("currentPassword", "current_password"),
    )
    new_password: str = Field(
        min_length=1,
        max_length=512,
        validation_alias=AliasChoices("newPassword", "new_password"),
    )
    confirm_password: Optional[str] = Field(
        default=None,
        max_length=512,
        validation_alias=AliasChoices("confirmPassword", "confirm_password"),
    )


class AddCodeRequest(BaseModel):
    code: str = Field(max_length=200)
