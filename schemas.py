"""
Database Schemas for Personal Finance App

Each Pydantic model either describes a MongoDB document or a request/response
body. Field names are camelCase on the wire and in storage.
"""
import json
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError, format_validation_errors


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def reject_nul(value: str) -> str:
    if "\x00" in value:
        raise ValueError("password must not contain NUL characters")
    return value


class AuthUser(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6)

    @field_validator("password")
    @classmethod
    def password_has_no_nul(cls, v):
        return reject_nul(v)


class LoginRequest(BaseModel):
    username: str
    password: str


class ChangePassword(CamelModel):
    current_password: str = Field(..., alias="currentPassword")
    new_password: str = Field(..., alias="newPassword", min_length=6)

    @field_validator("new_password")
    @classmethod
    def password_has_no_nul(cls, v):
        return reject_nul(v)


class User(CamelModel):
    username: str
    password_hash: str = Field(..., alias="passwordHash")


class Attachment(BaseModel):
    path: str
    filename: str


class IncomeIn(BaseModel):
    amount: float = Field(..., allow_inf_nan=False)
    notes: Optional[str] = None


class ExpenseItem(BaseModel):
    description: str = Field(..., min_length=1)
    amount: float = Field(..., allow_inf_nan=False)


class ExpenseIn(CamelModel):
    items: List[ExpenseItem] = Field(..., min_length=1)
    total_amount: float = Field(..., alias="totalAmount", allow_inf_nan=False)
    notes: Optional[str] = None

    @field_validator("items", mode="before")
    @classmethod
    def parse_items(cls, v):
        # multipart forms carry the item list as a JSON string
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                raise ValueError("items must be a JSON array")
        return v


class JWTToken(BaseModel):
    token: str
    token_type: str = "bearer"


class UserCreated(CamelModel):
    message: str = "User created successfully"
    user_id: str = Field(..., alias="userId")


class Message(BaseModel):
    message: str


def validate_payload(model, data: dict):
    """Build ``model`` from ``data`` or raise a 400 ValidationError."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(format_validation_errors(exc.errors())) from exc
