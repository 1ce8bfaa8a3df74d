"""
Database Schemas

MongoDB collection schemas and the request/response models of the API, all as
Pydantic models. Class name lowercased becomes the collection name:
- User -> "user" collection
- Todo -> "todo" collection

Documents never leave the API as-is: users are rendered through UserView and
to-dos through TodoView, so password material and session tokens are never
serialized.
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Dict, List, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    ValidationInfo,
    field_validator,
)
from pydantic import ValidationError as SchemaError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Naive UTC at millisecond precision, which is what BSON dates round-trip as."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def to_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_millis(value: Any) -> Any:
    """Numbers are millisecond epochs, whatever their size; anything else is left to pydantic."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return EPOCH + timedelta(milliseconds=value)
        except OverflowError:
            raise ValueError("date is out of range") from None
    return value


MillisDate = Annotated[datetime, BeforeValidator(from_millis)]

_email_syntax = TypeAdapter(EmailStr)


def check_email(value: str) -> str:
    """Reject malformed addresses but keep the address exactly as given."""
    try:
        _email_syntax.validate_python(value)
    except SchemaError as e:
        raise ValueError(e.errors()[0]["msg"]) from None
    return value


Email = Annotated[str, AfterValidator(check_email)]


# -------------------- Collections --------------------

class User(BaseModel):
    """
    Users collection schema
    Collection name: "user" (lowercase of class name)
    """
    email: Email = Field(..., description="Email address, unique, stored as given")
    password_hash: str = Field(..., description="PBKDF2-SHA256 hash of the password (hex)")
    password_salt: str = Field(..., description="Salt for password hashing (hex)")
    iterations: int = Field(200000, description="PBKDF2 iterations")
    tokens: List[str] = Field(default_factory=list, description="Active session tokens, oldest first")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Todo(BaseModel):
    """
    To-do items, each owned by one user
    Collection name: "todo" -> we always query by owner
    """
    title: str = Field(..., min_length=1)
    date: Optional[MillisDate] = None
    completed: bool
    owner: Any = Field(..., description="ObjectId of the owning user")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# -------------------- Requests --------------------

class EmailInput(BaseModel):
    @field_validator("email", mode="before", check_fields=False)
    @classmethod
    def strip_email(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class UserCreate(EmailInput):
    email: Email
    password: str


class LoginRequest(EmailInput):
    email: str
    password: str


class UserUpdate(EmailInput):
    """Only email and password may change; anything else is rejected."""
    model_config = ConfigDict(extra="forbid")

    email: Optional[Email] = None
    password: Optional[str] = None

    @field_validator("email", "password")
    @classmethod
    def not_null(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value


class TodoCreate(BaseModel):
    title: str = Field(..., min_length=1)
    completed: bool
    date: Optional[MillisDate] = None


class TodoUpdate(BaseModel):
    """Partial update. Sending ``"date": null`` clears the date."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1)
    completed: Optional[bool] = None
    date: Optional[MillisDate] = None

    @field_validator("title", "completed")
    @classmethod
    def not_null(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value

    def changes(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


# -------------------- Views --------------------

class UserView(BaseModel):
    id: str
    email: str

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "UserView":
        return cls(id=str(doc["_id"]), email=doc["email"])


class AuthResponse(BaseModel):
    user: UserView
    token: str


class TodoView(BaseModel):
    id: str
    title: str
    completed: bool
    date: Optional[int] = Field(None, description="Millisecond epoch; omitted when unset")

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "TodoView":
        date = doc.get("date")
        return cls(
            id=str(doc["_id"]),
            title=doc["title"],
            completed=doc["completed"],
            date=to_millis(date) if date is not None else None,
        )
