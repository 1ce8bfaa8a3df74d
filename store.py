"""
Credential and to-do store

Writes go through an explicit pipeline: validate -> hash if the password
changed -> persist. Every to-do query is filtered by owner; an id that is
malformed, missing or owned by someone else is reported the same way, as not
found.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaError
from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

import database
from auth import PBKDF2_ITERATIONS, hash_password, verify_password
from config import get_settings
from errors import NotFoundError, StoreError, ValidationError, first_error
from logger import get_logger
from schemas import Email, Todo, User, to_utc

log = get_logger("store")

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 32
PASSWORD_MESSAGE = "Password doesn't meet requirements"
DUPLICATE_EMAIL_MESSAGE = "Email already registered"
# ASCII punctuation, the space and the pound sign
PASSWORD_SYMBOLS = r"""[-#!$@£%^&*()_+|~=`{}\[\]:'";<>?,./\\ ]"""

_email = TypeAdapter(Email)


def users_col() -> Collection:
    return database.collection("user")


def todos_col() -> Collection:
    return database.collection("todo")


def _object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


# -------------------- Validation --------------------

def validate_password(password: str) -> None:
    """Enforce 8-32 characters with an upper, a lower, a digit and a symbol."""
    if (
        not isinstance(password, str)
        or not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH
        or not re.search(r"[A-Z]", password)
        or not re.search(r"[a-z]", password)
        or not re.search(r"[0-9]", password)
        or not re.search(PASSWORD_SYMBOLS, password)
    ):
        raise ValidationError(PASSWORD_MESSAGE)


def validate_email(email: str) -> str:
    """The trimmed address, exactly as given, once it is known to be well formed."""
    try:
        return _email.validate_python(email.strip() if isinstance(email, str) else email)
    except SchemaError as e:
        raise ValidationError(f"email: {first_error(e.errors())}") from e


def _password_fields(password: str) -> Dict[str, Any]:
    salt_hex, hash_hex = hash_password(password)
    return {
        "password_hash": hash_hex,
        "password_salt": salt_hex,
        "iterations": PBKDF2_ITERATIONS,
    }


# -------------------- Users --------------------

def create_user(email: str, password: str) -> Dict[str, Any]:
    email = validate_email(email)
    validate_password(password)
    if find_by_email(email):
        raise ValidationError(DUPLICATE_EMAIL_MESSAGE)

    doc = User(email=email, **_password_fields(password)).model_dump(exclude_none=True)
    try:
        user_id = database.create_document("user", doc)
    except DuplicateKeyError:
        # lost a race with a concurrent registration
        raise ValidationError(DUPLICATE_EMAIL_MESSAGE)
    log.info("Created user %s", user_id)
    return doc


def find_by_id(user_id: Any) -> Optional[Dict[str, Any]]:
    oid = _object_id(user_id)
    if oid is None:
        return None
    return users_col().find_one({"_id": oid})


def find_by_email(email: str) -> Optional[Dict[str, Any]]:
    return users_col().find_one({"email": email})


def find_by_credentials(email: str, password: str) -> Optional[Dict[str, Any]]:
    """The matching user, or None for an unknown email or a wrong password."""
    user = find_by_email(email)
    if user is None:
        return None
    if not verify_password(password, user["password_salt"], user["password_hash"],
                           user.get("iterations", PBKDF2_ITERATIONS)):
        return None
    return user


def update_user(user: Dict[str, Any], changes: Dict[str, Any],
                current_token: Optional[str] = None) -> Dict[str, Any]:
    updates: Dict[str, Any] = {}
    for key, value in changes.items():
        if key not in ("email", "password"):
            raise ValidationError(f"{key}: Extra inputs are not permitted")
        if value is None:
            raise ValidationError(f"{key} cannot be null")

    email = changes.get("email")
    if email is not None:
        email = validate_email(email)
        if email != user["email"]:
            if find_by_email(email):
                raise ValidationError(DUPLICATE_EMAIL_MESSAGE)
            updates["email"] = email

    password = changes.get("password")
    if password is not None:
        validate_password(password)
        updates.update(_password_fields(password))
        # Sessions survive a password change unless configured otherwise
        if get_settings().revoke_sessions_on_password_change:
            keep = [current_token] if current_token in user.get("tokens", []) else []
            updates["tokens"] = keep

    if not updates:
        return user

    updates["updated_at"] = datetime.now(timezone.utc)
    try:
        updated = users_col().find_one_and_update(
            {"_id": user["_id"]},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise ValidationError(DUPLICATE_EMAIL_MESSAGE)
    if updated is None:
        raise StoreError(f"user {user['_id']} disappeared during update")
    log.info("Updated user %s (%s)", user["_id"], ", ".join(sorted(k for k in updates if k != "updated_at")))
    return updated


def delete_user(user: Dict[str, Any]) -> Dict[str, Any]:
    removed = todos_col().delete_many({"owner": user["_id"]})
    users_col().delete_one({"_id": user["_id"]})
    log.info("Deleted user %s and %d todo(s)", user["_id"], removed.deleted_count)
    return user


# -------------------- Todos --------------------

def create_todo(owner: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        todo = Todo(**{**data, "owner": owner["_id"]})
    except SchemaError as e:
        raise ValidationError(first_error(e.errors())) from e
    if todo.date is not None:
        todo.date = to_utc(todo.date)
    doc = todo.model_dump(exclude_none=True)
    database.create_document("todo", doc)
    return doc


def list_todos(owner: Dict[str, Any]) -> List[Dict[str, Any]]:
    return database.get_documents("todo", {"owner": owner["_id"]})


def _owned(owner: Dict[str, Any], todo_id: Any) -> Dict[str, Any]:
    oid = _object_id(todo_id)
    if oid is None:
        raise NotFoundError()
    return {"_id": oid, "owner": owner["_id"]}


def get_todo(owner: Dict[str, Any], todo_id: Any) -> Dict[str, Any]:
    todo = todos_col().find_one(_owned(owner, todo_id))
    if todo is None:
        raise NotFoundError()
    return todo


def update_todo(owner: Dict[str, Any], todo_id: Any, changes: Dict[str, Any]) -> Dict[str, Any]:
    query = _owned(owner, todo_id)
    if not changes:
        return get_todo(owner, todo_id)

    to_set: Dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
    to_unset: Dict[str, Any] = {}
    for key, value in changes.items():
        if key not in ("title", "completed", "date"):
            raise ValidationError(f"{key}: Extra inputs are not permitted")
        if value is None:
            if key != "date":
                raise ValidationError(f"{key} cannot be null")
            to_unset[key] = ""
        elif key == "title" and not value:
            raise ValidationError("title cannot be empty")
        elif key == "date":
            to_set[key] = to_utc(value)
        else:
            to_set[key] = value

    update: Dict[str, Any] = {"$set": to_set}
    if to_unset:
        update["$unset"] = to_unset
    todo = todos_col().find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
    if todo is None:
        raise NotFoundError()
    return todo


def delete_todo(owner: Dict[str, Any], todo_id: Any) -> Dict[str, Any]:
    todo = todos_col().find_one_and_delete(_owned(owner, todo_id))
    if todo is None:
        raise NotFoundError()
    return todo
