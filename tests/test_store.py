"""Credential store and to-do store."""

from datetime import datetime, timezone

import pytest
from bson import ObjectId

import database
import store
from config import Settings
from errors import NotFoundError, ValidationError
from tests.conftest import PASSWORD


class TestCreateUser:

    def test_stores_new_user(self):
        user = store.create_user("email@example.com", PASSWORD)
        assert store.find_by_id(user["_id"]) is not None
        assert store.find_by_id(str(user["_id"]))["email"] == "email@example.com"

    def test_starts_without_sessions(self):
        user = store.create_user("email@example.com", PASSWORD)
        assert user["tokens"] == []

    def test_password_is_not_stored_in_plaintext(self):
        user = store.create_user("email@example.com", PASSWORD)
        stored = store.find_by_id(user["_id"])
        assert "password" not in stored
        assert PASSWORD not in stored.values()
        assert stored["password_hash"] != PASSWORD
        assert stored["iterations"] == 200000

    def test_same_password_gets_different_salts(self):
        first = store.create_user("one@example.com", PASSWORD)
        second = store.create_user("two@example.com", PASSWORD)
        assert first["password_salt"] != second["password_salt"]
        assert first["password_hash"] != second["password_hash"]

    def test_trims_email(self):
        user = store.create_user("  email@example.com ", PASSWORD)
        assert user["email"] == "email@example.com"

    def test_keeps_email_case_as_given(self):
        user = store.create_user("Alice@Example.COM", PASSWORD)
        assert user["email"] == "Alice@Example.COM"
        assert store.find_by_credentials("Alice@Example.COM", PASSWORD)["_id"] == user["_id"]

    @pytest.mark.parametrize("email", ["totally-not-an-email", ""])
    def test_rejects_invalid_email(self, email):
        with pytest.raises(ValidationError):
            store.create_user(email, PASSWORD)

    def test_rejects_weak_password(self):
        with pytest.raises(ValidationError) as exc_info:
            store.create_user("email@example.com", "weak")
        assert exc_info.value.message == store.PASSWORD_MESSAGE

    def test_rejects_duplicate_email(self, user):
        with pytest.raises(ValidationError) as exc_info:
            store.create_user(user["email"], PASSWORD)
        assert exc_info.value.message == "Email already registered"


class TestLookups:

    def test_find_by_id_with_malformed_id(self):
        assert store.find_by_id("not-an-id") is None

    def test_find_by_id_unknown(self):
        assert store.find_by_id(ObjectId()) is None

    def test_find_by_email(self, user):
        assert store.find_by_email("first@example.com")["_id"] == user["_id"]
        assert store.find_by_email("nobody@example.com") is None

    def test_credentials_unknown_email(self, user):
        assert store.find_by_credentials("new@example.com", PASSWORD) is None

    def test_credentials_wrong_password(self, user):
        assert store.find_by_credentials(user["email"], "wrong-password") is None

    def test_credentials_correct(self, user):
        found = store.find_by_credentials(user["email"], PASSWORD)
        assert found is not None
        assert found["_id"] == user["_id"]


class TestUpdateUser:

    def test_changes_email(self, user):
        updated = store.update_user(user, {"email": "renamed@example.com"})
        assert updated["email"] == "renamed@example.com"
        assert store.find_by_email("first@example.com") is None

    @pytest.mark.parametrize("field", ["email", "password"])
    def test_rejects_null(self, user, field):
        with pytest.raises(ValidationError):
            store.update_user(user, {field: None})

    def test_rejects_email_taken_by_someone_else(self, user, other_user):
        with pytest.raises(ValidationError):
            store.update_user(user, {"email": other_user["email"]})

    def test_keeping_own_email_is_not_a_duplicate(self, user):
        updated = store.update_user(user, {"email": user["email"]})
        assert updated["email"] == user["email"]

    def test_rehashes_new_password(self, user):
        new_password = "N3w!password"
        updated = store.update_user(user, {"password": new_password})
        assert updated["password_hash"] != user["password_hash"]
        assert store.find_by_credentials(user["email"], new_password) is not None
        assert store.find_by_credentials(user["email"], PASSWORD) is None

    def test_rejects_weak_new_password(self, user):
        with pytest.raises(ValidationError):
            store.update_user(user, {"password": "short"})
        assert store.find_by_credentials(user["email"], PASSWORD) is not None

    def test_no_changes_returns_user_untouched(self, user):
        assert store.update_user(user, {}) is user

    def test_password_change_keeps_sessions_by_default(self, user, tokens):
        first = tokens.issue(user)
        second = tokens.issue(user)
        store.update_user(user, {"password": "N3w!password"}, current_token=first)
        assert tokens.resolve(first) is not None
        assert tokens.resolve(second) is not None

    def test_password_change_can_revoke_other_sessions(self, user, tokens, monkeypatch):
        monkeypatch.setattr(store, "get_settings", lambda: Settings(
            jwt_secret="test-secret", revoke_sessions_on_password_change=True))
        first = tokens.issue(user)
        second = tokens.issue(user)
        store.update_user(user, {"password": "N3w!password"}, current_token=first)
        assert tokens.resolve(first) is not None
        assert tokens.resolve(second) is None


class TestDeleteUser:

    def test_removes_user_and_their_todos(self, user, other_user):
        store.create_todo(user, {"title": "mine", "completed": False})
        store.create_todo(user, {"title": "also mine", "completed": True})
        kept = store.create_todo(other_user, {"title": "theirs", "completed": False})

        store.delete_user(user)

        assert store.find_by_id(user["_id"]) is None
        assert database.get_db()["todo"].count_documents({"owner": user["_id"]}) == 0
        assert store.get_todo(other_user, kept["_id"])["title"] == "theirs"


class TestTodos:

    def test_create_sets_owner(self, user):
        todo = store.create_todo(user, {"title": "x", "completed": False})
        assert todo["owner"] == user["_id"]
        assert "date" not in todo

    def test_create_ignores_owner_in_input(self, user, other_user):
        todo = store.create_todo(user, {"title": "x", "completed": False, "owner": other_user["_id"]})
        assert todo["owner"] == user["_id"]

    @pytest.mark.parametrize("data", [
        {"completed": False},
        {"title": "", "completed": False},
        {"title": "x"},
    ])
    def test_create_rejects_invalid(self, user, data):
        with pytest.raises(ValidationError):
            store.create_todo(user, data)

    def test_date_is_stored_in_utc_at_millisecond_precision(self, user):
        date = datetime(2024, 5, 1, 12, 30, 15, 123456, tzinfo=timezone.utc)
        todo = store.create_todo(user, {"title": "x", "completed": False, "date": date})
        assert todo["date"] == datetime(2024, 5, 1, 12, 30, 15, 123000)

    def test_list_only_returns_own_todos_in_creation_order(self, user, other_user):
        store.create_todo(user, {"title": "a", "completed": False})
        store.create_todo(other_user, {"title": "b", "completed": False})
        store.create_todo(user, {"title": "c", "completed": True})
        assert [t["title"] for t in store.list_todos(user)] == ["a", "c"]

    @pytest.mark.parametrize("todo_id", ["not-an-id", str(ObjectId()), None])
    def test_get_missing_is_not_found(self, user, todo_id):
        with pytest.raises(NotFoundError):
            store.get_todo(user, todo_id)

    def test_foreign_todo_is_not_found(self, user, other_user):
        todo = store.create_todo(other_user, {"title": "theirs", "completed": False})
        with pytest.raises(NotFoundError):
            store.get_todo(user, todo["_id"])
        with pytest.raises(NotFoundError):
            store.update_todo(user, todo["_id"], {"completed": True})
        with pytest.raises(NotFoundError):
            store.delete_todo(user, todo["_id"])
        assert store.get_todo(other_user, todo["_id"])["completed"] is False

    def test_update_sets_and_clears_fields(self, user):
        todo = store.create_todo(user, {
            "title": "x", "completed": False, "date": datetime(2024, 1, 1, tzinfo=timezone.utc),
        })
        updated = store.update_todo(user, str(todo["_id"]), {"completed": True, "date": None})
        assert updated["completed"] is True
        assert "date" not in updated

    def test_update_rejects_null_title(self, user):
        todo = store.create_todo(user, {"title": "x", "completed": False})
        with pytest.raises(ValidationError):
            store.update_todo(user, todo["_id"], {"title": None})

    def test_update_rejects_unknown_field(self, user, other_user):
        todo = store.create_todo(user, {"title": "x", "completed": False})
        with pytest.raises(ValidationError):
            store.update_todo(user, todo["_id"], {"owner": other_user["_id"]})

    def test_delete_returns_removed_todo(self, user):
        todo = store.create_todo(user, {"title": "x", "completed": False})
        removed = store.delete_todo(user, str(todo["_id"]))
        assert removed["_id"] == todo["_id"]
        assert store.list_todos(user) == []
