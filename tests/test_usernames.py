"""Tests for username validation and generation."""

import pytest

from usernames import UsernameError, generate_username, is_username_available, validate_username


class TestValidateUsername:
    @pytest.mark.parametrize("username", ["jane", "jane_doe", "abc", "user123", "a" * 30])
    def test_valid(self, username):
        assert validate_username(username) == (True, None)

    @pytest.mark.parametrize(
        "username,error",
        [
            ("", "Username is required"),
            (None, "Username is required"),
            ("ab", "Username must be at least 3 characters"),
            ("a" * 31, "Username cannot exceed 30 characters"),
            ("Jane", "Username can only contain lowercase letters, numbers, and underscores"),
            ("jane-doe", "Username can only contain lowercase letters, numbers, and underscores"),
            ("_jane", "Username cannot start or end with underscore"),
            ("jane_", "Username cannot start or end with underscore"),
            ("jane__doe", "Username cannot contain consecutive underscores"),
        ],
    )
    def test_invalid(self, username, error):
        assert validate_username(username) == (False, error)


class TestGenerateUsername:
    def test_from_name(self, db):
        assert generate_username(db, "Jane Doe") == "jane_doe"

    def test_strips_symbols(self, db):
        assert generate_username(db, "  Zoë O'Brien! ") == "zo_obrien"

    def test_short_names_are_padded(self, db):
        assert generate_username(db, "Al") == "al_"

    def test_padded_names_bypass_validation(self, db):
        username = generate_username(db, "A")
        assert username == "a__"
        assert validate_username(username) == (False, "Username cannot start or end with underscore")

    def test_suffix_when_taken(self, db):
        db["user"].insert_many([{"username": "jane_doe"}, {"username": "jane_doe_2"}])
        assert generate_username(db, "Jane Doe") == "jane_doe_3"

    def test_suffixed_name_stays_within_limit(self, db):
        long_name = "x" * 40
        db["user"].insert_one({"username": "x" * 30})
        candidate = generate_username(db, long_name)
        assert candidate == "x" * 28 + "_2"

    def test_name_required(self, db):
        with pytest.raises(UsernameError, match="Name is required"):
            generate_username(db, "   ")


class TestAvailability:
    def test_case_insensitive(self, db):
        db["user"].insert_one({"username": "jane"})
        assert not is_username_available(db, "JANE")
        assert is_username_available(db, "janet")

    def test_excludes_own_account(self, db):
        user_id = db["user"].insert_one({"username": "jane"}).inserted_id
        assert is_username_available(db, "jane", exclude_user_id=user_id)
