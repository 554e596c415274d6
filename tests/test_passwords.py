"""Unit tests for auth/passwords.py -- bcrypt hashing and the strict complexity gate."""

import pytest

from auth.passwords import DUMMY_HASH, hash_password, password_issues, verify_password


class TestHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("Corr3ct!horse")
        assert hashed != "Corr3ct!horse"
        assert verify_password("Corr3ct!horse", hashed)
        assert not verify_password("corr3ct!horse", hashed)

    def test_salted(self):
        assert hash_password("Same!pass1") != hash_password("Same!pass1")

    def test_missing_hash_never_verifies(self):
        assert not verify_password("anything", None)
        assert not verify_password("", DUMMY_HASH)

    def test_garbage_hash_returns_false(self):
        assert not verify_password("Corr3ct!horse", "not-a-bcrypt-hash")

    def test_long_password_hashes(self):
        """Passwords up to the maximum length are accepted by bcrypt."""
        long_pw = "A1!" + "x" * 125
        assert verify_password(long_pw, hash_password(long_pw))


class TestPasswordIssues:
    def test_valid_password_has_no_issues(self):
        assert password_issues("Valid!Pass1") == []

    def test_every_failed_rule_is_reported(self):
        assert password_issues("abc") == [
            "Password must be at least 8 characters long",
            "Password must contain at least one number",
            "Password must contain at least one uppercase letter",
            "Password must contain at least one special character",
        ]

    def test_too_long(self):
        assert "Password must be no more than 128 characters long" in password_issues("Aa1!" * 33)

    def test_no_letter(self):
        issues = password_issues("12345678!")
        assert "Password must contain at least one letter" in issues
        assert "Password must contain at least one uppercase letter" in issues

    @pytest.mark.parametrize("special", list('!@#$%^&*(),.?":{}|<>'))
    def test_each_special_character_counts(self, special):
        assert password_issues(f"Abcdefg1{special}") == []

    def test_other_punctuation_is_not_special(self):
        assert password_issues("Abcdefg1-_") == ["Password must contain at least one special character"]

    def test_non_string(self):
        assert password_issues(None) == ["Password must be a string"]
