"""Tests for passwords, tokens and the authorization policy."""

import pytest

from errors import DuplicateError, ForbiddenError, UnauthenticatedError
from schemas import SignupRequest
from security import AuthService, authorize, hash_password, verify_password


def signup_request(**overrides):
    fields = {
        "first_name": "Grace",
        "last_name": "Hopper",
        "email": "Grace@Example.com",
        "password": "cobol-rules",
    }
    fields.update(overrides)
    return SignupRequest(**fields)


class TestPasswords:
    def test_round_trip(self):
        encoded = hash_password("hunter22")
        assert encoded.startswith("$argon2id$")
        assert verify_password("hunter22", encoded)
        assert not verify_password("hunter23", encoded)

    def test_salted(self):
        assert hash_password("same") != hash_password("same")

    def test_garbage_hash(self):
        assert verify_password("x", "not-a-hash") is False


class TestAuthService:
    def test_signup_defaults_to_customer(self, db):
        auth = AuthService(db)
        user = auth.signup(signup_request(role="admin"))
        assert user["role"] == "customer"
        assert user["email"] == "grace@example.com"

    def test_admin_signup_when_allowed(self, db):
        user = AuthService(db, allow_admin_signup=True).signup(signup_request(role="admin"))
        assert user["role"] == "admin"

    def test_duplicate_email(self, db):
        auth = AuthService(db)
        auth.signup(signup_request())
        with pytest.raises(DuplicateError):
            auth.signup(signup_request(email="grace@example.com"))

    def test_login_and_token(self, db):
        auth = AuthService(db)
        created = auth.signup(signup_request())
        user = auth.login("GRACE@example.com", "cobol-rules")
        token = auth.issue_token(user)
        assert auth.user_for_token(token)["_id"] == created["_id"]

    def test_bad_password(self, db):
        auth = AuthService(db)
        auth.signup(signup_request())
        with pytest.raises(UnauthenticatedError):
            auth.login("grace@example.com", "fortran")

    @pytest.mark.parametrize("token", [None, "", "unknown-token"])
    def test_bad_tokens(self, db, token):
        with pytest.raises(UnauthenticatedError):
            AuthService(db).user_for_token(token)

    def test_expired_token(self, db):
        auth = AuthService(db, token_ttl_hours=0)
        token = auth.issue_token(auth.signup(signup_request()))
        with pytest.raises(UnauthenticatedError):
            auth.user_for_token(token)


class TestAuthorize:
    customer = {"_id": "c1", "role": "customer"}
    admin = {"_id": "a1", "role": "admin"}

    def test_public(self):
        authorize(None, "product:read")

    def test_anonymous_needs_login(self):
        with pytest.raises(UnauthenticatedError):
            authorize(None, "cart:use")

    def test_authenticated(self):
        authorize(self.customer, "cart:use")

    def test_owner(self):
        authorize(self.customer, "product:update", {"created_by": "c1"})
        authorize(self.customer, "order:read", {"user_id": "c1"})
        with pytest.raises(ForbiddenError):
            authorize(self.customer, "order:read", {"user_id": "someone-else"})

    def test_admin_only(self):
        authorize(self.admin, "order:list_all")
        authorize(self.admin, "product:update", {"created_by": "c1"})
        with pytest.raises(ForbiddenError):
            authorize(self.customer, "order:list_all")
