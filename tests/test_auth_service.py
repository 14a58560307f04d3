"""Unit tests for auth/service.py -- AuthService registration and login flows.

Covers:
- register(): durable create, public-view caching, both notification jobs
- register(): duplicate email (case-insensitive) -> DuplicateEmail
- register(): cache write failure is isolated; store/dispatcher faults -> RegistrationFailed
- authenticate(): unknown email and wrong password are indistinguishable
- authenticate(): MFA gate (required / invalid / valid) and history feed
- authenticate(): cache-aside lookup of the credential record
- enroll_mfa() and current_user()
"""

from __future__ import annotations

import pyotp
import pytest

from auth.errors import (
    DuplicateEmail,
    InvalidCredentials,
    InvalidMfaCode,
    MfaCodeRequired,
    PasswordTooLong,
    RateLimitExceeded,
    RegistrationFailed,
    StoreError,
)
from auth.mfa import challenge_key
from auth.ratelimit import attempt_key, history_key
from auth.service import AuthService, email_cache_key, normalize_email, user_cache_key
from notify.events import USER_REGISTERED, VERIFICATION_EMAIL

PASSWORD = "correct horse battery"
IP = "10.0.0.1"


def _register(service: AuthService, email: str = "ada@example.com", ip: str = IP, **kwargs):
    return service.register("Ada Lovelace", email, PASSWORD, ip=ip, **kwargs)


def _capture(dispatcher) -> list[tuple[str, dict]]:
    seen: list[tuple[str, dict]] = []
    dispatcher.subscribe(USER_REGISTERED, lambda p: seen.append((USER_REGISTERED, p)))
    dispatcher.subscribe(VERIFICATION_EMAIL, lambda p: seen.append((VERIFICATION_EMAIL, p)))
    return seen


class TestRegister:
    def test_creates_user_with_hashed_password(self, service: AuthService, user_store) -> None:
        user = _register(service)
        assert user.id is not None
        assert user.email == "ada@example.com"
        assert user.hashed_password != PASSWORD
        assert user.hashed_password.startswith("$2")
        assert len(user.verification_token) == 60
        assert user_store.find_by_id(user.id).email == "ada@example.com"

    def test_email_is_normalised(self, service: AuthService) -> None:
        user = _register(service, email="  Ada@Example.COM ")
        assert user.email == "ada@example.com"

    def test_caches_public_view_without_secrets(self, service: AuthService, cache) -> None:
        user = _register(service)
        cached = cache.get(user_cache_key(user.id))
        assert cached["id"] == user.id
        assert cached["email"] == "ada@example.com"
        assert "hashed_password" not in cached
        assert "mfa_secret" not in cached
        assert "verification_token" not in cached

    def test_enqueues_registered_and_verification_jobs(self, service: AuthService, dispatcher) -> None:
        seen = _capture(dispatcher)
        user = _register(service, metadata={"source": "web"})

        assert dispatcher.pending() == 2
        dispatcher.run_pending()

        kinds = [kind for kind, _ in seen]
        assert kinds == [USER_REGISTERED, VERIFICATION_EMAIL]
        registered = seen[0][1]
        assert registered["user_id"] == user.id
        assert registered["metadata"] == {"source": "web"}
        assert "registered_at" in registered
        verification = seen[1][1]
        assert verification["verification_token"] == user.verification_token
        assert verification["email"] == "ada@example.com"

    def test_duplicate_email_rejected_case_insensitively(self, service: AuthService, dispatcher) -> None:
        _register(service)
        with pytest.raises(DuplicateEmail):
            _register(service, email="ADA@example.com")
        assert dispatcher.pending() == 2

    def test_cache_failure_does_not_fail_registration(
        self, service: AuthService, cache, dispatcher, monitor, monkeypatch
    ) -> None:
        real_put = cache.put

        def failing_put(key, value, ttl):
            if key.startswith("user:auth:"):
                raise ConnectionError("cache down")
            real_put(key, value, ttl)

        monkeypatch.setattr(cache, "put", failing_put)

        user = _register(service)
        assert user.id is not None
        assert dispatcher.pending() == 2
        assert len(monitor.exceptions) == 1
        assert isinstance(monitor.exceptions[0], ConnectionError)

    def test_store_fault_becomes_registration_failed(
        self, service: AuthService, user_store, dispatcher, monitor, monkeypatch
    ) -> None:
        def broken_create(fields):
            raise StoreError("disk I/O error")

        monkeypatch.setattr(user_store, "create", broken_create)

        with pytest.raises(RegistrationFailed) as excinfo:
            _register(service)

        assert "disk" not in excinfo.value.message
        assert isinstance(excinfo.value.__cause__, StoreError)
        assert [type(e) for e in monitor.exceptions] == [StoreError]
        assert dispatcher.pending() == 0

    def test_dispatcher_fault_becomes_registration_failed(
        self, service: AuthService, dispatcher, monitor, monkeypatch
    ) -> None:
        def broken_enqueue(*args, **kwargs):
            raise RuntimeError("queue unavailable")

        monkeypatch.setattr(dispatcher, "enqueue", broken_enqueue)

        with pytest.raises(RegistrationFailed):
            _register(service)
        assert len(monitor.exceptions) == 1

    def test_password_over_72_bytes_rejected_before_any_write(
        self, service: AuthService, user_store, dispatcher, monitor
    ) -> None:
        with pytest.raises(PasswordTooLong) as excinfo:
            service.register("Ada", "ada@example.com", "\u00e9" * 40, ip=IP)
        assert excinfo.value.status_code == 422
        assert user_store.find_by_email("ada@example.com") is None
        assert dispatcher.pending() == 0
        assert monitor.exceptions == []

    def test_password_whitespace_is_significant(self, service: AuthService) -> None:
        service.register("Ada", "ada@example.com", "  padded secret  ", ip=IP)
        service.authenticate("ada@example.com", "  padded secret  ", ip=IP)
        with pytest.raises(InvalidCredentials):
            service.authenticate("ada@example.com", "padded secret", ip=IP)

    def test_register_is_rate_limited(self, service: AuthService) -> None:
        for i in range(5):
            _register(service, email=f"user{i}@example.com")
        with pytest.raises(RateLimitExceeded) as excinfo:
            _register(service, email="user5@example.com")
        assert excinfo.value.context == {"ip": IP, "action": "register"}


class TestAuthenticate:
    def test_valid_credentials_issue_token(self, service: AuthService, token_issuer) -> None:
        user = _register(service)
        token = service.authenticate("ada@example.com", PASSWORD, ip=IP)

        assert token.token_type == "Bearer"
        assert token.expires_in == 3600
        payload = token_issuer.decode(token.access_token)
        assert payload["sub"] == str(user.id)
        assert payload["email"] == "ada@example.com"

    def test_login_email_is_normalised(self, service: AuthService) -> None:
        _register(service)
        service.authenticate(" ADA@example.com", PASSWORD, ip=IP)

    def test_unknown_email_and_wrong_password_look_identical(self, service: AuthService) -> None:
        _register(service)
        with pytest.raises(InvalidCredentials) as unknown:
            service.authenticate("nobody@example.com", PASSWORD, ip=IP)
        with pytest.raises(InvalidCredentials) as wrong:
            service.authenticate("ada@example.com", "wrong password", ip=IP)
        assert unknown.value.message == wrong.value.message
        assert unknown.value.code == wrong.value.code

    def test_failures_feed_rate_history(self, service: AuthService, cache) -> None:
        _register(service)
        for _ in range(3):
            with pytest.raises(InvalidCredentials):
                service.authenticate("ada@example.com", "nope", ip="10.9.9.9")
        assert cache.get(history_key("10.9.9.9")) == 3
        # One window hit per attempt, from the login gate only.
        assert cache.get(attempt_key("login", "10.9.9.9")) == 3

    def test_sixth_login_attempt_is_rate_limited(self, service: AuthService) -> None:
        _register(service)
        for _ in range(5):
            service.authenticate("ada@example.com", PASSWORD, ip="1.2.3.4")
        with pytest.raises(RateLimitExceeded) as excinfo:
            service.authenticate("ada@example.com", PASSWORD, ip="1.2.3.4")
        assert 0 < excinfo.value.retry_after <= 60

    def test_unknown_email_is_not_negatively_cached(self, service: AuthService, cache) -> None:
        with pytest.raises(InvalidCredentials):
            service.authenticate("late@example.com", PASSWORD, ip=IP)
        assert cache.exists(email_cache_key("late@example.com")) is False

        _register(service, email="late@example.com")
        service.authenticate("late@example.com", PASSWORD, ip=IP)

    def test_credential_record_served_from_cache(self, service: AuthService, user_store, monkeypatch) -> None:
        _register(service)
        service.authenticate("ada@example.com", PASSWORD, ip=IP)

        def unexpected(email):
            raise AssertionError("store should not be queried on a cache hit")

        monkeypatch.setattr(user_store, "find_by_email", unexpected)
        service.authenticate("ada@example.com", PASSWORD, ip=IP)


class TestAuthenticateWithMfa:
    @pytest.fixture
    def secret(self, service: AuthService) -> str:
        user = _register(service)
        return service.enroll_mfa(user.id).secret

    def test_missing_code_requires_mfa(self, service: AuthService, secret: str) -> None:
        with pytest.raises(MfaCodeRequired):
            service.authenticate("ada@example.com", PASSWORD, ip=IP)

    def test_wrong_password_checked_before_mfa(self, service: AuthService, secret: str) -> None:
        with pytest.raises(InvalidCredentials):
            service.authenticate("ada@example.com", "wrong password", ip=IP)

    def test_invalid_code_rejected_and_recorded(self, service: AuthService, secret: str, cache, clock) -> None:
        current = pyotp.TOTP(secret).generate_otp(int(clock.now) // 30)
        wrong = "000000" if current != "000000" else "111111"
        with pytest.raises(InvalidMfaCode):
            service.authenticate("ada@example.com", PASSWORD, wrong, ip=IP)
        assert cache.get(history_key(IP)) == 1
        assert cache.get(attempt_key("login", IP)) == 1

    def test_valid_code_issues_token(self, service: AuthService, secret: str, clock) -> None:
        code = pyotp.TOTP(secret).generate_otp(int(clock.now) // 30)
        token = service.authenticate("ada@example.com", PASSWORD, code, ip=IP)
        assert token.access_token


class TestAccount:
    def test_current_user_returns_public_view(self, service: AuthService) -> None:
        user = _register(service)
        view = service.current_user(user.id)
        assert view["id"] == user.id
        assert view["name"] == "Ada Lovelace"
        assert view["mfa_enabled"] is False

    def test_current_user_loads_on_cache_miss(self, service: AuthService, cache) -> None:
        user = _register(service)
        cache.forget(user_cache_key(user.id))
        assert service.current_user(user.id)["email"] == "ada@example.com"
        assert cache.exists(user_cache_key(user.id)) is True

    def test_current_user_unknown_id(self, service: AuthService) -> None:
        assert service.current_user(999) is None

    def test_enroll_mfa_enables_and_evicts_cached_records(self, service: AuthService, cache, user_store) -> None:
        user = _register(service)
        service.authenticate("ada@example.com", PASSWORD, ip=IP)
        assert cache.exists(email_cache_key("ada@example.com")) is True

        enrollment = service.enroll_mfa(user.id)

        stored = user_store.find_by_id(user.id)
        assert stored.mfa_enabled is True
        assert stored.mfa_secret == enrollment.secret
        assert enrollment.provisioning_uri.startswith("otpauth://totp/")
        assert cache.exists(email_cache_key("ada@example.com")) is False
        assert cache.exists(user_cache_key(user.id)) is False
        assert cache.exists(challenge_key(user.id)) is False
        assert service.current_user(user.id)["mfa_enabled"] is True

    def test_enroll_mfa_unknown_user(self, service: AuthService) -> None:
        with pytest.raises(InvalidCredentials):
            service.enroll_mfa(12345)


def test_normalize_email() -> None:
    assert normalize_email("  Foo@Bar.COM\n") == "foo@bar.com"
