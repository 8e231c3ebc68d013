"""Unit tests for AuthService.

Tests for:
- Registration and duplicate handling
- Login and the generic credential failure
- Refresh rotation (single live refresh token per user)
- Logout revocation and partial failure reporting
- Access token validation and bearer authentication
"""

import pytest

from userhub.service.auth import AuthenticatedUser, AuthService, INVALID_CREDENTIALS
from userhub.service.errors import (
    ConflictError,
    RevocationError,
    ServerError,
    UnauthorizedError,
)
from userhub.service.tokens import TokenCodec, TokenKind
from userhub.storage.memory import MemoryCache, MemoryStore
from userhub.storage.redis_cache import blacklist_key, refresh_key

ACCESS_TTL = 15 * 60
REFRESH_TTL = 7 * 24 * 60 * 60


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def codec(secret, clock):
    return TokenCodec(
        secret,
        access_ttl_seconds=ACCESS_TTL,
        refresh_ttl_seconds=REFRESH_TTL,
        clock=clock,
    )


@pytest.fixture
def auth(store, cache, codec, passwords):
    return AuthService(store, cache, codec, passwords)


async def _register_and_login(auth, email="a@x.com", password="pw123456", name="A"):
    await auth.register(name, email, password)
    return await auth.login(email, password)


class TestRegister:
    async def test_register_returns_identity_without_hash(self, auth, store):
        identity = await auth.register("A", "a@x.com", "pw123456")
        assert identity == AuthenticatedUser(id=identity.id, email="a@x.com", name="A")
        stored = store.get_user(identity.id)
        assert stored.password_hash != "pw123456"
        assert not hasattr(identity, "password_hash")

    async def test_duplicate_email_conflicts_and_keeps_record(self, auth, store):
        first = await auth.register("A", "a@x.com", "pw123456")
        before = store.get_user(first.id)

        with pytest.raises(ConflictError):
            await auth.register("Other", "a@x.com", "different-pw")

        after = store.get_user(first.id)
        assert after.name == before.name
        assert after.password_hash == before.password_hash
        assert len(store.list_users()) == 1

    async def test_insert_race_maps_to_conflict(self, auth, store):
        await auth.register("A", "a@x.com", "pw123456")
        # Pretend the existence check ran before the competing insert landed
        store.email_exists = lambda email: False
        with pytest.raises(ConflictError):
            await auth.register("B", "a@x.com", "pw123456")

    async def test_register_and_login_stores_refresh_slot(self, auth, cache):
        identity, tokens = await auth.register_and_login("A", "a@x.com", "pw123456")
        assert await cache.get_refresh_token(identity.id) == tokens.refresh_token
        assert await auth.validate_access_token(tokens.access_token) == identity


class TestLogin:
    async def test_login_returns_two_distinct_verifiable_tokens(self, auth, codec):
        tokens = await _register_and_login(auth)
        assert tokens.access_token and tokens.refresh_token
        assert tokens.access_token != tokens.refresh_token
        access = codec.verify(tokens.access_token, TokenKind.ACCESS)
        refresh = codec.verify(tokens.refresh_token, TokenKind.REFRESH)
        assert access.user_id == refresh.user_id
        assert access.email == "a@x.com"

    async def test_login_overwrites_refresh_slot(self, auth, cache, store):
        first = await _register_and_login(auth)
        second = await auth.login("a@x.com", "pw123456")
        user = store.get_user_by_email("a@x.com")
        assert await cache.get_refresh_token(user.id) == second.refresh_token
        assert second.refresh_token != first.refresh_token

    async def test_unknown_email_and_wrong_password_look_the_same(self, auth):
        await auth.register("A", "a@x.com", "pw123456")

        with pytest.raises(UnauthorizedError) as missing:
            await auth.login("missing@x.com", "anything")
        with pytest.raises(UnauthorizedError) as wrong:
            await auth.login("a@x.com", "wrong-password")

        assert missing.value.message == wrong.value.message == INVALID_CREDENTIALS
        assert missing.value.error_code == wrong.value.error_code == "UNAUTHORIZED"

    async def test_unknown_email_still_runs_a_hash_verification(self, auth, passwords, monkeypatch):
        calls = []
        real_verify = passwords.verify

        def counting_verify(plaintext, digest):
            calls.append(digest)
            return real_verify(plaintext, digest)

        monkeypatch.setattr(passwords, "verify", counting_verify)
        with pytest.raises(UnauthorizedError):
            await auth.login("missing@x.com", "anything")
        assert len(calls) == 1
        assert calls[0].startswith("$argon2id$")

    async def test_login_fails_when_cache_is_down(self, store, codec, passwords, clock, failing_cache):
        auth = AuthService(store, failing_cache("store_refresh_token"), codec, passwords)
        await auth.register("A", "a@x.com", "pw123456")
        with pytest.raises(ServerError):
            await auth.login("a@x.com", "pw123456")


class TestRefresh:
    async def test_refresh_rotates_and_rejects_replay(self, auth):
        tokens = await _register_and_login(auth)

        rotated = await auth.refresh(tokens.refresh_token)
        assert rotated.refresh_token != tokens.refresh_token
        assert await auth.validate_access_token(rotated.access_token) is not None

        with pytest.raises(UnauthorizedError):
            await auth.refresh(tokens.refresh_token)

        # The rotated token is still the live one
        again = await auth.refresh(rotated.refresh_token)
        assert again.refresh_token != rotated.refresh_token

    async def test_access_token_cannot_refresh(self, auth):
        tokens = await _register_and_login(auth)
        with pytest.raises(UnauthorizedError):
            await auth.refresh(tokens.access_token)

    async def test_refresh_without_stored_slot_fails(self, auth, cache, store):
        tokens = await _register_and_login(auth)
        user = store.get_user_by_email("a@x.com")
        await cache.remove_refresh_token(user.id)
        with pytest.raises(UnauthorizedError):
            await auth.refresh(tokens.refresh_token)

    async def test_refresh_for_deleted_user_fails(self, auth, store):
        tokens = await _register_and_login(auth)
        user = store.get_user_by_email("a@x.com")
        store.delete_user(user.id)
        with pytest.raises(UnauthorizedError):
            await auth.refresh(tokens.refresh_token)

    async def test_expired_refresh_token_fails(self, auth, clock):
        tokens = await _register_and_login(auth)
        clock.advance(REFRESH_TTL)
        with pytest.raises(UnauthorizedError):
            await auth.refresh(tokens.refresh_token)

    async def test_garbage_refresh_token_fails(self, auth):
        with pytest.raises(UnauthorizedError):
            await auth.refresh("not-a-token")


class TestLogout:
    async def test_logout_revokes_unexpired_access_token(self, auth, codec):
        tokens = await _register_and_login(auth)
        identity = await auth.validate_access_token(tokens.access_token)
        assert identity is not None

        await auth.logout(identity.id, tokens.access_token)

        # Still cryptographically valid, but revoked
        assert codec.verify(tokens.access_token, TokenKind.ACCESS).user_id == identity.id
        assert await auth.validate_access_token(tokens.access_token) is None

    async def test_logout_also_invalidates_refresh_token(self, auth, cache):
        tokens = await _register_and_login(auth)
        identity = await auth.validate_access_token(tokens.access_token)

        await auth.logout(identity.id, tokens.access_token)

        assert await cache.get_refresh_token(identity.id) is None
        with pytest.raises(UnauthorizedError):
            await auth.refresh(tokens.refresh_token)

    async def test_blacklist_entry_bounded_by_remaining_lifetime(self, auth, cache, clock):
        tokens = await _register_and_login(auth)
        identity = await auth.validate_access_token(tokens.access_token)
        clock.advance(600)

        await auth.logout(identity.id, tokens.access_token)

        remaining = cache.ttl(blacklist_key(tokens.access_token))
        assert remaining == pytest.approx(ACCESS_TTL - 600)
        clock.advance(ACCESS_TTL - 600)
        assert not await cache.is_blacklisted(tokens.access_token)

    async def test_logout_with_expired_token_writes_no_blacklist_entry(self, auth, cache, clock):
        tokens = await _register_and_login(auth)
        identity = await auth.validate_access_token(tokens.access_token)
        clock.advance(ACCESS_TTL + 1)

        await auth.logout(identity.id, tokens.access_token)

        assert cache.ttl(blacklist_key(tokens.access_token)) is None
        assert cache.ttl(refresh_key(identity.id)) is None

    async def test_partial_failure_still_blacklists(self, store, codec, passwords, clock, failing_cache):
        cache = failing_cache("remove_refresh_token")
        auth = AuthService(store, cache, codec, passwords)
        tokens = await _register_and_login(auth)
        identity = await auth.validate_access_token(tokens.access_token)

        with pytest.raises(RevocationError) as excinfo:
            await auth.logout(identity.id, tokens.access_token)

        assert excinfo.value.detail["failed_steps"] == ["remove_refresh_token"]
        assert excinfo.value.status_code == 500
        assert await cache.is_blacklisted(tokens.access_token)

    async def test_both_steps_failing_are_reported(self, store, codec, passwords, clock, failing_cache):
        cache = failing_cache("remove_refresh_token", "blacklist_token")
        auth = AuthService(store, cache, codec, passwords)
        tokens = await _register_and_login(auth)
        identity = await auth.validate_access_token(tokens.access_token)

        with pytest.raises(RevocationError) as excinfo:
            await auth.logout(identity.id, tokens.access_token)

        assert excinfo.value.detail["failed_steps"] == [
            "remove_refresh_token",
            "blacklist_token",
        ]


class TestValidateAccessToken:
    async def test_valid_token_resolves_user(self, auth, store):
        tokens = await _register_and_login(auth)
        identity = await auth.validate_access_token(tokens.access_token)
        user = store.get_user_by_email("a@x.com")
        assert identity == AuthenticatedUser(id=user.id, email="a@x.com", name="A")

    async def test_token_from_refresh_is_valid(self, auth):
        tokens = await _register_and_login(auth)
        rotated = await auth.refresh(tokens.refresh_token)
        assert await auth.validate_access_token(rotated.access_token) is not None

    async def test_refresh_token_is_not_an_access_token(self, auth):
        tokens = await _register_and_login(auth)
        assert await auth.validate_access_token(tokens.refresh_token) is None

    async def test_expired_token_is_rejected(self, auth, clock):
        tokens = await _register_and_login(auth)
        clock.advance(ACCESS_TTL)
        assert await auth.validate_access_token(tokens.access_token) is None

    async def test_deleted_user_is_rejected(self, auth, store):
        tokens = await _register_and_login(auth)
        store.delete_user(store.get_user_by_email("a@x.com").id)
        assert await auth.validate_access_token(tokens.access_token) is None

    async def test_empty_and_garbage_tokens(self, auth):
        assert await auth.validate_access_token(None) is None
        assert await auth.validate_access_token("") is None
        assert await auth.validate_access_token("garbage") is None

    async def test_cache_failure_means_unauthenticated(self, store, codec, passwords, clock, failing_cache):
        cache = failing_cache("is_blacklisted")
        auth = AuthService(store, cache, codec, passwords)
        tokens = await _register_and_login(auth)
        assert await auth.validate_access_token(tokens.access_token) is None


class TestAuthenticate:
    async def test_bearer_header(self, auth):
        tokens = await _register_and_login(auth)
        identity = await auth.authenticate(f"Bearer {tokens.access_token}")
        assert identity is not None and identity.email == "a@x.com"

    async def test_missing_or_malformed_header(self, auth):
        tokens = await _register_and_login(auth)
        assert await auth.authenticate(None) is None
        assert await auth.authenticate(tokens.access_token) is None
        assert await auth.authenticate(f"Token {tokens.access_token}") is None


class TestScenario:
    async def test_register_login_logout(self, auth):
        """Register, log in, log out; the access token stops working and so does refresh."""
        identity = await auth.register("A", "a@x.com", "pw123456")
        tokens = await auth.login("a@x.com", "pw123456")
        assert tokens.access_token and tokens.refresh_token
        assert tokens.access_token != tokens.refresh_token

        await auth.logout(identity.id, tokens.access_token)

        assert await auth.validate_access_token(tokens.access_token) is None
        with pytest.raises(UnauthorizedError):
            await auth.refresh(tokens.refresh_token)
