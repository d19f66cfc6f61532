import pytest

from patchd.config import settings
from patchd.errors import ConflictError, UnauthorizedError, ValidationError


@pytest.mark.asyncio
async def test_sign_in_holds_session(alice):
    user = await alice.users.get_current_user()
    assert user.username == "alice"
    assert user.email == "alice@example.com"
    assert alice.gateway.auth.current_user_id() == user.id


@pytest.mark.asyncio
async def test_sign_up_duplicate_username(alice, make_client):
    client = make_client()
    with pytest.raises(ConflictError):
        await client.users.sign_up("other@example.com", "correct-horse", "alice")


@pytest.mark.asyncio
async def test_sign_up_rejects_short_username(make_client):
    client = make_client()
    with pytest.raises(ValidationError) as exc_info:
        await client.users.sign_up("x@example.com", "correct-horse", "ab")
    assert "username" in exc_info.value.message


@pytest.mark.asyncio
async def test_sign_in_wrong_password(alice, make_client):
    client = make_client()
    with pytest.raises(UnauthorizedError):
        await client.users.sign_in("alice@example.com", "wrong-password")
    assert client.gateway.auth.session is None


@pytest.mark.asyncio
async def test_not_signed_in(make_client):
    client = make_client()
    with pytest.raises(UnauthorizedError):
        client.gateway.auth.current_user_id()


@pytest.mark.asyncio
async def test_sign_out_clears_caches(alice, bob):
    bob_user = await bob.users.get_current_user()
    await alice.users.fetch_user(bob_user.id)
    await alice.sessions.fetch_memberships(alice.gateway.auth.current_user_id())
    assert len(alice.caches.users) > 0
    assert len(alice.caches.memberships) > 0

    await alice.users.sign_out()

    assert len(alice.caches.users) == 0
    assert len(alice.caches.memberships) == 0
    with pytest.raises(UnauthorizedError):
        alice.gateway.auth.current_user_id()


@pytest.mark.asyncio
async def test_sign_out_revokes_refresh_token(alice):
    session = alice.gateway.auth.session
    await alice.users.sign_out()

    alice.gateway.auth.session = session
    with pytest.raises(UnauthorizedError):
        await alice.gateway.auth.refresh_session()


@pytest.mark.asyncio
async def test_access_token_expires_with_clock(alice, clock):
    clock.advance(settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60)
    with pytest.raises(UnauthorizedError):
        alice.gateway.auth.current_user_id()

    refreshed = await alice.gateway.auth.refresh_session()
    assert alice.gateway.auth.current_user_id() == refreshed.user_id


@pytest.mark.asyncio
async def test_refresh_rotates_tokens(alice):
    old = alice.gateway.auth.session
    new = await alice.gateway.auth.refresh_session()
    assert new.refresh_token != old.refresh_token

    # The rotated-out refresh token cannot be used again
    alice.gateway.auth.session = old
    with pytest.raises(UnauthorizedError):
        await alice.gateway.auth.refresh_session()
