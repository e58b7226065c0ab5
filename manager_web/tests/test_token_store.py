"""Tests for token_store: expiry arithmetic, the persisted blob format, corrupt blob handling."""
import json

import pytest

from manager_web.token_store import ExternalAccount, ExternalTokenSet, TokenStore

NOW = 1_700_000_000_000
USER = ExternalAccount(email="mario@gmail.com", name="Mario Rossi", picture="https://example.com/p.png")


def make_tokens(expires_in_seconds=3600, refresh_token="rt-1"):
    return ExternalTokenSet(
        access_token="at-1",
        refresh_token=refresh_token,
        expires_at=NOW + expires_in_seconds * 1000,
        user=USER,
    )


def test_expires_at_from_token_response():
    """expiresAt = capture time + expires_in * 1000."""
    t = ExternalTokenSet.from_token_response(
        {"access_token": "at", "refresh_token": "rt", "expires_in": 3600}, USER, NOW
    )
    assert t.expires_at == NOW + 3_600_000
    assert t.refresh_token == "rt"


def test_usable_outside_margin():
    """Token with 10 minutes left: usable under a 5-minute margin."""
    assert make_tokens(600).usable(NOW, 300) is True


def test_not_usable_inside_margin():
    """Token with 4 minutes left: inside the 5-minute margin, refresh needed."""
    assert make_tokens(240).usable(NOW, 300) is False


def test_not_usable_at_exact_margin():
    assert make_tokens(300).usable(NOW, 300) is False


def test_expired():
    t = make_tokens(60)
    assert t.expired(NOW) is False
    assert t.expired(NOW + 60_000) is True


def test_refreshed_keeps_refresh_token():
    """Refresh responses usually omit refresh_token; the old one must survive."""
    t = make_tokens(60).refreshed({"access_token": "at-2", "expires_in": 3599}, NOW)
    assert t.access_token == "at-2"
    assert t.refresh_token == "rt-1"
    assert t.expires_at == NOW + 3_599_000
    assert t.user == USER


def test_blob_uses_persisted_field_names():
    data = json.loads(make_tokens().to_blob())
    assert data == {
        "accessToken": "at-1",
        "refreshToken": "rt-1",
        "expiresAt": NOW + 3_600_000,
        "user": {"email": "mario@gmail.com", "name": "Mario Rossi", "picture": "https://example.com/p.png"},
    }


def test_blob_round_trip():
    t = make_tokens()
    assert ExternalTokenSet.from_blob(t.to_blob()) == t


def test_blob_without_refresh_token():
    t = make_tokens(refresh_token=None)
    assert ExternalTokenSet.from_blob(t.to_blob()).refresh_token is None


@pytest.mark.parametrize(
    "blob",
    [
        "not json",
        "[1, 2]",
        json.dumps({"refreshToken": "rt", "expiresAt": NOW}),
        json.dumps({"accessToken": "at", "expiresAt": "tomorrow"}),
        json.dumps({"accessToken": "at", "expiresAt": True}),
    ],
)
def test_from_blob_rejects_unusable_records(blob):
    with pytest.raises(ValueError):
        ExternalTokenSet.from_blob(blob)


def test_store_save_and_load(storage):
    store = TokenStore(storage, "google_auth")
    store.save(make_tokens())
    assert store.load() == make_tokens()
    assert storage.get_item("google_auth") is not None


def test_store_corrupt_blob_is_deleted(storage):
    storage.set_item("google_auth", "{broken")
    store = TokenStore(storage, "google_auth")
    assert store.load() is None
    assert storage.get_item("google_auth") is None


def test_store_clear(storage):
    store = TokenStore(storage, "google_auth")
    store.save(make_tokens())
    store.clear()
    assert store.load() is None
