"""Unit tests for auth/store.py -- AuthStore persistence.

Covers:
- create_user() normalizes phone/email and rejects duplicates across spellings
- the UNIQUE constraint is mapped to Conflict even when the pre-check misses
- find_by_login_identifier() resolves phones and emails, active users only
- update_user() partial updates, phone change resets verification and drops
  pending phone codes, conflicts
- delete_user() removes sessions, codes and login attempts with the user
- list_users() search (wildcards literal), role filter, pagination and
  newest-first order
- session rotation is single-use
"""

from datetime import datetime, timedelta, timezone

import pytest
from conftest import make_user

from auth.errors import Conflict, NotFound
from auth.models import LoginAttempt, Role, Session, User, UserUpdate, VerificationCode, VerificationPurpose
from auth.store import to_iso


def _future(minutes: int = 10) -> str:
    return to_iso(datetime.now(timezone.utc) + timedelta(minutes=minutes))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def test_create_user_normalizes_contact_fields(store) -> None:
    uid = store.create_user(
        User(full_name="Anna", phone="+7 (912) 345-67-89", email="Anna@School.RU", password_hash="x")
    )
    user = store.get_by_id(uid)
    assert user.phone == "79123456789"
    assert user.email == "anna@school.ru"
    assert user.role == Role.STUDENT.value
    assert user.is_active is True
    assert user.is_verified is False
    assert user.created_at is not None


def test_phone_collision_across_spellings(store) -> None:
    make_user(store, phone="+7 (912) 345-67-89")
    with pytest.raises(Conflict):
        store.create_user(User(full_name="Other", phone="89123456789", password_hash="x"))


def test_email_collision_is_case_insensitive(store) -> None:
    make_user(store, phone=None, email="anna@school.ru")
    with pytest.raises(Conflict):
        store.create_user(User(full_name="Other", email="ANNA@school.ru", password_hash="x"))


def test_unique_constraint_maps_to_conflict(store, monkeypatch) -> None:
    make_user(store, phone="79123456789")
    monkeypatch.setattr(store, "find_conflict", lambda *args, **kwargs: None)
    with pytest.raises(Conflict):
        store.create_user(User(full_name="Racer", phone="79123456789", password_hash="x"))


def test_users_without_email_do_not_collide(store) -> None:
    make_user(store, phone="79000000001", email=None)
    make_user(store, phone="79000000002", email=None)
    users, total = store.list_users()
    assert total == 2


def test_find_by_login_identifier(store) -> None:
    user = make_user(store, phone="79123456789", email="anna@school.ru")
    assert store.find_by_login_identifier("8 (912) 345-67-89").id == user.id
    assert store.find_by_login_identifier("ANNA@school.ru").id == user.id
    assert store.find_by_login_identifier("nobody@school.ru") is None


def test_inactive_users_are_not_found_by_login(store) -> None:
    user = make_user(store, phone="79123456789", is_active=False)
    assert store.find_by_login_identifier("79123456789") is None
    assert store.get_by_phone("79123456789", active_only=False).id == user.id


def test_has_admin(store) -> None:
    assert store.has_admin() is False
    make_user(store, role=Role.ADMIN)
    assert store.has_admin() is True


def test_update_user_applies_only_given_fields(store) -> None:
    user = make_user(store, full_name="Anna", phone="79123456789", email="anna@school.ru", is_verified=True)
    updated = store.update_user(user.id, UserUpdate(full_name="Anna K."))
    assert updated.full_name == "Anna K."
    assert updated.phone == "79123456789"
    assert updated.email == "anna@school.ru"
    assert updated.is_verified is True


def test_phone_change_resets_verification(store) -> None:
    user = make_user(store, phone="79123456789", is_verified=True)
    updated = store.update_user(user.id, UserUpdate(phone="89000000000"))
    assert updated.phone == "79000000000"
    assert updated.is_verified is False


def test_phone_change_drops_pending_phone_codes(store) -> None:
    user = make_user(store, phone="79123456789")
    for purpose in (VerificationPurpose.PHONE_VERIFICATION, VerificationPurpose.PASSWORD_RESET):
        store.replace_verification_code(
            VerificationCode(user_id=user.id, code="123456", purpose=purpose.value, expires_at=_future())
        )

    store.update_user(user.id, UserUpdate(phone="79000000000"))

    assert store.list_verification_codes(user.id, VerificationPurpose.PHONE_VERIFICATION) == []
    assert len(store.list_verification_codes(user.id, VerificationPurpose.PASSWORD_RESET)) == 1
    assert store.redeem_code_and_verify_user(user.id, "123456") is False
    assert store.get_by_id(user.id).is_verified is False


def test_same_phone_keeps_pending_phone_codes(store) -> None:
    user = make_user(store, phone="79123456789")
    store.replace_verification_code(
        VerificationCode(
            user_id=user.id,
            code="123456",
            purpose=VerificationPurpose.PHONE_VERIFICATION.value,
            expires_at=_future(),
        )
    )
    store.update_user(user.id, UserUpdate(phone="+7 912 345-67-89", full_name="Anna"))
    assert len(store.list_verification_codes(user.id, VerificationPurpose.PHONE_VERIFICATION)) == 1


def test_update_user_can_clear_email(store) -> None:
    user = make_user(store, phone="79123456789", email="anna@school.ru")
    updated = store.update_user(user.id, UserUpdate(clear_email=True))
    assert updated.email is None


def test_update_user_conflict(store) -> None:
    make_user(store, phone="79000000001")
    other = make_user(store, phone="79000000002")
    with pytest.raises(Conflict):
        store.update_user(other.id, UserUpdate(phone="79000000001"))


def test_update_missing_user(store) -> None:
    with pytest.raises(NotFound):
        store.update_user(9999, UserUpdate(full_name="Ghost"))


def test_touch_last_login(store) -> None:
    user = make_user(store)
    assert user.last_login_at is None
    store.touch_last_login(user.id)
    assert store.get_by_id(user.id).last_login_at is not None


def test_delete_user_cascades(store) -> None:
    user = make_user(store)
    keep = make_user(store, phone="79000000009")
    store.create_session(Session(user_id=user.id, refresh_token="r1", expires_at=_future()))
    store.replace_verification_code(
        VerificationCode(
            user_id=user.id,
            code="123456",
            purpose=VerificationPurpose.PHONE_VERIFICATION.value,
            expires_at=_future(),
        )
    )
    store.record_login_attempt(LoginAttempt(success=True, user_id=user.id, ip_address="10.0.0.1"))
    store.record_login_attempt(LoginAttempt(success=True, user_id=keep.id, ip_address="10.0.0.2"))

    assert store.delete_user(user.id) is True

    assert store.get_by_id(user.id) is None
    assert store.list_sessions(user.id) == []
    assert store.list_verification_codes(user.id) == []
    assert store.list_login_attempts(user.id) == []
    assert len(store.list_login_attempts(keep.id)) == 1
    assert store.delete_user(user.id) is False


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


@pytest.fixture
def populated(store):
    make_user(store, full_name="Anna Petrova", phone="79000000001", email="anna@school.ru")
    make_user(store, full_name="Boris Ivanov", phone="79000000002", role=Role.PARENT)
    make_user(store, full_name="Vera Smirnova", phone="79000000003", role=Role.TEACHER)
    return store


def test_list_users_newest_first(populated) -> None:
    users, total = populated.list_users()
    assert total == 3
    assert [u.full_name for u in users] == ["Vera Smirnova", "Boris Ivanov", "Anna Petrova"]


def test_list_users_search_by_name_email_and_phone(populated) -> None:
    assert [u.full_name for u in populated.list_users(search="ivan")[0]] == ["Boris Ivanov"]
    assert [u.full_name for u in populated.list_users(search="anna@")[0]] == ["Anna Petrova"]
    assert [u.full_name for u in populated.list_users(search="000003")[0]] == ["Vera Smirnova"]


def test_list_users_search_treats_wildcards_literally(populated) -> None:
    assert populated.list_users(search="%") == ([], 0)
    assert populated.list_users(search="_") == ([], 0)
    make_user(populated, full_name="100% Parent", phone="79000000004")
    assert [u.full_name for u in populated.list_users(search="100%")[0]] == ["100% Parent"]


def test_list_users_role_filter(populated) -> None:
    users, total = populated.list_users(role=Role.PARENT.value)
    assert total == 1
    assert users[0].role == Role.PARENT.value


def test_list_users_pagination(populated) -> None:
    page1, total = populated.list_users(page=1, limit=2)
    page2, _ = populated.list_users(page=2, limit=2)
    assert total == 3
    assert len(page1) == 2
    assert len(page2) == 1
    assert {u.id for u in page1}.isdisjoint({u.id for u in page2})


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def test_expired_session_is_not_active(store) -> None:
    user = make_user(store)
    past = to_iso(datetime.now(timezone.utc) - timedelta(minutes=1))
    store.create_session(Session(user_id=user.id, refresh_token="old", expires_at=past))
    assert store.get_active_session("old") is None


def test_rotate_session_is_single_use(store) -> None:
    user = make_user(store)
    store.create_session(Session(user_id=user.id, refresh_token="first", expires_at=_future()))
    assert store.rotate_session("first", Session(user_id=user.id, refresh_token="second", expires_at=_future()))
    assert not store.rotate_session("first", Session(user_id=user.id, refresh_token="third", expires_at=_future()))
    assert [s.refresh_token for s in store.list_sessions(user.id)] == ["second"]


def test_delete_session(store) -> None:
    user = make_user(store)
    store.create_session(Session(user_id=user.id, refresh_token="tok", expires_at=_future()))
    assert store.delete_session("tok") is True
    assert store.delete_session("tok") is False


# ---------------------------------------------------------------------------
# Login attempts
# ---------------------------------------------------------------------------


def test_anonymous_login_attempts(store) -> None:
    store.record_login_attempt(LoginAttempt(success=False, ip_address="10.0.0.1", user_agent="pytest"))
    attempts = store.list_login_attempts(None)
    assert len(attempts) == 1
    assert attempts[0].user_id is None
    assert attempts[0].success is False
    assert attempts[0].user_agent == "pytest"
