import pytest

from authcore.core.exceptions import (
    AppError,
    AuthorizationError,
    InvalidTokenError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
)
from authcore.models.audit import AuditEvent
from authcore.models.role import ADMIN, USER, Role
from authcore.models.security import RefreshToken
from authcore.schemas.account import AccountCreate, AccountUpdate
from authcore.services.audit_service import audit_service
from authcore.services.authorization import Principal, resolve_principal
from authcore.services.stores import account_store


@pytest.fixture
def alice(register_verified):
    return register_verified("alice@example.com", first_name="Alice")


@pytest.fixture
def bob(alice, register_verified):
    return register_verified("bob@example.com", first_name="Bob")


def _principal(account):
    return Principal(account_id=account.id, role=account.role_name)


def test_resolve_principal_uses_stored_role(service, db, alice, bob, clock):
    session = service.authenticate(db, "bob@example.com", "correct horse", None)
    principal = resolve_principal(db, session.access_token, now=clock())
    assert principal == Principal(account_id=bob.id, role=USER)
    assert not principal.is_admin

    service.update_account(db, _principal(alice), bob.id, AccountUpdate(role=ADMIN))

    promoted = resolve_principal(db, session.access_token, now=clock())
    assert promoted.is_admin


def test_resolve_principal_rejects_deleted_account(service, db, alice, bob, clock):
    session = service.authenticate(db, "bob@example.com", "correct horse", None)
    service.delete_account(db, _principal(bob), bob.id)

    with pytest.raises(InvalidTokenError):
        resolve_principal(db, session.access_token, now=clock())


def test_resolve_principal_rejects_bad_token(db):
    with pytest.raises(InvalidTokenError):
        resolve_principal(db, "not-a-token")


def test_get_account_self_or_admin(service, db, alice, bob):
    assert service.get_account(db, _principal(bob), bob.id).email == "bob@example.com"
    assert service.get_account(db, _principal(alice), bob.id).role == USER

    with pytest.raises(AuthorizationError):
        service.get_account(db, _principal(bob), alice.id)
    with pytest.raises(ResourceNotFoundError):
        service.get_account(db, _principal(alice), 9999)


def test_update_own_profile(service, db, alice, bob, clock):
    response = service.update_account(
        db, _principal(bob), bob.id, AccountUpdate(first_name="Robert", last_name="Tables")
    )
    assert response.first_name == "Robert"
    assert response.last_name == "Tables"
    assert response.updated_at == clock()
    assert response.role == USER


def test_non_admin_cannot_change_roles_or_others(service, db, alice, bob):
    with pytest.raises(AuthorizationError):
        service.update_account(db, _principal(bob), bob.id, AccountUpdate(role=ADMIN))
    with pytest.raises(AuthorizationError):
        service.update_account(db, _principal(bob), alice.id, AccountUpdate(first_name="Eve"))

    db.refresh(bob)
    assert bob.role_name == USER


def test_update_email_must_be_free(service, db, alice, bob):
    with pytest.raises(ResourceAlreadyExistsError):
        service.update_account(db, _principal(bob), bob.id, AccountUpdate(email="alice@example.com"))

    response = service.update_account(db, _principal(bob), bob.id, AccountUpdate(email="robert@example.com"))
    assert response.email == "robert@example.com"


def test_update_password_takes_effect(service, db, alice, bob):
    service.update_account(db, _principal(bob), bob.id, AccountUpdate(password="brand new"))
    service.authenticate(db, "bob@example.com", "brand new", None)


def test_create_account_is_admin_only(service, db, alice, bob):
    request = AccountCreate(email="carol@example.com", password="pw", first_name="Carol")
    with pytest.raises(AuthorizationError):
        service.create_account(db, _principal(bob), request)

    created = service.create_account(db, _principal(alice), request)
    assert created.role == USER
    assert created.is_verified

    session = service.authenticate(db, "carol@example.com", "pw", None)
    assert session.account.id == created.id

    with pytest.raises(ResourceAlreadyExistsError):
        service.create_account(db, _principal(alice), request)


def test_delete_account_self_or_admin(service, db, alice, bob):
    bob_id = bob.id
    service.authenticate(db, "bob@example.com", "correct horse", None)

    with pytest.raises(AuthorizationError):
        service.delete_account(db, _principal(bob), alice.id)

    deleted = service.delete_account(db, _principal(bob), bob_id)
    assert deleted.id == bob_id
    assert db.query(RefreshToken).count() == 0

    with pytest.raises(ResourceNotFoundError):
        service.delete_account(db, _principal(alice), bob_id)


def test_deleted_account_history_is_not_inherited(service, db, alice, bob, register_verified):
    bob_id = bob.id
    service.delete_account(db, _principal(bob), bob_id)

    carol = register_verified("carol@example.com")

    events = audit_service.events_for(db, carol.id)
    assert [e.action for e in events] == ["register", "verify_email"]
    orphaned = db.query(AuditEvent).filter(AuditEvent.account_id.is_(None)).all()
    assert {"register", "verify_email"} <= {e.action for e in orphaned}


def test_unknown_role_names_are_rejected(service, db, alice, bob):
    with pytest.raises(AppError):
        service.create_account(
            db, _principal(alice), AccountCreate(email="carol@example.com", password="pw", role="Superuser")
        )
    with pytest.raises(AppError):
        service.update_account(db, _principal(alice), bob.id, AccountUpdate(role="Superuser"))

    assert sorted(r.name for r in db.query(Role).all()) == [ADMIN, USER]
    db.refresh(bob)
    assert bob.role_name == USER


def test_email_taken_during_update_is_reported_as_conflict(service, db, alice, bob, monkeypatch):
    # Another caller claims the address between the check and the flush
    monkeypatch.setattr(account_store, "email_exists", lambda session, email: False)

    with pytest.raises(ResourceAlreadyExistsError):
        service.update_account(db, _principal(bob), bob.id, AccountUpdate(email="alice@example.com"))

    db.refresh(bob)
    assert bob.email == "bob@example.com"
