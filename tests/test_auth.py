import pytest

from buteco.auth import Action, AuthGate
from buteco.errors import AuthorizationError, ConflictError, ValidationError
from buteco.models import USERS, Role

from tests.conftest import PASSWORD


def test_bootstrap_creates_active_admin_with_hashed_password(auth, store):
    user = auth.bootstrap_first_admin("  dono ", PASSWORD)
    assert user.name == "dono"
    assert user.role is Role.ADMIN
    assert user.is_active
    assert user.password_hash != PASSWORD
    assert auth.authenticate("dono", PASSWORD).id == user.id


def test_bootstrap_refuses_when_users_exist(auth, store, admin):
    with pytest.raises(ConflictError):
        auth.bootstrap_first_admin("second", PASSWORD)
    assert store.count(USERS) == 1


def test_bootstrap_validates_input(auth, store):
    with pytest.raises(ValidationError):
        auth.bootstrap_first_admin("   ", PASSWORD)
    with pytest.raises(ValidationError):
        auth.bootstrap_first_admin("dono", "123")
    assert not auth.has_users()


def test_hashes_are_salted_per_user(auth, admin):
    other = auth.create_user("bia", PASSWORD, Role.CASHIER)
    assert other.password_hash != admin.password_hash


def test_authenticate_rejects_wrong_password_and_unknown_user(auth, admin):
    assert auth.authenticate("admin", "wrong-password") is None
    assert auth.authenticate("nobody", PASSWORD) is None


def test_login_failure_is_an_authorization_error(auth, admin):
    auth.logout()
    with pytest.raises(AuthorizationError):
        auth.login("admin", "nope-nope")
    assert not auth.is_logged_in()


def test_current_role_requires_login(auth):
    with pytest.raises(AuthorizationError):
        auth.current_role()


def test_require_role_accepts_single_role_or_list(auth, admin):
    assert auth.require_role(Role.ADMIN).id == admin.id
    assert auth.require_role([Role.CASHIER, Role.ADMIN]).id == admin.id
    with pytest.raises(AuthorizationError):
        auth.require_role(Role.KITCHEN)


def test_policy_drives_authorize(auth, login_as):
    login_as(Role.CASHIER)
    auth.authorize(Action.DELETE_TABLE)
    assert not auth.can(Action.MANAGE_USERS)
    login_as(Role.WAITER)
    with pytest.raises(AuthorizationError):
        auth.authorize(Action.DELETE_TABLE)
    login_as(Role.KITCHEN)
    auth.authorize(Action.PREPARE_ITEMS)


def test_only_admin_manages_users(auth, login_as):
    login_as(Role.CASHIER)
    with pytest.raises(AuthorizationError):
        auth.create_user("joao", PASSWORD, "waiter")
    with pytest.raises(AuthorizationError):
        auth.list_users()


def test_create_user_validation(auth, admin):
    auth.create_user("joao", PASSWORD, "waiter")
    with pytest.raises(ValidationError):
        auth.create_user("joao", PASSWORD, "waiter")
    with pytest.raises(ValidationError):
        auth.create_user("maria", PASSWORD, "chef")
    with pytest.raises(ValidationError):
        auth.create_user("maria", "short", "kitchen")
    assert [u.name for u in auth.list_users()] == ["admin", "joao"]


def test_admin_cannot_deactivate_or_delete_self(auth, admin):
    with pytest.raises(AuthorizationError):
        auth.update_user(admin.id, is_active=False)
    with pytest.raises(AuthorizationError):
        auth.delete_user(admin.id)
    assert auth.get_user(admin.id).is_active


def test_deactivated_user_cannot_authenticate(auth, admin):
    joao = auth.create_user("joao", PASSWORD, Role.WAITER)
    auth.update_user(joao.id, is_active=False)
    assert auth.authenticate("joao", PASSWORD) is None
    auth.update_user(joao.id, is_active=True, password="another-secret")
    assert auth.authenticate("joao", "another-secret") is not None


def test_deactivation_applies_to_a_live_session(store, admin, auth):
    joao = auth.create_user("joao", PASSWORD, Role.CASHIER)
    waiter_session = AuthGate(store)
    waiter_session.login("joao", PASSWORD)
    auth.update_user(joao.id, is_active=False)
    assert not waiter_session.has_permission(Role.CASHIER)


def test_rename_and_role_change(auth, admin):
    joao = auth.create_user("joao", PASSWORD, Role.WAITER)
    auth.create_user("maria", PASSWORD, Role.WAITER)
    updated = auth.update_user(joao.id, name="joão", role="cashier")
    assert updated.name == "joão"
    assert updated.role is Role.CASHIER
    with pytest.raises(ValidationError):
        auth.update_user(joao.id, name="maria")


def test_admin_deletes_other_user(auth, store, admin):
    joao = auth.create_user("joao", PASSWORD, Role.WAITER)
    auth.delete_user(joao.id)
    assert store.count(USERS) == 1
