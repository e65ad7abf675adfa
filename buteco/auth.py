import logging
from enum import Enum
from typing import Iterable

from werkzeug.security import check_password_hash, generate_password_hash

from buteco.config import MIN_PASSWORD_LENGTH
from buteco.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from buteco.models import USERS, Role, User
from buteco.store.base import EntityStore

logger = logging.getLogger(__name__)


class Action(Enum):
    """privileged actions; the roles allowed for each live in POLICY"""
    MANAGE_USERS = "users.manage"
    MANAGE_MENU = "menu.manage"
    DELETE_TABLE = "tables.delete"
    SETTLE_TABLE = "tables.settle"
    REPAIR_TOTALS = "tables.recompute"
    PREPARE_ITEMS = "items.prepare"
    VIEW_REPORTS = "reports.view"


POLICY: dict[Action, frozenset[Role]] = {
    Action.MANAGE_USERS: frozenset({Role.ADMIN}),
    Action.MANAGE_MENU: frozenset({Role.ADMIN}),
    Action.DELETE_TABLE: frozenset({Role.ADMIN, Role.CASHIER}),
    Action.SETTLE_TABLE: frozenset({Role.ADMIN, Role.CASHIER}),
    Action.REPAIR_TOTALS: frozenset({Role.ADMIN, Role.CASHIER}),
    Action.PREPARE_ITEMS: frozenset({Role.ADMIN, Role.KITCHEN}),
    Action.VIEW_REPORTS: frozenset({Role.ADMIN, Role.CASHIER}),
}


def _roles(required: Role | Iterable[Role]) -> set[Role]:
    if isinstance(required, Role):
        return {required}
    return set(required)


def _parse_role(role: Role | str) -> Role:
    if isinstance(role, Role):
        return role
    try:
        return Role(role.strip().lower())
    except ValueError:
        raise ValidationError(f"unknown role {role!r}") from None


class AuthGate:
    """credentials, session identity, role policy and user management"""

    def __init__(self, store: EntityStore):
        self.store = store
        self.current_user_id: str | None = None

    # session
    @property
    def current_user(self) -> User | None:
        """re-read from the store so deactivation applies immediately"""
        if self.current_user_id is None:
            return None
        try:
            return User.from_record(self.store.get(USERS, self.current_user_id))
        except NotFoundError:
            return None

    def is_logged_in(self) -> bool:
        return self.current_user is not None

    def _find_by_name(self, name: str) -> User | None:
        rows = self.store.list(USERS, {"name": name})
        return User.from_record(rows[0]) if rows else None

    def authenticate(self, name: str, password: str) -> User | None:
        """return the active user matching these credentials, else None"""
        user = self._find_by_name(name.strip())
        if user is None or not user.is_active:
            return None
        if not check_password_hash(user.password_hash, password):
            return None
        return user

    def login(self, name: str, password: str) -> User:
        user = self.authenticate(name, password)
        if user is None:
            raise AuthorizationError("invalid name or password")
        self.current_user_id = user.id
        logger.info("user %s logged in as %s", user.name, user.role.value)
        return user

    def logout(self):
        self.current_user_id = None

    def current_role(self) -> Role:
        user = self.current_user
        if user is None:
            raise AuthorizationError("please login first")
        return user.role

    # role checks
    def has_permission(self, required: Role | Iterable[Role]) -> bool:
        user = self.current_user
        if user is None or not user.is_active:
            return False
        return user.role in _roles(required)

    def require_role(self, required: Role | Iterable[Role]) -> User:
        """guard: raise AuthorizationError unless the session user has one of the roles"""
        if self.current_user is None:
            raise AuthorizationError("please login first")
        if not self.has_permission(required):
            raise AuthorizationError("insufficient permission")
        return self.current_user

    def can(self, action: Action) -> bool:
        return self.has_permission(POLICY[action])

    def authorize(self, action: Action) -> User:
        """the single policy check every privileged operation goes through"""
        return self.require_role(POLICY[action])

    # users
    def has_users(self) -> bool:
        return self.store.count(USERS) > 0

    def _validate_credentials(self, name: str, password: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
        return name

    def _insert_user(self, name: str, password: str, role: Role) -> User:
        if self._find_by_name(name):
            raise ValidationError(f"name {name!r} already taken")
        uid = self.store.create(USERS, {
            "name": name,
            "role": role,
            "password_hash": generate_password_hash(password),
            "is_active": True,
        })
        return User.from_record(self.store.get(USERS, uid))

    def bootstrap_first_admin(self, name: str, password: str) -> User:
        """one-time setup: create the first admin; refuses once any user exists"""
        if self.has_users():
            raise ConflictError("system already has registered users")
        name = self._validate_credentials(name, password)
        user = self._insert_user(name, password, Role.ADMIN)
        logger.info("first admin %s created", user.name)
        return user

    def list_users(self) -> list[User]:
        self.authorize(Action.MANAGE_USERS)
        return [User.from_record(r) for r in self.store.list(USERS)]

    def get_user(self, user_id: str) -> User:
        return User.from_record(self.store.get(USERS, user_id))

    def create_user(self, name: str, password: str, role: Role | str) -> User:
        self.authorize(Action.MANAGE_USERS)
        name = self._validate_credentials(name, password)
        user = self._insert_user(name, password, _parse_role(role))
        logger.info("user %s (%s) created", user.name, user.role.value)
        return user

    def update_user(self, user_id: str, *, name: str | None = None, role: Role | str | None = None,
                    password: str | None = None, is_active: bool | None = None) -> User:
        actor = self.authorize(Action.MANAGE_USERS)
        target = self.get_user(user_id)
        if target.id == actor.id and is_active is False:
            raise AuthorizationError("you cannot deactivate your own account")
        changes = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("name is required")
            other = self._find_by_name(name)
            if other and other.id != target.id:
                raise ValidationError(f"name {name!r} already taken")
            changes["name"] = name
        if role is not None:
            changes["role"] = _parse_role(role)
        if password is not None:
            self._validate_credentials(target.name, password)
            changes["password_hash"] = generate_password_hash(password)
        if is_active is not None:
            changes["is_active"] = bool(is_active)
        if changes:
            self.store.update(USERS, target.id, changes)
            logger.info("user %s updated (%s)", target.name, ", ".join(sorted(changes)))
        return self.get_user(target.id)

    def delete_user(self, user_id: str):
        actor = self.authorize(Action.MANAGE_USERS)
        target = self.get_user(user_id)
        if target.id == actor.id:
            raise AuthorizationError("you cannot delete your own account")
        self.store.delete(USERS, target.id)
        logger.info("user %s deleted", target.name)
