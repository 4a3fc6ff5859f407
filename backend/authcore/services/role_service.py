"""Role resolution for new accounts"""

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from authcore.core.exceptions import AppError
from authcore.models.role import Role, ADMIN, USER
from authcore.services.stores import account_store, role_store

logger = logging.getLogger(__name__)

ASSIGNABLE_ROLES = (ADMIN, USER)

_INSERT_IGNORE = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


class RoleService:
    """Lookup-or-create for name-keyed roles"""

    @staticmethod
    def ensure_role(db: Session, name: str, for_update: bool = False) -> Role:
        """
        Return the role with this name, creating it if absent

        Creation is an insert that ignores a unique-name conflict, so
        concurrent callers never produce duplicate rows and never fail
        because another caller won the race.

        Args:
            db: Database session
            name: Role name
            for_update: Lock the role row until the surrounding commit

        Returns:
            The role
        """
        insert = _INSERT_IGNORE.get(db.get_bind().dialect.name)
        if insert is not None:
            db.execute(
                insert(Role)
                .values(name=name)
                .on_conflict_do_nothing(index_elements=["name"])
            )
        elif role_store.find_by_name(db, name) is None:
            try:
                with db.begin_nested():
                    role_store.create(db, name)
            except IntegrityError:
                logger.info("Role '%s' was created concurrently", name)

        return role_store.find_by_name(db, name, for_update=for_update)

    @staticmethod
    def assignable_role(db: Session, name: str) -> Role:
        """
        Return a role an administrator may assign to an account

        Raises:
            AppError: If the name is not Admin or User
        """
        if name not in ASSIGNABLE_ROLES:
            raise AppError(f"Unknown role '{name}'")
        return RoleService.ensure_role(db, name)

    @staticmethod
    def role_for(db: Session, is_first_account: bool) -> Role:
        """Admin for the first account ever registered, User otherwise"""
        return RoleService.ensure_role(db, ADMIN if is_first_account else USER)

    @staticmethod
    def resolve_registration_role(db: Session) -> Role:
        """
        Pick the role for an account being registered in this transaction

        The Admin row is locked before counting accounts, so concurrent
        first registrations are serialized and exactly one becomes Admin.
        """
        admin = RoleService.ensure_role(db, ADMIN, for_update=True)
        if account_store.count_all(db) == 0:
            logger.info("First account registration, assigning '%s' role", ADMIN)
            return admin
        return RoleService.role_for(db, is_first_account=False)


role_service = RoleService()
