"""Account and role stores over a SQLAlchemy session

Lookups return None for absence; deciding whether absence is an error
belongs to the caller.
"""

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from authcore.models.account import Account
from authcore.models.role import Role


class AccountStore:
    """Persistence operations for accounts"""

    @staticmethod
    def find_by_id(db: Session, account_id: int, for_update: bool = False) -> Optional[Account]:
        """Get account by ID, optionally locking its row until commit"""
        stmt = select(Account).where(Account.id == account_id)
        if for_update:
            stmt = stmt.with_for_update(of=Account)
        return db.execute(stmt).unique().scalar_one_or_none()

    @staticmethod
    def find_by_email(db: Session, email: str) -> Optional[Account]:
        """Get account by exact email"""
        return db.query(Account).filter(Account.email == email).first()

    @staticmethod
    def email_exists(db: Session, email: str) -> bool:
        return db.query(Account.id).filter(Account.email == email).first() is not None

    @staticmethod
    def find_by_verification_token(db: Session, token: str) -> Optional[Account]:
        return db.query(Account).filter(Account.verification_token == token).first()

    @staticmethod
    def find_by_reset_token(db: Session, token: str) -> Optional[Account]:
        return db.query(Account).filter(Account.reset_token == token).first()

    @staticmethod
    def count_all(db: Session) -> int:
        return db.execute(select(func.count(Account.id))).scalar_one()

    @staticmethod
    def create(db: Session, account: Account) -> Account:
        db.add(account)
        db.flush()
        return account

    @staticmethod
    def update(db: Session, account: Account) -> Account:
        db.add(account)
        db.flush()
        return account

    @staticmethod
    def delete(db: Session, account: Account) -> None:
        db.delete(account)
        db.flush()


class RoleStore:
    """Persistence operations for roles"""

    @staticmethod
    def find_by_name(db: Session, name: str, for_update: bool = False) -> Optional[Role]:
        stmt = select(Role).where(Role.name == name)
        if for_update:
            stmt = stmt.with_for_update()
        return db.execute(stmt).scalar_one_or_none()

    @staticmethod
    def create(db: Session, name: str) -> Role:
        role = Role(name=name)
        db.add(role)
        db.flush()
        return role


account_store = AccountStore()
role_store = RoleStore()
