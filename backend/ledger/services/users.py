from __future__ import annotations
import logging
from typing import Any, Callable, Dict, List, Optional
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from ledger.errors import Conflict, NotFound, Unauthenticated
from ledger.models.bill import Bill, BillItem
from ledger.models.tenancy import Branch, Organization, User, UserBranch
from ledger.services.credentials import issue_token
from ledger.services.ledger import round_money, to_decimal
from ledger.services.privileges import PrivilegeService
from ledger.services.scope import Scope, ScopeRequirement, ScopeResolver, restrict

log = logging.getLogger(__name__)


class UserService:
    def __init__(self, session_provider: Callable[[], Session], privileges: PrivilegeService, resolver: ScopeResolver):
        self._session = session_provider
        self._privileges = privileges
        self._resolver = resolver

    def _assert_available(self, username: str, email: str):
        stmt = select(User.id).where(or_(User.username == username, User.email == email))
        if self._session().execute(stmt).first() is not None:
            raise Conflict('User with this username or email already exists', username=username, email=email)

    def register(self, username: str, email: str, password: str, organization_name: Optional[str] = None) -> Dict[str, Any]:
        """Create a user; with an organization name the user founds it as owner.

        The owner receives every active privilege except catalog administration.
        """
        session = self._session()
        self._assert_available(username, email)
        user = User(username=username, email=email, role=User.ROLE_USER)
        user.set_password(password)
        try:
            if organization_name:
                org = Organization(name=organization_name)
                session.add(org)
                session.flush()
                user.organization_id = org.id
                user.role = User.ROLE_OWNER
            session.add(user)
            session.flush()
            if organization_name:
                self._privileges.ensure_default_privileges()
                self._privileges.grant_many(user.id, self._privileges.tenant_privileges(), granted_by=user.id)
            session.commit()
        except Exception:
            session.rollback()
            raise
        log.info('user registered id=%s organization=%s role=%s', user.id, user.organization_id, user.role)
        return {'user': user, 'access_token': issue_token(user)}

    def create_user(self, scope: Scope, username: str, email: str, password: str, role: str = User.ROLE_USER) -> User:
        session = self._session()
        self._assert_available(username, email)
        user = User(username=username, email=email, role=role, organization_id=scope.organization_id)
        user.set_password(password)
        session.add(user)
        session.commit()
        return user

    def _authenticate(self, login: str, password: str) -> User:
        stmt = select(User).where(or_(User.username == login, User.email == login))
        user = self._session().execute(stmt).scalar_one_or_none()
        if user is None or not user.verify_password(password):
            raise Unauthenticated('Invalid credentials')
        return user

    def login(self, login: str, password: str) -> Dict[str, Any]:
        user = self._authenticate(login, password)
        return {'user': user, 'access_token': issue_token(user)}

    def login_to_branch(self, login: str, password: str, branch_id: Any) -> Dict[str, Any]:
        user = self._authenticate(login, password)
        scope = self._resolver.resolve(user.id, branch_id, ScopeRequirement.BRANCH)
        branch = self._session().get(Branch, scope.branch_id)
        log.info('branch login user=%s branch=%s', user.id, branch.id)
        return {'user': user, 'branch': branch, 'access_token': issue_token(user, branch_id=branch.id)}

    def profile(self, user_id: int) -> User:
        stmt = (
            select(User)
            .where(User.id == user_id)
            .options(selectinload(User.user_branches).selectinload(UserBranch.branch))
        )
        user = self._session().execute(stmt).scalar_one_or_none()
        if user is None:
            raise NotFound('user', user_id)
        return user

    def list_users(self, scope: Scope) -> List[User]:
        stmt = restrict(select(User), scope, organization_column=User.organization_id).order_by(User.username.asc())
        return list(self._session().execute(stmt).scalars())

    def _scoped_user(self, user_id: int, scope: Scope) -> User:
        stmt = restrict(select(User).where(User.id == user_id), scope, organization_column=User.organization_id)
        user = self._session().execute(stmt).scalar_one_or_none()
        if user is None:
            raise NotFound('user', user_id)
        return user

    def user_stats(self, user_id: int, scope: Scope) -> Dict[str, Any]:
        """Bill activity of a user in the current branch."""
        session = self._session()
        user = self._scoped_user(user_id, scope)
        bills = select(Bill.id).where(Bill.user_id == user.id, Bill.branch_id == scope.branch_id)
        count, total = session.execute(
            select(func.count(Bill.id), func.coalesce(func.sum(Bill.amount), 0))
            .where(Bill.user_id == user.id, Bill.branch_id == scope.branch_id)
        ).one()
        lines = session.execute(select(func.count(BillItem.id)).where(BillItem.bill_id.in_(bills))).scalar_one()
        return {
            'user': user,
            'total_bills': int(count),
            'total_amount': round_money(to_decimal(total)),
            'total_bill_items': int(lines),
        }

    def delete_user(self, user_id: int, scope: Scope) -> None:
        """Delete a user together with every bill they created (and those bills' lines)."""
        session = self._session()
        user = self._scoped_user(user_id, scope)
        bill_count = len(user.bills)
        session.delete(user)
        session.commit()
        log.warning('user deleted id=%s bills_removed=%s', user_id, bill_count)


__all__ = ['UserService']
