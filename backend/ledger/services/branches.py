from __future__ import annotations
import logging
from typing import Callable, List, Optional
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ledger.errors import Conflict, NotFound, ScopeMissing
from ledger.models.tenancy import Branch, User, UserBranch
from ledger.services.scope import Scope, restrict

log = logging.getLogger(__name__)


class BranchService:
    """Organization-scoped branch administration and user membership links."""

    UPDATABLE = ('name', 'code', 'address', 'phone', 'email', 'is_active')

    def __init__(self, session_provider: Callable[[], Session]):
        self._session = session_provider

    @staticmethod
    def _org_scope(scope: Scope) -> Scope:
        if scope.organization_id is None:
            raise ScopeMissing('Organization not found for this user')
        return scope

    def _scoped(self, stmt, scope: Scope):
        return restrict(stmt, self._org_scope(scope), organization_column=Branch.organization_id)

    def list_branches(self, scope: Scope, include_inactive: bool = False) -> List[Branch]:
        stmt = self._scoped(select(Branch), scope)
        if not include_inactive:
            stmt = stmt.where(Branch.is_active.is_(True))
        return list(self._session().execute(stmt.order_by(Branch.name.asc())).scalars())

    def get_branch(self, branch_id: int, scope: Scope) -> Branch:
        branch = self._session().execute(self._scoped(select(Branch).where(Branch.id == branch_id), scope)).scalar_one_or_none()
        if branch is None:
            raise NotFound('branch', branch_id)
        return branch

    def _assert_code_free(self, code: str, scope: Scope, exclude_id: Optional[int] = None):
        stmt = self._scoped(select(Branch.id).where(Branch.code == code), scope)
        if exclude_id is not None:
            stmt = stmt.where(Branch.id != exclude_id)
        if self._session().execute(stmt).first() is not None:
            raise Conflict('Branch code already exists in this organization', code=code)

    def create_branch(self, scope: Scope, name: str, code: str, address: Optional[str] = None,
                      phone: Optional[str] = None, email: Optional[str] = None) -> Branch:
        session = self._session()
        code = code.upper()
        self._assert_code_free(code, scope)
        branch = Branch(
            organization_id=self._org_scope(scope).organization_id,
            name=name,
            code=code,
            address=address,
            phone=phone,
            email=email,
            is_active=True,
        )
        session.add(branch)
        session.commit()
        log.info('branch created id=%s organization=%s code=%s', branch.id, branch.organization_id, code)
        return branch

    def update_branch(self, branch_id: int, scope: Scope, patch) -> Branch:
        session = self._session()
        branch = self.get_branch(branch_id, scope)
        for field in self.UPDATABLE:
            if field in patch:
                setattr(branch, field, patch[field])
        if 'code' in patch:
            branch.code = patch['code'].upper()
            self._assert_code_free(branch.code, scope, exclude_id=branch.id)
        session.commit()
        return branch

    # --- Membership ---
    def _org_user(self, user_id: int, scope: Scope) -> User:
        stmt = restrict(select(User).where(User.id == user_id), scope, organization_column=User.organization_id)
        user = self._session().execute(stmt).scalar_one_or_none()
        if user is None:
            raise NotFound('user', user_id)
        return user

    def _membership(self, user_id: int, branch_id: int) -> Optional[UserBranch]:
        stmt = select(UserBranch).where(UserBranch.user_id == user_id, UserBranch.branch_id == branch_id)
        return self._session().execute(stmt).scalar_one_or_none()

    def _clear_primary(self, session: Session, user_id: int, keep_id: Optional[int] = None):
        stmt = select(UserBranch).where(UserBranch.user_id == user_id, UserBranch.is_primary.is_(True))
        for link in session.execute(stmt).scalars():
            if link.id != keep_id:
                link.is_primary = False

    def add_user(self, branch_id: int, user_id: int, scope: Scope, is_primary: bool = False,
                 can_login: bool = True) -> UserBranch:
        session = self._session()
        self.get_branch(branch_id, scope)
        self._org_user(user_id, scope)
        if self._membership(user_id, branch_id) is not None:
            raise Conflict('User is already assigned to this branch', user_id=user_id, branch_id=branch_id)
        if is_primary:
            self._clear_primary(session, user_id)
        link = UserBranch(user_id=user_id, branch_id=branch_id, is_primary=is_primary, can_login=can_login)
        session.add(link)
        session.commit()
        log.info('user %s assigned to branch %s can_login=%s', user_id, branch_id, can_login)
        return link

    def update_user_access(self, branch_id: int, user_id: int, scope: Scope, patch) -> UserBranch:
        session = self._session()
        self.get_branch(branch_id, scope)
        link = self._membership(user_id, branch_id)
        if link is None:
            raise NotFound('user_branch', user_id)
        if patch.get('is_primary'):
            self._clear_primary(session, user_id, keep_id=link.id)
        for field in ('is_primary', 'can_login'):
            if field in patch:
                setattr(link, field, patch[field])
        session.commit()
        return link

    def remove_user(self, branch_id: int, user_id: int, scope: Scope) -> None:
        session = self._session()
        self.get_branch(branch_id, scope)
        link = self._membership(user_id, branch_id)
        if link is None:
            raise NotFound('user_branch', user_id)
        session.delete(link)
        session.commit()

    def user_branches(self, user_id: int, scope: Scope) -> List[UserBranch]:
        """Branches the user may log in to, primary first."""
        self._org_user(user_id, scope)
        stmt = (
            select(UserBranch)
            .join(Branch, UserBranch.branch_id == Branch.id)
            .options(selectinload(UserBranch.branch))
            .where(UserBranch.user_id == user_id, UserBranch.can_login.is_(True), Branch.is_active.is_(True))
            .order_by(UserBranch.is_primary.desc(), Branch.name.asc())
        )
        return list(self._session().execute(stmt).scalars())


__all__ = ['BranchService']
