from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Sequence, Tuple
from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session, selectinload

from ledger.constants.privileges import DEFAULT_PRIVILEGES, is_platform_pair
from ledger.errors import Conflict, Forbidden, NotFound
from ledger.models.authz import Privilege, UserPrivilege
from ledger.models.tenancy import User
from ledger.services.scope import Scope, restrict

log = logging.getLogger(__name__)

Pair = Tuple[str, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def effective_grant(now: datetime):
    """SQL condition for an effective grant; the query must join Privilege."""
    return and_(
        UserPrivilege.is_active.is_(True),
        Privilege.is_active.is_(True),
        or_(UserPrivilege.expires_at.is_(None), UserPrivilege.expires_at > now),
    )


class PrivilegeOracle:
    """Answers whether a subject currently holds an exact (resource, action) pair.

    Pure read. Missing subjects or privileges yield False rather than errors.
    The wildcard pair is matched like any other pair; it does not imply the rest.
    """

    def __init__(self, session_provider: Callable[[], Session], clock: Callable[[], datetime] = utcnow):
        self._session = session_provider
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def _grant_query(self, subject_id: int, condition):
        return (
            select(UserPrivilege.id)
            .join(Privilege, UserPrivilege.privilege_id == Privilege.id)
            .where(UserPrivilege.user_id == subject_id, effective_grant(self._clock()), condition)
            .limit(1)
        )

    def is_granted(self, subject_id: Optional[int], resource: str, action: str) -> bool:
        if subject_id is None or not resource or not action:
            return False
        stmt = self._grant_query(subject_id, and_(Privilege.resource == resource, Privilege.action == action))
        return self._session().execute(stmt).first() is not None

    def is_granted_any(self, subject_id: Optional[int], pairs: Iterable[Pair]) -> bool:
        candidates = [and_(Privilege.resource == r, Privilege.action == a) for r, a in pairs]
        if subject_id is None or not candidates:
            return False
        return self._session().execute(self._grant_query(subject_id, or_(*candidates))).first() is not None

    def is_granted_all(self, subject_id: Optional[int], pairs: Iterable[Pair]) -> bool:
        for resource, action in pairs:
            if not self.is_granted(subject_id, resource, action):
                return False
        return True

    def first_missing(self, subject_id: Optional[int], pairs: Iterable[Pair]) -> Optional[Pair]:
        """Return the first pair the subject lacks, or None when all are held."""
        for resource, action in pairs:
            if not self.is_granted(subject_id, resource, action):
                return resource, action
        return None

    def effective_privileges(self, subject_id: int) -> List[UserPrivilege]:
        stmt = (
            select(UserPrivilege)
            .join(Privilege, UserPrivilege.privilege_id == Privilege.id)
            .options(selectinload(UserPrivilege.privilege))
            .where(UserPrivilege.user_id == subject_id, effective_grant(self._clock()))
            .order_by(Privilege.resource.asc(), Privilege.action.asc())
        )
        return list(self._session().execute(stmt).scalars())


class PrivilegeService:
    """Privilege catalog administration plus grant/revoke, scoped to the caller's organization."""

    UPDATABLE = ('name', 'description', 'resource', 'action', 'is_active')

    def __init__(self, session_provider: Callable[[], Session], oracle: PrivilegeOracle):
        self._session = session_provider
        self._oracle = oracle

    # --- Catalog ---
    def list_privileges(self) -> List[Privilege]:
        stmt = select(Privilege).where(Privilege.is_active.is_(True)).order_by(Privilege.resource.asc(), Privilege.action.asc())
        return list(self._session().execute(stmt).scalars())

    def get_privilege(self, privilege_id: int) -> Privilege:
        privilege = self._session().get(Privilege, privilege_id)
        if privilege is None:
            raise NotFound('privilege', privilege_id)
        return privilege

    def _assert_unique(self, name: str, resource: str, action: str, exclude_id: Optional[int] = None):
        session = self._session()
        stmt = select(Privilege).where(or_(Privilege.name == name, and_(Privilege.resource == resource, Privilege.action == action)))
        if exclude_id is not None:
            stmt = stmt.where(Privilege.id != exclude_id)
        if session.execute(stmt).first() is not None:
            raise Conflict('Privilege with this name or resource/action already exists', name=name, resource=resource, action=action)

    def create_privilege(self, name: str, resource: str, action: str, description: Optional[str] = None,
                         is_active: bool = True) -> Privilege:
        session = self._session()
        self._assert_unique(name, resource, action)
        privilege = Privilege(name=name, resource=resource, action=action, description=description, is_active=is_active)
        session.add(privilege)
        session.commit()
        return privilege

    def update_privilege(self, privilege_id: int, patch) -> Privilege:
        session = self._session()
        privilege = self.get_privilege(privilege_id)
        name = patch['name'] if 'name' in patch else privilege.name
        resource = patch['resource'] if 'resource' in patch else privilege.resource
        action = patch['action'] if 'action' in patch else privilege.action
        self._assert_unique(name, resource, action, exclude_id=privilege.id)
        for field in self.UPDATABLE:
            if field in patch:
                setattr(privilege, field, patch[field])
        session.commit()
        return privilege

    def deactivate_privilege(self, privilege_id: int) -> Privilege:
        """Soft delete: grants of a deactivated privilege stop being effective."""
        session = self._session()
        privilege = self.get_privilege(privilege_id)
        privilege.is_active = False
        session.commit()
        log.info('privilege deactivated id=%s name=%s', privilege.id, privilege.name)
        return privilege

    def ensure_default_privileges(self) -> List[Privilege]:
        """Add missing default privileges; flushes only, the caller owns the transaction."""
        session = self._session()
        existing = {p.name for p in session.execute(select(Privilege)).scalars()}
        created = []
        for row in DEFAULT_PRIVILEGES:
            if row['name'] in existing:
                continue
            privilege = Privilege(**row, is_active=True)
            session.add(privilege)
            created.append(privilege)
        session.flush()
        return created

    def tenant_privileges(self) -> List[Privilege]:
        """Active privileges an organization owner may hold."""
        return [p for p in self.list_privileges() if not is_platform_pair(p.resource, p.action)]

    def initialize_default_privileges(self) -> List[Privilege]:
        session = self._session()
        created = self.ensure_default_privileges()
        session.commit()
        if created:
            log.info('default privileges created count=%s', len(created))
        return created

    # --- Grants ---
    def _scoped_user(self, user_id: int, scope: Scope) -> User:
        stmt = restrict(select(User).where(User.id == user_id), scope, organization_column=User.organization_id)
        user = self._session().execute(stmt).scalar_one_or_none()
        if user is None:
            raise NotFound('user', user_id)
        return user

    def user_grants(self, user_id: int, scope: Scope) -> List[UserPrivilege]:
        self._scoped_user(user_id, scope)
        return self._oracle.effective_privileges(user_id)

    def grant(self, user_id: int, privilege_id: int, granted_by: int, scope: Scope,
              expires_at: Optional[datetime] = None) -> UserPrivilege:
        session = self._session()
        self._scoped_user(user_id, scope)
        privilege = self.get_privilege(privilege_id)
        if not privilege.is_active:
            raise Conflict('Privilege is not active', privilege_id=privilege_id)
        if is_platform_pair(privilege.resource, privilege.action):
            raise Forbidden('privilege', 'grant', description='Catalog administration privileges cannot be granted',
                            privilege_id=privilege_id)
        grant = self._write_grant(session, user_id, privilege, granted_by, expires_at)
        session.commit()
        log.info('privilege granted user=%s privilege=%s by=%s expires_at=%s', user_id, privilege.name, granted_by, expires_at)
        return grant

    def grant_many(self, user_id: int, privileges: Sequence[Privilege], granted_by: Optional[int]) -> List[UserPrivilege]:
        """Grant several privileges without scope checks; caller owns the transaction."""
        session = self._session()
        return [self._write_grant(session, user_id, p, granted_by, None) for p in privileges]

    def _write_grant(self, session: Session, user_id: int, privilege: Privilege, granted_by: Optional[int],
                     expires_at: Optional[datetime]) -> UserPrivilege:
        # Re-granting reuses the existing row instead of stacking duplicates.
        grant = session.execute(
            select(UserPrivilege).where(UserPrivilege.user_id == user_id, UserPrivilege.privilege_id == privilege.id)
        ).scalars().first()
        if grant is None:
            grant = UserPrivilege(user_id=user_id, privilege_id=privilege.id)
            session.add(grant)
        grant.granted_by = granted_by
        grant.expires_at = expires_at
        grant.is_active = True
        grant.privilege = privilege
        session.flush()
        return grant

    def grant_platform_admin(self, user_id: int) -> List[UserPrivilege]:
        """Grant the whole active catalog, including catalog administration."""
        session = self._session()
        try:
            self.ensure_default_privileges()
            grants = self.grant_many(user_id, self.list_privileges(), granted_by=None)
            session.commit()
        except Exception:
            session.rollback()
            raise
        log.warning('platform administrator granted user=%s privileges=%s', user_id, len(grants))
        return grants

    def revoke(self, user_id: int, privilege_id: int, scope: Scope) -> int:
        session = self._session()
        self._scoped_user(user_id, scope)
        grants = session.execute(
            select(UserPrivilege).where(
                UserPrivilege.user_id == user_id,
                UserPrivilege.privilege_id == privilege_id,
                UserPrivilege.is_active.is_(True),
            )
        ).scalars().all()
        for grant in grants:
            grant.is_active = False
        session.commit()
        log.info('privilege revoked user=%s privilege_id=%s rows=%s', user_id, privilege_id, len(grants))
        return len(grants)

    def users_with_privilege(self, privilege_id: int, scope: Scope) -> List[UserPrivilege]:
        self.get_privilege(privilege_id)
        stmt = (
            select(UserPrivilege)
            .join(Privilege, UserPrivilege.privilege_id == Privilege.id)
            .join(User, UserPrivilege.user_id == User.id)
            .options(selectinload(UserPrivilege.user))
            .where(UserPrivilege.privilege_id == privilege_id, effective_grant(self._oracle.now()))
            .order_by(User.username.asc())
        )
        stmt = restrict(stmt, scope, organization_column=User.organization_id)
        return list(self._session().execute(stmt).scalars())


__all__ = ['PrivilegeOracle', 'PrivilegeService', 'effective_grant', 'utcnow']
