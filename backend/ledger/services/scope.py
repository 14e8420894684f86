"""Tenancy scope resolution.

A request executes under a ``Scope``: the subject's organization and, for
branch-scoped operations, the branch named by the out-of-band selector
(``X-Branch-Id`` header or the ``branch_id`` claim of a branch-login token).
The selector is always re-validated here; token claims never stand in for
these checks.
"""
from __future__ import annotations
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional
from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger.constants.privileges import WILDCARD
from ledger.utils.validation import MAX_ID
from ledger.errors import ScopeForbidden, ScopeInactive, ScopeMissing, ScopeNotFound, Unauthenticated
from ledger.models.tenancy import Branch, Organization, User, UserBranch

log = logging.getLogger(__name__)


class ScopeRequirement(enum.Enum):
    NONE = 'none'
    ORGANIZATION = 'organization'
    BRANCH = 'branch'


@dataclass(frozen=True)
class Scope:
    organization_id: Optional[int] = None
    branch_id: Optional[int] = None


def restrict(stmt, scope: Scope, *, branch_column=None, organization_column=None):
    """Filter a select by every scope component the caller maps to a column."""
    if branch_column is not None and scope.branch_id is not None:
        stmt = stmt.where(branch_column == scope.branch_id)
    if organization_column is not None and scope.organization_id is not None:
        stmt = stmt.where(organization_column == scope.organization_id)
    return stmt


def parse_branch_selector(raw: Any) -> int:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise ScopeMissing()
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ScopeMissing('Branch ID must be a valid positive number', selector=raw)
    try:
        branch_id = int(raw)
    except (TypeError, ValueError, OverflowError):
        raise ScopeMissing('Branch ID must be a valid positive number', selector=str(raw))
    if not 1 <= branch_id <= MAX_ID:
        raise ScopeMissing('Branch ID must be a valid positive number', selector=branch_id)
    return branch_id


class ScopeResolver:
    def __init__(self, session_provider: Callable[[], Session], oracle):
        self._session = session_provider
        self._oracle = oracle

    def resolve(self, subject_id: int, branch_selector: Any = None,
                requirement: ScopeRequirement = ScopeRequirement.BRANCH) -> Scope:
        session = self._session()
        user = session.get(User, subject_id)
        if user is None:
            raise Unauthenticated('User not found', subject_id=subject_id)
        organization_id = user.organization_id
        if requirement is ScopeRequirement.NONE:
            return Scope(organization_id=organization_id)

        if organization_id is not None:
            if session.get(Organization, organization_id) is None:
                raise ScopeNotFound('Organization not found', organization_id=organization_id)
        elif requirement is ScopeRequirement.ORGANIZATION:
            raise ScopeMissing('Organization not found for this user', subject_id=subject_id)
        if requirement is ScopeRequirement.ORGANIZATION:
            return Scope(organization_id=organization_id)

        branch_id = parse_branch_selector(branch_selector)
        stmt = select(Branch).where(Branch.id == branch_id)
        # Branches of other organizations are reported as missing, never as forbidden.
        if organization_id is not None:
            stmt = stmt.where(Branch.organization_id == organization_id)
        branch = session.execute(stmt).scalar_one_or_none()
        if branch is None:
            raise ScopeNotFound(branch_id=branch_id)
        if not branch.is_active:
            raise ScopeInactive(branch_id=branch_id)
        if not self._oracle.is_granted(subject_id, *WILDCARD) and not self.can_login(subject_id, branch_id):
            log.debug('branch access denied subject=%s branch=%s', subject_id, branch_id)
            raise ScopeForbidden(subject_id=subject_id, branch_id=branch_id)
        return Scope(organization_id=branch.organization_id, branch_id=branch.id)

    def can_login(self, subject_id: int, branch_id: int) -> bool:
        session = self._session()
        link = session.execute(
            select(UserBranch.id).where(
                UserBranch.user_id == subject_id,
                UserBranch.branch_id == branch_id,
                UserBranch.can_login.is_(True),
            )
        ).first()
        return link is not None


__all__ = ['Scope', 'ScopeRequirement', 'ScopeResolver', 'restrict', 'parse_branch_selector']
