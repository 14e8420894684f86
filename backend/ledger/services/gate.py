from __future__ import annotations
import logging
from typing import Any, Sequence, Tuple

from ledger.errors import Forbidden
from ledger.services.privileges import PrivilegeOracle
from ledger.services.scope import Scope, ScopeRequirement, ScopeResolver

log = logging.getLogger(__name__)


class AuthorizationGate:
    """Single admission decision per request: resolve scope, then check the privilege.

    Scope failures propagate unchanged. The returned scope must be used to
    filter every subsequent data access of the operation.
    """

    def __init__(self, resolver: ScopeResolver, oracle: PrivilegeOracle):
        self.resolver = resolver
        self.oracle = oracle

    def admit(self, subject_id: int, resource: str, action: str,
              requirement: ScopeRequirement = ScopeRequirement.BRANCH, branch_selector: Any = None) -> Scope:
        scope = self.resolver.resolve(subject_id, branch_selector, requirement)
        if not self.oracle.is_granted(subject_id, resource, action):
            log.debug('privilege denied subject=%s %s.%s', subject_id, resource, action)
            raise Forbidden(resource, action)
        return scope

    def admit_any(self, subject_id: int, pairs: Sequence[Tuple[str, str]],
                  requirement: ScopeRequirement = ScopeRequirement.BRANCH, branch_selector: Any = None) -> Scope:
        scope = self.resolver.resolve(subject_id, branch_selector, requirement)
        if not self.oracle.is_granted_any(subject_id, pairs):
            required = ', '.join(f'{r}.{a}' for r, a in pairs)
            resource, action = pairs[0] if pairs else ('', '')
            raise Forbidden(
                resource, action,
                description=f'Insufficient privileges. Required any of: {required}',
                any_of=[f'{r}.{a}' for r, a in pairs],
            )
        return scope

    def admit_all(self, subject_id: int, pairs: Sequence[Tuple[str, str]],
                  requirement: ScopeRequirement = ScopeRequirement.BRANCH, branch_selector: Any = None) -> Scope:
        scope = self.resolver.resolve(subject_id, branch_selector, requirement)
        missing = self.oracle.first_missing(subject_id, pairs)
        if missing is not None:
            raise Forbidden(*missing)
        return scope


__all__ = ['AuthorizationGate']
