from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from sqlalchemy.orm import Session

from ledger.services.bills import BillService
from ledger.services.branches import BranchService
from ledger.services.catalog import CatalogService
from ledger.services.gate import AuthorizationGate
from ledger.services.ledger import LedgerEngine
from ledger.services.privileges import PrivilegeOracle, PrivilegeService, utcnow
from ledger.services.scope import ScopeResolver
from ledger.services.users import UserService


@dataclass
class Services:
    oracle: PrivilegeOracle
    resolver: ScopeResolver
    gate: AuthorizationGate
    ledger: LedgerEngine
    privileges: PrivilegeService
    bills: BillService
    branches: BranchService
    catalog: CatalogService
    users: UserService


def build_services(session_provider: Callable[[], Session], clock: Optional[Callable[[], datetime]] = None) -> Services:
    oracle = PrivilegeOracle(session_provider, clock=clock or utcnow)
    resolver = ScopeResolver(session_provider, oracle)
    privileges = PrivilegeService(session_provider, oracle)
    return Services(
        oracle=oracle,
        resolver=resolver,
        gate=AuthorizationGate(resolver, oracle),
        ledger=LedgerEngine(session_provider),
        privileges=privileges,
        bills=BillService(session_provider),
        branches=BranchService(session_provider),
        catalog=CatalogService(session_provider),
        users=UserService(session_provider, privileges, resolver),
    )


__all__ = ['Services', 'build_services']
