from __future__ import annotations
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger.errors import NotFound, ScopeMissing
from ledger.models.bill import Bill
from ledger.models.catalog import Client
from ledger.models.tenancy import User
from ledger.services.ledger import round_money, to_decimal
from ledger.services.scope import Scope, restrict
from ledger.utils.listing import paginate

log = logging.getLogger(__name__)


class BillService:
    """Branch-scoped bill CRUD. Monetary totals are owned by the ledger engine."""

    UPDATABLE = ('title', 'description', 'status', 'client_id')
    FILTERS = ('status', 'user_id', 'client_id')

    def __init__(self, session_provider: Callable[[], Session]):
        self._session = session_provider

    @staticmethod
    def _branch_scope(scope: Scope) -> Scope:
        if scope.branch_id is None:
            raise ScopeMissing()
        return scope

    def _scoped(self, stmt, scope: Scope):
        return restrict(stmt, self._branch_scope(scope), branch_column=Bill.branch_id)

    def _check_client(self, client_id: Optional[int], scope: Scope):
        if client_id is None:
            return
        stmt = restrict(select(Client.id).where(Client.id == client_id), scope, organization_column=Client.organization_id)
        if self._session().execute(stmt).first() is None:
            raise NotFound('client', client_id)

    def create_bill(self, scope: Scope, user_id: int, data: Mapping[str, Any]) -> Bill:
        session = self._session()
        scope = self._branch_scope(scope)
        client_id = data.get('client_id')
        self._check_client(client_id, scope)
        bill = Bill(
            branch_id=scope.branch_id,
            user_id=user_id,
            client_id=client_id,
            title=data['title'],
            description=data.get('description'),
            status=data.get('status') or Bill.STATUS_DRAFT,
        )
        session.add(bill)
        session.commit()
        log.info('bill created id=%s branch=%s user=%s', bill.id, bill.branch_id, user_id)
        return bill

    def get_bill(self, bill_id: int, scope: Scope) -> Bill:
        bill = self._session().execute(self._scoped(select(Bill).where(Bill.id == bill_id), scope)).scalar_one_or_none()
        if bill is None:
            raise NotFound('bill', bill_id)
        return bill

    def get_bill_by_public_id(self, public_id: str, scope: Scope) -> Bill:
        stmt = self._scoped(select(Bill).where(Bill.public_id == public_id), scope)
        bill = self._session().execute(stmt).scalar_one_or_none()
        if bill is None:
            raise NotFound('bill', public_id)
        return bill

    def update_bill(self, bill_id: int, scope: Scope, patch) -> Bill:
        session = self._session()
        bill = self.get_bill(bill_id, scope)
        if 'client_id' in patch:
            self._check_client(patch['client_id'], scope)
        for field in self.UPDATABLE:
            if field in patch:
                setattr(bill, field, patch[field])
        session.commit()
        return bill

    def delete_bill(self, bill_id: int, scope: Scope) -> None:
        session = self._session()
        bill = self.get_bill(bill_id, scope)
        session.delete(bill)
        session.commit()
        log.info('bill deleted id=%s branch=%s', bill_id, scope.branch_id)

    def list_bills(self, scope: Scope, filters: Mapping[str, Any], limit: int, offset: int) -> Tuple[List[Bill], int]:
        stmt = self._scoped(select(Bill), scope)
        for name in self.FILTERS:
            value = filters.get(name)
            if value is not None:
                stmt = stmt.where(getattr(Bill, name) == value)
        stmt = stmt.order_by(Bill.created_at.desc(), Bill.id.desc())
        return paginate(self._session(), stmt, limit, offset)

    def bills_for_user(self, user_id: int, scope: Scope, limit: int, offset: int) -> Tuple[List[Bill], int]:
        stmt = restrict(select(User.id).where(User.id == user_id), scope, organization_column=User.organization_id)
        if self._session().execute(stmt).first() is None:
            raise NotFound('user', user_id)
        return self.list_bills(scope, {'user_id': user_id}, limit, offset)

    def bill_stats(self, scope: Scope) -> Dict[str, Any]:
        stmt = self._scoped(select(func.count(Bill.id), func.coalesce(func.sum(Bill.amount), 0)), scope)
        count, total = self._session().execute(stmt).one()
        by_status = dict(
            self._session().execute(
                self._scoped(select(Bill.status, func.count(Bill.id)), scope).group_by(Bill.status)
            ).all()
        )
        return {
            'total_bills': int(count),
            'total_amount': round_money(to_decimal(total)),
            'by_status': {status: int(by_status.get(status, 0)) for status in Bill.ALL_STATUSES},
        }


__all__ = ['BillService']
