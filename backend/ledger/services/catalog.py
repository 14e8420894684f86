from __future__ import annotations
import logging
from decimal import Decimal
from typing import Any, Callable, List, Mapping, Optional, Tuple
from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from ledger.errors import Conflict, NotFound, ScopeMissing
from ledger.models.bill import Bill, BillItem
from ledger.models.catalog import Client, Item, TaxRate
from ledger.services.scope import Scope, restrict
from ledger.utils.listing import paginate

log = logging.getLogger(__name__)


class CatalogService:
    """Tax rates and clients per organization, items per branch (or organization-wide)."""

    ITEM_FIELDS = ('name', 'description', 'unit_price', 'tax_rate_id')
    CLIENT_FIELDS = ('name', 'identifier', 'tax_id', 'email', 'phone', 'address')

    def __init__(self, session_provider: Callable[[], Session]):
        self._session = session_provider

    # --- Tax rates ---
    def list_tax_rates(self, scope: Scope) -> List[TaxRate]:
        # Shared rates (no organization) are visible to every tenant.
        stmt = select(TaxRate)
        if scope.organization_id is not None:
            stmt = stmt.where(or_(TaxRate.organization_id.is_(None), TaxRate.organization_id == scope.organization_id))
        return list(self._session().execute(stmt.order_by(TaxRate.percentage.asc(), TaxRate.id.asc())).scalars())

    def get_tax_rate(self, tax_rate_id: int, scope: Scope) -> TaxRate:
        stmt = select(TaxRate).where(TaxRate.id == tax_rate_id)
        if scope.organization_id is not None:
            stmt = stmt.where(or_(TaxRate.organization_id.is_(None), TaxRate.organization_id == scope.organization_id))
        rate = self._session().execute(stmt).scalar_one_or_none()
        if rate is None:
            raise NotFound('tax_rate', tax_rate_id)
        return rate

    def create_tax_rate(self, scope: Scope, name: str, percentage: Decimal) -> TaxRate:
        session = self._session()
        rate = TaxRate(organization_id=scope.organization_id, name=name, percentage=percentage)
        session.add(rate)
        session.commit()
        return rate

    # --- Items ---
    @staticmethod
    def _branch_scope(scope: Scope) -> Scope:
        if scope.branch_id is None:
            raise ScopeMissing()
        return scope

    def _items(self, scope: Scope):
        """Items usable from the scope's branch: its own plus organization-wide ones."""
        scope = self._branch_scope(scope)
        stmt = select(Item).where(or_(Item.branch_id.is_(None), Item.branch_id == scope.branch_id))
        return restrict(stmt, scope, organization_column=Item.organization_id)

    def list_items(self, scope: Scope, limit: int, offset: int, search: Optional[str] = None) -> Tuple[List[Item], int]:
        stmt = self._items(scope).options(selectinload(Item.tax_rate))
        if search:
            stmt = stmt.where(Item.name.ilike(f'%{search}%'))
        return paginate(self._session(), stmt.order_by(Item.name.asc(), Item.id.asc()), limit, offset)

    def get_item(self, item_id: int, scope: Scope) -> Item:
        stmt = self._items(scope).where(Item.id == item_id).options(selectinload(Item.tax_rate))
        item = self._session().execute(stmt).scalar_one_or_none()
        if item is None:
            raise NotFound('item', item_id)
        return item

    def create_item(self, scope: Scope, data: Mapping[str, Any]) -> Item:
        session = self._session()
        scope = self._branch_scope(scope)
        self.get_tax_rate(data['tax_rate_id'], scope)
        item = Item(
            organization_id=scope.organization_id,
            branch_id=None if data.get('organization_wide') else scope.branch_id,
            name=data['name'],
            description=data.get('description'),
            unit_price=data['unit_price'],
            tax_rate_id=data['tax_rate_id'],
        )
        session.add(item)
        session.commit()
        return item

    def update_item(self, item_id: int, scope: Scope, patch) -> Item:
        """Catalog changes never touch prices already captured on bill lines."""
        session = self._session()
        item = self.get_item(item_id, scope)
        if 'tax_rate_id' in patch:
            self.get_tax_rate(patch['tax_rate_id'], scope)
        for field in self.ITEM_FIELDS:
            if field in patch:
                setattr(item, field, patch[field])
        session.commit()
        return item

    def delete_item(self, item_id: int, scope: Scope) -> None:
        session = self._session()
        item = self.get_item(item_id, scope)
        used = session.execute(select(BillItem.id).where(BillItem.item_id == item.id).limit(1)).first()
        if used is not None:
            raise Conflict('Item is used on a bill and cannot be deleted', item_id=item.id)
        session.delete(item)
        session.commit()
        log.info('item deleted id=%s', item_id)

    # --- Clients ---
    def _clients(self, scope: Scope):
        return restrict(select(Client), scope, organization_column=Client.organization_id)

    def list_clients(self, scope: Scope, limit: int, offset: int, search: Optional[str] = None) -> Tuple[List[Client], int]:
        stmt = self._clients(scope)
        if search:
            stmt = stmt.where(Client.name.ilike(f'%{search}%'))
        return paginate(self._session(), stmt.order_by(Client.name.asc(), Client.id.asc()), limit, offset)

    def get_client(self, client_id: int, scope: Scope) -> Client:
        client = self._session().execute(self._clients(scope).where(Client.id == client_id)).scalar_one_or_none()
        if client is None:
            raise NotFound('client', client_id)
        return client

    def create_client(self, scope: Scope, data: Mapping[str, Any]) -> Client:
        session = self._session()
        client = Client(organization_id=scope.organization_id, **{f: data.get(f) for f in self.CLIENT_FIELDS})
        session.add(client)
        session.commit()
        return client

    def update_client(self, client_id: int, scope: Scope, patch) -> Client:
        session = self._session()
        client = self.get_client(client_id, scope)
        for field in self.CLIENT_FIELDS:
            if field in patch:
                setattr(client, field, patch[field])
        session.commit()
        return client

    def delete_client(self, client_id: int, scope: Scope) -> None:
        session = self._session()
        client = self.get_client(client_id, scope)
        if session.execute(select(Bill.id).where(Bill.client_id == client.id).limit(1)).first() is not None:
            raise Conflict('Client has bills and cannot be deleted', client_id=client.id)
        session.delete(client)
        session.commit()
        log.info('client deleted id=%s', client_id)


__all__ = ['CatalogService']
