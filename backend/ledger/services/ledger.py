"""Ledger engine: bill line lifecycle and total recalculation.

The engine is the only writer of ``Bill.subtotal``, ``Bill.tax_amount`` and
``Bill.amount``. Every line mutation runs in one transaction that first locks
the bill row, applies the change, recomputes the totals from a fresh read of
all current lines and commits; any failure rolls the whole unit back.

Totals (each rounded half-up to cents once, after summation):
    subtotal   = sum(quantity * unit_price)
    tax_amount = sum(quantity * unit_price * current_tax_rate / 100)
    amount     = subtotal + tax_amount
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ledger.errors import CrossScope, DuplicateLine, InvalidInput, NotFound, RecalculationFailure, ScopeMissing
from ledger.models.bill import Bill, BillItem
from ledger.models.catalog import Item, TaxRate
from ledger.models.tenancy import Branch
from ledger.services.scope import Scope, restrict
from ledger.utils.listing import paginate
from ledger.utils.validation import MAX_AMOUNT, MAX_QUANTITY

log = logging.getLogger(__name__)

CENT = Decimal('0.01')
HUNDRED = Decimal(100)


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LinePricing:
    """Minimal projection of a line needed for totals."""
    quantity: int
    unit_price: Decimal
    tax_percentage: Decimal


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax_amount: Decimal
    amount: Decimal


def compute_totals(lines: Iterable[LinePricing]) -> Totals:
    subtotal = Decimal(0)
    tax_amount = Decimal(0)
    for line in lines:
        line_subtotal = Decimal(line.quantity) * line.unit_price
        subtotal += line_subtotal
        tax_amount += line_subtotal * line.tax_percentage / HUNDRED
    subtotal = round_money(subtotal)
    tax_amount = round_money(tax_amount)
    return Totals(subtotal=subtotal, tax_amount=tax_amount, amount=round_money(subtotal + tax_amount))


def _positive_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or not 1 <= quantity <= MAX_QUANTITY:
        raise InvalidInput(f'quantity must be an integer between 1 and {MAX_QUANTITY}', field='quantity', value=str(quantity))
    return quantity


def _unit_price(value: Any) -> Decimal:
    try:
        price = to_decimal(value)
    except (InvalidOperation, ValueError):
        raise InvalidInput('unit_price must be a number', field='unit_price', value=str(value))
    if not price.is_finite() or not 0 <= price < MAX_AMOUNT:
        raise InvalidInput(f'unit_price must be between 0 and {MAX_AMOUNT}', field='unit_price', value=str(price))
    return round_money(price)


def _line_total(quantity: int, price: Decimal) -> Decimal:
    total = round_money(Decimal(quantity) * price)
    if total >= MAX_AMOUNT:
        raise InvalidInput(f'line total must be less than {MAX_AMOUNT}', field='total_price', value=str(total))
    return total


class LedgerEngine:
    def __init__(self, session_provider: Callable[[], Session]):
        self._session = session_provider

    # --- Transactions ---
    @contextmanager
    def _bill_transaction(self, bill_id: int, scope: Optional[Scope]) -> Iterator[Tuple[Session, Bill]]:
        """Lock the bill row, yield for the line change, then recalculate and commit."""
        session = self._session()
        try:
            bill = self._lock_bill(session, bill_id, scope)
            yield session, bill
            self._apply_totals(session, bill)
            session.commit()
        except Exception:
            session.rollback()
            raise

    def _lock_statement(self, bill_id: int, scope: Optional[Scope]):
        """SELECT ... FOR UPDATE on the bill row; concurrent writers of one bill queue here."""
        stmt = (
            select(Bill)
            .where(Bill.id == bill_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if scope is not None:
            stmt = restrict(stmt, self._require_branch(scope), branch_column=Bill.branch_id)
        return stmt

    def _lock_bill(self, session: Session, bill_id: int, scope: Optional[Scope]) -> Bill:
        bill = session.execute(self._lock_statement(bill_id, scope)).scalar_one_or_none()
        if bill is None:
            raise NotFound('bill', bill_id)
        return bill

    @staticmethod
    def _require_branch(scope: Scope) -> Scope:
        if scope.branch_id is None:
            raise ScopeMissing()
        return scope

    def _pricing(self, session: Session, bill_id: int) -> List[LinePricing]:
        rows = session.execute(
            select(BillItem.quantity, BillItem.unit_price, TaxRate.percentage)
            .join(Item, BillItem.item_id == Item.id)
            .outerjoin(TaxRate, Item.tax_rate_id == TaxRate.id)
            .where(BillItem.bill_id == bill_id)
            .order_by(BillItem.id)
        ).all()
        return [LinePricing(int(q), to_decimal(price), to_decimal(pct)) for q, price, pct in rows]

    def _apply_totals(self, session: Session, bill: Bill) -> Totals:
        try:
            totals = compute_totals(self._pricing(session, bill.id))
            if totals.amount >= MAX_AMOUNT:
                raise InvalidInput(f'bill amount must be less than {MAX_AMOUNT}', bill_id=bill.id, amount=str(totals.amount))
            bill.subtotal = totals.subtotal
            bill.tax_amount = totals.tax_amount
            bill.amount = totals.amount
            session.flush()
        except SQLAlchemyError as e:
            log.exception('recalculation failed bill=%s', bill.id)
            raise RecalculationFailure(bill_id=bill.id) from e
        log.debug('bill %s recalculated subtotal=%s tax=%s amount=%s', bill.id, totals.subtotal, totals.tax_amount, totals.amount)
        return totals

    # --- Recalculation ---
    def recalculate(self, bill_id: int) -> Totals:
        """Overwrite the bill's derived fields from its current lines. Safe to call redundantly."""
        session = self._session()
        try:
            bill = self._lock_bill(session, bill_id, None)
            totals = self._apply_totals(session, bill)
            session.commit()
        except Exception:
            session.rollback()
            raise
        return totals

    # --- Line lifecycle ---
    def _find_item(self, session: Session, item_id: int, scope: Scope) -> Item:
        stmt = restrict(select(Item).where(Item.id == item_id), scope, organization_column=Item.organization_id)
        item = session.execute(stmt).scalar_one_or_none()
        if item is None:
            raise NotFound('item', item_id)
        return item

    def _check_same_scope(self, session: Session, bill: Bill, item: Item):
        bill_org = session.execute(select(Branch.organization_id).where(Branch.id == bill.branch_id)).scalar_one()
        if item.organization_id != bill_org or (item.branch_id is not None and item.branch_id != bill.branch_id):
            raise CrossScope(
                bill_id=bill.id,
                item_id=item.id,
                bill_branch_id=bill.branch_id,
                item_branch_id=item.branch_id,
            )

    def _check_not_duplicate(self, session: Session, bill_id: int, item_id: int):
        existing = session.execute(
            select(BillItem.id).where(BillItem.bill_id == bill_id, BillItem.item_id == item_id)
        ).first()
        if existing is not None:
            raise DuplicateLine(bill_id=bill_id, item_id=item_id)

    def _new_line(self, session: Session, bill: Bill, item: Item, quantity: Any,
                  unit_price: Any = None, notes: Optional[str] = None) -> BillItem:
        quantity = _positive_quantity(quantity)
        # Override wins; otherwise the catalog price is captured once, here.
        price = _unit_price(unit_price) if unit_price is not None else to_decimal(item.unit_price)
        line = BillItem(
            bill_id=bill.id,
            item_id=item.id,
            quantity=quantity,
            unit_price=price,
            total_price=_line_total(quantity, price),
            notes=notes,
        )
        session.add(line)
        return line

    def _flush_lines(self, session: Session, bill_id: int):
        try:
            session.flush()
        except IntegrityError as e:
            # Unique (bill, item) constraint lost a race against a concurrent insert.
            raise DuplicateLine(bill_id=bill_id) from e

    def add_line(self, bill_id: int, item_id: int, quantity: int, scope: Scope,
                 unit_price: Any = None, notes: Optional[str] = None) -> BillItem:
        with self._bill_transaction(bill_id, scope) as (session, bill):
            item = self._find_item(session, item_id, scope)
            self._check_same_scope(session, bill, item)
            self._check_not_duplicate(session, bill.id, item.id)
            line = self._new_line(session, bill, item, quantity, unit_price, notes)
            self._flush_lines(session, bill.id)
        log.info('line added bill=%s item=%s qty=%s', bill_id, item_id, line.quantity)
        return line

    def bulk_add_lines(self, bill_id: int, lines: Iterable[Mapping[str, Any]], scope: Scope) -> List[BillItem]:
        """Add several lines with a single recalculation; all or nothing."""
        created: List[BillItem] = []
        with self._bill_transaction(bill_id, scope) as (session, bill):
            seen = set()
            for spec in lines:
                item_id = spec['item_id']
                if item_id in seen:
                    raise DuplicateLine(bill_id=bill.id, item_id=item_id)
                seen.add(item_id)
                item = self._find_item(session, item_id, scope)
                self._check_same_scope(session, bill, item)
                self._check_not_duplicate(session, bill.id, item.id)
                created.append(self._new_line(session, bill, item, spec.get('quantity', 1), spec.get('unit_price'), spec.get('notes')))
            self._flush_lines(session, bill.id)
        log.info('lines added bill=%s count=%s', bill_id, len(created))
        return created

    def _line_bill_id(self, line_id: int, scope: Scope) -> int:
        stmt = select(BillItem.bill_id).join(Bill, BillItem.bill_id == Bill.id).where(BillItem.id == line_id)
        stmt = restrict(stmt, self._require_branch(scope), branch_column=Bill.branch_id)
        bill_id = self._session().execute(stmt).scalar_one_or_none()
        if bill_id is None:
            raise NotFound('bill_item', line_id)
        return bill_id

    @staticmethod
    def _locked_line(session: Session, line_id: int, bill_id: int) -> BillItem:
        line = session.execute(
            select(BillItem)
            .where(BillItem.id == line_id, BillItem.bill_id == bill_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if line is None:
            raise NotFound('bill_item', line_id)
        return line

    def update_line(self, line_id: int, patch: Mapping[str, Any], scope: Scope) -> BillItem:
        """Apply a sparse patch (quantity, unit_price, notes); omitted fields are left untouched."""
        bill_id = self._line_bill_id(line_id, scope)
        with self._bill_transaction(bill_id, scope) as (session, bill):
            line = self._locked_line(session, line_id, bill.id)
            if 'quantity' in patch:
                line.quantity = _positive_quantity(patch['quantity'])
            if 'unit_price' in patch:
                if patch['unit_price'] is None:
                    raise InvalidInput('unit_price cannot be null', field='unit_price')
                line.unit_price = _unit_price(patch['unit_price'])
            if 'notes' in patch:
                line.notes = patch['notes']
            if 'quantity' in patch or 'unit_price' in patch:
                line.total_price = _line_total(line.quantity, to_decimal(line.unit_price))
            session.flush()
        log.info('line updated id=%s bill=%s fields=%s', line_id, bill_id, sorted(patch.keys()))
        return line

    def remove_line(self, line_id: int, scope: Scope) -> None:
        bill_id = self._line_bill_id(line_id, scope)
        with self._bill_transaction(bill_id, scope) as (session, bill):
            line = self._locked_line(session, line_id, bill.id)
            session.delete(line)
            session.flush()
        log.info('line removed id=%s bill=%s', line_id, bill_id)

    # --- Reads ---
    def get_bill_with_totals(self, bill_id: int, scope: Scope) -> Bill:
        stmt = (
            select(Bill)
            .where(Bill.id == bill_id)
            .options(
                selectinload(Bill.lines).selectinload(BillItem.item).selectinload(Item.tax_rate),
                selectinload(Bill.client),
            )
            .execution_options(populate_existing=True)
        )
        stmt = restrict(stmt, self._require_branch(scope), branch_column=Bill.branch_id)
        bill = self._session().execute(stmt).scalar_one_or_none()
        if bill is None:
            raise NotFound('bill', bill_id)
        return bill

    def list_lines(self, bill_id: int, scope: Scope) -> List[BillItem]:
        bill = self.get_bill_with_totals(bill_id, scope)
        return list(bill.lines)

    def get_line(self, line_id: int, scope: Scope) -> BillItem:
        stmt = (
            select(BillItem)
            .join(Bill, BillItem.bill_id == Bill.id)
            .where(BillItem.id == line_id)
            .options(selectinload(BillItem.item).selectinload(Item.tax_rate))
        )
        stmt = restrict(stmt, self._require_branch(scope), branch_column=Bill.branch_id)
        line = self._session().execute(stmt).scalar_one_or_none()
        if line is None:
            raise NotFound('bill_item', line_id)
        return line

    def list_all_lines(self, scope: Scope, bill_id: Optional[int] = None, item_id: Optional[int] = None,
                       limit: int = 50, offset: int = 0) -> Tuple[List[BillItem], int]:
        """Page through every line of the branch, newest first."""
        stmt = (
            select(BillItem)
            .join(Bill, BillItem.bill_id == Bill.id)
            .options(selectinload(BillItem.item).selectinload(Item.tax_rate), selectinload(BillItem.bill))
        )
        stmt = restrict(stmt, self._require_branch(scope), branch_column=Bill.branch_id)
        if bill_id is not None:
            stmt = stmt.where(BillItem.bill_id == bill_id)
        if item_id is not None:
            stmt = stmt.where(BillItem.item_id == item_id)
        stmt = stmt.order_by(BillItem.created_at.desc(), BillItem.id.desc())
        return paginate(self._session(), stmt, limit, offset)

    def bills_for_item(self, item_id: int, scope: Scope) -> Tuple[Item, List[BillItem]]:
        """The item and its lines on bills of the current branch."""
        session = self._session()
        scope = self._require_branch(scope)
        item = self._find_item(session, item_id, scope)
        if item.branch_id is not None and item.branch_id != scope.branch_id:
            raise NotFound('item', item_id)
        stmt = (
            select(BillItem)
            .join(Bill, BillItem.bill_id == Bill.id)
            .where(BillItem.item_id == item.id, Bill.branch_id == scope.branch_id)
            .options(selectinload(BillItem.bill))
            .order_by(BillItem.created_at.desc(), BillItem.id.desc())
        )
        return item, list(session.execute(stmt).scalars())

    def line_stats(self, scope: Scope, bill_id: Optional[int] = None, item_id: Optional[int] = None) -> Dict[str, Any]:
        stmt = select(
            func.count(BillItem.id),
            func.coalesce(func.sum(BillItem.quantity), 0),
            func.coalesce(func.sum(BillItem.total_price), 0),
            func.avg(BillItem.quantity),
            func.avg(BillItem.unit_price),
            func.avg(BillItem.total_price),
        ).join(Bill, BillItem.bill_id == Bill.id)
        stmt = restrict(stmt, self._require_branch(scope), branch_column=Bill.branch_id)
        if bill_id is not None:
            stmt = stmt.where(BillItem.bill_id == bill_id)
        if item_id is not None:
            stmt = stmt.where(BillItem.item_id == item_id)
        count, qty, total, avg_qty, avg_price, avg_total = self._session().execute(stmt).one()
        return {
            'total_relationships': int(count),
            'total_quantity': int(qty or 0),
            'total_amount': round_money(to_decimal(total)),
            'average_quantity': round_money(to_decimal(avg_qty)),
            'average_unit_price': round_money(to_decimal(avg_price)),
            'average_total_price': round_money(to_decimal(avg_total)),
        }


__all__ = ['LedgerEngine', 'LinePricing', 'Totals', 'compute_totals', 'round_money', 'to_decimal']
