from __future__ import annotations
from decimal import Decimal
from typing import Any, Dict, Optional

from ledger.services.ledger import round_money, to_decimal


def money_str(value: Any) -> Optional[str]:
    """Render money as a fixed two-decimal string so JSON never carries floats."""
    if value is None:
        return None
    return str(round_money(to_decimal(value)))


def iso(ts) -> Optional[str]:
    return ts.isoformat() if ts else None


def tax_rate_json(rate) -> Dict[str, Any]:
    return {
        'id': rate.id,
        'organization_id': rate.organization_id,
        'name': rate.name,
        'percentage': money_str(rate.percentage),
    }


def item_json(item) -> Dict[str, Any]:
    return {
        'id': item.id,
        'organization_id': item.organization_id,
        'branch_id': item.branch_id,
        'name': item.name,
        'description': item.description,
        'unit_price': money_str(item.unit_price),
        'tax_rate_id': item.tax_rate_id,
        'tax_rate': tax_rate_json(item.tax_rate) if item.tax_rate is not None else None,
    }


def line_json(line, with_item: bool = False) -> Dict[str, Any]:
    body = {
        'id': line.id,
        'bill_id': line.bill_id,
        'item_id': line.item_id,
        'quantity': line.quantity,
        'unit_price': money_str(line.unit_price),
        'total_price': money_str(line.total_price),
        'notes': line.notes,
        'created_at': iso(line.created_at),
    }
    if with_item:
        body['item'] = item_json(line.item)
    return body


def bill_json(bill, lines: bool = False) -> Dict[str, Any]:
    body = {
        'id': bill.id,
        'public_id': bill.public_id,
        'branch_id': bill.branch_id,
        'user_id': bill.user_id,
        'client_id': bill.client_id,
        'title': bill.title,
        'description': bill.description,
        'status': bill.status,
        'subtotal': money_str(bill.subtotal),
        'tax_amount': money_str(bill.tax_amount),
        'amount': money_str(bill.amount),
        'created_at': iso(bill.created_at),
        'updated_at': iso(bill.updated_at),
    }
    if lines:
        body['items'] = [line_json(line, with_item=True) for line in bill.lines]
    return body


def stats_json(stats: Dict[str, Any]) -> Dict[str, Any]:
    return {k: money_str(v) if isinstance(v, Decimal) else v for k, v in stats.items()}


__all__ = ['money_str', 'iso', 'tax_rate_json', 'item_json', 'line_json', 'bill_json', 'stats_json']
