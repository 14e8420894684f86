from __future__ import annotations
from typing import Tuple
from flask import request, abort
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select
from ledger.config.pagination import normalize_pagination


def pagination_args() -> Tuple[int, int]:
    try:
        return normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))


def paginate(session: Session, stmt: Select, limit: int, offset: int):
    """Return (rows, total) for a select statement of ORM entities."""
    total = session.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    rows = session.execute(stmt.offset(offset).limit(limit)).scalars().all()
    return rows, total


def build_list_payload(rows: list, total: int, limit: int, offset: int):
    return {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }
