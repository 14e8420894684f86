from __future__ import annotations
import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy import Integer, String, Numeric, ForeignKey, UniqueConstraint, DateTime, text
from typing import Optional

from .authz import Base

ZERO = Decimal('0.00')


class Bill(Base):
    __tablename__ = 'bills'
    # Lifecycle status constants
    STATUS_DRAFT = 'draft'
    STATUS_ISSUED = 'issued'
    STATUS_PAID = 'paid'
    STATUS_CANCELLED = 'cancelled'
    ALL_STATUSES = (
        STATUS_DRAFT,
        STATUS_ISSUED,
        STATUS_PAID,
        STATUS_CANCELLED
    )
    # Written only by the ledger engine.
    DERIVED_FIELDS = ('subtotal', 'tax_amount', 'amount')

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    public_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, index=True, default=lambda: str(uuid.uuid4()))
    branch_id: Mapped[int] = mapped_column(ForeignKey('branches.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    client_id: Mapped[Optional[int]] = mapped_column(ForeignKey('clients.id', ondelete='SET NULL'), index=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_DRAFT, index=True)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

    user = relationship('User', back_populates='bills')
    client = relationship('Client')
    lines = relationship('BillItem', back_populates='bill', cascade='all, delete-orphan', order_by='BillItem.id')


class BillItem(Base):
    __tablename__ = 'bill_items'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bill_id: Mapped[int] = mapped_column(ForeignKey('bills.id', ondelete='CASCADE'), nullable=False, index=True)
    item_id: Mapped[int] = mapped_column(ForeignKey('items.id'), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # Captured at line creation; later catalog price changes do not touch it.
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'))

    bill = relationship('Bill', back_populates='lines')
    item = relationship('Item')

    __table_args__ = (UniqueConstraint('bill_id', 'item_id', name='uq_bill_item'),)
