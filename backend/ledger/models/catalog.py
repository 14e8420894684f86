from __future__ import annotations
from decimal import Decimal
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy import Integer, String, Numeric, ForeignKey, DateTime, text
from typing import Optional
from datetime import datetime

from .authz import Base


class TaxRate(Base):
    __tablename__ = 'tax_rates'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Null organization marks a rate shared by every tenant.
    organization_id: Mapped[Optional[int]] = mapped_column(ForeignKey('organizations.id', ondelete='CASCADE'), index=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'))


class Item(Base):
    __tablename__ = 'items'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False, index=True)
    # Null branch marks an organization-wide item usable from any of its branches.
    branch_id: Mapped[Optional[int]] = mapped_column(ForeignKey('branches.id', ondelete='CASCADE'), index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_rate_id: Mapped[int] = mapped_column(ForeignKey('tax_rates.id'), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

    tax_rate = relationship('TaxRate')


class Client(Base):
    __tablename__ = 'clients'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[Optional[int]] = mapped_column(ForeignKey('organizations.id', ondelete='CASCADE'), index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    identifier: Mapped[Optional[str]] = mapped_column(String(64))
    tax_id: Mapped[Optional[str]] = mapped_column(String(64))
    email: Mapped[Optional[str]] = mapped_column(String(128))
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    address: Mapped[Optional[str]] = mapped_column(String(255))
