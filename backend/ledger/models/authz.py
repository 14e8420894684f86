from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import declarative_base, relationship, Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, ForeignKey, UniqueConstraint, DateTime, text
from typing import Optional

Base = declarative_base()


# --- Privilege catalog ---
class Privilege(Base):
    __tablename__ = 'privileges'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    resource: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))
    user_privileges = relationship('UserPrivilege', back_populates='privilege')

    __table_args__ = (UniqueConstraint('resource', 'action', name='uq_privilege_resource_action'),)


class UserPrivilege(Base):
    """A grant binding a user to a privilege.

    Effective iff ``is_active`` is true, the privilege is active, and
    ``expires_at`` is null or still in the future. Revocation flips
    ``is_active``; rows are never hard-deleted while referenced.
    """
    __tablename__ = 'user_privileges'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    privilege_id: Mapped[int] = mapped_column(ForeignKey('privileges.id'), nullable=False, index=True)
    granted_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id', ondelete='SET NULL'))
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'))

    user = relationship('User', back_populates='user_privileges', foreign_keys=[user_id])
    privilege = relationship('Privilege', back_populates='user_privileges')
