from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
Id = BigInteger().with_variant(Integer(), 'sqlite')


class Base(DeclarativeBase):
    pass


class AdminRole(str, Enum):
    ADMIN = 'ADMIN'
    SUPER_ADMIN = 'SUPER_ADMIN'


class CautelaStatus(str, Enum):
    OPEN = 'OPEN'
    RETURNED = 'RETURNED'


class Theme(str, Enum):
    LIGHT = 'light'
    DARK = 'dark'


class Material(Base):
    __tablename__ = 'materials'
    __table_args__ = (
        CheckConstraint('total_quantity >= 0', name='materials_total_non_negative_ck'),
        CheckConstraint('available_quantity >= 0', name='materials_available_non_negative_ck'),
        CheckConstraint('available_quantity <= total_quantity', name='materials_available_le_total_ck'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    total_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    available_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def issued_quantity(self) -> int:
        return self.total_quantity - self.available_quantity


class Personnel(Base):
    __tablename__ = 'personnel'
    __table_args__ = (
        UniqueConstraint('registration_number', name='personnel_registration_number_key'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    registration_number: Mapped[str] = mapped_column(String(64), nullable=False)
    rank: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Cautela(Base):
    __tablename__ = 'cautelas'
    __table_args__ = (
        CheckConstraint(
            "(status = 'OPEN' AND returned_at IS NULL) OR (status = 'RETURNED' AND returned_at IS NOT NULL)",
            name='cautelas_returned_at_matches_status_ck',
        ),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    # Plain ids: personnel and admins can be deleted once nothing is open against them.
    personnel_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    armorer_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[CautelaStatus] = mapped_column(
        SQLEnum(CautelaStatus, name='cautela_status'), nullable=False, default=CautelaStatus.OPEN, server_default='OPEN'
    )
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    returned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    split_from_id: Mapped[int | None] = mapped_column(BigInteger)

    items: Mapped[list[CautelaItem]] = relationship(
        back_populates='cautela',
        cascade='all, delete-orphan',
        order_by='CautelaItem.position',
        lazy='selectin',
    )


class CautelaItem(Base):
    __tablename__ = 'cautela_items'
    __table_args__ = (
        UniqueConstraint('cautela_id', 'material_id', name='cautela_items_cautela_material_key'),
        CheckConstraint('quantity >= 1', name='cautela_items_quantity_positive_ck'),
    )

    cautela_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('cautelas.id', ondelete='CASCADE'), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    material_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    cautela: Mapped[Cautela] = relationship(back_populates='items')


class SystemLog(Base):
    __tablename__ = 'system_logs'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    armorer_name: Mapped[str] = mapped_column(Text, nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')


class AppSettings(Base):
    __tablename__ = 'app_settings'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    institution_name: Mapped[str] = mapped_column(Text, nullable=False)
    institution_logo: Mapped[str | None] = mapped_column(Text)
    theme: Mapped[Theme] = mapped_column(
        SQLEnum(Theme, name='app_theme', values_callable=lambda enum: [item.value for item in enum]),
        nullable=False,
        default=Theme.LIGHT,
        server_default='light',
    )


class Admin(Base):
    __tablename__ = 'admins'
    __table_args__ = (
        UniqueConstraint('matricula', name='admins_matricula_key'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    matricula: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[AdminRole] = mapped_column(SQLEnum(AdminRole, name='admin_role'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    admin_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('admins.id', ondelete='CASCADE'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
