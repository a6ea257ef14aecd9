"""Asset and currency ledgers: balances, approvals, and the append-only movement log.

These tables stand in for the token contracts the marketplace trades against:
a multi-quantity asset ledger keyed by ``(asset_contract, token_id, holder)``
and a fungible currency ledger keyed by ``(currency, holder)``.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from tokenmarket.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class AssetBalance(Base):
    """Units of one asset held by one holder."""

    __tablename__ = "asset_balances"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    asset_contract = Column(String(66), nullable=False)
    token_id = Column(String(78), nullable=False)
    holder = Column(String(64), nullable=False)
    balance = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("asset_contract", "token_id", "holder", name="uq_asset_balance_holder"),
        CheckConstraint("balance >= 0", name="ck_asset_balance_nonneg"),
        Index("idx_asset_balance_holder", "holder"),
    )


class AssetOperatorApproval(Base):
    """Approval-for-all: ``operator`` may move every unit ``owner`` holds of ``asset_contract``."""

    __tablename__ = "asset_operator_approvals"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    asset_contract = Column(String(66), nullable=False)
    owner = Column(String(64), nullable=False)
    operator = Column(String(64), nullable=False)
    approved = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("asset_contract", "owner", "operator", name="uq_asset_operator"),
    )


class CurrencyBalance(Base):
    __tablename__ = "currency_balances"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    currency = Column(String(66), nullable=False)
    holder = Column(String(64), nullable=False)
    balance = Column(Numeric(18, 6), nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("currency", "holder", name="uq_currency_balance_holder"),
        CheckConstraint("balance >= 0", name="ck_currency_balance_nonneg"),
        Index("idx_currency_balance_holder", "holder"),
    )


class CurrencyAllowance(Base):
    """Amount ``spender`` may still pull from ``owner``; consumed by each pull."""

    __tablename__ = "currency_allowances"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    currency = Column(String(66), nullable=False)
    owner = Column(String(64), nullable=False)
    spender = Column(String(64), nullable=False)
    amount = Column(Numeric(18, 6), nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("currency", "owner", "spender", name="uq_currency_allowance"),
        CheckConstraint("amount >= 0", name="ck_currency_allowance_nonneg"),
    )


class LedgerEntry(Base):
    """Immutable, append-only audit trail. Every asset or currency movement = one row."""

    __tablename__ = "ledger_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    kind = Column(String(10), nullable=False)  # asset | currency
    instrument = Column(String(66), nullable=False)  # asset contract or currency id
    token_id = Column(String(78), nullable=True)  # NULL for currency
    from_holder = Column(String(64), nullable=True)  # NULL = mint
    to_holder = Column(String(64), nullable=False)
    amount = Column(Numeric(18, 6), nullable=False)
    tx_type = Column(
        String(30), nullable=False
    )  # mint, escrow_in, escrow_out, refund, payout, purchase, transfer
    listing_id = Column(Integer, nullable=True)
    memo = Column(Text, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_ledger_from", "from_holder"),
        Index("idx_ledger_to", "to_holder"),
        Index("idx_ledger_type", "tx_type"),
        Index("idx_ledger_listing", "listing_id"),
    )
