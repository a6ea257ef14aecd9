"""Escrow transfer engine: moves assets and currency in and out of marketplace custody.

Custody is an ordinary ledger holder (``settings.marketplace_custody_id``).
Pulls require the counterparty to have approved the marketplace beforehand;
pushes only require custody to hold enough.

Nothing here commits. Each function mutates the caller's session so the
transfer and the listing/offer update it belongs to succeed or fail together.
Preconditions are checked explicitly and surfaced as ``TransferError`` with
a specific reason.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from tokenmarket.config import settings
from tokenmarket.core.amounts import to_decimal
from tokenmarket.core.exceptions import TransferError
from tokenmarket.models.ledger import LedgerEntry
from tokenmarket.services import asset_ledger_service, currency_ledger_service

logger = logging.getLogger(__name__)


def custody_id() -> str:
    return settings.marketplace_custody_id


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------

async def pull_asset(
    db: AsyncSession,
    asset_contract: str,
    token_id: str,
    from_id: str,
    quantity: int,
    *,
    listing_id: int | None = None,
    tx_type: str = "escrow_in",
) -> LedgerEntry | None:
    """Move ``quantity`` units from ``from_id`` into custody."""
    if quantity == 0:
        return None
    custody = custody_id()

    if not await asset_ledger_service.is_approved_for_all(db, asset_contract, from_id, custody):
        raise TransferError("Market: requires token approval.")
    held = await asset_ledger_service.balance_of(db, asset_contract, token_id, from_id)
    if held < quantity:
        raise TransferError("Market: seller must own enough tokens.")

    try:
        return await asset_ledger_service.transfer_from(
            db, custody, asset_contract, token_id, from_id, custody, quantity,
            tx_type=tx_type, listing_id=listing_id, memo=f"Escrow in for listing {listing_id}",
        )
    except ValueError as exc:
        raise TransferError(f"Market: asset transfer failed: {exc}") from exc


async def push_asset(
    db: AsyncSession,
    asset_contract: str,
    token_id: str,
    to_id: str,
    quantity: int,
    *,
    listing_id: int | None = None,
    tx_type: str = "escrow_out",
) -> LedgerEntry | None:
    """Release ``quantity`` units from custody to ``to_id``."""
    if quantity == 0:
        return None
    custody = custody_id()

    held = await asset_ledger_service.balance_of(db, asset_contract, token_id, custody)
    if held < quantity:
        logger.error(
            "Custody short on %s#%s: holds %s, asked to release %s (listing %s)",
            asset_contract, token_id, held, quantity, listing_id,
        )
        raise TransferError("Market: escrow holds insufficient tokens.")

    try:
        return await asset_ledger_service.transfer_from(
            db, custody, asset_contract, token_id, custody, to_id, quantity,
            tx_type=tx_type, listing_id=listing_id, memo=f"Escrow out for listing {listing_id}",
        )
    except ValueError as exc:
        raise TransferError(f"Market: asset transfer failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Currency
# ---------------------------------------------------------------------------

async def pull_currency(
    db: AsyncSession,
    currency: str,
    from_id: str,
    amount: Decimal | int | str,
    *,
    listing_id: int | None = None,
    tx_type: str = "escrow_in",
) -> LedgerEntry | None:
    """Move ``amount`` from ``from_id`` into custody, consuming the marketplace's allowance."""
    d_amount = to_decimal(amount)
    if d_amount == 0:
        return None
    custody = custody_id()

    granted = await currency_ledger_service.allowance(db, currency, from_id, custody)
    if granted < d_amount:
        raise TransferError("Market: requires currency allowance.")
    available = await currency_ledger_service.balance_of(db, currency, from_id)
    if available < d_amount:
        raise TransferError("Market: insufficient currency balance.")

    try:
        return await currency_ledger_service.transfer_from(
            db, custody, currency, from_id, custody, d_amount,
            tx_type=tx_type, listing_id=listing_id, memo=f"Escrow in for listing {listing_id}",
        )
    except ValueError as exc:
        raise TransferError(f"Market: currency transfer failed: {exc}") from exc


async def push_currency(
    db: AsyncSession,
    currency: str,
    to_id: str,
    amount: Decimal | int | str,
    *,
    listing_id: int | None = None,
    tx_type: str = "escrow_out",
) -> LedgerEntry | None:
    """Release ``amount`` from custody to ``to_id``."""
    d_amount = to_decimal(amount)
    if d_amount == 0:
        return None
    custody = custody_id()

    available = await currency_ledger_service.balance_of(db, currency, custody)
    if available < d_amount:
        logger.error(
            "Custody short on %s: holds %s, asked to release %s (listing %s)",
            currency, available, d_amount, listing_id,
        )
        raise TransferError("Market: escrow holds insufficient currency.")

    try:
        return await currency_ledger_service.transfer(
            db, currency, custody, to_id, d_amount,
            tx_type=tx_type, listing_id=listing_id, memo=f"Escrow out for listing {listing_id}",
        )
    except ValueError as exc:
        raise TransferError(f"Market: currency transfer failed: {exc}") from exc
