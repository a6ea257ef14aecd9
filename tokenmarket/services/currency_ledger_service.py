"""Fungible currency ledger: balances and spender allowances per currency.

All amounts use Decimal(18,6). ``mint`` and ``approve`` commit on their own;
``transfer`` and ``transfer_from`` only flush, leaving the commit to the
enclosing operation.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenmarket.core.amounts import to_decimal
from tokenmarket.database import is_sqlite_session
from tokenmarket.models.ledger import CurrencyAllowance, CurrencyBalance, LedgerEntry

logger = logging.getLogger(__name__)


async def _get_balance_row(
    db: AsyncSession, currency: str, holder: str, *, lock: bool = False
) -> CurrencyBalance | None:
    stmt = select(CurrencyBalance).where(
        CurrencyBalance.currency == currency,
        CurrencyBalance.holder == holder,
    )
    if lock and not is_sqlite_session(db):
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _get_or_create_balance_row(
    db: AsyncSession, currency: str, holder: str
) -> CurrencyBalance:
    row = await _get_balance_row(db, currency, holder, lock=True)
    if row is None:
        row = CurrencyBalance(currency=currency, holder=holder, balance=Decimal("0"))
        db.add(row)
        await db.flush()
    return row


async def _get_allowance_row(
    db: AsyncSession, currency: str, owner: str, spender: str, *, lock: bool = False
) -> CurrencyAllowance | None:
    stmt = select(CurrencyAllowance).where(
        CurrencyAllowance.currency == currency,
        CurrencyAllowance.owner == owner,
        CurrencyAllowance.spender == spender,
    )
    if lock and not is_sqlite_session(db):
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _move(
    db: AsyncSession,
    currency: str,
    from_holder: str,
    to_holder: str,
    amount: Decimal,
    *,
    tx_type: str,
    listing_id: int | None,
    memo: str,
) -> LedgerEntry:
    # Lock rows in deterministic order (by holder) to prevent deadlocks
    rows: dict[str, CurrencyBalance] = {}
    for holder in sorted({from_holder, to_holder}):
        rows[holder] = await _get_or_create_balance_row(db, currency, holder)

    sender = rows[from_holder]
    receiver = rows[to_holder]
    if to_decimal(sender.balance) < amount:
        raise ValueError(
            f"Insufficient balance: {from_holder} has {sender.balance} {currency}, needs {amount}"
        )

    sender.balance = to_decimal(sender.balance) - amount
    receiver.balance = to_decimal(receiver.balance) + amount

    entry = LedgerEntry(
        kind="currency",
        instrument=currency,
        from_holder=from_holder,
        to_holder=to_holder,
        amount=amount,
        tx_type=tx_type,
        listing_id=listing_id,
        memo=memo,
    )
    db.add(entry)
    await db.flush()

    logger.info(
        "Currency transfer %s: %s %s from %s -> %s [%s]",
        entry.id, amount, currency, from_holder, to_holder, tx_type,
    )
    return entry


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def balance_of(db: AsyncSession, currency: str, holder: str) -> Decimal:
    row = await _get_balance_row(db, currency, holder)
    return to_decimal(row.balance) if row is not None else Decimal("0")


async def allowance(db: AsyncSession, currency: str, owner: str, spender: str) -> Decimal:
    row = await _get_allowance_row(db, currency, owner, spender)
    return to_decimal(row.amount) if row is not None else Decimal("0")


async def approve(
    db: AsyncSession, currency: str, owner: str, spender: str, amount: float | str | Decimal
) -> CurrencyAllowance:
    """Set (not add to) the amount ``spender`` may pull from ``owner``."""
    d_amount = to_decimal(amount)
    if d_amount < 0:
        raise ValueError("Allowance must be non-negative")

    row = await _get_allowance_row(db, currency, owner, spender, lock=True)
    if row is None:
        row = CurrencyAllowance(currency=currency, owner=owner, spender=spender)
        db.add(row)
    row.amount = d_amount
    await db.commit()
    await db.refresh(row)
    logger.info("Allowance set: %s may spend %s %s of %s", spender, d_amount, currency, owner)
    return row


async def mint(
    db: AsyncSession,
    currency: str,
    to_holder: str,
    amount: float | str | Decimal,
    memo: str = "Mint",
) -> LedgerEntry:
    d_amount = to_decimal(amount)
    if d_amount <= 0:
        raise ValueError("Mint amount must be positive")

    row = await _get_or_create_balance_row(db, currency, to_holder)
    row.balance = to_decimal(row.balance) + d_amount

    entry = LedgerEntry(
        kind="currency",
        instrument=currency,
        from_holder=None,
        to_holder=to_holder,
        amount=d_amount,
        tx_type="mint",
        memo=memo,
    )
    db.add(entry)
    await db.commit()
    await db.refresh(entry)
    logger.info("Minted %s %s to %s", d_amount, currency, to_holder)
    return entry


async def transfer(
    db: AsyncSession,
    currency: str,
    from_holder: str,
    to_holder: str,
    amount: float | str | Decimal,
    *,
    tx_type: str = "transfer",
    listing_id: int | None = None,
    memo: str = "",
) -> LedgerEntry:
    """Move ``from_holder``'s own funds. No allowance involved."""
    d_amount = to_decimal(amount)
    if d_amount <= 0:
        raise ValueError("Transfer amount must be positive")
    return await _move(
        db, currency, from_holder, to_holder, d_amount,
        tx_type=tx_type, listing_id=listing_id, memo=memo,
    )


async def transfer_from(
    db: AsyncSession,
    spender: str,
    currency: str,
    from_holder: str,
    to_holder: str,
    amount: float | str | Decimal,
    *,
    tx_type: str = "transfer",
    listing_id: int | None = None,
    memo: str = "",
) -> LedgerEntry:
    """Move funds on behalf of ``from_holder``, consuming ``spender``'s allowance.

    Raises:
        ValueError: if the allowance or the balance is insufficient.
    """
    d_amount = to_decimal(amount)
    if d_amount <= 0:
        raise ValueError("Transfer amount must be positive")

    if spender != from_holder:
        row = await _get_allowance_row(db, currency, from_holder, spender, lock=True)
        remaining = to_decimal(row.amount) if row is not None else Decimal("0")
        if remaining < d_amount:
            raise ValueError(
                f"Insufficient allowance: {spender} may spend {remaining} {currency} "
                f"of {from_holder}, needs {d_amount}"
            )
        row.amount = remaining - d_amount

    return await _move(
        db, currency, from_holder, to_holder, d_amount,
        tx_type=tx_type, listing_id=listing_id, memo=memo,
    )
