"""Multi-quantity asset ledger: balances and operator approvals per asset contract.

Balances are keyed by ``(asset_contract, token_id, holder)``. An operator may
move a holder's units only after the holder grants approval-for-all on the
asset contract, mirroring the token contracts the marketplace lists.

``mint`` and ``set_approval_for_all`` are standalone operations and commit.
``transfer_from`` is a building block for larger operations: it flushes but
never commits, so the caller's transaction decides whether it sticks.

Rows are loaded with ``SELECT ... FOR UPDATE`` on PostgreSQL; SQLite relies
on WAL mode + busy_timeout for single-writer safety.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenmarket.database import is_sqlite_session
from tokenmarket.models.ledger import AssetBalance, AssetOperatorApproval, LedgerEntry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row helpers (private)
# ---------------------------------------------------------------------------

async def _get_balance_row(
    db: AsyncSession,
    asset_contract: str,
    token_id: str,
    holder: str,
    *,
    lock: bool = False,
) -> AssetBalance | None:
    stmt = select(AssetBalance).where(
        AssetBalance.asset_contract == asset_contract,
        AssetBalance.token_id == token_id,
        AssetBalance.holder == holder,
    )
    if lock and not is_sqlite_session(db):
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _get_or_create_balance_row(
    db: AsyncSession, asset_contract: str, token_id: str, holder: str
) -> AssetBalance:
    row = await _get_balance_row(db, asset_contract, token_id, holder, lock=True)
    if row is None:
        row = AssetBalance(
            asset_contract=asset_contract,
            token_id=token_id,
            holder=holder,
            balance=0,
        )
        db.add(row)
        await db.flush()
    return row


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def balance_of(db: AsyncSession, asset_contract: str, token_id: str, holder: str) -> int:
    row = await _get_balance_row(db, asset_contract, token_id, holder)
    return int(row.balance) if row is not None else 0


async def is_approved_for_all(
    db: AsyncSession, asset_contract: str, owner: str, operator: str
) -> bool:
    if owner == operator:
        return True
    result = await db.execute(
        select(AssetOperatorApproval).where(
            AssetOperatorApproval.asset_contract == asset_contract,
            AssetOperatorApproval.owner == owner,
            AssetOperatorApproval.operator == operator,
        )
    )
    approval = result.scalar_one_or_none()
    return bool(approval is not None and approval.approved)


async def set_approval_for_all(
    db: AsyncSession,
    asset_contract: str,
    owner: str,
    operator: str,
    approved: bool,
) -> AssetOperatorApproval:
    """Grant or revoke ``operator``'s right to move all of ``owner``'s units of ``asset_contract``."""
    result = await db.execute(
        select(AssetOperatorApproval).where(
            AssetOperatorApproval.asset_contract == asset_contract,
            AssetOperatorApproval.owner == owner,
            AssetOperatorApproval.operator == operator,
        )
    )
    approval = result.scalar_one_or_none()
    if approval is None:
        approval = AssetOperatorApproval(
            asset_contract=asset_contract,
            owner=owner,
            operator=operator,
        )
        db.add(approval)
    approval.approved = approved
    await db.commit()
    await db.refresh(approval)
    logger.info(
        "Asset approval %s: owner=%s operator=%s contract=%s",
        "granted" if approved else "revoked",
        owner,
        operator,
        asset_contract,
    )
    return approval


async def mint(
    db: AsyncSession,
    asset_contract: str,
    token_id: str,
    to_holder: str,
    quantity: int,
    memo: str = "Mint",
) -> LedgerEntry:
    """Create ``quantity`` new units for ``to_holder``. Used for bootstrapping balances."""
    if quantity <= 0:
        raise ValueError("Mint quantity must be positive")

    row = await _get_or_create_balance_row(db, asset_contract, token_id, to_holder)
    row.balance = int(row.balance) + quantity

    entry = LedgerEntry(
        kind="asset",
        instrument=asset_contract,
        token_id=token_id,
        from_holder=None,
        to_holder=to_holder,
        amount=quantity,
        tx_type="mint",
        memo=memo,
    )
    db.add(entry)
    await db.commit()
    await db.refresh(entry)
    logger.info("Minted %s x %s#%s to %s", quantity, asset_contract, token_id, to_holder)
    return entry


async def transfer_from(
    db: AsyncSession,
    operator: str,
    asset_contract: str,
    token_id: str,
    from_holder: str,
    to_holder: str,
    quantity: int,
    *,
    tx_type: str,
    listing_id: int | None = None,
    memo: str = "",
) -> LedgerEntry:
    """Move ``quantity`` units from ``from_holder`` to ``to_holder`` on behalf of ``operator``.

    Raises:
        ValueError: if the operator is not approved or the balance is insufficient.
    """
    if quantity <= 0:
        raise ValueError("Transfer quantity must be positive")
    if not await is_approved_for_all(db, asset_contract, from_holder, operator):
        raise ValueError(
            f"Operator {operator} is not approved for {from_holder} on {asset_contract}"
        )

    # Lock rows in deterministic order (by holder) to prevent deadlocks
    rows: dict[str, AssetBalance] = {}
    for holder in sorted({from_holder, to_holder}):
        rows[holder] = await _get_or_create_balance_row(db, asset_contract, token_id, holder)

    sender = rows[from_holder]
    receiver = rows[to_holder]
    if int(sender.balance) < quantity:
        raise ValueError(
            f"Insufficient balance: {from_holder} holds {sender.balance} of "
            f"{asset_contract}#{token_id}, needs {quantity}"
        )

    sender.balance = int(sender.balance) - quantity
    receiver.balance = int(receiver.balance) + quantity

    entry = LedgerEntry(
        kind="asset",
        instrument=asset_contract,
        token_id=token_id,
        from_holder=from_holder,
        to_holder=to_holder,
        amount=quantity,
        tx_type=tx_type,
        listing_id=listing_id,
        memo=memo,
    )
    db.add(entry)
    await db.flush()

    logger.info(
        "Asset transfer %s: %s x %s#%s from %s -> %s [%s]",
        entry.id,
        quantity,
        asset_contract,
        token_id,
        from_holder,
        to_holder,
        tx_type,
    )
    return entry
