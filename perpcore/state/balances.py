"""
Wallet balance tracking and the collateral vault.

Implements BalanceTable[Holder, AssetId] -> Amount and a VaultLedger that
executes the engine's ``Transfer`` requests against it.
"""

from __future__ import annotations

from typing import Dict, Iterable, Tuple

from ..core.types import Transfer, TransferKind


# Type aliases
Holder = str  # wallet identity (trader, liquidator) or VAULT_HOLDER
AssetId = str
Amount = int  # Non-negative integer (arbitrary precision)

# Collateral asset identifier
QUOTE_ASSET = "QUOTE"

# Holder that custodies every margin account's collateral
VAULT_HOLDER = "vault"


class BalanceTable:
    """
    Balance table mapping (holder, asset) -> amount.

    Note: balances live in a plain dict. Do not rely on dict iteration order;
    callers that need a stable listing should sort keys explicitly.
    """

    def __init__(self):
        """Initialize empty balance table."""
        self._balances: Dict[Tuple[Holder, AssetId], Amount] = {}

    def get(self, holder: Holder, asset: AssetId = QUOTE_ASSET) -> Amount:
        """Get balance for (holder, asset). Returns 0 if not found."""
        return self._balances.get((holder, asset), 0)

    def set(self, holder: Holder, asset: AssetId, amount: Amount) -> None:
        """
        Set balance for (holder, asset).

        Raises:
            ValueError: If amount is negative
        """
        if amount < 0:
            raise ValueError(f"Balance cannot be negative: {amount}")
        if amount == 0:
            # Remove zero balances to keep table sparse
            self._balances.pop((holder, asset), None)
        else:
            self._balances[(holder, asset)] = amount

    def add(self, holder: Holder, asset: AssetId, delta: Amount) -> None:
        """
        Add delta to balance (can be negative for subtraction).

        Raises:
            ValueError: If resulting balance would be negative
        """
        current = self.get(holder, asset)
        new_balance = current + delta
        if new_balance < 0:
            raise ValueError(
                f"Insufficient balance: {current} + {delta} = {new_balance} < 0"
            )
        self.set(holder, asset, new_balance)

    def subtract(self, holder: Holder, asset: AssetId, delta: Amount) -> None:
        """
        Subtract a non-negative delta from balance.

        Raises:
            ValueError: If delta is negative or insufficient balance
        """
        if delta < 0:
            raise ValueError(f"Delta must be non-negative: {delta}")
        self.add(holder, asset, -delta)

    def move(self, src: Holder, dst: Holder, amount: Amount, asset: AssetId = QUOTE_ASSET) -> None:
        """Move ``amount`` from ``src`` to ``dst``; nothing changes on failure."""
        if amount < 0:
            raise ValueError(f"Amount must be non-negative: {amount}")
        self.subtract(src, asset, amount)
        self.add(dst, asset, amount)

    def total(self, asset: AssetId = QUOTE_ASSET) -> Amount:
        return sum(v for (_, a), v in self._balances.items() if a == asset)

    def get_all_balances(self) -> Dict[Tuple[Holder, AssetId], Amount]:
        return dict(self._balances)

    def copy(self) -> "BalanceTable":
        out = BalanceTable()
        out._balances = dict(self._balances)
        return out

    def __repr__(self) -> str:
        return f"BalanceTable({len(self._balances)} entries)"


def _route(transfer: Transfer) -> Tuple[Holder, Holder]:
    """(source, destination) of a transfer request."""
    if transfer.kind is TransferKind.DEPOSIT:
        return transfer.counterparty, VAULT_HOLDER
    if transfer.kind in (TransferKind.WITHDRAWAL, TransferKind.LIQUIDATOR_FEE):
        return VAULT_HOLDER, transfer.counterparty
    raise ValueError(f"unknown transfer kind: {transfer.kind!r}")


class VaultLedger:
    """
    Executes ``Transfer`` requests between wallets and the collateral vault.

    ``check`` dry-runs a batch on a copy so the host can refuse a step before
    committing it; ``apply`` performs the batch in order.
    """

    def __init__(self, balances: BalanceTable | None = None, asset: AssetId = QUOTE_ASSET):
        self.balances = balances if balances is not None else BalanceTable()
        self.asset = asset

    def fund(self, holder: Holder, amount: Amount) -> None:
        """Credit a wallet from outside the exchange (faucet / bridge in)."""
        self.balances.add(holder, self.asset, amount)

    def balance_of(self, holder: Holder) -> Amount:
        return self.balances.get(holder, self.asset)

    @property
    def vault_balance(self) -> Amount:
        return self.balances.get(VAULT_HOLDER, self.asset)

    def check(self, transfers: Iterable[Transfer]) -> None:
        """Raise ``ValueError`` if the batch cannot be executed in full."""
        scratch = self.balances.copy()
        for t in transfers:
            src, dst = _route(t)
            scratch.move(src, dst, t.amount, self.asset)

    def apply(self, transfers: Iterable[Transfer]) -> None:
        for t in transfers:
            src, dst = _route(t)
            self.balances.move(src, dst, t.amount, self.asset)
