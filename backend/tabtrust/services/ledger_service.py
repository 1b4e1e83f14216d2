"""
Ledger verifier for settlement transactions.

Queries a Movement (Aptos-compatible) fullnode REST API for a transaction
hash and extracts sender, recipient, amount and asset. No state is kept.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional
import logging

import httpx

from tabtrust.core.config import settings
from tabtrust.core.errors import internal_error, not_found
from tabtrust.core.utils import quantize_amount

logger = logging.getLogger(__name__)

# Entry functions that move funds, mapped to the positions of
# (recipient, amount) in the payload arguments.
TRANSFER_FUNCTIONS = {
    "0x1::primary_fungible_store::transfer": (1, 2),
    "0x1::aptos_account::transfer_fungible_assets": (1, 2),
    "0x1::aptos_account::transfer_coins": (0, 1),
    "0x1::coin::transfer": (0, 1),
    "0x1::aptos_account::transfer": (0, 1),
}
NATIVE_COIN = "0x1::aptos_coin::AptosCoin"


@dataclass
class LedgerTransaction:
    """Facts about an on-chain transfer relevant to settlement."""
    tx_hash: str
    confirmed: bool
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: Optional[int] = None  # raw on-chain units
    asset: Optional[str] = None
    block_number: Optional[int] = None


def to_currency_amount(raw_amount: int, currency: str) -> Decimal:
    """
    Convert raw on-chain units to a currency amount at the currency scale.

    USDC has 6 on-chain decimals, so 33340000 -> 33.34.
    """
    decimals = settings.ASSET_DECIMALS.get(currency.upper())
    if decimals is None:
        raise internal_error(f"No on-chain decimals configured for {currency}")
    return quantize_amount(Decimal(raw_amount).scaleb(-decimals), currency)


def _extract_asset(function: str, payload: Dict[str, Any]) -> Optional[str]:
    type_arguments = payload.get("type_arguments") or []
    arguments = payload.get("arguments") or []
    if function == "0x1::aptos_account::transfer":
        return NATIVE_COIN
    if function in ("0x1::primary_fungible_store::transfer", "0x1::aptos_account::transfer_fungible_assets"):
        metadata = arguments[0] if arguments else None
        if isinstance(metadata, dict):
            return metadata.get("inner")
        return metadata
    return type_arguments[0] if type_arguments else None


class LedgerVerifier:
    """Looks up transactions on the ledger through an injected HTTP client."""

    def __init__(self, client: httpx.Client, base_url: Optional[str] = None):
        self.client = client
        self.base_url = (base_url or settings.LEDGER_RPC_URL).rstrip("/")

    def verify_transaction(self, tx_hash: str) -> LedgerTransaction:
        """
        Fetch a transaction by hash.

        Raises NOT_FOUND when the ledger does not know the hash and INTERNAL
        when the ledger cannot be reached. Pending or failed transactions are
        returned with ``confirmed=False``.
        """
        url = f"{self.base_url}/transactions/by_hash/{tx_hash}"
        logger.info(f"Verifying transaction {tx_hash}")

        try:
            response = self.client.get(url, timeout=settings.LEDGER_TIMEOUT_SECONDS)
            if response.status_code == 404:
                raise not_found("transaction", tx_hash=tx_hash)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Ledger returned HTTP {e.response.status_code} for {tx_hash}")
            raise internal_error("Failed to verify ledger transaction")
        except httpx.HTTPError as e:
            # Network errors and timeouts
            logger.error(f"Ledger request failed for {tx_hash}: {e}")
            raise internal_error("Failed to verify ledger transaction")

        return self._parse_transaction(tx_hash, data)

    def _parse_transaction(self, tx_hash: str, data: Dict[str, Any]) -> LedgerTransaction:
        if data.get("type") == "pending_transaction":
            logger.info(f"Transaction {tx_hash} is still pending")
            return LedgerTransaction(tx_hash=tx_hash, confirmed=False, from_address=data.get("sender"))

        payload = data.get("payload") or {}
        function = payload.get("function", "")
        arguments = payload.get("arguments") or []
        positions = TRANSFER_FUNCTIONS.get(function)

        to_address = None
        amount = None
        if positions and len(arguments) > max(positions):
            recipient_index, amount_index = positions
            to_address = arguments[recipient_index]
            try:
                amount = int(arguments[amount_index])
            except (TypeError, ValueError):
                logger.warning(f"Unparseable amount in transaction {tx_hash}: {arguments[amount_index]!r}")
        else:
            logger.warning(f"Transaction {tx_hash} is not a recognised transfer ({function or 'no payload'})")

        version = data.get("version")
        return LedgerTransaction(
            tx_hash=tx_hash,
            confirmed=bool(data.get("success")),
            from_address=data.get("sender"),
            to_address=to_address,
            amount=amount,
            asset=_extract_asset(function, payload) if positions else None,
            block_number=int(version) if version is not None else None,
        )
