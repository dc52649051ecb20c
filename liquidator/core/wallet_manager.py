"""
Wallet loading and the per-run rotation pool
"""

import random
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from liquidator.core.errors import ConfigurationError
from liquidator.core.logger import get_logger


logger = get_logger(__name__)


class WalletRole(Enum):
    """What a wallet is allowed to do"""
    LIQUIDATION = "liquidation"
    ROUND = "round"


@dataclass(frozen=True)
class Wallet:
    """An owned signing identity, loaded once at startup"""
    keypair: Keypair
    role: WalletRole = WalletRole.LIQUIDATION

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    @property
    def address(self) -> str:
        return str(self.keypair.pubkey())

    @property
    def short_address(self) -> str:
        return f"{self.address[:8]}..."

    def to_dict(self) -> dict:
        return {"pubkey": self.address, "role": self.role.value}


def load_wallet(secret_key: str, role: WalletRole = WalletRole.LIQUIDATION) -> Wallet:
    """
    Load a wallet from a base58-encoded 64-byte secret key

    Raises:
        ConfigurationError: If the key cannot be decoded
    """
    try:
        key_bytes = base58.b58decode(secret_key.strip())
    except ValueError as e:
        raise ConfigurationError(f"Wallet key is not valid base58: {e}") from e

    if len(key_bytes) != 64:
        raise ConfigurationError(
            f"Wallet key decoded to {len(key_bytes)} bytes, expected 64"
        )

    try:
        keypair = Keypair.from_bytes(key_bytes)
    except ValueError as e:
        raise ConfigurationError(f"Invalid wallet keypair: {e}") from e

    return Wallet(keypair=keypair, role=role)


def load_wallets(secret_keys: Iterable[str], role: WalletRole = WalletRole.LIQUIDATION) -> List[Wallet]:
    """Load every key; key material is never logged"""
    wallets = [load_wallet(key, role) for key in secret_keys]

    logger.info(
        "wallets_loaded",
        role=role.value,
        wallet_count=len(wallets),
        wallets=[w.short_address for w in wallets]
    )
    return wallets


class WalletPool:
    """
    Rotation policy for one liquidation run

    Draws without repetition while any wallet is still available, then
    revisits already-used wallets. Used wallets are never made available
    again. Build a fresh pool for every run.

    Usage:
        pool = WalletPool(wallets)
        wallet = pool.draw()
    """

    def __init__(self, wallets: Sequence[Wallet], rng: Optional[random.Random] = None):
        if not wallets:
            raise ValueError("WalletPool requires at least one wallet")

        self._rng = rng or random.Random()
        self._available: List[Wallet] = list(wallets)
        self._used: List[Wallet] = []

    @property
    def available(self) -> List[Wallet]:
        return list(self._available)

    @property
    def used(self) -> List[Wallet]:
        return list(self._used)

    def draw(self) -> Wallet:
        """Uniform draw from available, or from used once available is empty"""
        if not self._available:
            return self._rng.choice(self._used)

        wallet = self._available.pop(self._rng.randrange(len(self._available)))
        self._used.append(wallet)
        return wallet
