"""
Pytest configuration and shared fixtures
These fixtures are available to all test files
"""

import base64
from typing import Any, Callable, Dict, List, Optional

import base58
import pytest
import yaml
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction
from spl.token.instructions import get_associated_token_address

from liquidator.core.config import ConfigurationManager, LiquidationConfig, NATIVE_MINT
from liquidator.core.metrics import get_metrics
from liquidator.core.wallet_manager import Wallet, WalletRole


@pytest.fixture(autouse=True)
def reset_global_metrics():
    """Every test starts from empty counters"""
    get_metrics().reset()
    yield
    get_metrics().reset()


@pytest.fixture
def tracked_mint() -> str:
    return str(Keypair().pubkey())


@pytest.fixture
def wallet_keypairs() -> List[Keypair]:
    return [Keypair() for _ in range(5)]


@pytest.fixture
def wallet_secret_keys(wallet_keypairs) -> List[str]:
    """Base58 secret keys, the format used in configuration"""
    return [base58.b58encode(bytes(kp)).decode() for kp in wallet_keypairs]


@pytest.fixture
def wallets(wallet_keypairs) -> List[Wallet]:
    return [Wallet(keypair=kp, role=WalletRole.LIQUIDATION) for kp in wallet_keypairs]


@pytest.fixture
def test_config_dict(tracked_mint, wallet_secret_keys) -> Dict[str, Any]:
    """
    Sample configuration dictionary for testing

    Returns valid config that can be modified per test
    """
    return {
        "rpc": {
            "http_url": "https://api.devnet.solana.com",
            "timeout_s": 10
        },
        "feed": {
            "websocket_url": "wss://atlas-devnet.example.com",
            "commitment": "confirmed",
            "reconnect_delay_s": 5
        },
        "jupiter": {
            "api_key": "test-api-key",
            "slippage_bps": 1000,
            "priority_fee_lamports": 150000
        },
        "transactions": {
            "skip_preflight": True,
            "confirmation_timeout_s": 90,
            "confirmation_poll_interval_s": 1
        },
        "liquidation": {
            "tracked_mint": tracked_mint,
            "wallets": list(wallet_secret_keys),
            "min_buy_threshold_lamports": 69000000,
            "excluded_signers": []
        },
        "logging": {
            "level": "DEBUG",
            "format": "json",
            "output_file": None
        }
    }


@pytest.fixture
def test_config_file(test_config_dict, tmp_path):
    """
    Create a temporary config file for testing

    Returns path to temporary YAML config file
    """
    config_file = tmp_path / "test_config.yml"
    with open(config_file, 'w') as f:
        yaml.dump(test_config_dict, f)

    return str(config_file)


@pytest.fixture
def liquidation_config(test_config_dict) -> LiquidationConfig:
    return ConfigurationManager.parse_config(test_config_dict).liquidation_config


@pytest.fixture
def make_buy_notification(tracked_mint) -> Callable[..., Dict[str, Any]]:
    """
    Builder for raw transactionNotification messages

    The signer's associated token account sits at account index 1.
    """
    def _build(
        signer: Optional[Pubkey] = None,
        token_pre: int = 0,
        token_post: int = 1_000_000,
        native_pre: int = 1_000_000_000,
        native_post: Optional[int] = None,
        fee: int = 5_000,
        native_spent: int = 100_000_000,
        include_token_account: bool = True,
        signature: str = "5xBuySignature"
    ) -> Dict[str, Any]:
        signer = signer or Keypair().pubkey()
        mint = Pubkey.from_string(tracked_mint)
        token_account = get_associated_token_address(signer, mint)
        if native_post is None:
            native_post = native_pre - native_spent - fee

        second_key = str(token_account) if include_token_account else str(Keypair().pubkey())
        account_keys = [str(signer), second_key, tracked_mint, NATIVE_MINT]

        return {
            "jsonrpc": "2.0",
            "method": "transactionNotification",
            "params": {
                "subscription": 4743323479349712,
                "result": {
                    "signature": signature,
                    "slot": 224341380,
                    "transaction": {
                        "transaction": {
                            "signatures": [signature],
                            "message": {"accountKeys": account_keys}
                        },
                        "meta": {
                            "err": None,
                            "fee": fee,
                            "preBalances": [native_pre, 2039280, 1461600, 0],
                            "postBalances": [native_post, 2039280, 1461600, 0],
                            "preTokenBalances": [{
                                "accountIndex": 1,
                                "mint": tracked_mint,
                                "owner": str(signer),
                                "uiTokenAmount": {"amount": str(token_pre), "decimals": 6}
                            }],
                            "postTokenBalances": [{
                                "accountIndex": 1,
                                "mint": tracked_mint,
                                "owner": str(signer),
                                "uiTokenAmount": {"amount": str(token_post), "decimals": 6}
                            }]
                        }
                    }
                }
            }
        }

    return _build


@pytest.fixture
def make_unsigned_tx() -> Callable[[Keypair], VersionedTransaction]:
    """Unsigned v0 transfer paid by the given keypair, like an aggregator swap payload"""
    def _build(payer: Keypair) -> VersionedTransaction:
        instruction = transfer(TransferParams(
            from_pubkey=payer.pubkey(),
            to_pubkey=Keypair().pubkey(),
            lamports=1_000
        ))
        message = MessageV0.try_compile(payer.pubkey(), [instruction], [], Hash.default())
        return VersionedTransaction.populate(message, [Signature.default()])

    return _build


@pytest.fixture
def make_serialized_tx(make_unsigned_tx) -> Callable[[Keypair], str]:
    def _build(payer: Keypair) -> str:
        return base64.b64encode(bytes(make_unsigned_tx(payer))).decode()

    return _build


def pytest_configure(config):
    """Register custom pytest markers"""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (>5 seconds)"
    )
