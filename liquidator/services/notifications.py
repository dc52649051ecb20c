"""
Feed notification parsing

Raw websocket messages are turned into one of three variants at the boundary:
Subscribed, TransactionNotification or Unknown. Parsing never raises; anything
that does not look like a transaction notification is Unknown.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class Subscribed:
    """Subscription acknowledgement"""
    request_id: Any
    subscription_id: Any


@dataclass(frozen=True)
class TokenBalance:
    """One pre/post token balance record"""
    account_index: int
    amount: int
    mint: Optional[str] = None


@dataclass(frozen=True)
class TransactionNotification:
    """Fields of a transactionNotification used for buy detection"""
    signature: Optional[str]
    account_keys: List[str]
    pre_balances: List[int] = field(default_factory=list)
    post_balances: List[int] = field(default_factory=list)
    fee: Optional[int] = None
    pre_token_balances: List[TokenBalance] = field(default_factory=list)
    post_token_balances: List[TokenBalance] = field(default_factory=list)

    @property
    def fee_payer(self) -> Optional[str]:
        return self.account_keys[0] if self.account_keys else None

    def token_balance_at(self, account_index: int, post: bool) -> Optional[TokenBalance]:
        balances = self.post_token_balances if post else self.pre_token_balances
        for balance in balances:
            if balance.account_index == account_index:
                return balance
        return None


@dataclass(frozen=True)
class Unknown:
    """Anything else; reason is for debug logging only"""
    reason: str


Notification = Union[Subscribed, TransactionNotification, Unknown]


def parse_notification(raw: Union[str, bytes, Dict[str, Any]]) -> Notification:
    """Parse a raw feed message into a tagged notification"""
    if isinstance(raw, (str, bytes)):
        try:
            message = json.loads(raw)
        except ValueError:
            return Unknown("invalid_json")
    else:
        message = raw

    if not isinstance(message, dict):
        return Unknown("not_an_object")

    if message.get("method") == "transactionNotification":
        return _parse_transaction(message)

    if "id" in message and "result" in message and "method" not in message:
        return Subscribed(request_id=message["id"], subscription_id=message["result"])

    if "error" in message:
        return Unknown(f"error_response: {message['error']}")

    return Unknown(f"unhandled_method: {message.get('method')}")


def _parse_transaction(message: Dict[str, Any]) -> Notification:
    result = _dig(message, "params", "result")
    if not isinstance(result, dict):
        return Unknown("missing_result")

    envelope = result.get("transaction")
    if not isinstance(envelope, dict):
        return Unknown("missing_transaction")

    account_keys = _account_keys(_dig(envelope, "transaction", "message", "accountKeys"))
    if not account_keys:
        return Unknown("missing_account_keys")

    meta = envelope.get("meta")
    if not isinstance(meta, dict):
        return Unknown("missing_meta")

    signature = result.get("signature")
    if signature is None:
        signatures = _dig(envelope, "transaction", "signatures")
        if isinstance(signatures, list) and signatures:
            signature = signatures[0]

    return TransactionNotification(
        signature=signature if isinstance(signature, str) else None,
        account_keys=account_keys,
        pre_balances=_int_list(meta.get("preBalances")),
        post_balances=_int_list(meta.get("postBalances")),
        fee=_as_int(meta.get("fee")),
        pre_token_balances=_token_balances(meta.get("preTokenBalances")),
        post_token_balances=_token_balances(meta.get("postTokenBalances"))
    )


def _dig(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _account_keys(value: Any) -> List[str]:
    # jsonParsed encoding wraps each key as {"pubkey": ..., "signer": ...}
    if not isinstance(value, list):
        return []
    keys = []
    for entry in value:
        if isinstance(entry, str):
            keys.append(entry)
        elif isinstance(entry, dict) and isinstance(entry.get("pubkey"), str):
            keys.append(entry["pubkey"])
        else:
            return []
    return keys


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _int_list(value: Any) -> List[int]:
    if not isinstance(value, list):
        return []
    parsed = [_as_int(v) for v in value]
    if any(v is None for v in parsed):
        return []
    return parsed


def _token_balances(value: Any) -> List[TokenBalance]:
    if not isinstance(value, list):
        return []

    balances = []
    for entry in value:
        if not isinstance(entry, dict):
            continue
        index = _as_int(entry.get("accountIndex"))
        amount = entry.get("amount")
        if amount is None:
            amount = _dig(entry, "uiTokenAmount", "amount")
        amount = _as_int(amount)
        if index is None or amount is None:
            continue
        mint = entry.get("mint")
        balances.append(TokenBalance(
            account_index=index,
            amount=amount,
            mint=mint if isinstance(mint, str) else None
        ))
    return balances
