from __future__ import annotations

import hmac
from dataclasses import dataclass
from hashlib import sha256
from typing import Any
from urllib.parse import urlencode

from botfleet.core.env import env_str


@dataclass(frozen=True)
class ApiKeys:
    api_key: str
    api_secret: str

    def __repr__(self) -> str:
        # never leak the secret through logs/tracebacks
        return f"ApiKeys(api_key={self.api_key[:4]}***)"


@dataclass(frozen=True)
class CredentialSet:
    mainnet: ApiKeys | None = None
    testnet: ApiKeys | None = None

    def resolve(self, use_testnet: bool) -> ApiKeys | None:
        return self.testnet if use_testnet else self.mainnet

    def has_any(self) -> bool:
        return self.mainnet is not None or self.testnet is not None


def _keys_from_env(key_var: str, secret_var: str) -> ApiKeys | None:
    k = env_str(key_var)
    s = env_str(secret_var)
    if not k or not s:
        return None
    return ApiKeys(api_key=k, api_secret=s)


def load_credentials_from_env() -> CredentialSet:
    return CredentialSet(
        mainnet=_keys_from_env("BINANCE_API_KEY", "BINANCE_API_SECRET"),
        testnet=_keys_from_env("TEST_BINANCE_API_KEY", "TEST_BINANCE_API_SECRET"),
    )


def encode_params(params: dict[str, Any]) -> list[tuple[str, str]]:
    """Canonical parameter list: None dropped, booleans lower-cased, keys sorted."""
    items: list[tuple[str, str]] = []
    for k, v in sorted(params.items(), key=lambda kv: str(kv[0])):
        if v is None:
            continue
        if isinstance(v, bool):
            sv = "true" if v else "false"
        else:
            sv = str(v)
        items.append((str(k), sv))
    return items


def sign_query(query: str, api_secret: str) -> str:
    return hmac.new(api_secret.encode("utf-8"), query.encode("utf-8"), sha256).hexdigest()


def signed_query(params: dict[str, Any], api_secret: str, *, timestamp_ms: int, recv_window_ms: int) -> str:
    """
    Encode params, append timestamp/recvWindow, then append the signature computed over
    exactly the string that will be sent.
    """
    items = encode_params(params)
    items.append(("timestamp", str(int(timestamp_ms))))
    items.append(("recvWindow", str(int(recv_window_ms))))
    qs = urlencode(items)
    return f"{qs}&signature={sign_query(qs, api_secret)}"
