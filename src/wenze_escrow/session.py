"""Wallet session guard (CIP-30 connection state).

A guard holds at most one immutable `WalletSession`. Reconnecting or
disconnecting yields a new guard, so an operation that already captured a
session keeps its signing handle until it finishes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol, Sequence

from . import address, balance
from .config import ESTIMATED_FEES, SUPPORTED_WALLETS
from .errors import ErrorCode, EscrowError, err
from .types import Network, TxDraft

logger = logging.getLogger(__name__)


class SigningHandle(Protocol):
    """The enabled wallet API. Addresses and balances come back hex-encoded."""

    async def get_used_addresses(self) -> list[str]: ...

    async def get_unused_addresses(self) -> list[str]: ...

    async def get_balance(self) -> str: ...

    async def get_network_id(self) -> int: ...

    async def sign_and_submit(self, draft: TxDraft) -> str: ...


class WalletProvider(Protocol):
    async def enable(self) -> SigningHandle: ...


@dataclass(frozen=True)
class WalletSession:
    account_address: str
    network: Network
    signing_handle: Any
    wallet_name: str = ""

    @property
    def payment_key_hash(self) -> bytes:
        return address.payment_key_hash(self.account_address)


@dataclass(frozen=True)
class SessionSnapshot:
    """Persistable part of a session; the signing handle is never stored."""

    account_address: str
    wallet_name: str

    def to_dict(self) -> dict:
        return {"account_address": self.account_address, "wallet_name": self.wallet_name}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionSnapshot":
        account = data.get("account_address")
        wallet = data.get("wallet_name")
        if not isinstance(account, str) or not account or not isinstance(wallet, str) or not wallet:
            raise EscrowError(ErrorCode.INVALID_INPUT, "session snapshot needs account_address and wallet_name")
        return cls(account_address=account, wallet_name=wallet)


def same_account(a: str, b: str) -> bool:
    """Compare addresses by raw bytes so hex and bech32 forms agree."""
    try:
        return address.decode(a) == address.decode(b)
    except EscrowError:
        return a == b


async def _owned_addresses(handle: SigningHandle, network: Network) -> list[str]:
    raw = list(await handle.get_used_addresses())
    if not raw:
        raw = list(await handle.get_unused_addresses())
    return [address.encode(a, network) for a in raw]


class WalletSessionGuard:
    def __init__(self, session: Optional[WalletSession] = None):
        self._session = session

    @classmethod
    def empty(cls) -> "WalletSessionGuard":
        return cls()

    @property
    def current(self) -> Optional[WalletSession]:
        return self._session

    @property
    def connected(self) -> bool:
        return self._session is not None

    @classmethod
    async def connect(cls, provider: WalletProvider, wallet_name: str = "") -> "WalletSessionGuard":
        try:
            handle = await provider.enable()
        except EscrowError:
            raise
        except Exception as exc:
            raise err(ErrorCode.SESSION_UNAVAILABLE, f"wallet {wallet_name or '?'} refused to enable: {exc}") from exc

        network = Network.from_network_id(await handle.get_network_id())
        owned = await _owned_addresses(handle, network)
        if not owned:
            raise err(ErrorCode.SESSION_UNAVAILABLE, "wallet exposes no addresses", wallet=wallet_name)
        session = WalletSession(
            account_address=owned[0],
            network=network,
            signing_handle=handle,
            wallet_name=wallet_name,
        )
        logger.info("connected %s wallet %s on %s", wallet_name or "unnamed", session.account_address, network.value)
        return cls(session)

    def disconnect(self) -> "WalletSessionGuard":
        return WalletSessionGuard()

    def require(self, expected_account: Optional[str] = None, network: Optional[Network] = None) -> WalletSession:
        session = self._session
        if session is None:
            raise EscrowError(ErrorCode.SESSION_UNAVAILABLE, "no wallet session is active")
        if network is not None and session.network is not network:
            raise err(
                ErrorCode.WRONG_NETWORK,
                f"wallet is on {session.network.value}, expected {network.value}",
                wallet_network=session.network.value,
                expected_network=network.value,
            )
        if expected_account is not None and not same_account(session.account_address, expected_account):
            raise err(
                ErrorCode.WRONG_ACCOUNT,
                "connected account does not match the expected account",
                connected=session.account_address,
                expected=expected_account,
            )
        return session

    async def ensure_balance(self, required_lovelace: int) -> int:
        """Check the wallet can cover `required_lovelace` plus the fee margin."""
        session = self.require()
        available = balance.decode(await session.signing_handle.get_balance())
        needed = required_lovelace + ESTIMATED_FEES
        if available < needed:
            raise err(
                ErrorCode.INSUFFICIENT_FUNDS,
                f"wallet holds {available} lovelace, {needed} needed",
                available=available,
                required=needed,
            )
        return available

    def snapshot(self) -> Optional[SessionSnapshot]:
        if self._session is None:
            return None
        return SessionSnapshot(self._session.account_address, self._session.wallet_name)


async def discover_wallet(
    providers: Mapping[str, WalletProvider],
    preferred: Optional[str] = None,
    order: Sequence[str] = SUPPORTED_WALLETS,
) -> WalletSessionGuard:
    """Connect the first available wallet, trying `preferred` first."""
    names = [preferred] if preferred else []
    names += [n for n in order if n != preferred]
    last_error: Optional[EscrowError] = None
    for name in names:
        provider = providers.get(name)
        if provider is None:
            continue
        try:
            return await WalletSessionGuard.connect(provider, name)
        except EscrowError as exc:
            logger.debug("wallet %s unavailable: %s", name, exc)
            last_error = exc
    if last_error is not None:
        raise last_error
    raise EscrowError(ErrorCode.SESSION_UNAVAILABLE, "no supported Cardano wallet found")


async def restore_session(
    snapshot: SessionSnapshot,
    providers: Mapping[str, WalletProvider],
) -> WalletSessionGuard:
    """Re-enable the remembered wallet and confirm it still owns the account."""
    provider = providers.get(snapshot.wallet_name)
    if provider is None:
        raise err(ErrorCode.SESSION_UNAVAILABLE, f"wallet {snapshot.wallet_name} is not installed")
    guard = await WalletSessionGuard.connect(provider, snapshot.wallet_name)
    session = guard.require()
    if same_account(session.account_address, snapshot.account_address):
        return guard
    owned = await _owned_addresses(session.signing_handle, session.network)
    for candidate in owned:
        if same_account(candidate, snapshot.account_address):
            return WalletSessionGuard(
                WalletSession(candidate, session.network, session.signing_handle, session.wallet_name)
            )
    raise err(
        ErrorCode.WRONG_ACCOUNT,
        "remembered account is no longer exposed by the wallet",
        expected=snapshot.account_address,
        connected=session.account_address,
    )
