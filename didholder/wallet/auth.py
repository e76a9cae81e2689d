"""
Wallet sign-in: a connected wallet proves key possession by signing
"authenticate:{did}:{timestamp}"; the resulting session record is persisted
under STORAGE_KEY and stays valid for SESSION_TTL_DAYS for that wallet only.

Every AuthSession bound to the same SessionChannel sees each session write
(including its own) as soon as it happens.
"""
import base64
import logging
import time
from typing import Callable, Protocol

from pydantic import ValidationError

from didholder.core.config import settings
from didholder.db.storage import KeyValueStorage
from didholder.wallet.errors import AuthenticationFailed
from didholder.wallet.models import AuthRecord

logger = logging.getLogger(__name__)

STORAGE_KEY = "wallet_auth"
DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


def public_key_to_did(public_key: str) -> str:
    return f"did:pkh:solana:{public_key}"


class WalletAdapter(Protocol):
    public_key: str | None

    async def sign_message(self, message: bytes) -> bytes: ...


SessionHandler = Callable[[AuthRecord | None], None]


class SessionChannel:
    """Publish/subscribe for session writes; None means the session was cleared."""

    def __init__(self):
        self._handlers: list[SessionHandler] = []

    def subscribe(self, handler: SessionHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, record: AuthRecord | None) -> None:
        for handler in list(self._handlers):
            handler(record)


class AuthSession:
    def __init__(
        self,
        storage: KeyValueStorage,
        wallet: WalletAdapter | None = None,
        channel: SessionChannel | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._storage = storage
        self.wallet = wallet
        self.channel = channel if channel is not None else SessionChannel()
        self._clock = clock
        self.is_authenticated = False
        self.auth_loading = True
        self._unsubscribe = self.channel.subscribe(self._on_session_change)

    @property
    def public_key(self) -> str | None:
        return self.wallet.public_key if self.wallet else None

    @property
    def did(self) -> str | None:
        public_key = self.public_key
        return public_key_to_did(public_key) if public_key else None

    def _is_valid(self, record: AuthRecord) -> bool:
        return (
            record.publicKey == self.public_key
            and record.did == self.did
            and record.expiresAt > self._clock()
        )

    def _on_session_change(self, record: AuthRecord | None) -> None:
        self.is_authenticated = record is not None and self._is_valid(record)

    async def set_wallet(self, wallet: WalletAdapter | None) -> bool:
        """Wallet connected, switched or disconnected."""
        self.wallet = wallet
        return await self.refresh()

    async def refresh(self) -> bool:
        """Re-check the stored session against the connected wallet."""
        try:
            if not self.public_key:
                self.is_authenticated = False
                return False

            stored = await self._storage.get_item(STORAGE_KEY)
            if stored is None:
                self.is_authenticated = False
                return False

            try:
                record = AuthRecord.model_validate_json(stored)
            except ValidationError as e:
                logger.error("Error parsing stored session: %s", e)
                record = None

            if record is not None and self._is_valid(record):
                self.is_authenticated = True
                return True

            logger.info("Stored session is expired or belongs to another wallet, clearing it")
            await self._storage.remove_item(STORAGE_KEY)
            self.channel.publish(None)
            self.is_authenticated = False
            return False
        finally:
            self.auth_loading = False

    async def sign_message(self, message: str) -> bytes | None:
        if not self.wallet or not self.public_key:
            logger.error("Cannot sign: wallet not connected")
            return None
        try:
            return await self.wallet.sign_message(message.encode("utf-8"))
        except Exception:
            logger.exception("Signing was refused or failed")
            return None

    async def authenticate(self) -> bool:
        public_key, did = self.public_key, self.did
        if not public_key or not did:
            logger.error("Cannot authenticate: wallet not connected")
            return False

        self.auth_loading = True
        try:
            timestamp = self._clock()
            signature = await self.sign_message(f"authenticate:{did}:{timestamp}")
            if not signature:
                raise AuthenticationFailed("no signature was obtained")

            record = AuthRecord(
                publicKey=public_key,
                did=did,
                signature=base64.b64encode(signature).decode("ascii"),
                timestamp=timestamp,
                expiresAt=timestamp + settings.session_ttl_days * DAY_MS,
            )
            await self._storage.set_item(STORAGE_KEY, record.model_dump_json())
            self.channel.publish(record)
            self.is_authenticated = True
            logger.info("Authenticated %s", did)
            return True
        except AuthenticationFailed as e:
            logger.error("Authentication failed: %s", e)
            return False
        finally:
            self.auth_loading = False

    async def logout(self) -> None:
        await self._storage.remove_item(STORAGE_KEY)
        self.channel.publish(None)
        self.is_authenticated = False

    def require(self) -> str:
        """DID of the authenticated wallet, or AuthenticationFailed."""
        if not self.is_authenticated or not self.did:
            raise AuthenticationFailed("Connect and authenticate your wallet first")
        return self.did

    def close(self) -> None:
        self._unsubscribe()
