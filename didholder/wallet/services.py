from dataclasses import dataclass

import httpx

from didholder.db.storage import KeyValueStorage
from didholder.wallet.auth import AuthSession, SessionChannel, WalletAdapter
from didholder.wallet.client import ProtocolClient
from didholder.wallet.credentials import CredentialStore
from didholder.wallet.flow import ScanProcessor


@dataclass
class WalletServices:
    storage: KeyValueStorage
    auth: AuthSession
    store: CredentialStore
    client: ProtocolClient
    processor: ScanProcessor

    @classmethod
    def create(
        cls,
        storage: KeyValueStorage | None = None,
        wallet: WalletAdapter | None = None,
        channel: SessionChannel | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> "WalletServices":
        storage = storage or KeyValueStorage()
        auth = AuthSession(storage, wallet, channel)
        store = CredentialStore(storage, holder_did=lambda: auth.did)
        client = ProtocolClient(http=http)
        return cls(storage, auth, store, client, ScanProcessor(store, client, auth))

    async def start(self) -> None:
        await self.store.load()
        await self.auth.refresh()

    async def aclose(self) -> None:
        self.auth.close()
        await self.client.aclose()
