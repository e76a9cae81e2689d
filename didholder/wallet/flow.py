import json
import logging

from pydantic import BaseModel

from didholder.wallet.auth import AuthSession
from didholder.wallet.client import ProtocolClient
from didholder.wallet.credentials import CredentialStore
from didholder.wallet.errors import ApiError, CredentialParseFailed, UnrecognizedFormat, WalletError
from didholder.wallet.models import (
    CredentialOffer,
    CredentialShare,
    DidConnect,
    QRCodeType,
)
from didholder.wallet.qr import classify

logger = logging.getLogger(__name__)

CONNECT_MESSAGE = "Link DID to application {application_id}"


class ScanOutcome(BaseModel):
    success: bool
    message: str
    intent: QRCodeType | None = None


def _is_http(text: str) -> bool:
    return text.lower().startswith(("http://", "https://"))


class ScanProcessor:
    """Routes a scanned intent to the issuer or to the credential store."""

    def __init__(self, store: CredentialStore, client: ProtocolClient, auth: AuthSession):
        self.store = store
        self.client = client
        self.auth = auth

    async def handle(self, raw_text: str) -> ScanOutcome:
        qr = classify(raw_text)
        if qr is None:
            return ScanOutcome(success=False, message="Unsupported QR code format")

        intent = QRCodeType(qr.type)
        try:
            if isinstance(qr, DidConnect):
                message = await self._connect(qr)
            elif isinstance(qr, CredentialOffer):
                message = await self._accept_offer(qr)
            else:
                message = await self._receive_share(qr)
        except WalletError as e:
            logger.error("Processing %s failed: %s", intent.value, e)
            return ScanOutcome(success=False, message=str(e), intent=intent)

        return ScanOutcome(success=True, message=message, intent=intent)

    async def _connect(self, qr: DidConnect) -> str:
        did = self.auth.require()
        # a refused signature still lets the issuer decide on the bare DID
        signature = await self.auth.sign_message(
            CONNECT_MESSAGE.format(application_id=qr.applicationId)
        )
        result = await self.client.connect_did(qr.issuerDomain, qr.applicationId, did, signature)
        if not result.success:
            raise ApiError(result.message)
        return result.message

    async def _accept_offer(self, qr: CredentialOffer) -> str:
        self.auth.require()
        token = await self.client.request_token(qr.issuerDomain, qr.preAuthCode)
        issued = await self.client.request_credential(qr.issuerDomain, token.access_token)
        if not await self.store.add(issued.credential):
            raise CredentialParseFailed("The issued credential could not be read")
        return "Credential added to your wallet"

    async def _receive_share(self, qr: CredentialShare) -> str:
        if qr.rawCredential is not None:
            added = await self.store.add(qr.rawCredential)
        elif qr.credentialData is not None:
            added = await self.store.add(qr.credentialData)
        elif _is_http(qr.url):
            added = await self.store.add((await self.client.fetch_text(qr.url)).strip())
        else:
            raise UnrecognizedFormat(f"Unsupported link: {qr.url}")

        if not added:
            raise CredentialParseFailed("The shared credential could not be read")
        return "Shared credential added to your wallet"

    async def import_text(self, text: str) -> ScanOutcome:
        """
        Pasted text or uploaded file: a JWT / SD-JWT, a credential JSON object,
        an exported JSON array, or an http(s) link to any of these.
        """
        text = text.strip()
        if not text:
            return ScanOutcome(success=False, message="Nothing to import")

        try:
            if _is_http(text):
                text = (await self.client.fetch_text(text)).strip()
        except ApiError as e:
            logger.error("Fetching remote credential failed: %s", e)
            return ScanOutcome(success=False, message=e.message)

        try:
            data = json.loads(text)
        except ValueError:
            data = text

        items = data if isinstance(data, list) else [data]
        added = 0
        for item in items:
            if isinstance(item, (str, dict)) and await self.store.add(item):
                added += 1

        if not added:
            return ScanOutcome(success=False, message="No credential could be read")
        return ScanOutcome(success=True, message=f"{added} credential(s) added to your wallet")
