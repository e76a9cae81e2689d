import asyncio
import base64
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable
from urllib.parse import urlencode

import jwt
from pydantic import ValidationError

from didholder.core.config import settings
from didholder.core.crypto import decode_disclosure, decode_unverified
from didholder.db.storage import KeyValueStorage
from didholder.wallet.errors import CredentialParseFailed
from didholder.wallet.models import Credential, iso_from_epoch

logger = logging.getLogger(__name__)

STORAGE_KEY = "wallet-credentials"


def _disclosed_claims(segments: Iterable[str]):
    for segment in segments:
        # empty: trailing "~"; dotted: key-binding JWT
        if not segment or "." in segment:
            continue
        try:
            disclosure = decode_disclosure(segment)
        except ValueError as e:
            logger.warning("Skipping malformed SD-JWT disclosure: %s", e)
            continue
        if len(disclosure) == 3 and isinstance(disclosure[1], str):
            yield disclosure[1], disclosure[2]


def parse_credential_jwt(token: str, holder_did: str | None = None) -> Credential:
    """
    JWT / SD-JWT (jwt~disclosure~...~) -> Credential. The signature is not
    checked here; verification is the issuer's job (ProtocolClient.verify_credential).
    """
    token = token.strip()
    segments = token.split("~")
    try:
        payload = decode_unverified(segments[0])
    except jwt.InvalidTokenError as e:
        raise CredentialParseFailed(f"Malformed credential JWT: {e}") from e

    vc = payload.get("vc") or {}
    if not isinstance(vc, dict):
        raise CredentialParseFailed("'vc' claim is not an object")

    types = vc.get("type") or ["VerifiableCredential"]
    if isinstance(types, str):
        types = [types]

    claims = vc.get("credentialSubject") or {}
    if isinstance(claims, list):
        claims = claims[0] if claims else {}
    if not isinstance(claims, dict):
        raise CredentialParseFailed("'credentialSubject' is not an object")

    subject = {"id": payload.get("sub") or holder_did or "", **claims}
    for name, value in _disclosed_claims(segments[1:]):
        subject.setdefault(name, value)

    iat = payload.get("iat")
    exp = payload.get("exp")
    try:
        return Credential(
            id=str(payload.get("jti") or uuid.uuid4()),
            type=list(types),
            issuer=payload.get("iss"),
            issuanceDate=iso_from_epoch(iat),
            expirationDate=iso_from_epoch(exp) if exp is not None else None,
            credentialSubject=subject,
            status=vc.get("credentialStatus"),
            rawCredential=token,
        )
    except (ValidationError, ValueError, TypeError, OverflowError, OSError) as e:
        raise CredentialParseFailed(f"Credential claims are invalid: {e}") from e


def shareable_credential(credential: Credential, fields: Iterable[str] | None = None) -> dict:
    """Credential restricted to the selected subject fields (only "id" by default)."""
    selected = {"id"} if fields is None else set(fields)
    return {
        "id": credential.id,
        "type": credential.type,
        "issuer": credential.issuer,
        "issuanceDate": credential.issuanceDate,
        "credentialSubject": {
            k: v for k, v in credential.credentialSubject.items() if k in selected
        },
    }


def build_share_link(credential: Credential, fields: Iterable[str] | None = None) -> str:
    data = json.dumps(shareable_credential(credential, fields), ensure_ascii=False)
    encoded = base64.b64encode(data.encode("utf-8")).decode("ascii")
    return f"{settings.deep_link_scheme}://shared-credential?{urlencode({'data': encoded})}"


def export_filename(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"credentials-{iso_from_epoch(now.timestamp())}.json"


class CredentialStore:
    """
    Ordered credential collection persisted under STORAGE_KEY.

    The stored collection is read once (load()) before the first mutation;
    every mutation writes the whole collection back.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        holder_did: Callable[[], str | None] = lambda: None,
    ):
        self._storage = storage
        self._holder_did = holder_did
        self._credentials: list[Credential] = []
        self.loading = True
        self._load_lock = asyncio.Lock()

    @property
    def credentials(self) -> list[Credential]:
        return list(self._credentials)

    def __len__(self) -> int:
        return len(self._credentials)

    async def load(self) -> None:
        # concurrent first mutations wait for the single initial read
        async with self._load_lock:
            if not self.loading:
                return
            try:
                stored = await self._storage.get_item(STORAGE_KEY)
                if stored:
                    self._credentials = [Credential.model_validate(c) for c in json.loads(stored)]
            except (ValueError, TypeError) as e:
                logger.error("Error loading stored credentials: %s", e)
            finally:
                self.loading = False
            logger.info("Loaded %d credentials", len(self._credentials))

    async def _persist(self) -> None:
        await self._storage.set_item(
            STORAGE_KEY,
            json.dumps([c.to_storage() for c in self._credentials], ensure_ascii=False),
        )

    def _coerce(self, credential: Credential | dict | str) -> Credential:
        if isinstance(credential, Credential):
            return credential.model_copy(deep=True)
        if isinstance(credential, str):
            return parse_credential_jwt(credential, self._holder_did())
        try:
            return Credential.model_validate(credential)
        except ValidationError as e:
            raise CredentialParseFailed(f"Invalid credential object: {e.error_count()} errors") from e

    async def add(self, credential: Credential | dict | str) -> bool:
        """Insert or replace (by id). False when the input cannot be parsed."""
        await self.load()
        try:
            new = self._coerce(credential)
        except CredentialParseFailed as e:
            logger.error("Error adding credential: %s", e)
            return False

        for i, existing in enumerate(self._credentials):
            if existing.id == new.id:
                self._credentials[i] = new
                logger.info("Replaced credential %s", new.id)
                break
        else:
            self._credentials.append(new)
            logger.info("Added credential %s (%s)", new.id, new.display_type)

        await self._persist()
        return True

    def get(self, credential_id: str) -> Credential | None:
        return next((c for c in self._credentials if c.id == credential_id), None)

    async def remove(self, credential_id: str) -> None:
        await self.load()
        self._credentials = [c for c in self._credentials if c.id != credential_id]
        await self._persist()

    async def clear(self) -> None:
        await self.load()
        self._credentials = []
        await self._persist()

    def export_json(self) -> str:
        return json.dumps(
            [c.to_storage() for c in self._credentials], indent=2, ensure_ascii=False
        )
