from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)

from didholder.wallet.domains import normalize_issuer_domain


def parse_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def iso_from_epoch(seconds: float) -> str:
    """Epoch seconds -> 2023-11-14T22:13:20.000Z"""
    dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Credential(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    type: list[str]
    issuer: str
    issuanceDate: str
    expirationDate: str | None = None
    credentialSubject: dict[str, Any]
    proof: dict[str, Any] | None = None
    status: dict[str, Any] | None = None
    rawCredential: str | None = None

    @property
    def display_type(self) -> str:
        return self.type[-1] if self.type else "VerifiableCredential"

    def is_expired(self, now: datetime | None = None) -> bool:
        if not self.expirationDate:
            return False
        now = now or datetime.now(timezone.utc)
        return parse_iso(self.expirationDate) <= now

    def to_storage(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


# --- Scanned input -----------------------------------------------------------

class QRCodeType(str, Enum):
    DID_CONNECT = "did-connect"
    CREDENTIAL_OFFER = "cred-offer"
    CREDENTIAL_SHARE = "cred-share"


class _IssuerBound(BaseModel):
    # JSON payloads spell it "issuer", deep links produce "issuerDomain"
    issuerDomain: str = Field(validation_alias=AliasChoices("issuerDomain", "issuer"))

    @field_validator("issuerDomain")
    @classmethod
    def _normalize_issuer(cls, value: str) -> str:
        value = normalize_issuer_domain(value)
        if not value:
            raise ValueError("issuer domain is empty")
        return value


class DidConnect(_IssuerBound):
    type: Literal["did-connect"] = "did-connect"
    applicationId: str = Field(min_length=1)


class CredentialOffer(_IssuerBound):
    type: Literal["cred-offer"] = "cred-offer"
    preAuthCode: str = Field(min_length=1)


class CredentialShare(BaseModel):
    type: Literal["cred-share"] = "cred-share"
    rawCredential: str | None = None
    credentialData: dict[str, Any] | None = None
    url: str | None = None

    @model_validator(mode="after")
    def _exactly_one_payload(self):
        given = [
            name
            for name in ("rawCredential", "credentialData", "url")
            if getattr(self, name) is not None
        ]
        if len(given) != 1:
            raise ValueError(
                "a shared credential carries exactly one of rawCredential, credentialData, url"
            )
        return self


QRCodeData = Annotated[
    Union[DidConnect, CredentialOffer, CredentialShare],
    Field(discriminator="type"),
]
qr_code_adapter = TypeAdapter(QRCodeData)


# --- OID4VCI wire types ------------------------------------------------------

class OID4VCIConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    issuer: str | None = None
    credential_issuer: str | None = None
    authorization_server: str | None = None
    credential_endpoint: str
    token_endpoint: str
    jwks_uri: str | None = None
    authorization_endpoint: str | None = None
    grant_types_supported: list[str] = []
    credentials_supported: dict[str, Any] = {}
    display: list[dict[str, Any]] | None = None


class TokenResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    c_nonce: str | None = None
    c_nonce_expires_in: int | None = None


class CredentialResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    format: str | None = None
    credential: str


class ConnectResult(BaseModel):
    success: bool
    message: str


class VerifyResult(BaseModel):
    valid: bool
    message: str


# --- Session -------------------------------------------------------------------

class AuthRecord(BaseModel):
    publicKey: str
    did: str
    signature: str
    timestamp: int
    expiresAt: int
