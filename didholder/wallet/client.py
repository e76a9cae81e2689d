"""
Issuer-facing HTTP client: OID4VCI discovery, pre-authorized-code token
exchange, credential request, DID connect and credential verification.

Discovery, token and credential calls raise typed ApiError subclasses because
callers chain them. connect_did and verify_credential are terminal user actions
and always return a result object instead.
"""
import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from didholder.core.config import settings
from didholder.wallet.domains import extract_issuer_domain
from didholder.wallet.errors import (
    ApiError,
    CredentialIssuanceFailed,
    IssuerConfigInvalid,
    IssuerUnreachable,
    TokenExchangeFailed,
)
from didholder.wallet.issuers import IssuerConfigCache
from didholder.wallet.models import (
    ConnectResult,
    Credential,
    CredentialResponse,
    OID4VCIConfig,
    TokenResponse,
    VerifyResult,
)

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-credential-issuer"
PRE_AUTHORIZED_GRANT = "urn:ietf:params:oauth:grant-type:pre-authorized_code"
VERIFY_PATH = "/api/v1/verify"


def _text(data: Any, *keys: str) -> str | None:
    """First non-empty string value among keys of an issuer JSON body."""
    if not isinstance(data, dict):
        return None
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _error_message(resp: httpx.Response) -> str:
    message = f"API request failed with status {resp.status_code}"
    try:
        data = resp.json()
    except ValueError:
        return message
    logger.error("API error body from %s: %s", resp.request.url, data)
    return _text(data, "error", "error_description") or message


class ProtocolClient:
    def __init__(
        self,
        http: httpx.AsyncClient | None = None,
        cache: IssuerConfigCache | None = None,
    ):
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=settings.http_timeout)
        self.cache = cache if cache is not None else IssuerConfigCache.from_settings()

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "ProtocolClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @staticmethod
    def issuer_url(issuer_domain: str, path: str) -> str:
        return f"{settings.issuer_scheme}://{issuer_domain}{path}"

    async def _request_json(
        self,
        method: str,
        url: str,
        error_cls: type[ApiError] = ApiError,
        headers: dict[str, str] | None = None,
        json: Any = None,
    ) -> Any:
        logger.info("Sending API request: %s %s", method, url)
        try:
            resp = await self.http.request(
                method,
                url,
                headers={"Content-Type": "application/json", **(headers or {})},
                json=json,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise IssuerUnreachable(f"{method} {url} failed: {e}") from e

        if not resp.is_success:
            raise error_cls(_error_message(resp), status=resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise error_cls(f"Malformed JSON response from {url}", status=resp.status_code) from e

    # --- OID4VCI ---------------------------------------------------------------

    async def fetch_issuer_config(self, issuer_domain: str) -> OID4VCIConfig:
        return await self.cache.get_or_fetch(issuer_domain, self._discover)

    async def _discover(self, issuer_domain: str) -> OID4VCIConfig:
        url = self.issuer_url(issuer_domain, WELL_KNOWN_PATH)
        logger.info("Fetching issuer config for %s", issuer_domain)
        data = await self._request_json("GET", url, IssuerConfigInvalid)
        try:
            return OID4VCIConfig.model_validate(data)
        except ValidationError as e:
            raise IssuerConfigInvalid(
                f"Issuer {issuer_domain} returned an invalid discovery document: {e.error_count()} errors",
                status=502,
            ) from e

    async def request_token(self, issuer_domain: str, pre_auth_code: str) -> TokenResponse:
        config = await self.fetch_issuer_config(issuer_domain)
        logger.info("Exchanging pre-authorized code at %s", config.token_endpoint)
        data = await self._request_json(
            "POST",
            config.token_endpoint,
            TokenExchangeFailed,
            json={
                "grant_type": PRE_AUTHORIZED_GRANT,
                "pre-authorized_code": pre_auth_code,
            },
        )
        try:
            return TokenResponse.model_validate(data)
        except ValidationError as e:
            raise TokenExchangeFailed("Token response has no access_token", status=502) from e

    async def request_credential(
        self,
        issuer_domain: str,
        access_token: str,
        types: list[str] | None = None,
    ) -> CredentialResponse:
        types = list(types or settings.default_credential_types)
        config = await self.fetch_issuer_config(issuer_domain)
        logger.info(
            "Requesting credential %s from %s", ", ".join(types), config.credential_endpoint
        )
        data = await self._request_json(
            "POST",
            config.credential_endpoint,
            CredentialIssuanceFailed,
            headers={"Authorization": f"Bearer {access_token}"},
            json={
                "format": settings.credential_format,
                "credential_definition": {"type": types},
            },
        )
        try:
            return CredentialResponse.model_validate(data)
        except ValidationError as e:
            raise CredentialIssuanceFailed("Credential response has no credential", status=502) from e

    # --- Terminal actions --------------------------------------------------------

    async def connect_did(
        self,
        issuer_domain: str,
        application_id: str,
        did: str,
        signature: bytes | None = None,
    ) -> ConnectResult:
        url = self.issuer_url(
            issuer_domain, f"/api/application/{quote(application_id, safe='')}/connect"
        )
        body: dict[str, Any] = {"did": did}
        if signature is not None:
            body["signature"] = list(signature)

        try:
            data = await self._request_json("POST", url, json=body)
        except ApiError as e:
            logger.error("Error connecting DID to application %s: %s", application_id, e.message)
            return ConnectResult(success=False, message=e.message)

        message = _text(data, "message")
        logger.info("DID connected to application %s", application_id)
        return ConnectResult(success=True, message=message or "DID successfully connected")

    async def verify_credential(self, credential: Credential) -> VerifyResult:
        if not credential.rawCredential:
            return VerifyResult(valid=False, message="Credential has no raw token to verify")

        issuer_domain = extract_issuer_domain(credential.issuer)
        if not issuer_domain:
            return VerifyResult(valid=False, message="Credential issuer is unknown")

        url = self.issuer_url(issuer_domain, VERIFY_PATH)
        logger.info("Verifying credential %s with %s", credential.id, issuer_domain)
        try:
            data = await self._request_json(
                "POST", url, json={"credential": credential.rawCredential}
            )
        except ApiError as e:
            logger.error("Error verifying credential %s: %s", credential.id, e.message)
            return VerifyResult(valid=False, message=e.message)

        if not isinstance(data, dict):
            return VerifyResult(valid=False, message="Malformed verification response")
        verified = data.get("verified") is True
        return VerifyResult(
            valid=verified,
            message="Credential is valid" if verified else _text(data, "reason") or "Credential is invalid",
        )

    async def fetch_text(self, url: str) -> str:
        """Remote credential document (pasted or scanned http(s) link)."""
        logger.info("Fetching remote credential: %s", url)
        try:
            resp = await self.http.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise IssuerUnreachable(f"GET {url} failed: {e}") from e
        if not resp.is_success:
            raise ApiError(_error_message(resp), status=resp.status_code)
        return resp.text
