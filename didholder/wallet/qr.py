"""
Scanned / pasted input -> typed intent.

Accepted shapes, tried in order:

1. a JSON payload with a known "type" ({"type": "cred-offer", ...})
2. a deep link, http(s):// or didholder://
   (connect?application_id=&issuer=, credential?pre_auth_code=&issuer=,
   shared-credential?data=<base64 JSON>, anything else is passed on as a URL)
3. a compact JWT / SD-JWT ("eyJ...")
4. text with a JSON object embedded in it
"""
import json
import logging
import re
from urllib.parse import parse_qs, urlsplit

from pydantic import ValidationError

from didholder.core.config import settings
from didholder.core.crypto import b64url_decode
from didholder.wallet.errors import MissingParameter, UnrecognizedFormat
from didholder.wallet.models import (
    CredentialOffer,
    CredentialShare,
    DidConnect,
    QRCodeData,
    QRCodeType,
    qr_code_adapter,
)

logger = logging.getLogger(__name__)

JWT_PREFIX = "eyJ"
# Stand-in base used only to let urlsplit read custom-scheme links
_PARSE_BASE = "http://temporary.domain/"
_JSON_SPAN = re.compile(r"\{[\s\S]*\}")
_KNOWN_TYPES = {t.value for t in QRCodeType}


def _has_known_type(data) -> bool:
    return isinstance(data, dict) and data.get("type") in _KNOWN_TYPES


def _validate(data: dict) -> QRCodeData:
    try:
        return qr_code_adapter.validate_python(data)
    except ValidationError as e:
        raise UnrecognizedFormat(f"Invalid {data.get('type')} payload: {e.errors()[0]['msg']}") from e


def is_deep_link(text: str) -> bool:
    lowered = text.lower()
    return lowered.startswith(("http://", "https://", f"{settings.deep_link_scheme}://"))


def _decode_share_data(encoded: str) -> dict | None:
    try:
        # an unencoded '+' arrives as a space after query parsing
        raw = b64url_decode(encoded.replace(" ", "+"))
        data = json.loads(raw.decode("utf-8"))
    except ValueError as e:
        logger.warning("Could not decode shared credential data: %s", e)
        return None
    if not isinstance(data, dict):
        logger.warning("Shared credential data is not a JSON object")
        return None
    return data


def parse_deep_link(url: str) -> QRCodeData:
    custom = f"{settings.deep_link_scheme}://"
    try:
        if url.lower().startswith(custom):
            parts = urlsplit(_PARSE_BASE + url[len(custom):])
        else:
            parts = urlsplit(url)
    except ValueError as e:
        raise UnrecognizedFormat(f"Malformed deep link {url!r}: {e}") from e

    params = parse_qs(parts.query)

    def param(name: str) -> str | None:
        values = params.get(name)
        value = values[0].strip() if values else ""
        return value or None

    signals = f"{parts.path}?{parts.query}".lower()

    try:
        if "connect" in signals:
            application_id = param("application_id")
            issuer = param("issuer")
            if not application_id:
                raise MissingParameter("connect", "application_id")
            if not issuer:
                raise MissingParameter("connect", "issuer")
            return DidConnect(applicationId=application_id, issuerDomain=issuer)

        if "credential" in signals:
            pre_auth_code = param("pre_auth_code")
            issuer = param("issuer")
            if pre_auth_code and issuer:
                return CredentialOffer(preAuthCode=pre_auth_code, issuerDomain=issuer)

            encoded = param("data")
            if encoded:
                data = _decode_share_data(encoded)
                if data is not None:
                    return CredentialShare(credentialData=data)
    except ValidationError as e:
        raise UnrecognizedFormat(f"Invalid deep link {url!r}: {e.errors()[0]['msg']}") from e

    logger.info("Unrecognized deep link, passing the URL on: %s", url)
    return CredentialShare(url=url)


def parse_qr_code(raw_text: str) -> QRCodeData:
    """Strict classification; raises UnrecognizedFormat (or MissingParameter)."""
    text = raw_text.strip()
    if not text:
        raise UnrecognizedFormat("Empty input")

    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if _has_known_type(data):
        return _validate(data)

    if is_deep_link(text):
        return parse_deep_link(text)

    if text.startswith(JWT_PREFIX):
        # SD-JWT disclosures ("~...") stay attached
        return CredentialShare(rawCredential=text)

    match = _JSON_SPAN.search(text)
    if match:
        try:
            data = json.loads(match.group(0))
        except ValueError as e:
            raise UnrecognizedFormat("Could not parse the embedded JSON") from e
        if _has_known_type(data):
            return _validate(data)
        raise UnrecognizedFormat("Embedded JSON has no recognized type")

    raise UnrecognizedFormat("Unsupported QR code format")


def classify(raw_text: str) -> QRCodeData | None:
    try:
        return parse_qr_code(raw_text)
    except UnrecognizedFormat as e:
        logger.warning("Could not classify scanned data: %s", e)
        return None
