# tests/test_credentials.py
import asyncio
import base64
import json
import uuid
from datetime import datetime, timezone

import pytest

from didholder.wallet.credentials import (
    STORAGE_KEY,
    CredentialStore,
    build_share_link,
    export_filename,
    parse_credential_jwt,
    shareable_credential,
)
from didholder.wallet.errors import CredentialParseFailed
from didholder.wallet.models import CredentialShare
from didholder.wallet.qr import classify


def _disclosure(name, value, salt="salt"):
    raw = json.dumps([salt, name, value]).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


# --- Parsing -------------------------------------------------------------------

def test_parse_reference_credential(make_token, reference_payload):
    token = make_token(reference_payload)
    cred = parse_credential_jwt(token)

    assert cred.id == "c1"
    assert cred.type == ["VerifiableCredential", "TestCredential"]
    assert cred.display_type == "TestCredential"
    assert cred.issuer == "did:web:issuer.example"
    assert cred.issuanceDate == "2023-11-14T22:13:20.000Z"
    assert cred.expirationDate == "2023-11-14T23:13:20.000Z"
    assert cred.credentialSubject == {"id": "", "name": "Alice"}
    assert cred.rawCredential == token
    assert cred.is_expired()


def test_subject_id_prefers_sub_then_holder(make_token, reference_payload):
    token = make_token(reference_payload)
    assert parse_credential_jwt(token, "did:pkh:solana:abc").credentialSubject["id"] == "did:pkh:solana:abc"

    reference_payload["sub"] = "did:example:alice"
    token = make_token(reference_payload)
    assert parse_credential_jwt(token, "did:pkh:solana:abc").credentialSubject["id"] == "did:example:alice"


def test_missing_jti_gets_generated_id(make_token, reference_payload):
    del reference_payload["jti"]
    cred = parse_credential_jwt(make_token(reference_payload))
    uuid.UUID(cred.id)


def test_single_type_and_missing_expiry(make_token, reference_payload):
    reference_payload["vc"]["type"] = "VerifiableCredential"
    del reference_payload["exp"]
    cred = parse_credential_jwt(make_token(reference_payload))
    assert cred.type == ["VerifiableCredential"]
    assert cred.expirationDate is None
    assert not cred.is_expired()


def test_sd_jwt_disclosures_are_merged(make_token, reference_payload):
    token = make_token(reference_payload)
    sd_jwt = "~".join(
        [token, _disclosure("birthdate", "1990-01-01"), _disclosure("name", "Mallory")]
    ) + "~"
    cred = parse_credential_jwt(sd_jwt)

    assert cred.credentialSubject["birthdate"] == "1990-01-01"
    # disclosures never override claims already in the credential
    assert cred.credentialSubject["name"] == "Alice"
    assert cred.rawCredential == sd_jwt


def test_key_binding_jwt_is_ignored(make_token, reference_payload):
    token = make_token(reference_payload)
    kb = make_token({"nonce": "n"})
    cred = parse_credential_jwt(f"{token}~{_disclosure('age', 30)}~{kb}")
    assert cred.credentialSubject["age"] == 30


@pytest.mark.parametrize(
    "token",
    [
        "abc.def",
        "eyJnot-base64!!.###.sig",
        "eyJhbGciOiJIUzI1NiJ9.bm90IGpzb24.c2ln",
        "",
    ],
)
def test_malformed_tokens(token):
    with pytest.raises(CredentialParseFailed):
        parse_credential_jwt(token)


def test_missing_iat_or_iss(make_token, reference_payload):
    no_iat = dict(reference_payload)
    del no_iat["iat"]
    with pytest.raises(CredentialParseFailed):
        parse_credential_jwt(make_token(no_iat))

    no_iss = dict(reference_payload)
    del no_iss["iss"]
    with pytest.raises(CredentialParseFailed):
        parse_credential_jwt(make_token(no_iss))


def test_bad_disclosure_is_skipped(make_token, reference_payload):
    token = make_token(reference_payload)
    sd_jwt = f"{token}~!!notbase64!!~{_disclosure('birthdate', '1990-01-01')}~"
    cred = parse_credential_jwt(sd_jwt)

    assert cred.id == "c1"
    assert cred.credentialSubject == {"id": "", "name": "Alice", "birthdate": "1990-01-01"}
    assert cred.rawCredential == sd_jwt


@pytest.mark.asyncio
async def test_add_keeps_token_with_bad_disclosure(storage, make_token, reference_payload):
    store = CredentialStore(storage)
    assert await store.add(make_token(reference_payload) + "~!!notbase64!!") is True
    assert store.get("c1").credentialSubject["name"] == "Alice"


# --- Sharing / export ------------------------------------------------------------

def test_share_link_only_discloses_selected_fields(make_token, reference_payload):
    reference_payload["sub"] = "did:example:alice"
    cred = parse_credential_jwt(make_token(reference_payload))

    assert shareable_credential(cred)["credentialSubject"] == {"id": "did:example:alice"}

    link = build_share_link(cred, ["id", "name"])
    assert link.startswith("didholder://shared-credential?data=")

    qr = classify(link)
    assert isinstance(qr, CredentialShare)
    assert qr.credentialData["id"] == "c1"
    assert qr.credentialData["credentialSubject"] == {"id": "did:example:alice", "name": "Alice"}
    assert "rawCredential" not in qr.credentialData


def test_export_filename():
    now = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)
    assert export_filename(now) == "credentials-2024-05-01T12:30:00.000Z.json"


# --- Store -------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_add_get_and_replace(storage, make_token, reference_payload):
    store = CredentialStore(storage)
    token = make_token(reference_payload)

    assert await store.add(token) is True
    assert len(store) == 1
    assert store.get("c1").credentialSubject["name"] == "Alice"

    reference_payload["vc"]["credentialSubject"]["name"] = "Alicia"
    assert await store.add(make_token(reference_payload)) is True
    assert len(store) == 1
    assert store.get("c1").credentialSubject["name"] == "Alicia"


@pytest.mark.asyncio
async def test_add_malformed_leaves_store_unchanged(storage, make_token, reference_payload):
    store = CredentialStore(storage)
    await store.add(make_token(reference_payload))
    before = store.credentials

    assert await store.add("eyJnot-a-jwt") is False
    assert await store.add({"id": "x"}) is False
    assert store.credentials == before


@pytest.mark.asyncio
async def test_add_uses_holder_did(storage, make_token, reference_payload):
    store = CredentialStore(storage, holder_did=lambda: "did:pkh:solana:holder")
    await store.add(make_token(reference_payload))
    assert store.get("c1").credentialSubject["id"] == "did:pkh:solana:holder"


@pytest.mark.asyncio
async def test_persistence_round_trip(storage, make_token, reference_payload):
    store = CredentialStore(storage)
    for jti in ("a", "b", "c"):
        await store.add(make_token({**reference_payload, "jti": jti}))
    await store.add(
        {
            "id": "plain",
            "type": ["VerifiableCredential"],
            "issuer": "did:web:issuer.example",
            "issuanceDate": "2024-01-01T00:00:00.000Z",
            "credentialSubject": {"id": "did:example:bob"},
            "custom": {"kept": True},
        }
    )

    reloaded = CredentialStore(storage)
    assert reloaded.loading is True
    await reloaded.load()
    assert reloaded.loading is False
    assert [c.id for c in reloaded.credentials] == ["a", "b", "c", "plain"]
    assert reloaded.credentials == store.credentials
    assert reloaded.get("plain").custom == {"kept": True}


@pytest.mark.asyncio
async def test_concurrent_first_adds_keep_every_credential(storage, make_token, reference_payload):
    # 1) Something is already stored
    await CredentialStore(storage).add(make_token({**reference_payload, "jti": "a"}))

    # 2) Two adds race on a store that has not loaded yet
    store = CredentialStore(storage)
    results = await asyncio.gather(
        store.add(make_token({**reference_payload, "jti": "b"})),
        store.add(make_token({**reference_payload, "jti": "c"})),
    )

    assert results == [True, True]
    assert sorted(c.id for c in store.credentials) == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_corrupt_storage_loads_empty(storage):
    await storage.set_item(STORAGE_KEY, "{not json")
    store = CredentialStore(storage)
    await store.load()
    assert store.credentials == []
    assert store.loading is False


@pytest.mark.asyncio
async def test_remove_and_clear(storage, make_token, reference_payload):
    store = CredentialStore(storage)
    for jti in ("a", "b"):
        await store.add(make_token({**reference_payload, "jti": jti}))

    await store.remove("a")
    await store.remove("missing")
    assert [c.id for c in store.credentials] == ["b"]
    assert json.loads(await storage.get_item(STORAGE_KEY))[0]["id"] == "b"

    await store.clear()
    assert store.credentials == []
    assert json.loads(await storage.get_item(STORAGE_KEY)) == []


@pytest.mark.asyncio
async def test_export_json(storage, make_token, reference_payload):
    store = CredentialStore(storage)
    await store.add(make_token(reference_payload))

    exported = json.loads(store.export_json())
    assert exported[0]["id"] == "c1"
    assert exported[0]["rawCredential"].startswith("eyJ")
    assert "proof" not in exported[0]
