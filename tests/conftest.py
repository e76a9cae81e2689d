# tests/conftest.py
import json
import os
import sys
from pathlib import Path

import pytest

# --- Make 'didholder' importable from the repo root ---
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey


def _prepare_test_env() -> None:
    """
    Ephemeral environment, set before anything imports didholder.core.config:
    - SQLite storage in .pytest_tmp/test.sqlite3 (recreated on every run)
    - an Ed25519 wallet key generated on the fly
    """
    tmp = (ROOT / ".pytest_tmp").absolute()
    tmp.mkdir(exist_ok=True)

    db_path = tmp / "test.sqlite3"
    if db_path.exists():
        db_path.unlink()
    os.environ["DB_URL"] = f"sqlite+aiosqlite:///{db_path.as_posix()}"
    os.environ["ISSUER_SCHEME"] = "http"
    os.environ["DEEP_LINK_SCHEME"] = "didholder"

    key = Ed25519PrivateKey.generate()
    key_path = tmp / "wallet_ed25519.pem"
    key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    os.environ["WALLET_KEY_PATH"] = key_path.as_posix()


_prepare_test_env()

import httpx
import jwt
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from didholder.core.crypto import KeyfileWallet
from didholder.db.models import Base
from didholder.db.storage import KeyValueStorage
from didholder.wallet.client import PRE_AUTHORIZED_GRANT, ProtocolClient

TEST_SECRET = "didholder-test-secret-0123456789abcdef"

REFERENCE_PAYLOAD = {
    "jti": "c1",
    "iss": "did:web:issuer.example",
    "iat": 1700000000,
    "exp": 1700003600,
    "vc": {
        "type": ["VerifiableCredential", "TestCredential"],
        "credentialSubject": {"name": "Alice"},
    },
}


def make_jwt(payload: dict) -> str:
    return jwt.encode(payload, TEST_SECRET, algorithm="HS256")


class FakeIssuer:
    """OID4VCI issuer behind an httpx.MockTransport; records every request."""

    def __init__(self, domain: str = "issuer.test:5000", credential: str | None = None):
        self.domain = domain
        self.credential = credential or make_jwt(
            {**REFERENCE_PAYLOAD, "jti": "issued-1", "iss": f"http://{domain}"}
        )
        self.config = {
            "credential_issuer": f"http://{domain}",
            "token_endpoint": f"http://{domain}/api/v1/token",
            "credential_endpoint": f"http://{domain}/api/v1/credentials",
            "jwks_uri": f"http://{domain}/.well-known/jwks.json",
            "grant_types_supported": [PRE_AUTHORIZED_GRANT],
        }
        self.pre_auth_code = "CODE-1"
        self.access_token = "AT-1"
        self.requests: list[httpx.Request] = []
        self.overrides: dict[str, tuple[int, object]] = {}
        self.unreachable = False

    @property
    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if path in self.overrides:
            status, body = self.overrides[path]
            if isinstance(body, (dict, list)):
                return httpx.Response(status, json=body)
            return httpx.Response(status, text=str(body))

        if path == "/.well-known/openid-credential-issuer":
            return httpx.Response(200, json=self.config)
        if path == "/api/v1/token":
            body = json.loads(request.content)
            if body.get("pre-authorized_code") != self.pre_auth_code:
                return httpx.Response(400, json={"error": "invalid_grant"})
            return httpx.Response(
                200,
                json={"access_token": self.access_token, "token_type": "Bearer", "expires_in": 300},
            )
        if path == "/api/v1/credentials":
            if request.headers.get("authorization") != f"Bearer {self.access_token}":
                return httpx.Response(401, json={"error": "invalid_token"})
            return httpx.Response(200, json={"format": "jwt_sd", "credential": self.credential})
        if path.startswith("/api/application/") and path.endswith("/connect"):
            return httpx.Response(200, json={"status": "ok", "message": "DID connected"})
        if path == "/api/v1/verify":
            body = json.loads(request.content)
            if body.get("credential") == self.credential:
                return httpx.Response(200, json={"verified": True})
            return httpx.Response(200, json={"verified": False, "reason": "unknown credential"})
        if path == "/shared/credential.jwt":
            return httpx.Response(200, text=self.credential)
        return httpx.Response(404, json={"error": "not_found"})

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest_asyncio.fixture
async def storage(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{(tmp_path / 'kv.sqlite3').as_posix()}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield KeyValueStorage(async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()


@pytest.fixture
def make_token():
    return make_jwt


@pytest.fixture
def reference_payload():
    return json.loads(json.dumps(REFERENCE_PAYLOAD))


@pytest.fixture
def wallet():
    return KeyfileWallet.generate()


@pytest.fixture
def issuer():
    return FakeIssuer()


@pytest_asyncio.fixture
async def protocol_client(issuer):
    async with issuer.http_client() as http:
        yield ProtocolClient(http=http)


@pytest.fixture(scope="session")
def client():
    """
    TestClient over the app, using the ephemeral DB and wallet key above.
    Entering the context runs the lifespan (tables, services, session refresh).
    """
    from fastapi.testclient import TestClient
    from didholder.main import app

    with TestClient(app) as c:
        yield c
