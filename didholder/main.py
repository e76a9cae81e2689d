# didholder/main.py
from fastapi import FastAPI
from contextlib import asynccontextmanager

from didholder.api.credentials import router as credentials_router
from didholder.api.scan import router as scan_router
from didholder.api.auth import router as auth_router

from didholder.core.crypto import load_wallet
from didholder.core.logging_config import configure_logging
from didholder.db.storage import engine
from didholder.db.models import Base
from didholder.wallet.services import WalletServices

@asynccontextmanager
async def lifespan(app: FastAPI):
    # === STARTUP ===
    configure_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    services = WalletServices.create(wallet=load_wallet())
    await services.start()
    app.state.wallet = services
    yield
    # === SHUTDOWN ===
    await services.aclose()
    await engine.dispose()

app = FastAPI(title="DID Holder Wallet", lifespan=lifespan)

app.include_router(credentials_router, prefix="/credentials", tags=["credentials"])
app.include_router(scan_router,        prefix="/scan",        tags=["scan"])
app.include_router(auth_router,        prefix="/auth",        tags=["auth"])

@app.get("/")
def root():
    return {"ok": True}
