from fastapi import APIRouter, Depends, HTTPException

from didholder.api.deps import get_services
from didholder.wallet.services import WalletServices

router = APIRouter()


def _session_state(services: WalletServices) -> dict:
    auth = services.auth
    return {
        "publicKey": auth.public_key,
        "did": auth.did,
        "isAuthenticated": auth.is_authenticated,
        "authLoading": auth.auth_loading,
    }


@router.get("/session")
async def session(services: WalletServices = Depends(get_services)):
    await services.auth.refresh()
    return _session_state(services)

@router.post("/login")
async def login(services: WalletServices = Depends(get_services)):
    if not await services.auth.authenticate():
        raise HTTPException(status_code=401, detail="Wallet authentication failed")
    return _session_state(services)

@router.post("/logout")
async def logout(services: WalletServices = Depends(get_services)):
    await services.auth.logout()
    return _session_state(services)
