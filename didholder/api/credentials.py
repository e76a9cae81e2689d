from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response, StreamingResponse
from io import BytesIO
import qrcode

from didholder.api.deps import get_services
from didholder.wallet.credentials import build_share_link, export_filename
from didholder.wallet.models import Credential, VerifyResult
from didholder.wallet.services import WalletServices

router = APIRouter()


def _credential_or_404(services: WalletServices, credential_id: str) -> Credential:
    credential = services.store.get(credential_id)
    if not credential:
        raise HTTPException(status_code=404, detail="Credential not found")
    return credential


@router.get("")
async def list_credentials(services: WalletServices = Depends(get_services)):
    return [
        {
            "id": c.id,
            "type": c.display_type,
            "issuer": c.issuer,
            "issuanceDate": c.issuanceDate,
            "expirationDate": c.expirationDate,
            "expired": c.is_expired(),
        }
        for c in services.store.credentials
    ]

@router.delete("")
async def clear_credentials(services: WalletServices = Depends(get_services)):
    await services.store.clear()
    return {"ok": True}

@router.get("/export")
async def export_credentials(services: WalletServices = Depends(get_services)):
    return Response(
        content=services.store.export_json(),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )

@router.get("/{credential_id}")
async def get_credential(credential_id: str, services: WalletServices = Depends(get_services)):
    return _credential_or_404(services, credential_id).to_storage()

@router.delete("/{credential_id}")
async def remove_credential(credential_id: str, services: WalletServices = Depends(get_services)):
    _credential_or_404(services, credential_id)
    await services.store.remove(credential_id)
    return {"ok": True, "id": credential_id}

@router.post("/{credential_id}/verify", response_model=VerifyResult)
async def verify_credential(credential_id: str, services: WalletServices = Depends(get_services)):
    credential = _credential_or_404(services, credential_id)
    return await services.client.verify_credential(credential)

@router.get("/{credential_id}/share")
async def share_link(
    credential_id: str,
    fields: list[str] | None = Query(None),
    services: WalletServices = Depends(get_services),
):
    credential = _credential_or_404(services, credential_id)
    return {"link": build_share_link(credential, fields)}

@router.get("/{credential_id}/qr")
async def share_qr(
    credential_id: str,
    fields: list[str] | None = Query(None),
    services: WalletServices = Depends(get_services),
):
    credential = _credential_or_404(services, credential_id)
    img = qrcode.make(build_share_link(credential, fields))
    buf = BytesIO(); img.save(buf, format="PNG"); buf.seek(0)
    return StreamingResponse(buf, media_type="image/png")
