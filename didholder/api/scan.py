from fastapi import APIRouter, Depends
from pydantic import BaseModel

from didholder.api.deps import get_services
from didholder.wallet.flow import ScanOutcome
from didholder.wallet.qr import classify
from didholder.wallet.services import WalletServices

router = APIRouter()


class ScanInput(BaseModel):
    data: str


@router.post("", response_model=ScanOutcome)
async def scan(body: ScanInput, services: WalletServices = Depends(get_services)):
    return await services.processor.handle(body.data)

@router.post("/import", response_model=ScanOutcome)
async def import_credentials(body: ScanInput, services: WalletServices = Depends(get_services)):
    return await services.processor.import_text(body.data)

@router.post("/classify")
async def classify_input(body: ScanInput):
    # dry run: what the scanner would do with this input
    qr = classify(body.data)
    if qr is None:
        return {"recognized": False}
    return {"recognized": True, "intent": qr.model_dump(exclude_none=True)}
