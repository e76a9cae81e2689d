from fastapi import Request

from didholder.wallet.services import WalletServices


def get_services(request: Request) -> WalletServices:
    return request.app.state.wallet
