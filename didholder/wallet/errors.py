"""Error taxonomy of the credential exchange engine."""


class WalletError(Exception):
    """Base class for every failure raised by the wallet core."""


class UnrecognizedFormat(WalletError):
    """Scanned or pasted input matches none of the supported formats."""


class MissingParameter(UnrecognizedFormat):
    """A deep link was recognized but lacks a parameter its intent requires."""

    def __init__(self, intent: str, parameter: str):
        super().__init__(f"{intent} link is missing '{parameter}'")
        self.intent = intent
        self.parameter = parameter


class ApiError(WalletError):
    """An issuer HTTP interaction failed. Carries the HTTP status (500 for transport errors)."""

    def __init__(self, message: str, status: int = 500):
        super().__init__(message)
        self.message = message
        self.status = status


class IssuerUnreachable(ApiError):
    pass


class IssuerConfigInvalid(ApiError):
    pass


class TokenExchangeFailed(ApiError):
    pass


class CredentialIssuanceFailed(ApiError):
    pass


class CredentialParseFailed(WalletError):
    """A signed token could not be decoded into a Credential."""


class AuthenticationFailed(WalletError):
    """No connected wallet, no valid session, or the signature was refused."""
