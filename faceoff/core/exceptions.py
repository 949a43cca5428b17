class LedgerError(Exception):
    code = "LEDGER_ERROR"

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class VerificationError(LedgerError):
    code = "VERIFICATION_FAILED"

    def __init__(self, message: str = "Webhook signature verification failed"):
        super().__init__(message, status_code=400)


class MisconfigurationError(LedgerError):
    code = "MISCONFIGURED"

    def __init__(self, message: str = "Server configuration error"):
        super().__init__(message, status_code=500)


class TeamNotFoundError(LedgerError):
    code = "TEAM_NOT_FOUND"

    def __init__(self, team_id=None):
        self.team_id = team_id
        message = f"Team not found with id: {team_id}" if team_id else "Notification carries no team id"
        super().__init__(message, status_code=404)


class InvalidAmountError(LedgerError):
    code = "INVALID_AMOUNT"

    def __init__(self, message: str = "Amount must be a positive whole number"):
        super().__init__(message, status_code=422)


class TransientStoreError(LedgerError):
    code = "STORE_UNAVAILABLE"

    def __init__(self, message: str = "Ledger store unavailable, please retry"):
        super().__init__(message, status_code=503)


class AdminAuthError(LedgerError):
    code = "UNAUTHORIZED"

    def __init__(self):
        super().__init__("Invalid or missing admin token", status_code=401)


class CheckoutError(LedgerError):
    code = "CHECKOUT_FAILED"

    def __init__(self, message: str = "Payment provider could not create a checkout session"):
        super().__init__(message, status_code=502)
