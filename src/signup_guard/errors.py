"""Exceptions raised by the risk engine."""


class SignupInputError(ValueError):
    """The signup request is malformed and cannot be scored.

    Raised before any scoring happens; callers map it to a 4xx response.
    """

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class ValidatorUnavailable(Exception):
    """An external validator could not produce an answer.

    Reserved for transport failures and timeouts. A negative answer (bad
    token, no MX records) is a normal result, not this exception.
    """

    def __init__(self, validator: str, reason: str):
        super().__init__(f"{validator}: {reason}")
        self.validator = validator
        self.reason = reason


class FinalizeConflict(Exception):
    """Finalize could not be recorded, yet no earlier finalize exists.

    Happens when rows for the account already exist without a finalize event
    (written by hand or by an interrupted migration).
    """

    def __init__(self, account_id: str):
        super().__init__(f"Conflicting antifraud rows for account {account_id}")
        self.account_id = account_id
