class ClaimError(Exception):
    """A claim operation was rejected; ``code`` is machine-readable."""

    status_code = 400

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def as_response_data(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ClaimValidationError(ClaimError):
    status_code = 400


class ClaimConflict(ClaimError):
    """The claim is not in a state that allows the operation."""

    status_code = 409
