from typing import Any, Optional


class RankingError(Exception):
    """
    Base class for every failure the engine surfaces to its caller.

    `kind` is a stable machine-readable label and `status_code` the transport
    status the boundary layer should answer with.
    """

    kind = "ranking_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class InvalidInputError(RankingError):
    kind = "invalid_input"
    status_code = 400


class NotFoundError(RankingError):
    kind = "not_found"
    status_code = 404

    def __init__(self, resource: str, identifier: Optional[str] = None):
        if identifier:
            message = f"{resource} with identifier {identifier} not found"
        else:
            message = f"{resource} not found"
        super().__init__(message, {"resource": resource, "identifier": identifier})


class StoreUnavailableError(RankingError):
    kind = "store_unavailable"
    status_code = 503


class RankingTimeoutError(RankingError):
    kind = "timeout"
    status_code = 504
