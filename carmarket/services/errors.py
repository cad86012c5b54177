"""
Domain errors raised by the service layer.
Routes let them propagate; a single exception handler in main renders them.
"""


class MarketplaceError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(MarketplaceError):
    status_code = 404


class Forbidden(MarketplaceError):
    status_code = 403


class ValidationFailed(MarketplaceError):
    status_code = 400


class Conflict(MarketplaceError):
    status_code = 409


class InvalidTransition(Conflict):
    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"Cannot move {entity} from {current} to {target}")
        self.current = current
        self.target = target


class StaleWriteError(Conflict):
    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} was modified by someone else; reload and retry")
