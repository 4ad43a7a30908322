"""
Unified base exception classes for all services.

Each service extends ServiceError with its own base (e.g. LedgerError)
so that routers can catch one class per service and translate it with
`HTTPException(status_code=e.status_code, detail=e.message)`.
"""


class ServiceError(Exception):
    """Base exception for all service-layer errors."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(ServiceError):
    """Request data failed a business validation rule."""

    def __init__(self, message: str):
        super().__init__(message, 400)
