"""
Service Exceptions
Error taxonomy shared by the services and mapped to HTTP statuses by the API layer
"""

from typing import Any, Dict


class ServiceError(Exception):
    """Base error for all service-level failures"""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message}


class ValidationError(ServiceError):
    """Malformed input, illegal transition or retry-able concurrent change"""

    status_code = 400


class InvalidAddressError(ValidationError):
    """Wallet address is not a valid ed25519 public key"""


class UnauthorizedError(ServiceError):
    """Bad signature or unknown, expired or used challenge"""

    status_code = 401


class ForbiddenError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    """Duplicate resource or serialization failure (retry-able)"""

    status_code = 409


class DependencyError(ServiceError):
    """External collaborator failed or is not configured"""

    status_code = 502
