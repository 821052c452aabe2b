from typing import Optional, Dict, Any


class FleetError(Exception):
    """Base exception for all fleet manager errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ValidationError(FleetError):
    """Raised when caller input is rejected before any I/O happens."""
    def __init__(self, message: str, code: str = "validation_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class SiteNotFoundError(FleetError):
    """Raised when a referenced site does not exist in the store."""
    def __init__(self, site_id: int, code: str = "site_not_found", details: Optional[Dict[str, Any]] = None):
        super().__init__("Site not found", code=code, details={"site_id": site_id, **(details or {})})
        self.site_id = site_id


class CredentialError(FleetError):
    """Raised when a site's stored credential cannot be decrypted."""
    def __init__(self, message: str = "Unable to decrypt site credentials", code: str = "credential_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class RemoteTransportError(FleetError):
    """Raised when a call against a remote site's management API fails."""
    def __init__(
        self,
        message: str,
        code: str = "remote_error",
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code=code, details=details)
        self.status_code = status_code


class RemoteConnectionError(RemoteTransportError):
    """Raised when the remote site as a whole is unreachable or rejects our credentials."""
    def __init__(
        self,
        message: str,
        code: str = "remote_unreachable",
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code=code, status_code=status_code, details=details)


class ReconciliationError(FleetError):
    """Raised when the post-update re-sync of a site fails. Logged only."""
    def __init__(self, message: str, code: str = "reconciliation_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)
