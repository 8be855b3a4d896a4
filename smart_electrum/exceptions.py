from typing import Optional, Any, Dict

class ElectrumError(Exception):
    """Base exception class for Electrum client errors"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

class TransportError(ElectrumError):
    """Socket level failures: connect, read, write, timeouts"""
    pass

class SslHandshakeError(TransportError):
    """TLS handshake or certificate verification failure"""
    pass

class ShutdownError(TransportError):
    """Socket shutdown failure"""
    pass

class BlockingModeError(TransportError):
    """Switching the socket between blocking and non-blocking failed"""
    pass

class ConfigurationError(ElectrumError):
    """Client used in the wrong lifecycle state"""
    pass

class NotConfiguredError(ConfigurationError):
    """No host/port configured on the client"""
    def __init__(self, message: str = "Client is not configured", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)

class AlreadyConnectedError(ConfigurationError):
    """Client already holds a live stream"""
    def __init__(self, message: str = "Client is already connected", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)

class NotConnectedError(ConfigurationError):
    """Client has no live stream"""
    def __init__(self, message: str = "Client is not connected", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)

class ProtocolError(ElectrumError):
    """Malformed peer payload or request/response bookkeeping mismatch"""
    pass

class BatchParsingError(ProtocolError):
    """Payload is not a JSON array of responses"""
    pass

class RawResponseParsingError(ProtocolError):
    """Payload is not JSON, or carries no usable id"""
    def __init__(self, raw: str, reason: str):
        super().__init__(f"Fail to parse `{raw}`: {reason}", {"raw": raw, "reason": reason})
        self.raw = raw

class UnknownRequestIdError(ProtocolError):
    """Response id has no matching request in the pending index"""
    def __init__(self, request_id: int):
        super().__init__(f"No pending request with id {request_id}", {"id": request_id})
        self.request_id = request_id

class ResponseShapeMismatchError(ProtocolError):
    """Response does not have the shape expected for its method"""
    def __init__(self, method: str, raw: str, reason: str = ""):
        super().__init__(
            f"Response to {method} has an unexpected shape: {raw}",
            {"method": method, "raw": raw, "reason": reason}
        )
        self.method = method
        self.raw = raw

class InvalidParamsError(ProtocolError):
    """Positional params do not match the method arity or types"""
    pass

class DuplicateRequestIdError(ProtocolError):
    """Two requests of one batch share an id"""
    def __init__(self, request_id: int):
        super().__init__(f"Duplicate request id {request_id} in batch", {"id": request_id})
        self.request_id = request_id

class LockError(ElectrumError):
    """Shared stream lock could not be acquired"""
    def __init__(self, message: str = "Stream lock is held by another caller", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)

def format_error(error: ElectrumError) -> Dict[str, Any]:
    """Format error for display"""
    return {
        "error": error.__class__.__name__,
        "message": error.message,
        "details": error.details
    }
