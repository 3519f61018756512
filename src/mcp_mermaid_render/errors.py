"""Error kinds surfaced by the codec, the render backends and the dispatcher."""

from typing import Any, Dict, Optional


class RenderError(Exception):
    """Base exception for every failure the render core reports."""

    kind = "internal_error"

    def __init__(
        self,
        message: str,
        code: int = -32603,
        data: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data or {}

    def to_dict(self) -> Dict[str, Any]:
        """Flat description used by the HTTP and MCP shells."""
        out: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        out.update(self.data)
        return out

    def to_json_rpc_error(self, request_id: Optional[str] = None) -> Dict[str, Any]:
        """Convert to JSON-RPC error response."""
        error_response = {
            "jsonrpc": "2.0",
            "error": {
                "code": self.code,
                "message": self.message,
            },
            "id": request_id,
        }

        if self.data:
            error_response["error"]["data"] = self.data

        return error_response


class ValidationError(RenderError):
    """Malformed or missing request fields."""

    kind = "validation_error"

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=-32602, data=data)


class DecodeError(RenderError):
    """A token could not be turned back into diagram source."""

    kind = "decode_error"

    def __init__(self, message: str, stage: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=-32602, data={"stage": stage, **(data or {})})
        self.stage = stage


class RemoteRenderError(RenderError):
    """The remote rendering service answered with a non-success status."""

    kind = "remote_render_error"

    def __init__(self, message: str, status: int, data: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=-32001, data={"status": status, **(data or {})})
        self.status = status


class NetworkError(RenderError):
    """The remote rendering service could not be reached."""

    kind = "network_error"

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None, code: int = -32002):
        super().__init__(message, code=code, data=data)


class RenderTimeoutError(NetworkError):
    """The remote rendering service did not answer in time."""

    kind = "timeout_error"

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message, data=data, code=-32005)


class RenderFailure(RenderError):
    """The local rendering engine could not produce output."""

    kind = "render_failure"

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=-32003, data=data)


def as_render_error(exception: Exception, default_message: str = "Internal server error") -> RenderError:
    """Map any exception onto the RenderError kind reported to callers."""
    if isinstance(exception, RenderError):
        return exception
    if isinstance(exception, ValueError):
        return ValidationError(str(exception))
    if isinstance(exception, TimeoutError):
        return RenderTimeoutError(str(exception))
    return RenderError(default_message, data={"original_error": str(exception)})


def handle_exception(
    exception: Exception,
    request_id: Optional[str] = None,
    default_message: str = "Internal server error"
) -> Dict[str, Any]:
    """Convert any exception to a JSON-RPC error response.

    Args:
        exception: Exception to convert
        request_id: Request ID for the response
        default_message: Default error message

    Returns:
        JSON-RPC error response
    """
    return as_render_error(exception, default_message).to_json_rpc_error(request_id)
