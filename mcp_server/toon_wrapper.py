"""
TOON output for Forvm MCP tool responses.

toon_response wraps a tool so its dict result can be returned TOON-encoded
(as MCP TextContent) instead of JSON. Callers may pass toon=True/False;
otherwise the "toon_output" config setting decides.
"""
import inspect
from typing import Any, Callable, Dict, List

from forvm.config import is_toon_output_enabled


def _encode(result: Dict[str, Any]) -> List[Any]:
    # Imported on use: toons is an optional extra and must fail loudly
    # only when TOON output is actually requested
    from mcp.types import TextContent
    from toons import dumps

    return [TextContent(type="text", text=dumps(result))]


def toon_response(func: Callable) -> Callable:
    """
    Decorator that TOON-encodes a tool's dict response when enabled.

    The wrapped tool keeps its parameter schema but loses its return
    annotation, so the MCP SDK does not attach a dict output validator
    to a response that may be TextContent.
    """
    signature = inspect.signature(func)

    async def wrapper(*args, **kwargs):
        toon = kwargs.pop("toon", None)
        if toon is None:
            toon = is_toon_output_enabled()

        result = await func(*args, **kwargs)
        if toon and isinstance(result, dict):
            return _encode(result)
        return result

    wrapper.__name__ = func.__name__
    wrapper.__qualname__ = func.__qualname__
    wrapper.__doc__ = func.__doc__
    wrapper.__module__ = func.__module__
    wrapper.__annotations__ = {
        k: v for k, v in func.__annotations__.items() if k != "return"
    }
    wrapper.__signature__ = signature.replace(return_annotation=inspect.Parameter.empty)
    return wrapper
