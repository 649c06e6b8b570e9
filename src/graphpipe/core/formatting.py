"""
Error formatting - turns exceptions into client-facing errors.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Callable, Iterable, Optional, Union

from graphql import GraphQLError

from .errors import ErrorKind, GraphPipeError
from .request_types import FormattedError

logger = logging.getLogger(__name__)

FormatErrorFn = Callable[[FormattedError], FormattedError]


def to_graphql_error(error: BaseException) -> GraphQLError:
    """Wrap a non-GraphQL exception so it has a message, path and locations."""
    if isinstance(error, GraphQLError):
        return error
    message = error.message if isinstance(error, GraphPipeError) else str(error)
    return GraphQLError(message or error.__class__.__name__, original_error=error)


def _resolve_kind(error: GraphQLError, kind: Optional[Union[ErrorKind, str]]) -> str:
    """
    Pick the error code.

    Precedence: explicit stage kind, app-provided code, graphpipe error kind,
    then internal.
    """
    if kind is not None:
        return kind.value if isinstance(kind, ErrorKind) else kind
    if error.extensions and error.extensions.get("code"):
        return error.extensions["code"]
    original = error.original_error
    if isinstance(original, GraphPipeError):
        return original.kind.value
    if original is not None and isinstance(getattr(original, "extensions", None), dict):
        code = original.extensions.get("code")
        if code:
            return code
    return ErrorKind.INTERNAL.value


def format_graphql_error(
    error: BaseException,
    kind: Optional[Union[ErrorKind, str]] = None,
    *,
    debug: bool = False,
) -> FormattedError:
    """
    Convert an exception into a FormattedError.

    Args:
        error: GraphQLError or any exception raised in a stage
        kind: Error kind to force (e.g. SYNTAX for parse failures)
        debug: Include the original exception's stacktrace

    Returns:
        FormattedError with ``extensions.code`` set
    """
    graphql_error = to_graphql_error(error)
    formatted = graphql_error.formatted

    extensions: dict[str, Any] = dict(formatted.get("extensions") or {})
    original = graphql_error.original_error
    if isinstance(original, GraphPipeError) and original.extensions:
        extensions = {**original.extensions, **extensions}
    extensions["code"] = _resolve_kind(graphql_error, kind)

    if debug:
        source = original if original is not None else graphql_error
        extensions["exception"] = {
            "stacktrace": traceback.format_exception(
                type(source), source, source.__traceback__
            ),
        }

    return FormattedError(
        message=formatted["message"],
        locations=formatted.get("locations"),
        path=formatted.get("path"),
        extensions=extensions,
    )


def format_errors(
    errors: Iterable[BaseException],
    kind: Optional[Union[ErrorKind, str]] = None,
    *,
    debug: bool = False,
    format_error: Optional[FormatErrorFn] = None,
) -> list[FormattedError]:
    """
    Format a batch of errors, applying the application's formatter.

    A formatter that raises degrades to a generic internal error so one bad
    error never hides the rest of the response.
    """
    formatted: list[FormattedError] = []
    for error in errors:
        item = format_graphql_error(error, kind, debug=debug)
        if format_error is not None:
            try:
                item = format_error(item)
            except Exception as e:
                logger.error(f"format_error failed: {e}", exc_info=True)
                item = FormattedError(
                    message="Internal server error",
                    extensions={"code": ErrorKind.INTERNAL.value},
                )
        formatted.append(item)
    return formatted
