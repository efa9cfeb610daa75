"""
Utility functions for logging and describing exceptions raised while proxying.
"""

import logging


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, handling cases where __str__ or __repr__ might fail.

    Args:
        obj: The object to convert to string

    Returns:
        A string representation of the object, falling back to safe alternatives
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _sub_exceptions(exception) -> list:
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def format_exception_message(exception: BaseException) -> str:
    """
    Describe an exception in one line for logs and error bodies.

    httpx raises several transport errors with an empty message (a bare
    ``ReadTimeout()`` for instance), so the type name is used when ``str()``
    has nothing to say. Exception groups list their sub-exceptions.

    Args:
        exception: The exception to format

    Returns:
        A non-empty string describing the exception
    """
    if exception is None:
        return "None"

    text = _safe_str(exception).strip() or type(exception).__name__

    sub_exceptions = _sub_exceptions(exception)
    if sub_exceptions:
        parts = [
            f"{type(sub).__name__}: {format_exception_message(sub)}"
            for sub in sub_exceptions
        ]
        return f"{text} (Sub-exceptions: {'; '.join(parts)})"
    return text


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its traceback, including sub-exceptions of groups.
    Never raises, even for exceptions whose string conversion fails.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]", "[Server]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        message = format_exception_message(exception)
        logger.log(level, f"{prefix} Exception: {message}", exc_info=exception)
        for i, sub_exc in enumerate(_sub_exceptions(exception)):
            logger.log(
                level,
                f"{prefix} Sub-exception {i + 1}: {type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                exc_info=sub_exc,
            )
    except Exception:
        try:
            logger.log(level, f"{prefix} Exception (logging failed)")
        except Exception:
            pass
