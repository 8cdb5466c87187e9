"""
Ordered-alternatives helpers.

Both the Gemini model fallback chain and best-effort JSON recovery follow the
same shape: try each alternative in order, move on only when the failure is
classified as retryable, and give up with a dedicated error once the list is
exhausted.
"""

import logging
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

A = TypeVar("A")
T = TypeVar("T")


def first_successful(
    alternatives: Iterable[A],
    attempt: Callable[[A], T],
    is_retryable: Callable[[BaseException], bool],
    exhausted: Callable[[Optional[BaseException]], Exception],
) -> T:
    """
    Return the result of the first alternative whose attempt succeeds.

    Args:
        alternatives: Candidates in preference order
        attempt: Called with each candidate until one returns
        is_retryable: Decides whether a failure moves on to the next candidate
        exhausted: Builds the error raised when every candidate failed

    Raises:
        The original exception when it is not retryable, otherwise the
        exception built by ``exhausted``.
    """
    last_error: Optional[BaseException] = None
    for alternative in alternatives:
        try:
            return attempt(alternative)
        except Exception as e:
            if not is_retryable(e):
                raise
            logger.debug(f"Alternative {alternative!r} failed ({e}), trying next")
            last_error = e
    raise exhausted(last_error) from last_error


async def first_successful_async(
    alternatives: Iterable[A],
    attempt: Callable[[A], Awaitable[T]],
    is_retryable: Callable[[BaseException], bool],
    exhausted: Callable[[Optional[BaseException]], Exception],
) -> T:
    """Async variant of :func:`first_successful`."""
    last_error: Optional[BaseException] = None
    for alternative in alternatives:
        try:
            return await attempt(alternative)
        except Exception as e:
            if not is_retryable(e):
                raise
            logger.warning(f"{alternative} failed ({_short(e)}), trying next...")
            last_error = e
    raise exhausted(last_error) from last_error


def extract_balanced_fragment(text: str) -> Optional[str]:
    """
    Return the first balanced ``{...}`` or ``[...]`` fragment in text.

    String literals are tracked so brackets inside quoted values do not
    affect nesting depth.
    """
    closing = {"{": "}", "[": "]"}
    start = next((i for i, ch in enumerate(text) if ch in closing), None)
    if start is None:
        return None

    stack: list[str] = []
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in closing:
            stack.append(closing[ch])
        elif ch in ("}", "]"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return text[start:i + 1]

    return None


def _short(error: BaseException) -> str:
    return str(error)[:200]
