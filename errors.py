# errors.py
from __future__ import annotations

from typing import Literal, Optional

GenerationErrorKind = Literal["config", "network", "validation", "unexpected", "cancelled"]

_USER_MESSAGES = {
    "config": "Itinerary generation is not available right now.",
    "cancelled": "Itinerary generation was cancelled.",
}
_DEFAULT_USER_MESSAGE = "Itinerary generation failed, please try again."


class GenerationError(Exception):
    """
    Single tagged error raised by the generation pipeline.

    `kind` classifies the failure:
      - config:      nothing was attempted (missing key, bad retry bound)
      - network:     transport failure or non-2xx provider response
      - validation:  response text was not JSON, or JSON failed the schema
      - unexpected:  unparsable provider envelope or any unclassified exception
      - cancelled:   the caller's cancel event fired; never retried

    `should_rollback` tells callers whether speculative state they set before
    calling (e.g. a "generating" status) must be undone. It is False for
    config errors since no external call was made.
    """

    def __init__(
        self,
        kind: GenerationErrorKind,
        message: str,
        *,
        attempt: Optional[int] = None,
        details: Optional[str] = None,
        cause: Optional[BaseException] = None,
        should_rollback: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.kind: GenerationErrorKind = kind
        self.message = message
        self.attempt = attempt
        self.details = details
        self.should_rollback = should_rollback if should_rollback is not None else kind != "config"
        if cause is not None:
            self.__cause__ = cause

    @property
    def code(self) -> str:
        return f"llm_{self.kind}"

    @property
    def user_message(self) -> str:
        return _USER_MESSAGES.get(self.kind, _DEFAULT_USER_MESSAGE)

    def __repr__(self) -> str:
        return f"GenerationError(kind={self.kind!r}, message={self.message!r}, attempt={self.attempt!r})"
