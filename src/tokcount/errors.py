"""Custom exception hierarchy for tokcount errors."""

import regex as re

from .types import Token


class TokCountError(Exception):
    """Base exception for all tokcount errors."""


# setup-time errors
# =========================================================================================


class InitError(TokCountError):
    """Raised when a session cannot be initialised; the session keeps its previous state."""


class UnknownEncodingError(InitError):
    """Raised when an encoding name does not resolve to any vocabulary source."""

    def __init__(
        self,
        message: str,
        *,
        encoding: str | None = None,
        available: list[str] | None = None,
    ) -> None:
        extra = " "
        if encoding is not None:
            extra += f"(got {encoding!r}) "
        if available is not None:
            extra += f"(available: {', '.join(available) or 'none'}) "
        super().__init__(message + extra)
        self.encoding = encoding
        self.available = available


class CorruptVocabularyError(InitError):
    """Raised when vocabulary data is inconsistent."""

    def __init__(
        self,
        message: str,
        *,
        source: str | None = None,
        line_no: int | None = None,
    ) -> None:
        """Initialize with optional source and line number that get appended to the message."""
        extra = " "
        if source:
            extra += f"(source: {source}) "
        if line_no is not None:
            extra += f"(line: {line_no}) "
        super().__init__(message + extra)
        self.source = source
        self.line_no = line_no


class UnencodableByteError(CorruptVocabularyError):
    """
    Raised when a BPE symbol has no vocabulary entry.

    A complete byte-level vocabulary holds every single byte, so this signals a
    broken invariant rather than bad user input.
    """

    def __init__(self, message: str, *, symbol: bytes) -> None:
        super().__init__(f"{message} (symbol: 0x{symbol.hex()})")
        self.symbol = symbol


class VocabularyIOError(InitError):
    """Raised when a vocabulary source cannot be read."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        extra = " "
        if path:
            extra += f"(path: {path}) "
        super().__init__(message + extra)
        self.path = path


class AlreadyInitializedError(InitError):
    """Raised when ``init`` is called on a ready session without ``cleanup``."""

    def __init__(self, message: str, *, encoding: str | None = None) -> None:
        extra = " "
        if encoding:
            extra += f"(loaded: {encoding}) "
        super().__init__(message + extra)
        self.encoding = encoding


# call-order errors
# =========================================================================================


class CountError(TokCountError):
    """Raised when a session is used out of order."""


class SessionNotReadyError(CountError):
    """Raised when encoding or counting on a session that is not ready."""

    def __init__(self, message: str, *, state: str | None = None) -> None:
        extra = " "
        if state:
            extra += f"(state: {state}) "
        super().__init__(message + extra)
        self.state = state


# usage errors
# =========================================================================================


class VocabularyError(TokCountError):
    """Raised when a token id is not part of the loaded vocabulary."""

    def __init__(self, message: str, *, invalid_tok: Token | None = None) -> None:
        extra = " "
        if invalid_tok is not None:
            extra += f"(invalid token: {invalid_tok}) "
        super().__init__(message + extra)
        self.invalid_tok = invalid_tok


class PatternError(TokCountError):
    """Raised when compiling and/or validating regex patterns."""

    def __init__(
        self,
        message: str,
        *,
        pattern: str | None = None,
        regex_err: re.error | None = None,
    ) -> None:
        """
        Initialize PatternError with pattern details.

        :param message: Error message.
        :param pattern: The regex pattern that failed.
        :param regex_err: The underlying regex error from the regex library.
        """
        extra = " "
        if pattern:
            extra += f"(pattern: {pattern!r}) "
        if regex_err:
            extra += f"(reason: {regex_err}) "
        super().__init__(message + extra)
        self.pattern = pattern
        self.regex_err = regex_err


class SpecialTokenError(TokCountError):
    """Raised when special token handling fails."""

    def __init__(self, message: str, *, found_tokens: set[str] | None = None) -> None:
        """Initialize with optional found_tokens that get appended to the message."""
        if found_tokens:
            message = f"{message} (found: {', '.join(sorted(found_tokens))})"
        super().__init__(message)
        self.found_tokens = found_tokens


class StrategyError(TokCountError):
    """Raised when strategy or mode lookups fail."""

    def __init__(
        self,
        message: str,
        *,
        invalid_name: str | None = None,
        available_strats: list[str] | None = None,
    ) -> None:
        extra = " "
        if invalid_name:
            extra += f"(available: {available_strats}) (got {invalid_name}) "
        super().__init__(message + extra)
        self.invalid_name = invalid_name
        self.available_strats = available_strats
