"""Regex pretokenization: split text into chunks that BPE treats independently."""

from collections.abc import Iterator

import regex as re

from .errors import PatternError
from .pattern import TokenPattern

# bytes input may hold invalid UTF-8; surrogateescape carries those bytes
# through the str-based regex and back out unchanged
BYTES_ERRORS = "surrogateescape"
# str input may hold lone surrogates; surrogatepass keeps them encodable
TEXT_ERRORS = "surrogatepass"


def to_text(data: str | bytes) -> tuple[str, str]:
    """Return ``data`` as ``str`` plus the codec error handler that restores its bytes."""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors=BYTES_ERRORS), BYTES_ERRORS
    return data, TEXT_ERRORS


class Pretokenizer:
    """
    Splits text into chunks using a fixed regex pattern.

    Chunks are returned as UTF-8 bytes and always concatenate back to the exact
    input bytes: any span the pattern fails to match is emitted as its own chunk.
    Instances hold no state beyond the compiled pattern and can be shared
    between threads.
    """

    def __init__(self, pattern: str | None = None) -> None:
        """Initialize with a provided or default (GPT-2) split pattern."""
        self.pat = TokenPattern.GPT2.value if pattern is None else pattern
        self.compiled_pat: re.Pattern[str] = _compile_pattern(self.pat)

    def split(self, text: str | bytes) -> list[bytes]:
        """Split ``text`` into an ordered list of byte chunks."""
        return list(self.iter_chunks(text))

    def iter_chunks(self, text: str | bytes, errors: str | None = None) -> Iterator[bytes]:
        """
        Lazily yield byte chunks of ``text``.

        :param text: ``str`` or raw ``bytes`` (need not be valid UTF-8).
        :param errors: Codec error handler used to re-encode chunks; inferred from
            the type of ``text`` when ``None``.
        """
        s, default_errors = to_text(text)
        errors = errors or default_errors

        pos = 0
        for m in self.compiled_pat.finditer(s):
            start, end = m.span()
            # custom patterns may match the empty string; it carries no bytes
            if start == end:
                continue
            # catch-all for anything the pattern skipped over
            if start > pos:
                yield s[pos:start].encode("utf-8", errors)
            yield s[start:end].encode("utf-8", errors)
            pos = end

        if pos < len(s):
            yield s[pos:].encode("utf-8", errors)


def _compile_pattern(pattern: str) -> re.Pattern:
    """
    Compile and validate a regex pattern.

    :param pattern: Regex pattern string to compile.
    :return: Compiled regex pattern.
    :raises PatternError: If pattern is invalid.
    """
    try:
        return re.compile(pattern)
    except re.error as e:
        raise PatternError("invalid regex pattern", pattern=pattern, regex_err=e)
