"""Tests for regex pretokenization and split patterns."""

import pytest

from tokcount import Pretokenizer, TokenPattern, list_patterns
from tokcount.errors import PatternError


@pytest.fixture
def gpt2_pretokenizer():
    """Return a pretokenizer using the GPT-2 split pattern."""
    return Pretokenizer(TokenPattern.GPT2.value)


# Splitting
# ---------------------------------------------------------------------------


def test_whitespace_attaches_to_following_word(gpt2_pretokenizer):
    """A single leading space belongs to the next word."""
    assert gpt2_pretokenizer.split("hello world") == [b"hello", b" world"]


def test_contractions_split_off(gpt2_pretokenizer):
    """Contractions are separate chunks."""
    assert gpt2_pretokenizer.split("don't") == [b"don", b"'t"]


def test_categories_are_separate(gpt2_pretokenizer):
    """Letters, digits, punctuation and whitespace runs form distinct chunks."""
    assert gpt2_pretokenizer.split("abc 123!!  x") == [
        b"abc",
        b" 123",
        b"!!",
        b" ",
        b" x",
    ]


def test_gpt4_groups_digits_in_threes():
    """cl100k-style splitting bounds digit runs to three."""
    pretokenizer = Pretokenizer(TokenPattern.GPT4.value)
    assert pretokenizer.split("1234567") == [b"123", b"456", b"7"]


def test_default_pattern_is_gpt2():
    """Pretokenizer() falls back to the GPT-2 pattern."""
    assert Pretokenizer().pat == TokenPattern.GPT2.value


def test_empty_text(gpt2_pretokenizer):
    """Empty input has no chunks."""
    assert gpt2_pretokenizer.split("") == []
    assert gpt2_pretokenizer.split(b"") == []


def test_iter_chunks_is_lazy(gpt2_pretokenizer):
    """iter_chunks returns a generator yielding the same chunks as split."""
    chunks = gpt2_pretokenizer.iter_chunks("a b c")
    assert next(chunks) == b"a"
    assert list(chunks) == [b" b", b" c"]


# Losslessness
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "text",
    [
        "Hello, world!",
        "   \n\t  ",
        "tabs\tand\r\nnewlines\n\n",
        "café naïve 日本語 🎉",
        "x",
        "a\ud800b",
    ],
)
@pytest.mark.parametrize("pattern", list(TokenPattern))
def test_chunks_reconstruct_text(pattern, text):
    """Chunks concatenate back to the exact input bytes for every pattern."""
    pretokenizer = Pretokenizer(pattern.value)
    chunks = pretokenizer.split(text)
    assert b"".join(chunks) == text.encode("utf-8", errors="surrogatepass")
    assert all(chunks)


def test_invalid_utf8_bytes_are_preserved(gpt2_pretokenizer):
    """Raw bytes that are not UTF-8 still round-trip."""
    data = b"ok \xff\xfe bytes \xc3"
    assert b"".join(gpt2_pretokenizer.split(data)) == data


def test_unmatched_spans_become_chunks():
    """Text skipped by a custom pattern is kept as catch-all chunks."""
    pretokenizer = Pretokenizer(r"\d+")
    assert pretokenizer.split("ab12cd") == [b"ab", b"12", b"cd"]


def test_empty_matches_are_skipped():
    """Zero-length matches do not produce empty chunks."""
    pretokenizer = Pretokenizer(r"x*")
    assert pretokenizer.split("abxx") == [b"ab", b"xx"]


# Patterns
# ---------------------------------------------------------------------------


def test_invalid_pattern_raises():
    """Uncompilable patterns raise PatternError."""
    with pytest.raises(PatternError) as exc:
        Pretokenizer("(unclosed")
    assert exc.value.pattern == "(unclosed"


def test_pattern_lookup_is_case_insensitive():
    """TokenPattern.get accepts any case."""
    assert TokenPattern.get("gpt4o") == TokenPattern.GPT4O.value
    assert TokenPattern.get("GPT2") == TokenPattern.GPT2.value


def test_unknown_pattern_name():
    """Unknown names raise PatternError."""
    with pytest.raises(PatternError):
        TokenPattern.get("nope")


def test_list_patterns():
    """All built-in patterns are listed."""
    assert list_patterns() == ["GPT2", "GPT4", "GPT4O"]
