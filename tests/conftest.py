"""Shared fixtures: ready sessions and a builder for small ``.tkv`` vocabularies."""

import base64

import pytest

import tokcount as tc
from tokcount.pattern import TokenPattern


def _b64(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def build_tkv(
    merges: list[tuple[bytes, bytes]] = (),
    special: dict[str, int] | None = None,
    *,
    name: str = "tiny",
    pattern: str = TokenPattern.GPT2.value,
    header: str = "TokCount 1",
    extra_token_lines: list[str] = (),
    merge_lines: list[str] | None = None,
    drop_byte: int | None = None,
) -> list[str]:
    """
    Build the lines of a ``.tkv`` file.

    Byte tokens take ids 0-255, merged symbols are appended in merge order and
    merges are ranked 0, 1, 2, ... unless ``merge_lines`` replaces them.
    """
    tokens: dict[bytes, int] = {bytes([i]): i for i in range(256)}
    generated_merges = []
    for rank, (left, right) in enumerate(merges):
        tokens.setdefault(left + right, len(tokens))
        generated_merges.append(f"{tokens[left]} {tokens[right]} {rank}")

    token_lines = [
        f"{_b64(b)} {tok}"
        for b, tok in tokens.items()
        if drop_byte is None or b != bytes([drop_byte])
    ]
    token_lines.extend(extra_token_lines)
    special = special or {}

    return [
        header,
        f"name {name}",
        f"re {pattern}",
        "---",
        str(len(special)),
        *(f"{_b64(seq.encode('utf-8'))} {tok}" for seq, tok in special.items()),
        "---",
        str(len(token_lines)),
        *token_lines,
        "---",
        *(generated_merges if merge_lines is None else merge_lines),
    ]


def build_ranks(tokens: list[bytes] = (), *, drop_byte: int | None = None) -> list[str]:
    """
    Build the lines of a ``.tiktoken`` rank file.

    Byte tokens take ranks 0-255, ``tokens`` follow in order.
    """
    ranked = [bytes([i]) for i in range(256) if i != drop_byte]
    ranked.extend(tokens)
    return [f"{_b64(b)} {rank}" for rank, b in enumerate(ranked)]


@pytest.fixture
def tkv_builder():
    """Return the ``.tkv`` line builder."""
    return build_tkv


@pytest.fixture
def session():
    """Return a ready ``gpt2-like`` session, closed after the test."""
    s = tc.Session.open("gpt2-like")
    yield s
    s.cleanup()


@pytest.fixture
def gpt2_like():
    """Return the bundled ``gpt2-like`` vocabulary table."""
    return tc.load("gpt2-like")


@pytest.fixture
def ranks_builder():
    """Return the ``.tiktoken`` line builder."""
    return build_ranks
