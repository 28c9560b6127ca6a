"""
OpenAI ``.tiktoken`` rank files.

A rank file lists ``<base64 bytes> <rank>`` per line and nothing else: the
rank doubles as the token id and the merge priority, the merge pairs are
implicit. They are recovered here by replaying BPE on each token with only
the lower-ranked tokens available; the two symbols left over form the merge
that produces it.
"""

import base64
import binascii
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Final

from ._sanitise import render_symbol
from .errors import CorruptVocabularyError
from .pattern import TokenPattern
from .types import BytesPair, Rank, Token, TokenBytes

RANK_FILE_SUFFIX: Final[str] = ".tiktoken"

log = logging.getLogger(__name__)

ENDOFTEXT = "<|endoftext|>"
FIM_PREFIX = "<|fim_prefix|>"
FIM_MIDDLE = "<|fim_middle|>"
FIM_SUFFIX = "<|fim_suffix|>"
ENDOFPROMPT = "<|endofprompt|>"


@dataclass(frozen=True)
class RankFileEncoding:
    """What a named encoding adds on top of its rank file."""

    rank_file: str
    pattern: TokenPattern
    special_tokens: dict[str, Token] = field(default_factory=dict)

    @property
    def filename(self) -> str:
        return f"{self.rank_file}{RANK_FILE_SUFFIX}"


# Source: https://github.com/openai/tiktoken/blob/main/tiktoken_ext/openai_public.py
RANK_FILE_ENCODINGS: Final[dict[str, RankFileEncoding]] = {
    "r50k_base": RankFileEncoding(
        "r50k_base", TokenPattern.GPT2, {ENDOFTEXT: 50256}
    ),
    "p50k_base": RankFileEncoding(
        "p50k_base", TokenPattern.GPT2, {ENDOFTEXT: 50256}
    ),
    # p50k_edit shares the p50k_base ranks and adds the fill-in-the-middle tokens
    "p50k_edit": RankFileEncoding(
        "p50k_base",
        TokenPattern.GPT2,
        {ENDOFTEXT: 50256, FIM_PREFIX: 50281, FIM_MIDDLE: 50282, FIM_SUFFIX: 50283},
    ),
    "cl100k_base": RankFileEncoding(
        "cl100k_base",
        TokenPattern.GPT4,
        {
            ENDOFTEXT: 100257,
            FIM_PREFIX: 100258,
            FIM_MIDDLE: 100259,
            FIM_SUFFIX: 100260,
            ENDOFPROMPT: 100276,
        },
    ),
    "o200k_base": RankFileEncoding(
        "o200k_base", TokenPattern.GPT4O, {ENDOFTEXT: 199999, ENDOFPROMPT: 200018}
    ),
}


def parse_ranks(
    lines: Iterable[str], source: str = "<memory>"
) -> dict[TokenBytes, Rank]:
    """
    Parse rank file lines into ``token bytes -> rank``.

    :raises CorruptVocabularyError: On malformed lines, duplicate bytes or
        ranks, or when a single byte has no rank.
    """
    ranks: dict[TokenBytes, Rank] = {}
    seen_ranks: set[Rank] = set()
    for line_no, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        parts = line.split()
        if len(parts) != 2:
            raise CorruptVocabularyError(
                "rank line must be '<base64 bytes> <rank>'", source=source, line_no=line_no
            )
        try:
            b = base64.b64decode(parts[0], validate=True)
        except binascii.Error:
            raise CorruptVocabularyError(
                f"invalid base64 token bytes: {parts[0]}", source=source, line_no=line_no
            )
        try:
            rank = int(parts[1])
            if rank < 0:
                raise ValueError()
        except ValueError:
            raise CorruptVocabularyError(
                f"invalid rank: {parts[1]}", source=source, line_no=line_no
            )
        if not b:
            raise CorruptVocabularyError(
                "empty token bytes", source=source, line_no=line_no
            )
        if b in ranks:
            raise CorruptVocabularyError(
                f"duplicate token bytes {render_symbol(b)}", source=source, line_no=line_no
            )
        if rank in seen_ranks:
            raise CorruptVocabularyError(
                f"duplicate rank {rank}", source=source, line_no=line_no
            )
        ranks[b] = rank
        seen_ranks.add(rank)

    missing = [i for i in range(256) if bytes([i]) not in ranks]
    if missing:
        raise CorruptVocabularyError(
            f"{len(missing)} single-byte tokens missing (first: 0x{missing[0]:02x})",
            source=source,
        )
    return ranks


def split_token(
    token: TokenBytes, ranks: Mapping[TokenBytes, Rank], max_rank: Rank
) -> list[TokenBytes]:
    """
    Run BPE on ``token`` using only tokens ranked below ``max_rank``.

    Merges one lowest-ranked pair at a time, the way the rank files were built.
    """
    parts = [bytes([b]) for b in token]
    while len(parts) > 1:
        best_idx: int | None = None
        best_rank: Rank | None = None
        for i in range(len(parts) - 1):
            rank = ranks.get(parts[i] + parts[i + 1])
            if rank is not None and rank < max_rank:
                if best_rank is None or rank < best_rank:
                    best_idx, best_rank = i, rank
        if best_idx is None:
            break
        parts[best_idx : best_idx + 2] = [parts[best_idx] + parts[best_idx + 1]]
    return parts


def derive_merges(ranks: Mapping[TokenBytes, Rank]) -> dict[BytesPair, Rank]:
    """
    Recover the merge rule behind every multi-byte token.

    A token that does not reduce to exactly two lower-ranked symbols gets no
    merge; it stays in the vocabulary but BPE never produces it.
    """
    merges: dict[BytesPair, Rank] = {}
    unreachable = 0
    for token, rank in sorted(ranks.items(), key=lambda x: x[1]):
        if len(token) == 1:
            continue
        parts = split_token(token, ranks, rank)
        if len(parts) != 2:
            unreachable += 1
            continue
        merges[(parts[0], parts[1])] = rank

    if unreachable:
        log.debug(f"{unreachable} tokens are not reachable by a single merge")
    return merges
