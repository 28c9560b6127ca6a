"""
Core Byte Pair Encoding (BPE) operations.
"""

import logging
from collections.abc import Mapping
from functools import lru_cache

from .errors import UnencodableByteError
from .types import BytesPair, Rank, Token, TokenBytes
from .vocab import VocabularyTable

log = logging.getLogger(__name__)


def lowest_ranked_pair(
    symbols: list[TokenBytes], merges: Mapping[BytesPair, Rank]
) -> BytesPair | None:
    """Return the adjacent pair with the lowest merge rank, or ``None`` if no pair merges."""
    best: BytesPair | None = None
    best_rank: Rank | None = None
    for i in range(len(symbols) - 1):
        pair = (symbols[i], symbols[i + 1])
        rank = merges.get(pair)
        # strict comparison keeps the leftmost pair on equal ranks
        if rank is not None and (best_rank is None or rank < best_rank):
            best, best_rank = pair, rank
    return best


def merge_pair(symbols: list[TokenBytes], target: BytesPair) -> list[TokenBytes]:
    """
    Merge all non-overlapping occurrences of ``target``, scanning left to right.

    For ``aaa`` and target ``(a, a)`` this yields ``[aa, a]``.
    """
    merged: list[TokenBytes] = []

    i = 0
    n = len(symbols)
    while i < n:
        # check if we can form a pair and it matches the target
        if i < n - 1 and symbols[i] == target[0] and symbols[i + 1] == target[1]:
            merged.append(symbols[i] + symbols[i + 1])
            i += 2
        else:
            merged.append(symbols[i])
            i += 1

    return merged


def bpe_merge(chunk: bytes, merges: Mapping[BytesPair, Rank]) -> list[TokenBytes]:
    """
    Split ``chunk`` into its final BPE symbols.

    Starts from single bytes and repeatedly applies the lowest-ranked merge
    present until no adjacent pair has a rank. Each pass is O(n) so a chunk
    costs O(n^2) in the worst case; pretokenization keeps chunks short.
    """
    symbols = [bytes([b]) for b in chunk]

    while len(symbols) > 1:
        target = lowest_ranked_pair(symbols, merges)
        if target is None:
            break
        symbols = merge_pair(symbols, target)

    return symbols


class BPEEncoder:
    """
    Encodes pretokenized chunks against a vocabulary table.

    Results are memoised per chunk in an LRU cache. Cached values are tuples
    and the table is read-only, so one encoder may serve many threads.
    """

    def __init__(self, vocab: VocabularyTable, cache_size: int = 4096) -> None:
        """
        :param vocab: Loaded vocabulary table.
        :param cache_size: Maximum cached chunks; ``0`` disables the cache.
        """
        self.vocab = vocab
        self.cache_size = cache_size
        if cache_size > 0:
            self._encode = lru_cache(maxsize=cache_size)(self._encode_uncached)
        else:
            self._encode = self._encode_uncached

    def encode_chunk(self, chunk: bytes) -> tuple[Token, ...]:
        """
        Encode one chunk into token ids.

        :raises UnencodableByteError: If a final symbol has no vocabulary entry.
        """
        if not chunk:
            return ()
        return self._encode(chunk)

    def count_chunk(self, chunk: bytes) -> int:
        return len(self.encode_chunk(chunk))

    def cache_info(self):
        """Return ``functools`` cache statistics, or ``None`` when caching is off."""
        if self.cache_size > 0:
            return self._encode.cache_info()
        return None

    def cache_clear(self) -> None:
        if self.cache_size > 0:
            self._encode.cache_clear()

    def _encode_uncached(self, chunk: bytes) -> tuple[Token, ...]:
        encoder = self.vocab.encoder
        tokens: list[Token] = []
        for symbol in bpe_merge(chunk, self.vocab.merges):
            tok = encoder.get(symbol)
            if tok is None:
                log.error(
                    f"symbol 0x{symbol.hex()} missing from vocabulary {self.vocab.name!r}"
                )
                raise UnencodableByteError(
                    "symbol has no vocabulary entry", symbol=symbol
                )
            tokens.append(tok)
        return tuple(tokens)
