"""
Tokenizer sessions: an explicit handle owning one loaded encoding.

.. code-block:: python

    with Session.open("gpt2-like") as session:
        n = session.count("hello world")

Lifecycle calls (``init``/``cleanup``) are not locked. Callers must not run
them concurrently with each other or with in-flight ``encode``/``count`` calls
on the same session. ``encode``/``count`` themselves may run from any number
of threads at once.
"""

import logging
from collections.abc import Iterable, Iterator, Sequence
from enum import Enum

import regex as re

from . import _config
from . import vocab as _vocab
from ._bpe import BPEEncoder
from .errors import AlreadyInitializedError, SessionNotReadyError, VocabularyError
from .parallel import ParallelMode, ParallelStrategy, map_texts
from .pretokenize import Pretokenizer, to_text
from .strategy import AllowAllStrategy, SpecialTokenStrategy
from .types import Token
from .vocab import VocabularyTable

log = logging.getLogger(__name__)

_DEFAULT_STRATEGY = AllowAllStrategy()


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    CLOSED = "closed"


class Session:
    """
    Resource-scoped tokenizer handle.

    States move ``UNINITIALIZED -> READY`` on :meth:`init` and ``READY -> CLOSED``
    on :meth:`cleanup`. A closed session may be initialised again.
    """

    def __init__(self, cache_size: int | None = None) -> None:
        """
        :param cache_size: Chunk cache entries; ``None`` reads ``TOKCOUNT_CACHE_SIZE``,
            ``0`` disables caching.
        """
        self._cache_size = cache_size
        self._state = SessionState.UNINITIALIZED
        self._encoding_name: str | None = None
        self._vocab: VocabularyTable | None = None
        self._pretokenizer: Pretokenizer | None = None
        self._encoder: BPEEncoder | None = None

    @classmethod
    def open(cls, encoding_name: str, cache_size: int | None = None) -> "Session":
        """Create a session and initialise it with ``encoding_name``."""
        session = cls(cache_size=cache_size)
        session.init(encoding_name)
        return session

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def __repr__(self) -> str:
        return f"Session(encoding={self._encoding_name!r}, state={self._state.value})"

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def encoding_name(self) -> str | None:
        return self._encoding_name

    @property
    def vocab(self) -> VocabularyTable:
        vocab, _, _ = self._ready_parts()
        return vocab

    @property
    def encoder(self) -> BPEEncoder:
        _, _, encoder = self._ready_parts()
        return encoder

    # lifecycle
    # -------------------------------------------------------------------------------------

    def init(self, encoding_name: str) -> "Session":
        """
        Load ``encoding_name`` and move to ``READY``.

        On failure the session keeps its previous state.

        :raises AlreadyInitializedError: If the session is already ready.
        :raises UnknownEncodingError: If no vocabulary source provides the name.
        :raises CorruptVocabularyError: If the vocabulary is inconsistent.
        :raises VocabularyIOError: If the vocabulary cannot be read.
        """
        if self._state is SessionState.READY:
            raise AlreadyInitializedError(
                "session already initialised, call cleanup() first",
                encoding=self._encoding_name,
            )

        vocab = _vocab.load(encoding_name)
        cache_size = (
            self._cache_size if self._cache_size is not None else _config.cache_size()
        )

        # nothing below can fail on a validated table, commit everything at once
        self._pretokenizer = Pretokenizer(vocab.pattern)
        self._encoder = BPEEncoder(vocab, cache_size=cache_size)
        self._vocab = vocab
        self._encoding_name = encoding_name
        self._state = SessionState.READY

        log.debug(f"session ready: {encoding_name!r} (cache size {cache_size})")
        return self

    def cleanup(self) -> None:
        """Release the loaded vocabulary. Safe to call in any state, any number of times."""
        if self._state is not SessionState.READY:
            log.debug(f"cleanup on {self._state.value} session, nothing to release")
            return

        if self._encoder is not None:
            self._encoder.cache_clear()
        self._encoder = None
        self._pretokenizer = None
        self._vocab = None
        self._state = SessionState.CLOSED

        log.debug(f"session closed: {self._encoding_name!r}")

    # encoding
    # -------------------------------------------------------------------------------------

    def encode(
        self, text: str | bytes, strategy: SpecialTokenStrategy | None = None
    ) -> list[Token]:
        """
        Encode text into token ids.

        :param text: ``str`` or raw ``bytes``; bytes need not be valid UTF-8.
        :param strategy: Special token handling; all registered special tokens
            are atomic when ``None``.
        :raises SessionNotReadyError: If the session is not ``READY``.
        :raises SpecialTokenError: If ``strategy`` rejects special tokens in ``text``.
        """
        tokens: list[Token] = []
        for chunk_toks in self._iter_encoded(text, strategy):
            tokens.extend(chunk_toks)
        return tokens

    def count(
        self, text: str | bytes, strategy: SpecialTokenStrategy | None = None
    ) -> int:
        """
        Count the tokens ``encode`` would return without building the id list.

        :raises SessionNotReadyError: If the session is not ``READY``.
        """
        return sum(len(chunk_toks) for chunk_toks in self._iter_encoded(text, strategy))

    def encode_batch(
        self,
        texts: Sequence[str | bytes],
        strategy: SpecialTokenStrategy | None = None,
        num_workers: int | None = None,
        parallel_mode: ParallelStrategy | ParallelMode = "auto",
    ) -> list[list[Token]]:
        """Encode many texts, in input order, optionally across threads."""
        self._ready_parts()
        return map_texts(
            lambda text: self.encode(text, strategy),
            texts,
            num_workers=num_workers,
            parallel_mode=parallel_mode,
        )

    def count_batch(
        self,
        texts: Sequence[str | bytes],
        strategy: SpecialTokenStrategy | None = None,
        num_workers: int | None = None,
        parallel_mode: ParallelStrategy | ParallelMode = "auto",
    ) -> list[int]:
        """Count tokens for many texts, in input order, optionally across threads."""
        self._ready_parts()
        return map_texts(
            lambda text: self.count(text, strategy),
            texts,
            num_workers=num_workers,
            parallel_mode=parallel_mode,
        )

    def decode_bytes(self, tokens: Iterable[Token]) -> bytes:
        """
        Concatenate the byte sequences of ``tokens``.

        :raises VocabularyError: If any id is not in the vocabulary.
        """
        vocab, _, _ = self._ready_parts()
        parts = []
        for tok in tokens:
            b = vocab.token_bytes(tok)
            if b is None:
                raise VocabularyError("token not found in vocabulary", invalid_tok=tok)
            parts.append(b)
        return b"".join(parts)

    def decode(self, tokens: Iterable[Token], errors: str = "replace") -> str:
        """Decode ``tokens`` to text; ``errors`` is passed to ``bytes.decode``."""
        return self.decode_bytes(tokens).decode("utf-8", errors=errors)

    def _ready_parts(self) -> tuple[VocabularyTable, Pretokenizer, BPEEncoder]:
        if self._state is not SessionState.READY:
            raise SessionNotReadyError(
                "session must be initialised before use", state=self._state.value
            )
        return self._vocab, self._pretokenizer, self._encoder

    def _iter_encoded(
        self, text: str | bytes, strategy: SpecialTokenStrategy | None
    ) -> Iterator[tuple[Token, ...]]:
        # resolve state eagerly so misuse fails before any work is done
        vocab, pretokenizer, encoder = self._ready_parts()
        s, errors = to_text(text)

        special_toks: dict[str, Token] = {}
        if vocab.special_tokens:
            strategy = strategy or _DEFAULT_STRATEGY
            special_toks = strategy.handle(s, dict(vocab.special_tokens))

        return self._encode_segments(s, errors, special_toks, pretokenizer, encoder)

    @staticmethod
    def _encode_segments(
        s: str,
        errors: str,
        special_toks: dict[str, Token],
        pretokenizer: Pretokenizer,
        encoder: BPEEncoder,
    ) -> Iterator[tuple[Token, ...]]:
        if not special_toks:
            for chunk in pretokenizer.iter_chunks(s, errors):
                yield encoder.encode_chunk(chunk)
            return

        # longest first so overlapping special tokens match greedily;
        # the capturing group keeps the special tokens in the split result
        esc_special_toks = [
            re.escape(seq) for seq in sorted(special_toks, key=len, reverse=True)
        ]
        special_pat = "(" + "|".join(esc_special_toks) + ")"

        for part in re.split(special_pat, s):
            if not part:
                continue
            if part in special_toks:
                # special tokens have pre-determined encodings
                yield (special_toks[part],)
            else:
                for chunk in pretokenizer.iter_chunks(part, errors):
                    yield encoder.encode_chunk(chunk)


# boundary surface
# =========================================================================================


def init(encoding_name: str, cache_size: int | None = None) -> Session:
    """Create a ready session for ``encoding_name``; see :meth:`Session.init` for errors."""
    return Session.open(encoding_name, cache_size=cache_size)


def count(session: Session, text: str | bytes) -> int:
    """Count tokens in ``text``, special tokens included as single ids."""
    return session.count(text)


def cleanup(session: Session) -> None:
    """Release ``session``; idempotent and never raises."""
    session.cleanup()
