"""
Vocabulary tables: token byte sequences, ids and ranked merge rules.

A table is loaded once from a ``.tkv`` file or an OpenAI ``.tiktoken`` rank file
and never mutated afterwards, so any number of encode calls may read it at the
same time.
"""

import base64
import binascii
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from importlib.resources import files
from importlib.resources.abc import Traversable
from pathlib import Path
from types import MappingProxyType
from typing import Final

from . import _config
from ._decorators import measure_time
from ._sanitise import render_pair, render_symbol
from .errors import (
    CorruptVocabularyError,
    PatternError,
    UnknownEncodingError,
    VocabularyIOError,
)
from .pretokenize import _compile_pattern
from .rankfile import RANK_FILE_ENCODINGS, RANK_FILE_SUFFIX, derive_merges, parse_ranks
from .types import BytesPair, Rank, Token, TokenBytes

PREFIX: Final[str] = "TokCount"
FORMAT_VERSION: Final[str] = "1"
VOCAB_SUFFIX: Final[str] = ".tkv"
SECTION_MARKER: Final[str] = "---"
N_BYTES: Final[int] = 256

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class VocabularyTable:
    """
    Immutable byte-level BPE vocabulary.

    ``encoder`` and ``decoder`` form a bijection between byte sequences and ids.
    ``merges`` maps an adjacent symbol pair to its rank; lower ranks merge
    first and the merged symbol ``left + right`` is always in ``encoder``.
    """

    name: str
    pattern: str
    encoder: Mapping[TokenBytes, Token]
    decoder: Mapping[Token, TokenBytes]
    merges: Mapping[BytesPair, Rank]
    special_tokens: Mapping[str, Token] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # freeze the mappings so shared tables cannot be mutated by callers
        for attr in ("encoder", "decoder", "merges", "special_tokens"):
            object.__setattr__(self, attr, MappingProxyType(dict(getattr(self, attr))))
        # merged symbol -> rank of the merge that produced it
        object.__setattr__(
            self,
            "_token_ranks",
            MappingProxyType({a + b: rank for (a, b), rank in self.merges.items()}),
        )
        object.__setattr__(
            self,
            "_inverted_special_tokens",
            MappingProxyType({tok: seq for seq, tok in self.special_tokens.items()}),
        )

    @property
    def n_vocab(self) -> int:
        """Number of ids, special tokens included."""
        return len(self.decoder) + len(self.special_tokens)

    @property
    def max_token_value(self) -> Token:
        return max([*self.decoder, *self.special_tokens.values()])

    def token_id(self, b: TokenBytes) -> Token | None:
        return self.encoder.get(b)

    def token_bytes(self, tok: Token) -> TokenBytes | None:
        """Return the bytes for ``tok``, resolving special tokens to their UTF-8 text."""
        if tok in self.decoder:
            return self.decoder[tok]
        seq = self._inverted_special_tokens.get(tok)
        return None if seq is None else seq.encode("utf-8")

    def token_rank(self, b: TokenBytes) -> Rank | None:
        """Rank of the merge producing ``b``; ``None`` for single bytes and unknown symbols."""
        return self._token_ranks.get(b)

    def lookup(self, b: TokenBytes) -> tuple[Token, Rank | None] | None:
        """Return ``(id, merge rank)`` for ``b`` or ``None`` if it is not a token."""
        tok = self.encoder.get(b)
        if tok is None:
            return None
        return tok, self._token_ranks.get(b)

    def merge_rank(self, left: TokenBytes, right: TokenBytes) -> Rank | None:
        return self.merges.get((left, right))

    def merge_rules(self) -> list[tuple[BytesPair, Rank]]:
        """Return merge rules ordered by rank (application priority)."""
        return sorted(self.merges.items(), key=lambda x: x[1])

    def is_special(self, tok: Token) -> bool:
        return tok in self._inverted_special_tokens


# .tkv parsing
# =========================================================================================


class _LineReader:
    """Numbered line cursor that turns format problems into ``CorruptVocabularyError``."""

    def __init__(self, lines: Iterable[str], source: str) -> None:
        self._lines = enumerate(lines, start=1)
        self.source = source
        self.line_no = 0

    def error(self, message: str) -> CorruptVocabularyError:
        return CorruptVocabularyError(message, source=self.source, line_no=self.line_no)

    def next(self, expected: str) -> str:
        try:
            self.line_no, line = next(self._lines)
        except StopIteration:
            raise self.error(f"unexpected end of file, expected {expected}")
        return line.rstrip("\n")

    def marker(self) -> None:
        line = self.next("section marker").strip()
        if line != SECTION_MARKER:
            raise self.error(
                f"section marker missing: (expected {SECTION_MARKER}) (got {line})"
            )

    def count(self, what: str) -> int:
        raw = self.next(f"{what} count").strip()
        try:
            n = int(raw)
            if n < 0:
                raise ValueError()
        except ValueError:
            raise self.error(f"invalid {what} count: {raw}")
        return n

    def rest(self) -> Iterator[str]:
        for self.line_no, line in self._lines:
            yield line.rstrip("\n")


def parse_vocabulary(lines: Iterable[str], source: str = "<memory>") -> VocabularyTable:
    """
    Parse ``.tkv`` lines into a validated :class:`VocabularyTable`.

    :param lines: Lines of the file, with or without trailing newlines.
    :param source: Name used in error messages.
    :raises CorruptVocabularyError: On any structural or consistency problem.
    """
    reader = _LineReader(lines, source)

    # header: magic + version, encoding name, split pattern
    header = reader.next("header").strip().split(" ")
    if len(header) != 2 or header[0] != PREFIX:
        raise reader.error(f"not a {PREFIX} vocabulary file")
    if header[1] != FORMAT_VERSION:
        raise reader.error(
            f"unsupported format version: (expected {FORMAT_VERSION}) (got {header[1]})"
        )

    name_line = reader.next("encoding name")
    if not name_line.startswith("name ") or not name_line[5:].strip():
        raise reader.error(f"expected encoding name got {name_line!r}")
    name = name_line[5:].strip()

    re_line = reader.next("split pattern")
    if not re_line.startswith("re "):
        raise reader.error(f"expected split pattern got {re_line!r}")
    pattern = re_line[3:]
    try:
        _compile_pattern(pattern)
    except PatternError as e:
        raise reader.error("invalid split pattern") from e

    # body 1: special tokens, UTF-8 text stored as base64 like the token lines
    reader.marker()
    n_special = reader.count("special token")
    special_tokens: dict[str, Token] = {}
    for _ in range(n_special):
        parts = reader.next("special token").split()
        if len(parts) != 2:
            raise reader.error("special token line must be '<base64 text> <id>'")
        try:
            seq = base64.b64decode(parts[0], validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise reader.error(f"invalid base64 special token: {parts[0]}")
        try:
            tok = int(parts[1])
            if tok < 0:
                raise ValueError()
        except ValueError:
            raise reader.error(f"invalid special token id: {parts[1]}")
        if not seq:
            raise reader.error("empty special token")
        if seq in special_tokens:
            raise reader.error(f"duplicate special token {seq!r}")
        if tok in special_tokens.values():
            raise reader.error(f"duplicate special token id {tok}")
        special_tokens[seq] = tok
    reader.marker()

    log.debug(f"{source}: {n_special} special tokens")

    # body 2: tokens
    n_tokens = reader.count("token")
    encoder: dict[TokenBytes, Token] = {}
    decoder: dict[Token, TokenBytes] = {}
    for _ in range(n_tokens):
        parts = reader.next("token").split()
        if len(parts) != 2:
            raise reader.error("token line must be '<base64 bytes> <id>'")
        try:
            b = base64.b64decode(parts[0], validate=True)
        except binascii.Error:
            raise reader.error(f"invalid base64 token bytes: {parts[0]}")
        try:
            tok = int(parts[1])
            if tok < 0:
                raise ValueError()
        except ValueError:
            raise reader.error(f"invalid token id: {parts[1]}")
        if not b:
            raise reader.error("empty token bytes")
        if tok in decoder:
            raise reader.error(f"duplicate token id {tok}")
        if b in encoder:
            raise reader.error(f"duplicate token bytes {render_symbol(b)}")
        encoder[b] = tok
        decoder[tok] = b

    missing = [i for i in range(N_BYTES) if bytes([i]) not in encoder]
    if missing:
        raise reader.error(
            f"{len(missing)} single-byte tokens missing (first: 0x{missing[0]:02x})"
        )

    for seq, tok in special_tokens.items():
        if tok in decoder:
            raise reader.error(f"special token {seq!r} id {tok} overlaps with vocabulary")

    reader.marker()

    log.debug(f"{source}: {len(decoder)} tokens")

    # body 3: merges, strictly increasing rank
    merges: dict[BytesPair, Rank] = {}
    produced: set[TokenBytes] = set()
    last_rank: Rank | None = None
    for line in reader.rest():
        if not line.strip():
            continue
        try:
            left_tok, right_tok, rank = map(int, line.split())
        except ValueError:
            raise reader.error(f"invalid merge format at line: {line.strip()}")

        left, right = decoder.get(left_tok), decoder.get(right_tok)
        if left is None or right is None:
            unknown = left_tok if left is None else right_tok
            raise reader.error(f"merge references unknown token id {unknown}")

        # inputs must already be reachable when this merge applies
        for part in (left, right):
            if len(part) > 1 and part not in produced:
                raise reader.error(
                    f"merge input {render_symbol(part)} is not produced by an earlier merge"
                )

        merged = left + right
        if merged not in encoder:
            raise reader.error(
                f"merge output not in vocabulary: {render_pair(left, right)}"
            )
        if merged in produced:
            raise reader.error(
                f"symbol produced by more than one merge: {render_pair(left, right)}"
            )
        if last_rank is not None and rank <= last_rank:
            raise reader.error(
                f"merge ranks must strictly increase: (previous {last_rank}) (got {rank})"
            )

        merges[(left, right)] = rank
        produced.add(merged)
        last_rank = rank

    log.debug(f"{source}: {len(merges)} merge rules")

    return VocabularyTable(
        name=name,
        pattern=pattern,
        encoder=encoder,
        decoder=decoder,
        merges=merges,
        special_tokens=special_tokens,
    )


def load_file(path: str | Path | Traversable) -> VocabularyTable:
    """
    Load a vocabulary table from a ``.tkv`` file.

    :raises VocabularyIOError: If the file cannot be opened or read.
    :raises CorruptVocabularyError: If the file content is inconsistent.
    """
    if isinstance(path, str):
        path = Path(path)
    source = str(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            return parse_vocabulary(f, source=source)
    except OSError as e:
        raise VocabularyIOError("failed to read vocabulary", path=source) from e
    except UnicodeDecodeError as e:
        raise CorruptVocabularyError("vocabulary is not valid UTF-8", source=source) from e


def _has_line_break(s: str) -> bool:
    return "\n" in s or "\r" in s


def iter_lines(table: VocabularyTable) -> Iterator[str]:
    """
    Yield the ``.tkv`` lines (without newlines) describing ``table``.

    :raises ValueError: If the name or pattern cannot be stored on one line, or
        a special token is empty or not encodable as UTF-8.
    """
    if not table.name or table.name != table.name.strip() or _has_line_break(table.name):
        raise ValueError(f"encoding name cannot be written to a .tkv file: {table.name!r}")
    if _has_line_break(table.pattern):
        raise ValueError("split pattern cannot span several lines")

    yield f"{PREFIX} {FORMAT_VERSION}"
    yield f"name {table.name}"
    yield f"re {table.pattern}"
    yield SECTION_MARKER
    yield str(len(table.special_tokens))
    for seq, tok in table.special_tokens.items():
        if not seq:
            raise ValueError("special tokens must not be empty")
        yield f"{base64.b64encode(seq.encode('utf-8')).decode('ascii')} {tok}"
    yield SECTION_MARKER
    yield str(len(table.decoder))
    for tok in sorted(table.decoder):
        yield f"{base64.b64encode(table.decoder[tok]).decode('ascii')} {tok}"
    yield SECTION_MARKER
    for (left, right), rank in table.merge_rules():
        yield f"{table.encoder[left]} {table.encoder[right]} {rank}"


def dump(table: VocabularyTable, path: str | Path) -> Path:
    """
    Write ``table`` to ``path`` in ``.tkv`` format; ``load_file`` reads it back unchanged.

    :raises ValueError: If ``table`` holds values the format cannot store.
    """
    # render first so a table that cannot be stored leaves no partial file
    lines = list(iter_lines(table))
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    log.debug(f"saving vocabulary {table.name!r} to {out}")
    with out.open("w", encoding="utf-8", newline="\n") as f:
        for line in lines:
            f.write(f"{line}\n")
    return out


# .tiktoken rank files
# =========================================================================================


def load_rank_file(path: str | Path | Traversable, encoding_name: str) -> VocabularyTable:
    """
    Load a ``.tiktoken`` rank file as the OpenAI encoding ``encoding_name``.

    The split pattern and special tokens come from the encoding name, the merge
    rules are derived from the ranks.

    :raises UnknownEncodingError: If ``encoding_name`` has no known rank file layout.
    :raises VocabularyIOError: If the file cannot be opened or read.
    :raises CorruptVocabularyError: If the file content is inconsistent.
    """
    known = RANK_FILE_ENCODINGS.get(encoding_name)
    if known is None:
        raise UnknownEncodingError(
            "rank files can only be loaded for known encodings",
            encoding=encoding_name,
            available=sorted(RANK_FILE_ENCODINGS),
        )

    if isinstance(path, str):
        path = Path(path)
    source = str(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            ranks = parse_ranks(f, source=source)
    except OSError as e:
        raise VocabularyIOError("failed to read rank file", path=source) from e
    except UnicodeDecodeError as e:
        raise CorruptVocabularyError("rank file is not valid UTF-8", source=source) from e

    decoder = {tok: b for b, tok in ranks.items()}
    for seq, tok in known.special_tokens.items():
        if tok in decoder:
            raise CorruptVocabularyError(
                f"special token {seq!r} id {tok} overlaps with vocabulary", source=source
            )

    merges = derive_merges(ranks)
    log.debug(f"{source}: {len(ranks)} ranked tokens, {len(merges)} derived merge rules")

    return VocabularyTable(
        name=encoding_name,
        pattern=known.pattern.value,
        encoder=ranks,
        decoder=decoder,
        merges=merges,
        special_tokens=known.special_tokens,
    )


# encoding registry
# =========================================================================================

_REGISTRY: dict[str, Path] = {}


def register_encoding(name: str, path: str | Path) -> None:
    """
    Make ``name`` resolve to the vocabulary file at ``path`` (takes precedence over other sources).

    ``.tiktoken`` rank files can be registered under the OpenAI encoding names.
    """
    _REGISTRY[name] = Path(path)
    log.debug(f"registered encoding {name!r} -> {path}")


def unregister_encoding(name: str) -> None:
    _REGISTRY.pop(name, None)


def _builtin_dir() -> Traversable:
    return files("tokcount") / "data"


def _is_file_stem(name: str) -> bool:
    return bool(name) and name not in (".", "..") and not any(
        c in name for c in ("/", "\\", "\0")
    )


def _candidates(directory: Path, name: str) -> Iterator[Path]:
    yield directory / f"{name}{VOCAB_SUFFIX}"
    known = RANK_FILE_ENCODINGS.get(name)
    if known is not None:
        yield directory / known.filename


def resolve_encoding(name: str) -> Path | Traversable:
    """
    Find the vocabulary source for ``name``.

    Search order: registered names, ``TOKCOUNT_VOCAB_PATH`` directories, then
    the vocabularies bundled with the package. Each directory is searched for
    ``<name>.tkv`` first, then for the rank file of a known OpenAI encoding.

    :raises UnknownEncodingError: If no source provides ``name``.
    """
    if name in _REGISTRY:
        return _REGISTRY[name]

    # names become file names below, keep them inside the search directories
    if not _is_file_stem(name):
        raise UnknownEncodingError("invalid encoding name", encoding=name)

    for directory in _config.vocab_dirs():
        for candidate in _candidates(directory, name):
            if candidate.is_file():
                return candidate

    builtin = _builtin_dir() / f"{name}{VOCAB_SUFFIX}"
    if builtin.is_file():
        return builtin

    raise UnknownEncodingError(
        "unknown encoding", encoding=name, available=list_encodings()
    )


def list_encodings() -> list[str]:
    """Return every encoding name that :func:`load` can resolve."""
    names = set(_REGISTRY)
    for directory in _config.vocab_dirs():
        if not directory.is_dir():
            continue
        names.update(p.stem for p in directory.glob(f"*{VOCAB_SUFFIX}"))
        names.update(
            name
            for name, known in RANK_FILE_ENCODINGS.items()
            if (directory / known.filename).is_file()
        )
    names.update(
        entry.name.removesuffix(VOCAB_SUFFIX)
        for entry in _builtin_dir().iterdir()
        if entry.name.endswith(VOCAB_SUFFIX)
    )
    return sorted(names)


@measure_time("vocabulary load", level=logging.INFO)
def load(encoding_name: str) -> VocabularyTable:
    """
    Resolve and load the vocabulary table for ``encoding_name``.

    :raises UnknownEncodingError: If the name resolves to no source.
    :raises VocabularyIOError: If the resolved file cannot be read.
    :raises CorruptVocabularyError: If the resolved file is inconsistent.
    """
    source = resolve_encoding(encoding_name)
    log.debug(f"loading encoding {encoding_name!r} from {source}")
    if source.name.endswith(RANK_FILE_SUFFIX):
        table = load_rank_file(source, encoding_name)
    else:
        table = load_file(source)
    if table.name != encoding_name:
        log.debug(f"encoding {encoding_name!r} resolved to table named {table.name!r}")
    log.info(
        f"loaded encoding {encoding_name!r}: {len(table.decoder)} tokens, "
        f"{len(table.merges)} merge rules, {len(table.special_tokens)} special tokens"
    )
    return table
