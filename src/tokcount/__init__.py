"""tokcount: byte-level BPE token counting."""

from ._bpe import BPEEncoder, bpe_merge
from .errors import (
    AlreadyInitializedError,
    CorruptVocabularyError,
    CountError,
    InitError,
    PatternError,
    SessionNotReadyError,
    SpecialTokenError,
    StrategyError,
    TokCountError,
    UnencodableByteError,
    UnknownEncodingError,
    VocabularyError,
    VocabularyIOError,
)
from .parallel import ParallelMode, list_parallel_modes
from .pattern import TokenPattern, list_patterns
from .pretokenize import Pretokenizer
from .session import Session, SessionState, cleanup, count, init
from .strategy import (
    AllowAllStrategy,
    AllowCustomStrategy,
    AllowNoneRaiseStrategy,
    AllowNoneStrategy,
    SpecialTokenStrategy,
    get_strategy,
    list_strategies,
)
from .vocab import (
    VocabularyTable,
    dump,
    list_encodings,
    load,
    load_file,
    load_rank_file,
    register_encoding,
    unregister_encoding,
)

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("tokcount")
except PackageNotFoundError:
    __version__ = "dev"

__all__ = [
    "init",
    "count",
    "cleanup",
    "Session",
    "SessionState",
    "VocabularyTable",
    "load",
    "load_file",
    "load_rank_file",
    "dump",
    "list_encodings",
    "register_encoding",
    "unregister_encoding",
    "Pretokenizer",
    "TokenPattern",
    "list_patterns",
    "BPEEncoder",
    "bpe_merge",
    "ParallelMode",
    "list_parallel_modes",
    "SpecialTokenStrategy",
    "AllowAllStrategy",
    "AllowNoneStrategy",
    "AllowNoneRaiseStrategy",
    "AllowCustomStrategy",
    "get_strategy",
    "list_strategies",
    "TokCountError",
    "InitError",
    "UnknownEncodingError",
    "CorruptVocabularyError",
    "UnencodableByteError",
    "VocabularyIOError",
    "CountError",
    "SessionNotReadyError",
    "AlreadyInitializedError",
    "VocabularyError",
    "PatternError",
    "SpecialTokenError",
    "StrategyError",
]
