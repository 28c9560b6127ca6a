"""Tests for the session lifecycle, encode/count behaviour and special tokens."""

from concurrent.futures import ThreadPoolExecutor

import pytest

import tokcount as tc
from tokcount import Pretokenizer, SessionState
from tokcount.errors import (
    AlreadyInitializedError,
    CorruptVocabularyError,
    InitError,
    SessionNotReadyError,
    SpecialTokenError,
    StrategyError,
    UnknownEncodingError,
    VocabularyError,
    VocabularyIOError,
)

TEXTS = [
    "",
    "hello world",
    "Hello, world! The lower newest widest.",
    "   \n\t  ",
    "café naïve 日本語 🎉",
    "numbers 1234567890 and 123",
    "don't won't they're",
    "the the the the the",
    "hello<|endoftext|>world",
]


# Fixture vectors
# ---------------------------------------------------------------------------


def test_hello_world(session):
    """'hello' and ' world' each merge down to one token."""
    assert session.encode("hello world") == [259, 264]
    assert session.count("hello world") == 2


def test_hello_merges_below_byte_count(session):
    """BPE uses fewer symbols than raw bytes."""
    assert session.count("hello") == 1
    assert session.count("hello") < len(b"hello")


def test_partial_merges(session):
    """Words stop merging when no ranked pair remains."""
    assert session.encode("The lower newest widest") == [84, 256, 319, 324, 328]


def test_special_token_counts_as_one(session):
    """Registered special tokens are single ids by default."""
    assert session.encode("hello<|endoftext|>") == [259, 342]
    assert session.count("hello<|endoftext|>") == 2


def test_single_bytes_always_encode(session):
    """Bytes outside any merge fall back to their single-byte tokens."""
    assert session.encode("\x00") == [0]
    assert session.encode("€") == [0xE2, 0x82, 0xAC]


def test_digit_runs_are_bounded(session):
    """The bundled encoding splits long numbers into runs of at most three digits."""
    pretokenizer = Pretokenizer(session.vocab.pattern)
    assert pretokenizer.split("x 1234567890") == [
        b"x",
        b" ",
        b"123",
        b"456",
        b"789",
        b"0",
    ]


def test_empty_text(session):
    """Empty input encodes to nothing."""
    assert session.encode("") == []
    assert session.count("") == 0


# Properties
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("text", TEXTS)
def test_count_matches_encode_length(session, text):
    """count(t) == len(encode(t))."""
    assert session.count(text) == len(session.encode(text))


@pytest.mark.parametrize("text", TEXTS)
def test_decode_roundtrip(session, text):
    """Decoding the ids restores the exact input."""
    tokens = session.encode(text)
    assert session.decode_bytes(tokens) == text.encode("utf-8")
    assert session.decode(tokens) == text


@pytest.mark.parametrize("text", TEXTS)
def test_encode_is_deterministic(session, text):
    """Repeated calls return identical output."""
    assert session.encode(text) == session.encode(text)


def test_bytes_input_roundtrip(session):
    """Raw bytes, including invalid UTF-8, round-trip losslessly."""
    data = b"hello \xff\xfe world\xc3"
    tokens = session.encode(data)
    assert session.decode_bytes(tokens) == data
    assert session.count(data) == len(tokens)


def test_bytes_and_str_agree(session):
    """Valid UTF-8 bytes encode like the equivalent string."""
    text = "hello<|endoftext|> world"
    assert session.encode(text.encode("utf-8")) == session.encode(text)


def test_decode_unknown_token(session):
    """Unknown ids raise VocabularyError."""
    with pytest.raises(VocabularyError):
        session.decode([259, 100_000])


def test_concurrent_counts(session):
    """Many threads can count on one ready session."""
    text = "hello world, the lower newest widest " * 50
    expected = session.count(text)
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(session.count, [text] * 64))
    assert results == [expected] * 64


# Special token strategies
# ---------------------------------------------------------------------------


def test_allow_none_encodes_as_text(session):
    """With allow-none the special token is ordinary text."""
    tokens = session.encode("hello<|endoftext|>", strategy=tc.AllowNoneStrategy())
    assert 342 not in tokens
    assert session.decode(tokens) == "hello<|endoftext|>"
    assert len(tokens) > 2


def test_allow_none_raise(session):
    """allow-none-raise rejects special tokens in the text."""
    strategy = tc.get_strategy("none-raise")
    with pytest.raises(SpecialTokenError, match="<|endoftext|>"):
        session.count("hello<|endoftext|>", strategy=strategy)
    assert session.count("hello", strategy=strategy) == 1


def test_custom_subset(session):
    """Only special tokens in the subset stay atomic."""
    allowed = tc.get_strategy("custom", allowed_subset={"<|endoftext|>"})
    blocked = tc.get_strategy("custom", allowed_subset=set())
    assert session.encode("<|endoftext|>", strategy=allowed) == [342]
    assert 342 not in session.encode("<|endoftext|>", strategy=blocked)


def test_strategy_lookup_errors():
    """Unknown names and a custom strategy without subset are rejected."""
    with pytest.raises(StrategyError):
        tc.get_strategy("bogus")
    with pytest.raises(StrategyError):
        tc.get_strategy("custom")
    assert tc.list_strategies() == ["all", "none", "none-raise", "custom"]


# Batches
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("mode", tc.list_parallel_modes())
def test_batch_matches_single(session, mode):
    """Batch results equal per-text results in input order for every mode."""
    texts = TEXTS * 3
    assert session.encode_batch(texts, num_workers=4, parallel_mode=mode) == [
        session.encode(t) for t in texts
    ]
    assert session.count_batch(texts, num_workers=4, parallel_mode=mode) == [
        session.count(t) for t in texts
    ]


def test_unknown_parallel_mode(session):
    """Unknown modes raise StrategyError."""
    with pytest.raises(StrategyError):
        session.count_batch(["a"], parallel_mode="chunk")


# Lifecycle
# ---------------------------------------------------------------------------


def test_count_before_init():
    """count on a fresh session fails explicitly instead of returning 0."""
    session = tc.Session()
    assert session.state is SessionState.UNINITIALIZED
    with pytest.raises(SessionNotReadyError):
        session.count("hello")


def test_encode_after_cleanup():
    """A closed session refuses work."""
    session = tc.Session.open("gpt2-like")
    session.cleanup()
    assert session.state is SessionState.CLOSED
    with pytest.raises(SessionNotReadyError):
        session.encode("hello")
    with pytest.raises(SessionNotReadyError):
        session.decode([259])
    with pytest.raises(SessionNotReadyError):
        session.count_batch(["hello"])


def test_cleanup_is_idempotent():
    """cleanup succeeds on never-initialised and already-closed sessions."""
    session = tc.Session()
    session.cleanup()
    assert session.state is SessionState.UNINITIALIZED

    session.init("gpt2-like")
    session.cleanup()
    session.cleanup()
    assert session.state is SessionState.CLOSED


def test_double_init_fails(session):
    """init on a ready session raises and keeps the loaded encoding."""
    with pytest.raises(AlreadyInitializedError):
        session.init("gpt2-like")
    # an init failure like any other
    with pytest.raises(InitError):
        session.init("gpt2-like")
    assert session.state is SessionState.READY
    assert session.count("hello") == 1


def test_reinit_after_cleanup():
    """A closed session can be initialised again."""
    session = tc.Session()
    session.init("gpt2-like")
    session.cleanup()
    session.init("gpt2-like")
    assert session.state is SessionState.READY
    assert session.count("hello world") == 2
    session.cleanup()


def test_failed_init_keeps_state():
    """A failing init leaves the session uninitialised."""
    session = tc.Session()
    with pytest.raises(UnknownEncodingError):
        session.init("no-such-encoding")
    assert session.state is SessionState.UNINITIALIZED
    assert session.encoding_name is None


@pytest.fixture
def broken_encodings(tkv_builder, tmp_path):
    """Register a corrupt, a missing and an unreadable vocabulary."""
    corrupt = tmp_path / "corrupt.tkv"
    corrupt.write_text("\n".join(tkv_builder(merge_lines=["104 999 0"])) + "\n")
    (tmp_path / "directory.tkv").mkdir()
    sources = {
        "corrupt": corrupt,
        "missing": tmp_path / "missing.tkv",
        "directory": tmp_path / "directory.tkv",
    }
    for name, path in sources.items():
        tc.register_encoding(name, path)
    yield
    for name in sources:
        tc.unregister_encoding(name)


@pytest.mark.parametrize(
    ("name", "error"),
    [
        ("corrupt", CorruptVocabularyError),
        ("missing", VocabularyIOError),
        ("directory", VocabularyIOError),
    ],
)
def test_failed_load_reaches_caller(broken_encodings, name, error):
    """Vocabulary errors surface from init and the session stays unusable."""
    session = tc.Session()
    with pytest.raises(error):
        session.init(name)
    assert session.state is SessionState.UNINITIALIZED
    assert session.encoding_name is None
    with pytest.raises(SessionNotReadyError):
        session.count("hello")

    # a closed session stays closed
    session.init("gpt2-like")
    session.cleanup()
    with pytest.raises(error):
        session.init(name)
    assert session.state is SessionState.CLOSED


def test_context_manager_closes():
    """Leaving the with-block releases the session."""
    with tc.Session.open("gpt2-like") as session:
        assert session.count("hello") == 1
        assert session.vocab.name == "gpt2-like"
    assert session.state is SessionState.CLOSED


def test_boundary_functions():
    """Module-level init/count/cleanup mirror the session methods."""
    session = tc.init("gpt2-like")
    assert tc.count(session, "hello world") == 2
    tc.cleanup(session)
    tc.cleanup(session)
    with pytest.raises(SessionNotReadyError):
        tc.count(session, "hello world")


# Configuration
# ---------------------------------------------------------------------------


def test_cache_size_argument():
    """cache_size=0 disables the chunk cache without changing results."""
    with tc.Session.open("gpt2-like", cache_size=0) as session:
        assert session.encoder.cache_info() is None
        assert session.encode("hello world") == [259, 264]


def test_cache_size_env(monkeypatch):
    """TOKCOUNT_CACHE_SIZE configures the chunk cache."""
    monkeypatch.setenv("TOKCOUNT_CACHE_SIZE", "0")
    with tc.Session.open("gpt2-like") as session:
        assert session.encoder.cache_size == 0

    monkeypatch.setenv("TOKCOUNT_CACHE_SIZE", "not a number")
    with tc.Session.open("gpt2-like") as session:
        assert session.encoder.cache_size == 4096
