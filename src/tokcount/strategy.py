"""
Special tokens during counting.

A session splits registered special tokens out of the text before
pretokenization; the strategy picks which of them count as one id. Anything
it leaves out is counted as ordinary text.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Final, Literal, override

from .errors import SpecialTokenError, StrategyError
from .types import Token

log = logging.getLogger(__name__)

type SpecialTokens = Mapping[str, Token]


class SpecialTokenStrategy(ABC):
    @abstractmethod
    def handle(self, text: str, special_toks: SpecialTokens) -> dict[str, Token]:
        """Return the special tokens of ``special_toks`` that stay atomic in ``text``."""


class AllowAllStrategy(SpecialTokenStrategy):
    """Every special token counts as one id, like ``encode_with_special_tokens``."""

    @override
    def handle(self, text: str, special_toks: SpecialTokens) -> dict[str, Token]:
        return dict(special_toks)


class AllowNoneStrategy(SpecialTokenStrategy):
    """Special tokens are counted byte by byte as plain text."""

    @override
    def handle(self, text: str, special_toks: SpecialTokens) -> dict[str, Token]:
        if any(seq in text for seq in special_toks):
            log.warning("special tokens found in text, counting them as plain text")
        return {}


class AllowNoneRaiseStrategy(SpecialTokenStrategy):
    """Text containing a special token is refused."""

    @override
    def handle(self, text: str, special_toks: SpecialTokens) -> dict[str, Token]:
        found = {seq for seq in special_toks if seq in text}
        if found:
            raise SpecialTokenError(
                "special tokens found in text but not allowed", found_tokens=found
            )
        return {}


class AllowCustomStrategy(SpecialTokenStrategy):
    """Only the special tokens in ``allowed_subset`` count as one id."""

    def __init__(self, allowed_subset: set[str]) -> None:
        self.allowed_subset = frozenset(allowed_subset)

    @override
    def handle(self, text: str, special_toks: SpecialTokens) -> dict[str, Token]:
        return {
            seq: tok for seq, tok in special_toks.items() if seq in self.allowed_subset
        }


StrategyName = Literal["all", "none", "none-raise", "custom"]

_STRATEGIES: Final[dict[str, type[SpecialTokenStrategy]]] = {
    "all": AllowAllStrategy,
    "none": AllowNoneStrategy,
    "none-raise": AllowNoneRaiseStrategy,
    "custom": AllowCustomStrategy,
}


def list_strategies() -> list[str]:
    return list(_STRATEGIES)


def get_strategy(
    name: StrategyName = "all", allowed_subset: set[str] | None = None
) -> SpecialTokenStrategy:
    """
    Create a special token strategy by name.

    .. code-block:: python

        session.count(text, strategy=get_strategy("none-raise"))
        session.count(text, strategy=get_strategy("custom", {"<|endoftext|>"}))

    :raises StrategyError: If ``name`` is unknown, or ``custom`` comes without
        ``allowed_subset``.
    """
    match name:
        case "custom":
            if allowed_subset is None:
                raise StrategyError("allowed_subset is required for custom strategy")
            return AllowCustomStrategy(allowed_subset)
        case _ if name in _STRATEGIES:
            return _STRATEGIES[name]()
        case _:
            raise StrategyError(
                "unknown strategy name",
                invalid_name=name,
                available_strats=list_strategies(),
            )
