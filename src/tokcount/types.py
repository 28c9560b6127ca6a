"""
Core types for tokenization.
"""

type Token = int
type TokenBytes = bytes
type Rank = int
type BytesPair = tuple[TokenBytes, TokenBytes]
