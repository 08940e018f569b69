"""Character-based token estimates used to size LLM requests."""

import math

import config


def estimate_tokens(text: str, ratio: float = config.TOKENS_PER_CHARACTER) -> int:
    """Approximates the token cost of ``text`` as ``ceil(len(text) * ratio)``."""
    if not text:
        return 0
    return math.ceil(len(text) * ratio)


def estimate_output_tokens(question_count: int) -> int:
    """Output allowance for a batch, stepped by how many questions it grades."""
    if question_count <= 10:
        return 4096
    if question_count <= 20:
        return 8192
    if question_count <= 30:
        return 16384
    return 32768
