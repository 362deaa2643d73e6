"""Splitting argument templates into argv tokens."""
from __future__ import annotations

from typing import List


def tokenize(arguments: str) -> List[str]:
    """Split *arguments* on spaces, keeping double-quoted sections together.

    A quoted section loses its quotes and becomes a single token::

        >>> tokenize('-editor "echo %f:%l" -q')
        ['-editor', 'echo %f:%l', '-q']

    An opening quote that is never closed swallows the rest of the input.
    """
    words = [word for word in arguments.split(" ") if word]
    tokens: List[str] = []
    index = 0
    while index < len(words):
        word = words[index]
        index += 1
        if len(word) >= 2 and word.startswith('"') and word.endswith('"'):
            tokens.append(word[1:-1])
        elif word.startswith('"'):
            parts = [word[1:]]
            while index < len(words):
                word = words[index]
                index += 1
                if word.endswith('"'):
                    parts.append(word[:-1])
                    break
                parts.append(word)
            tokens.append(" ".join(parts))
        else:
            tokens.append(word)
    return tokens


__all__ = ["tokenize"]
