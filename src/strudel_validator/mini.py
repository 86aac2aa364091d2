"""
Bracket checking for mini-notation strings.

Only the grouping structure is checked: ``[...]`` sequences, ``<...>``
alternations, ``{...}`` polymeters and ``(...)`` euclidean arguments must
be balanced and properly nested.
"""

_CLOSER_FOR = {"[": "]", "<": ">", "{": "}", "(": ")"}
_CLOSERS = set(_CLOSER_FOR.values())


class MiniNotationError(ValueError):
    """Raised when a mini-notation string has unbalanced brackets.

    ``offset`` is the 0-based index into the string where parsing failed.
    """

    def __init__(self, message: str, offset: int):
        super().__init__(message)
        self.offset = offset


def check_brackets(source: str) -> None:
    """Raise MiniNotationError if *source* has unbalanced brackets."""
    stack: list[str] = []
    for offset, char in enumerate(source):
        if char in _CLOSER_FOR:
            stack.append(_CLOSER_FOR[char])
        elif char in _CLOSERS:
            if not stack:
                raise MiniNotationError(f'unexpected "{char}"', offset)
            expected = stack.pop()
            if char != expected:
                raise MiniNotationError(
                    f'expected "{expected}" but "{char}" found', offset
                )
    if stack:
        raise MiniNotationError(
            f'expected "{stack[-1]}" but end of input found', len(source)
        )
