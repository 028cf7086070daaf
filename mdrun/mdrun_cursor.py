from typing import Iterable, Iterator, Optional


class LineCursor:
    """Sequential, peekable reader over document lines.

    Lines keep their line endings. Both `peek` and `next` return None at the
    end of the stream instead of raising, and a peeked line is always the
    one handed out by the following `next`.
    """

    __slots__ = ("_source", "_lookahead", "_has_lookahead", "_exhausted", "position")

    def __init__(self, lines: Iterable[str]):
        self._source: Iterator[str] = iter(lines)
        self._lookahead: Optional[str] = None
        self._has_lookahead = False
        self._exhausted = False
        self.position = 0  # number of lines handed out by next()

    @classmethod
    def from_text(cls, text: str) -> "LineCursor":
        return cls(text.splitlines(keepends=True))

    def _fill(self) -> None:
        if self._has_lookahead or self._exhausted:
            return
        try:
            self._lookahead = next(self._source)
            self._has_lookahead = True
        except StopIteration:
            self._exhausted = True

    def peek(self) -> Optional[str]:
        self._fill()
        return self._lookahead if self._has_lookahead else None

    def next(self) -> Optional[str]:
        self._fill()
        if not self._has_lookahead:
            return None
        line = self._lookahead
        self._lookahead = None
        self._has_lookahead = False
        self.position += 1
        return line

    @property
    def at_end(self) -> bool:
        self._fill()
        return not self._has_lookahead

    def __iter__(self):
        while True:
            line = self.next()
            if line is None:
                return
            yield line


def is_blank(line: Optional[str]) -> bool:
    return line is not None and line.strip() == ""


def is_block_end(line: Optional[str]) -> bool:
    return line is not None and line.strip() == "```"
