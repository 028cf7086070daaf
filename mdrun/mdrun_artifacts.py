"""
Trailing artifact shapes: what a previous pass may have left after a block.

A shape answers two questions on the line cursor: does the next line open an
artifact of this shape, and which lines make up its body. Fenced shapes run
to their closing fence; line shapes are a contiguous run of lines carrying the
label the renderer writes (blank lines inside the run included).
"""

import re
from typing import List, Pattern, Tuple

from mdrun.mdrun_cursor import LineCursor, is_blank, is_block_end
from mdrun.mdrun_datatypes import ArtifactKind, BlockConfig, ResultKind
from mdrun.mdrun_header import RUBY_RESULT_FENCE

RESULT_FENCE = re.compile(r"^```RESULT$", re.IGNORECASE)
DALIBO_LINK = re.compile(r"^\[Dalibo\]\(.*\)$")
FLAMEGRAPH_IMAGE = re.compile(r"^!\[PostgreSQL Query Flamegraph\]\(.*\.svg\)$")
MERMAID_IMAGE = re.compile(r"^!\[Mermaid Diagram\]\(.*\.svg\)$")

# xmpfilter output: whole-line stdout/exception markers, and `# => value`
INLINE_ANNOTATION = re.compile(r"^\s*# (>>|~>)")
VALUE_ANNOTATION = re.compile(r"(#\s*=>)[ \t]*\S[^\r\n]*")

RESULT_HEADER = "```RESULT\n"
RUBY_RESULT_HEADER = "```ruby RESULT\n"

DALIBO_LABEL = "Dalibo"
FLAMEGRAPH_LABEL = "PostgreSQL Query Flamegraph"
MERMAID_LABEL = "Mermaid Diagram"


def _text(line: str) -> str:
    return line.rstrip("\r\n")


class ArtifactShape:
    kind = ArtifactKind.NONE

    def opens(self, line: str) -> bool:
        raise NotImplementedError

    def consume(self, cursor: LineCursor) -> Tuple[List[str], bool]:
        """Read the artifact body; returns (lines, complete)."""
        raise NotImplementedError


class FenceShape(ArtifactShape):
    kind = ArtifactKind.FENCE

    def __init__(self, opener: Pattern):
        self.opener = opener

    def opens(self, line: str) -> bool:
        return bool(self.opener.match(_text(line)))

    def consume(self, cursor: LineCursor) -> Tuple[List[str], bool]:
        lines = [cursor.next()]
        while True:
            line = cursor.next()
            if line is None:
                return lines, False
            lines.append(line)
            if is_block_end(line):
                return lines, True


class LineShape(ArtifactShape):
    def __init__(self, kind: ArtifactKind, pattern: Pattern):
        self.kind = kind
        self.pattern = pattern

    def opens(self, line: str) -> bool:
        return bool(self.pattern.match(_text(line)))

    def consume(self, cursor: LineCursor) -> Tuple[List[str], bool]:
        lines = []
        while True:
            line = cursor.peek()
            if line is None or not (is_blank(line) or self.opens(line)):
                return lines, True
            lines.append(cursor.next())


class AnyOfShape(ArtifactShape):
    """First matching alternative wins."""

    def __init__(self, *shapes: ArtifactShape):
        self.shapes = shapes
        self.kind = shapes[0].kind

    def opens(self, line: str) -> bool:
        return any(s.opens(line) for s in self.shapes)

    def consume(self, cursor: LineCursor) -> Tuple[List[str], bool]:
        line = cursor.peek()
        for shape in self.shapes:
            if line is not None and shape.opens(line):
                self.kind = shape.kind
                return shape.consume(cursor)
        return [], False


def result_fence() -> FenceShape:
    return FenceShape(RESULT_FENCE)


def expected_shapes(config: BlockConfig, kind: ResultKind) -> List[ArtifactShape]:
    """The artifacts a fully processed block of this kind carries, in order."""
    if kind is ResultKind.INLINE:
        return [FenceShape(RUBY_RESULT_FENCE)]
    if kind is ResultKind.IMAGE:
        # A failed render leaves a RESULT fence in place of the image
        return [AnyOfShape(LineShape(ArtifactKind.IMAGE, MERMAID_IMAGE), result_fence())]
    if kind is ResultKind.PLAN:
        shapes: List[ArtifactShape] = []
        if config.show_result:
            shapes.append(result_fence())
        if config.explain:
            shapes.append(LineShape(ArtifactKind.LINK, DALIBO_LINK))
        if config.flamegraph:
            shapes.append(LineShape(ArtifactKind.IMAGE, FLAMEGRAPH_IMAGE))
        return shapes
    return [result_fence()] if config.show_result else []


# --------------------------
# Inline annotations
# --------------------------

def has_inline_annotations(content: str) -> bool:
    return any(
        INLINE_ANNOTATION.match(line) or VALUE_ANNOTATION.search(line)
        for line in content.splitlines()
    )


def strip_inline_annotations(content: str) -> str:
    """Drop marker lines and empty every `# =>` value, keeping the bare marker."""
    lines = content.splitlines(keepends=True)
    return "".join(
        VALUE_ANNOTATION.sub(r"\1", line, count=1)
        for line in lines if not INLINE_ANNOTATION.match(line)
    )


# --------------------------
# Rendering
# --------------------------

def fence_artifact(body: str, header: str = RESULT_HEADER) -> List[str]:
    lines = [header]
    if body:
        lines.extend(body.splitlines(keepends=True))
        if not body.endswith("\n"):
            lines[-1] += "\n"
    lines.append("```\n")
    return lines


def link_line(label: str, url: str) -> List[str]:
    return [f"[{label}]({url})\n"]


def image_line(label: str, path: str) -> List[str]:
    return [f"![{label}]({path})\n"]
