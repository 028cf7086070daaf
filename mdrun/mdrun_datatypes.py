"""
Defines the core data types shared by the markdown-run pipeline.

This module provides the per-block configuration, the document-level
defaults read from frontmatter, the outcome of one execution, the decision
taken for one block, and the exception hierarchy.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Optional


class MarkdownRunError(Exception):
    """Base class for every error raised by markdown-run."""
    pass


class MissingInterpreterError(MarkdownRunError):
    def __init__(self, binary: str, language: str, hint: Optional[str] = None):
        msg = f"{binary} command not found for language '{language}'."
        if hint:
            msg = f"{msg} {hint}"
        super().__init__(msg)
        self.binary = binary
        self.language = language


class DocumentReadError(MarkdownRunError):
    def __init__(self, path: str, reason: Optional[str] = None):
        msg = f"Input file '{path}' not found or not readable."
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)
        self.path = path


class WriteBackError(MarkdownRunError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not write output to '{path}': {reason}")
        self.path = path


# =================================================================
# Enumerations
# =================================================================

class ResultKind(Enum):
    """How a language's output is rendered back into the document."""
    TEXT = "text"      # fenced RESULT block
    INLINE = "inline"  # annotated source replaces the block body
    IMAGE = "image"    # bare Markdown image line
    PLAN = "plan"      # RESULT body plus optional link / image artifacts


class ArtifactKind(Enum):
    """Shape of a trailing artifact found (or expected) after a block."""
    NONE = "none"
    FENCE = "fence"
    INLINE = "inline"
    LINK = "link"
    IMAGE = "image"


# =================================================================
# Configuration
# =================================================================

OPTION_NAMES = ("run", "rerun", "explain", "flamegraph", "result")

BUILTIN_DEFAULTS: Dict[str, bool] = {
    "run": True,
    "rerun": False,
    "explain": False,
    "flamegraph": False,
    "result": True,
}


@dataclass(frozen=True)
class BlockConfig:
    """Effective options for one code block; fixed once the header is read."""
    language: str
    run: bool = True
    rerun: bool = False
    explain: bool = False
    flamegraph: bool = False
    show_result: bool = True

    @property
    def auto_replace(self) -> bool:
        # With the primary body hidden, a link/image line is the only evidence
        # of execution and is refreshed on every pass.
        return (self.explain or self.flamegraph) and not self.show_result


@dataclass
class DocumentDefaults:
    """Aliases and option defaults parsed once from the frontmatter."""
    aliases: Dict[str, str] = field(default_factory=dict)
    global_defaults: Dict[str, bool] = field(default_factory=dict)
    language_defaults: Dict[str, Dict[str, bool]] = field(default_factory=dict)

    def default_for(self, option: str, language: str) -> Optional[bool]:
        per_lang = self.language_defaults.get(language) or {}
        if option in per_lang:
            return per_lang[option]
        if option in self.global_defaults:
            return self.global_defaults[option]
        return None


# =================================================================
# Execution
# =================================================================

@dataclass
class ExecutionOutcome:
    """What the Execution Service reports for one run."""
    stdout: str = ""
    stderr: str = ""
    exit_status: int = 0
    artifact_paths: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.exit_status != 0


@dataclass
class ExecutionDecision:
    """The authoritative outcome of the decision engine for one block.

    consumed_lines are stale artifact lines that are dropped. On execution,
    blank_separator (if any) is written before the new artifacts and
    pass_through_lines after them; when skipping, pass_through_lines are
    copied forward verbatim in place of any new artifact.
    """
    execute: bool
    consumed_lines: List[str] = field(default_factory=list)
    pass_through_lines: List[str] = field(default_factory=list)
    blank_separator: Optional[str] = None
    artifact_kind: ArtifactKind = ArtifactKind.NONE
    reason: str = ""


@dataclass
class RenderedResult:
    """New content produced by the splicer for one executed block."""
    artifacts: List[List[str]] = field(default_factory=list)
    inline_source: Optional[List[str]] = None

    @property
    def empty(self) -> bool:
        return not self.artifacts and self.inline_source is None
