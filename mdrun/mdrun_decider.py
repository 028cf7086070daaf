"""
Execution decision engine.

Called with the cursor positioned right after a block's closing fence, it
looks ahead for the artifacts a previous pass left behind and decides
whether the block runs again. Lines it reads are either consumed (stale,
dropped) or handed back as pass-through, so the cursor never has to rewind.
"""

import logging
from typing import List, Optional

from mdrun.mdrun_artifacts import expected_shapes, has_inline_annotations
from mdrun.mdrun_cursor import LineCursor, is_blank
from mdrun.mdrun_datatypes import (
    ArtifactKind, BlockConfig, ExecutionDecision, ResultKind,
)
from mdrun.mdrun_languages import result_kind_for

logger = logging.getLogger(__name__)

REFRESHABLE = (ArtifactKind.LINK, ArtifactKind.IMAGE)


def consume_blank_run(cursor: LineCursor) -> List[str]:
    blanks: List[str] = []
    while is_blank(cursor.peek()):
        blanks.append(cursor.next())
    return blanks


def decide(config: BlockConfig, content: str, cursor: LineCursor,
           result_kind: Optional[ResultKind] = None) -> ExecutionDecision:
    if not config.run:
        logger.info("Skipping execution due to run=false option.")
        return ExecutionDecision(execute=False, reason="run=false")

    if not content.strip():
        logger.warning(f"Skipping empty code block for language '{config.language}'.")
        return ExecutionDecision(execute=False, reason="empty")

    kind = result_kind or result_kind_for(config.language)

    # Annotated source is its own artifact; nothing after the fence is inspected.
    if kind is ResultKind.INLINE and has_inline_annotations(content):
        if config.rerun:
            return ExecutionDecision(execute=True, artifact_kind=ArtifactKind.INLINE, reason="rerun")
        logger.info(f"Found existing inline annotations for current {config.language} block, skipping execution.")
        return ExecutionDecision(execute=False, artifact_kind=ArtifactKind.INLINE, reason="annotated")

    return _decide_trailing(config, kind, cursor)


def _decide_trailing(config: BlockConfig, kind: ResultKind, cursor: LineCursor) -> ExecutionDecision:
    shapes = expected_shapes(config, kind)
    if not shapes:
        return ExecutionDecision(execute=True, reason="nothing to find")

    held: List[str] = []       # matched artifacts as they would be copied forward
    consumed: List[str] = []   # every line read for matched artifacts
    matched: List[ArtifactKind] = []
    separator: Optional[str] = None
    leftover: List[str] = []
    missing = False

    for index, shape in enumerate(shapes):
        blanks = consume_blank_run(cursor)
        if index == 0 and blanks:
            separator = blanks[0]
        line = cursor.peek()
        if line is None or not shape.opens(line):
            consumed.extend(blanks)
            missing = True
            break
        body, complete = shape.consume(cursor)
        if not complete:
            logger.warning("End of file reached while consuming result block.")
            consumed.extend(blanks)
            leftover = body
            missing = True
            break
        held.extend(blanks[:1])
        held.extend(body)
        consumed.extend(blanks)
        consumed.extend(body)
        matched.append(shape.kind)

    trailing: List[str] = [] if missing else consume_blank_run(cursor)
    primary = matched[0] if matched else shapes[0].kind

    execute = (
        missing
        or config.rerun
        or (config.auto_replace and any(k in REFRESHABLE for k in matched))
    )

    if execute:
        if missing:
            reason = "no existing result"
        elif config.rerun:
            reason = "rerun"
        else:
            reason = "auto-replace"
        return ExecutionDecision(
            execute=True,
            consumed_lines=consumed + trailing,
            pass_through_lines=leftover,
            blank_separator=separator,
            artifact_kind=primary,
            reason=reason,
        )

    logger.info(f"Found existing {primary.value} result for current {config.language} block, skipping execution.")
    return ExecutionDecision(
        execute=False,
        pass_through_lines=held + trailing,
        blank_separator=separator,
        artifact_kind=primary,
        reason="existing result",
    )
