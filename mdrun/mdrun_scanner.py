"""
Document scanner: the line-by-line state machine driving a processing pass.

The scanner copies every line to the output as it reads it. When a supported
block closes, the decision engine inspects what follows the fence and the
scanner either copies the existing artifacts forward or executes the block
and splices fresh ones in.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

from mdrun.mdrun_artifacts import strip_inline_annotations
from mdrun.mdrun_config import read_frontmatter, resolve_block_config
from mdrun.mdrun_cursor import LineCursor, is_block_end
from mdrun.mdrun_datatypes import (
    ArtifactKind, BlockConfig, DocumentDefaults, ExecutionDecision, RenderedResult,
)
from mdrun.mdrun_decider import decide
from mdrun.mdrun_executor import CodeExecutor
from mdrun.mdrun_header import BlockHeader, classify_header, is_ruby_result_fence
from mdrun.mdrun_http import submit_plan
from mdrun.mdrun_splicer import SubmitFn, splice

logger = logging.getLogger(__name__)


class ScanState(Enum):
    OUTSIDE = "outside"
    INSIDE_CODE = "inside_code"
    INSIDE_PASSTHROUGH_RESULT = "inside_passthrough_result"


@dataclass
class OpenBlock:
    header: BlockHeader
    config: BlockConfig
    content_start: int              # output index of the first content line
    lines: List[str] = field(default_factory=list)

    @property
    def content(self) -> str:
        return "".join(self.lines)


class DocumentProcessor:
    """
    Processes one Markdown document.

    `executor` is anything with an async `execute(content, language, *,
    explain, flamegraph)` returning an ExecutionOutcome; `submit` is the plan
    visualization collaborator.
    """

    def __init__(self, executor=None, *, document_path: Optional[str] = None,
                 submit: Optional[SubmitFn] = None):
        if document_path:
            self.document_dir = os.path.dirname(os.path.abspath(document_path))
            self.document_stem = os.path.splitext(os.path.basename(document_path))[0]
        else:
            self.document_dir = os.getcwd()
            self.document_stem = "document"
        self.executor = executor or CodeExecutor(work_dir=self.document_dir, document_stem=self.document_stem)
        self.submit = submit or submit_plan
        self.defaults = DocumentDefaults()

    async def process_text(self, text: str) -> str:
        return "".join(await self.process(text.splitlines(keepends=True)))

    async def process(self, lines: Iterable[str]) -> List[str]:
        cursor = LineCursor(lines)
        output: List[str] = []
        self.defaults = read_frontmatter(cursor, output)

        state = ScanState.OUTSIDE
        block: Optional[OpenBlock] = None

        for line in cursor:
            if state is ScanState.OUTSIDE:
                if is_ruby_result_fence(line):
                    logger.info("Found existing '```ruby RESULT' block, passing through.")
                    output.append(line)
                    state = ScanState.INSIDE_PASSTHROUGH_RESULT
                    continue
                output.append(line)
                header = classify_header(line, self.defaults.aliases)
                if header is not None and header.supported:
                    block = OpenBlock(
                        header=header,
                        config=resolve_block_config(header, self.defaults),
                        content_start=len(output),
                    )
                    state = ScanState.INSIDE_CODE

            elif state is ScanState.INSIDE_CODE:
                output.append(line)
                if is_block_end(line):
                    await self._close_block(block, cursor, output)
                    block = None
                    state = ScanState.OUTSIDE
                else:
                    block.lines.append(line)

            else:
                output.append(line)
                if is_block_end(line):
                    state = ScanState.OUTSIDE

        if state is ScanState.INSIDE_CODE:
            logger.warning(f"End of file reached inside an unterminated {block.config.language} block.")
        return output

    async def _close_block(self, block: OpenBlock, cursor: LineCursor, output: List[str]) -> None:
        decision = decide(block.config, block.content, cursor)
        if not decision.execute:
            output.extend(decision.pass_through_lines)
            return

        logger.debug(f"Executing {block.config.language} block: {decision.reason}")
        content = block.content
        if decision.artifact_kind is ArtifactKind.INLINE:
            content = strip_inline_annotations(content)

        config = block.config
        outcome = await self.executor.execute(
            content, config.language, explain=config.explain, flamegraph=config.flamegraph,
        )
        rendered = await splice(
            config, content, outcome,
            document_dir=self.document_dir,
            document_stem=self.document_stem,
            submit=self.submit,
        )
        self._emit(block, decision, rendered, output)

    @staticmethod
    def _emit(block: OpenBlock, decision: ExecutionDecision, rendered: RenderedResult,
              output: List[str]) -> None:
        if rendered.inline_source is not None:
            closing = output.pop()
            del output[block.content_start:]
            output.extend(rendered.inline_source)
            output.append(closing)

        if rendered.artifacts:
            output.append(decision.blank_separator or "\n")
            for artifact in rendered.artifacts:
                output.extend(artifact)
                output.append("\n")
        elif decision.blank_separator:
            output.append(decision.blank_separator)
        output.extend(decision.pass_through_lines)


async def process_document(text: str, *, document_path: Optional[str] = None,
                           executor=None, submit: Optional[SubmitFn] = None) -> str:
    processor = DocumentProcessor(executor, document_path=document_path, submit=submit)
    return await processor.process_text(text)
