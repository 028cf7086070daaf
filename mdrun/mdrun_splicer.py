"""
Result splicer: turns an execution outcome into the artifact lines written
after (or, for inline kinds, into) a code block.

Rendering is dispatched on the language's ResultKind:
  - TEXT   -> fenced RESULT block
  - INLINE -> annotated source replaces the block body
  - IMAGE  -> bare Markdown image line
  - PLAN   -> RESULT block, then a visualization link, then a flamegraph image
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mdrun.mdrun_artifacts import (
    DALIBO_LABEL, FLAMEGRAPH_LABEL, MERMAID_LABEL, RUBY_RESULT_HEADER,
    fence_artifact, image_line, link_line,
)
from mdrun.mdrun_datatypes import BlockConfig, ExecutionOutcome, RenderedResult, ResultKind
from mdrun.mdrun_flamegraph import PlanFormatError, write_flamegraph
from mdrun.mdrun_http import submit_plan
from mdrun.mdrun_languages import get_language

logger = logging.getLogger(__name__)

SubmitFn = Callable[..., Awaitable[Optional[str]]]


@dataclass
class SpliceContext:
    config: BlockConfig
    content: str
    outcome: ExecutionOutcome
    output: str
    document_dir: str
    document_stem: str
    submit: SubmitFn


def frame_output(outcome: ExecutionOutcome, language: str, error_flavor: str = "plain") -> str:
    """stdout, annotated with the exit status and stderr when the run failed."""
    output = outcome.stdout
    if not outcome.failed:
        return output

    stderr = outcome.stderr.strip()
    if error_flavor == "js" and stderr:
        output += f"\nStderr:\n{stderr}"

    logger.warning(f"Code execution failed for language '{language}' with status {outcome.exit_status}.")
    if stderr:
        logger.warning(f"Stderr:\n{stderr}")

    already_framed = "error:" in output.lower() or (error_flavor == "js" and "Stderr:" in output)
    if not already_framed:
        prefix = f"Execution failed (status: {outcome.exit_status})."
        if stderr:
            prefix += f" Stderr: {stderr}"
        output = f"{prefix}\n{output}"
    return output


def _relative(path: str, start: str) -> str:
    return os.path.relpath(path, start).replace(os.sep, "/")


def _source_lines(text: str) -> List[str]:
    lines = text.splitlines(keepends=True)
    if lines and not lines[-1].endswith("\n"):
        lines[-1] += "\n"
    return lines


# ===================================================================
# Renderers
# ===================================================================

async def render_text(ctx: SpliceContext) -> RenderedResult:
    if not ctx.config.show_result:
        return RenderedResult()
    return RenderedResult(artifacts=[fence_artifact(ctx.output)])


async def render_inline(ctx: SpliceContext) -> RenderedResult:
    if ctx.outcome.failed:
        # Source without stale annotations; the diagnostic goes after the fence
        return RenderedResult(
            artifacts=[fence_artifact(ctx.output, RUBY_RESULT_HEADER)],
            inline_source=_source_lines(ctx.content),
        )
    if not ctx.output:
        return RenderedResult()
    return RenderedResult(inline_source=_source_lines(ctx.output))


async def render_image(ctx: SpliceContext) -> RenderedResult:
    if not ctx.outcome.failed and ctx.outcome.artifact_paths:
        path = _relative(ctx.outcome.artifact_paths[0], ctx.document_dir)
        return RenderedResult(artifacts=[image_line(MERMAID_LABEL, path)])
    diagnostic = ctx.output if ctx.outcome.failed else "Error: SVG file not generated"
    logger.warning(f"No diagram produced for {ctx.config.language} block.")
    return RenderedResult(artifacts=[fence_artifact(diagnostic)])


def parse_plan(output: str) -> Optional[Any]:
    try:
        data = json.loads(output)
    except ValueError as e:
        logger.warning(f"Could not parse EXPLAIN output as JSON: {e}")
        return None
    if not isinstance(data, (list, dict)):
        logger.warning("EXPLAIN output is not a JSON plan document.")
        return None
    return data


async def render_plan(ctx: SpliceContext) -> RenderedResult:
    config = ctx.config
    artifacts: List[List[str]] = []
    if config.show_result:
        artifacts.append(fence_artifact(ctx.output))

    if ctx.outcome.failed or not (config.explain or config.flamegraph):
        return RenderedResult(artifacts=artifacts)

    plan = parse_plan(ctx.output)
    if plan is None:
        return RenderedResult(artifacts=artifacts)

    if config.explain:
        url = await ctx.submit(ctx.output.strip(), query=ctx.content.strip())
        if url:
            artifacts.append(link_line(DALIBO_LABEL, url))

    if config.flamegraph:
        try:
            path = write_flamegraph(plan, ctx.document_dir, ctx.document_stem)
        except (PlanFormatError, OSError) as e:
            logger.warning(f"Could not render flamegraph: {e}")
        else:
            artifacts.append(image_line(FLAMEGRAPH_LABEL, _relative(path, ctx.document_dir)))
    return RenderedResult(artifacts=artifacts)


RENDERERS: Dict[ResultKind, Callable[[SpliceContext], Awaitable[RenderedResult]]] = {
    ResultKind.TEXT: render_text,
    ResultKind.INLINE: render_inline,
    ResultKind.IMAGE: render_image,
    ResultKind.PLAN: render_plan,
}


async def splice(config: BlockConfig, content: str, outcome: ExecutionOutcome, *,
                 document_dir: Optional[str] = None, document_stem: str = "document",
                 submit: Optional[SubmitFn] = None) -> RenderedResult:
    spec = get_language(config.language)
    kind = spec.result_kind if spec else ResultKind.TEXT
    flavor = spec.error_flavor if spec else "plain"
    ctx = SpliceContext(
        config=config,
        content=content,
        outcome=outcome,
        output=frame_output(outcome, config.language, flavor),
        document_dir=document_dir or os.getcwd(),
        document_stem=document_stem,
        submit=submit or submit_plan,
    )
    return await RENDERERS[kind](ctx)
