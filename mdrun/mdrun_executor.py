"""
Execution Service: runs one code block through its language's program.
"""

import asyncio
import logging
import os
import tempfile
from typing import Optional

from mdrun.mdrun_datatypes import ExecutionOutcome
from mdrun.mdrun_languages import get_language, Invocation, InvocationOptions, LanguageSpec

logger = logging.getLogger(__name__)


def _decode(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


class CodeExecutor:
    """Runs code blocks; temp files live in work_dir and are always removed."""

    def __init__(self, work_dir: Optional[str] = None, document_stem: str = "document"):
        self.work_dir = work_dir or os.getcwd()
        self.document_stem = document_stem

    async def execute(self, content: str, language: str, *, explain: bool = False,
                      flamegraph: bool = False) -> ExecutionOutcome:
        lang_key = (language or "").lower()
        spec = get_language(lang_key)
        if spec is None:
            logger.warning(f"Unsupported language: {language}")
            return ExecutionOutcome(stdout=f"ERROR: Unsupported language: {language}", exit_status=1)

        # Raises MissingInterpreterError before anything is written
        program = spec.program()
        logger.info(f"Executing {lang_key} code block...")
        opts = InvocationOptions(
            explain=explain,
            flamegraph=flamegraph,
            output_dir=self.work_dir,
            output_stem=self.document_stem,
        )

        if spec.needs_temp_file:
            return await self._execute_with_temp_file(content, lang_key, spec, opts, program)
        invocation = spec.build_invocation(content, None, opts, program)
        return await self._finish(invocation)

    async def _execute_with_temp_file(self, content, lang_key, spec: LanguageSpec, opts, program) -> ExecutionOutcome:
        fd, temp_path = tempfile.mkstemp(prefix=lang_key, suffix=spec.temp_suffix, dir=self.work_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                if spec.temp_holds_content:
                    f.write(content)
            invocation = spec.build_invocation(content, temp_path, opts, program)
            return await self._finish(invocation)
        finally:
            try:
                os.unlink(temp_path)
            except FileNotFoundError:
                pass

    async def _finish(self, invocation: Invocation) -> ExecutionOutcome:
        outcome = await self.run_invocation(invocation)
        if invocation.output_path and os.path.isfile(invocation.output_path):
            outcome.artifact_paths.append(invocation.output_path)
        return outcome

    async def run_invocation(self, invocation: Invocation) -> ExecutionOutcome:
        stdin_data = invocation.stdin.encode("utf-8") if invocation.stdin is not None else None
        try:
            proc = await asyncio.create_subprocess_exec(
                *invocation.command,
                stdin=asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"Could not start {invocation.command[0]}: {e}")
            return ExecutionOutcome(stderr=str(e), exit_status=127)
        out, err = await proc.communicate(stdin_data)
        return ExecutionOutcome(stdout=_decode(out), stderr=_decode(err), exit_status=proc.returncode)
