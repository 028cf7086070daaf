import json
import re

import pytest

from mdrun.mdrun_datatypes import ExecutionOutcome, MissingInterpreterError
from mdrun.mdrun_scanner import DocumentProcessor, process_document


class FakeExecutor:
    """Answers from a table keyed by block content; records every call."""

    def __init__(self, answers=None, default="out"):
        self.answers = answers or {}
        self.default = default
        self.calls = []

    async def execute(self, content, language, *, explain=False, flamegraph=False):
        self.calls.append((content, language, explain, flamegraph))
        answer = self.answers.get(content, self.default)
        if isinstance(answer, ExecutionOutcome):
            return answer
        return ExecutionOutcome(stdout=answer)


class CountingExecutor(FakeExecutor):
    async def execute(self, content, language, **kwargs):
        await super().execute(content, language, **kwargs)
        return ExecutionOutcome(stdout=f"run {len(self.calls)}\n")


async def _run(text, executor=None, **kwargs):
    executor = executor or FakeExecutor()
    out = await process_document(text, executor=executor, **kwargs)
    return out, executor


@pytest.mark.asyncio
async def test_new_result_after_block():
    doc = "```psql\nSELECT 'x';\n```\n"
    out, ex = await _run(doc, FakeExecutor({"SELECT 'x';\n": "x\n"}))
    assert out == "```psql\nSELECT 'x';\n```\n\n```RESULT\nx\n```\n\n"
    assert ex.calls == [("SELECT 'x';\n", "psql", False, False)]


@pytest.mark.asyncio
async def test_existing_result_is_left_alone():
    doc = "```psql\nSELECT 'x';\n```\n\n```RESULT\nx\n```\n\nAfter.\n"
    out, ex = await _run(doc)
    assert out == doc
    assert ex.calls == []


@pytest.mark.asyncio
async def test_rerun_replaces_stale_result():
    doc = "```bash rerun=true\necho hi\n```\n\n```RESULT\nSTALE\n```\n\nAfter.\n"
    out, _ = await _run(doc, FakeExecutor(default="fresh\n"))
    assert "STALE" not in out
    assert out == "```bash rerun=true\necho hi\n```\n\n```RESULT\nfresh\n```\n\nAfter.\n"


@pytest.mark.asyncio
async def test_run_false_leaves_document_unchanged():
    doc = "```bash run=false\necho hi\n```\n\n```RESULT\nold\n```\n"
    out, ex = await _run(doc)
    assert out == doc
    assert ex.calls == []

    bare = "```bash run=false\necho hi\n```\nText\n"
    out, _ = await _run(bare)
    assert out == bare


@pytest.mark.asyncio
async def test_extra_blank_lines_collapse_before_kept_result():
    doc = "```bash\necho hi\n```\n\n\n```RESULT\nhi\n```\n"
    out, ex = await _run(doc)
    assert out == "```bash\necho hi\n```\n\n```RESULT\nhi\n```\n"
    assert ex.calls == []


@pytest.mark.asyncio
async def test_second_pass_is_identical():
    doc = (
        "# Notes\n\n"
        "```bash\necho one\n```\n"
        "Some text.\n\n"
        "```python\nprint(2)\n```\n\n\n"
        "```text\nnot run\n```\n"
    )
    first, ex1 = await _run(doc)
    second, ex2 = await _run(first)
    assert second == first
    assert len(ex1.calls) == 2
    assert ex2.calls == []


@pytest.mark.asyncio
async def test_rerun_output_is_stable_across_passes():
    doc = "```bash rerun\ndate\n```\n\nAfter.\n"
    ex = CountingExecutor()
    first, _ = await _run(doc, ex)
    second, _ = await _run(first, ex)
    assert "run 1" not in second
    assert second == first.replace("run 1", "run 2")


@pytest.mark.asyncio
async def test_unsupported_language_is_plain_text():
    doc = "```cobol\nDISPLAY 'HI'.\n```\n"
    out, ex = await _run(doc)
    assert out == doc
    assert ex.calls == []


@pytest.mark.asyncio
async def test_empty_block_is_not_executed():
    doc = "```bash\n\n```\nText\n"
    out, ex = await _run(doc)
    assert out == doc
    assert ex.calls == []


@pytest.mark.asyncio
async def test_frontmatter_alias_and_defaults():
    doc = (
        "---\n"
        "markdown-run:\n"
        "  alias:\n"
        "    - shell: bash\n"
        "  defaults:\n"
        "    run: false\n"
        "  bash:\n"
        "    run: true\n"
        "---\n"
        "```shell\necho a\n```\n"
        "```python\nprint(1)\n```\n"
    )
    out, ex = await _run(doc)
    assert [c[1] for c in ex.calls] == ["bash"]
    assert out.startswith(doc[: doc.index("```shell")])


@pytest.mark.asyncio
async def test_malformed_frontmatter_uses_builtin_defaults():
    doc = "---\nmarkdown-run: [oops\n---\n```bash\necho a\n```\n"
    out, ex = await _run(doc)
    assert len(ex.calls) == 1
    assert out.endswith("```RESULT\nout\n```\n\n")


@pytest.mark.asyncio
async def test_failed_execution_is_captured_not_raised():
    failing = ExecutionOutcome(stdout="", stderr="boom", exit_status=3)
    doc = "```bash\nexit 3\n```\n```bash\necho ok\n```\n"
    out, ex = await _run(doc, FakeExecutor({"exit 3\n": failing, "echo ok\n": "ok\n"}))
    assert "Execution failed (status: 3). Stderr: boom" in out
    assert "```RESULT\nok\n```" in out
    assert len(ex.calls) == 2


@pytest.mark.asyncio
async def test_missing_interpreter_propagates():
    class Missing:
        async def execute(self, content, language, **kwargs):
            raise MissingInterpreterError("zsh", "zsh")

    with pytest.raises(MissingInterpreterError):
        await process_document("```zsh\necho\n```\n", executor=Missing())


@pytest.mark.asyncio
async def test_unterminated_result_is_replaced_and_kept_as_text():
    doc = "```bash\necho hi\n```\n\n```RESULT\npartial\n"
    out, ex = await _run(doc, FakeExecutor(default="hi\n"))
    assert out == "```bash\necho hi\n```\n\n```RESULT\nhi\n```\n\n```RESULT\npartial\n"
    assert len(ex.calls) == 1


@pytest.mark.asyncio
async def test_unterminated_code_block_is_copied():
    doc = "```bash\necho hi\n"
    out, ex = await _run(doc)
    assert out == doc
    assert ex.calls == []


@pytest.mark.asyncio
async def test_standalone_ruby_result_passes_through():
    doc = "```ruby RESULT\n```bash\necho inside\n```\nAfter\n"
    out, ex = await _run(doc)
    assert out == doc
    assert ex.calls == []


@pytest.mark.asyncio
async def test_inline_ruby_annotations_replace_body():
    annotated = "puts 1 + 1\n# >> 2\n"
    ex = FakeExecutor({"puts 1 + 1\n": annotated})
    doc = "```ruby\nputs 1 + 1\n```\n\nAfter\n"
    first, _ = await _run(doc, ex)
    assert first == "```ruby\nputs 1 + 1\n# >> 2\n```\n\nAfter\n"

    second, _ = await _run(first, ex)
    assert second == first
    assert len(ex.calls) == 1

    rerun_doc = first.replace("```ruby", "```ruby rerun")
    third, _ = await _run(rerun_doc, ex)
    # stale annotations are stripped before the block runs again
    assert ex.calls[-1][0] == "puts 1 + 1\n"
    assert third == rerun_doc


@pytest.mark.asyncio
async def test_link_only_plan_always_has_exactly_one_fresh_link():
    plan = json.dumps([{"Plan": {"Node Type": "Result", "Actual Total Time": 0.01}}])
    urls = iter(["https://x/plan/1", "https://x/plan/2"])

    async def submit(plan_json, query=None):
        return next(urls)

    doc = "```psql explain result=false\nSELECT 1;\n```\n\nAfter\n"
    ex = FakeExecutor(default=plan)
    first = await process_document(doc, executor=ex, submit=submit)
    assert first == "```psql explain result=false\nSELECT 1;\n```\n\n[Dalibo](https://x/plan/1)\n\nAfter\n"

    second = await process_document(first, executor=ex, submit=submit)
    assert second == first.replace("plan/1", "plan/2")
    assert "```RESULT" not in second
    assert second.count("[Dalibo]") == 1


@pytest.mark.asyncio
async def test_processor_uses_document_location(tmp_path):
    doc_path = tmp_path / "guide.md"
    processor = DocumentProcessor(FakeExecutor(), document_path=str(doc_path))
    assert processor.document_dir == str(tmp_path)
    assert processor.document_stem == "guide"


def _plan_executor():
    plan = json.dumps([{"Plan": {"Node Type": "Result", "Actual Total Time": 0.01}}])
    return FakeExecutor(default=plan)


def _svg_names(text):
    return re.findall(r"\((d-flamegraph-[^)]+\.svg)\)", text)


@pytest.mark.asyncio
async def test_flamegraph_only_block_refreshes_image_and_keeps_user_images(tmp_path):
    doc = (
        "```psql flamegraph result=false\nSELECT 1;\n```\n\n"
        "![PostgreSQL Query Flamegraph](old.svg)\n\n"
        "![Architecture](arch.svg)\nAfter\n"
    )
    ex = _plan_executor()
    path = str(tmp_path / "d.md")
    first = await process_document(doc, executor=ex, document_path=path)
    [svg1] = _svg_names(first)
    assert first == (
        "```psql flamegraph result=false\nSELECT 1;\n```\n\n"
        f"![PostgreSQL Query Flamegraph]({svg1})\n\n"
        "![Architecture](arch.svg)\nAfter\n"
    )
    assert (tmp_path / svg1).exists()

    second = await process_document(first, executor=ex, document_path=path)
    [svg2] = _svg_names(second)
    assert second == first.replace(svg1, svg2)
    assert second.count("![PostgreSQL Query Flamegraph]") == 1
    assert "```RESULT" not in second
    assert len(ex.calls) == 2


@pytest.mark.asyncio
async def test_link_and_flamegraph_are_emitted_in_order_once(tmp_path):
    urls = iter(["https://x/plan/1", "https://x/plan/2"])

    async def submit(plan_json, query=None):
        return next(urls)

    doc = "```psql explain flamegraph result=false\nSELECT 1;\n```\n\nAfter\n"
    ex = _plan_executor()
    path = str(tmp_path / "d.md")
    first = await process_document(doc, executor=ex, submit=submit, document_path=path)
    [svg1] = _svg_names(first)
    assert first == (
        "```psql explain flamegraph result=false\nSELECT 1;\n```\n\n"
        "[Dalibo](https://x/plan/1)\n\n"
        f"![PostgreSQL Query Flamegraph]({svg1})\n\n"
        "After\n"
    )

    second = await process_document(first, executor=ex, submit=submit, document_path=path)
    [svg2] = _svg_names(second)
    assert second == first.replace("plan/1", "plan/2").replace(svg1, svg2)
    assert second.count("[Dalibo]") == 1
    assert second.count("![PostgreSQL Query Flamegraph]") == 1
    assert "```RESULT" not in second


@pytest.mark.asyncio
async def test_mermaid_rerun_replaces_only_its_own_image(tmp_path):
    new_svg = ExecutionOutcome(artifact_paths=[str(tmp_path / "d-mermaid-new.svg")])
    doc = (
        "```mermaid rerun\ngraph TD;\n```\n\n"
        "![Mermaid Diagram](d-mermaid-old.svg)\n"
        "![Architecture](arch.svg)\n"
    )
    out, _ = await _run(doc, FakeExecutor(default=new_svg), document_path=str(tmp_path / "d.md"))
    assert out == (
        "```mermaid rerun\ngraph TD;\n```\n\n"
        "![Mermaid Diagram](d-mermaid-new.svg)\n\n"
        "![Architecture](arch.svg)\n"
    )


@pytest.mark.asyncio
async def test_ruby_value_annotations_are_not_rerun():
    ex = FakeExecutor({"x = 1 + 1 # =>\n": "x = 1 + 1 # => 2\n"})
    doc = "```ruby\nx = 1 + 1 # =>\n```\n"
    first, _ = await _run(doc, ex)
    assert first == "```ruby\nx = 1 + 1 # => 2\n```\n"

    second, _ = await _run(first, ex)
    assert second == first
    assert len(ex.calls) == 1

    await _run(first.replace("```ruby", "```ruby rerun"), ex)
    assert ex.calls[-1][0] == "x = 1 + 1 # =>\n"
