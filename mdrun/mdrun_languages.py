"""
Static registry of the languages markdown-run knows how to execute.

Each canonical language maps to a LanguageSpec: how to find its program,
how to build the command line for one block, whether the block content goes
through a temp file, and how its output is rendered back.
"""

import os
import shutil
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from mdrun.mdrun_datatypes import ResultKind, MissingInterpreterError

EXPLAIN_PREFIX = "EXPLAIN (ANALYZE, BUFFERS, FORMAT JSON) "


@dataclass(frozen=True)
class InvocationOptions:
    explain: bool = False
    flamegraph: bool = False
    output_dir: Optional[str] = None
    output_stem: str = "document"


@dataclass(frozen=True)
class Invocation:
    command: List[str]
    stdin: Optional[str] = None
    output_path: Optional[str] = None


@dataclass(frozen=True)
class LanguageSpec:
    name: str
    binaries: Tuple[str, ...]
    build_invocation: Callable[[str, Optional[str], InvocationOptions, List[str]], Invocation]
    result_kind: ResultKind = ResultKind.TEXT
    temp_suffix: Optional[str] = None
    temp_holds_content: bool = True
    error_flavor: str = "plain"
    install_hint: Optional[str] = None
    locate: Optional[Callable[["LanguageSpec"], List[str]]] = None

    @property
    def needs_temp_file(self) -> bool:
        return self.temp_suffix is not None

    def program(self) -> List[str]:
        """The program prefix to run, e.g. ['bash']; raises when nothing is installed."""
        if self.locate is not None:
            return self.locate(self)
        return locate_binary(self)


def locate_binary(spec: LanguageSpec) -> List[str]:
    # First available binary wins (bun before node for js).
    for binary in spec.binaries:
        if shutil.which(binary):
            return [binary]
    raise MissingInterpreterError(spec.binaries[-1], spec.name, spec.install_hint)


# ===================================================================
# Invocation builders
# ===================================================================

def _file_invocation(content: str, temp_path: Optional[str], opts: InvocationOptions, program: List[str]) -> Invocation:
    return Invocation(command=program + [temp_path])


def _psql_invocation(content: str, temp_path: Optional[str], opts: InvocationOptions, program: List[str]) -> Invocation:
    stdin = content
    if opts.explain or opts.flamegraph:
        stdin = EXPLAIN_PREFIX + content
    return Invocation(command=program + ["-A", "-t", "-X"], stdin=stdin)


def _sqlite_invocation(content: str, temp_path: Optional[str], opts: InvocationOptions, program: List[str]) -> Invocation:
    # The temp file is the (throwaway) database; the SQL arrives on stdin.
    return Invocation(command=program + [temp_path], stdin=content)


def _mermaid_invocation(content: str, temp_path: Optional[str], opts: InvocationOptions, program: List[str]) -> Invocation:
    out_dir = opts.output_dir or os.path.dirname(temp_path)
    output_path = os.path.join(out_dir, f"{opts.output_stem}-mermaid-{uuid.uuid4().hex[:8]}.svg")
    return Invocation(command=program + ["-i", temp_path, "-o", output_path], output_path=output_path)


def _locate_psql(spec: LanguageSpec) -> List[str]:
    from mdrun.mdrun_postgres import psql_command  # lazy: shells out to docker
    return psql_command()


# ===================================================================
# Registry
# ===================================================================

_JS = LanguageSpec(
    name="js",
    binaries=("bun", "node"),
    build_invocation=_file_invocation,
    temp_suffix=".js",
    error_flavor="js",
    install_hint="Please install bun or node.",
)

_SQLITE = LanguageSpec(
    name="sqlite",
    binaries=("sqlite3",),
    build_invocation=_sqlite_invocation,
    temp_suffix=".db",
    temp_holds_content=False,
    install_hint="Please install sqlite3.",
)

_PYTHON = LanguageSpec(
    name="python",
    binaries=("python3",),
    build_invocation=_file_invocation,
    temp_suffix=".py",
)

SUPPORTED_LANGUAGES: Dict[str, LanguageSpec] = {
    "psql": LanguageSpec(
        name="psql",
        binaries=("psql",),
        build_invocation=_psql_invocation,
        result_kind=ResultKind.PLAN,
        install_hint="Please install PostgreSQL or ensure psql is in your PATH.",
        locate=_locate_psql,
    ),
    "ruby": LanguageSpec(
        name="ruby",
        binaries=("xmpfilter",),
        build_invocation=_file_invocation,
        result_kind=ResultKind.INLINE,
        temp_suffix=".rb",
        install_hint="Please install xmpfilter (rcodetools) or ensure it is in your PATH.",
    ),
    "js": _JS,
    "javascript": _JS,
    "sql": _SQLITE,
    "sqlite": _SQLITE,
    "sqlite3": _SQLITE,
    "bash": LanguageSpec(name="bash", binaries=("bash",), build_invocation=_file_invocation, temp_suffix=".sh"),
    "zsh": LanguageSpec(name="zsh", binaries=("zsh",), build_invocation=_file_invocation, temp_suffix=".zsh"),
    "sh": LanguageSpec(name="sh", binaries=("sh",), build_invocation=_file_invocation, temp_suffix=".sh"),
    "python": _PYTHON,
    "py": _PYTHON,
    "mermaid": LanguageSpec(
        name="mermaid",
        binaries=("mmdc",),
        build_invocation=_mermaid_invocation,
        result_kind=ResultKind.IMAGE,
        temp_suffix=".mmd",
        install_hint="Please install @mermaid-js/mermaid-cli: npm install -g @mermaid-js/mermaid-cli",
    ),
}


def is_supported(language: str) -> bool:
    return language in SUPPORTED_LANGUAGES


def get_language(language: str) -> Optional[LanguageSpec]:
    return SUPPORTED_LANGUAGES.get((language or "").lower())


def result_kind_for(language: str) -> ResultKind:
    spec = get_language(language)
    return spec.result_kind if spec else ResultKind.TEXT
