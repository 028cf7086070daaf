"""
Document configuration: frontmatter loading and per-block option resolution.

Frontmatter schema (YAML, top-level key `markdown-run`):

    markdown-run:
      alias:
        - sql: psql
      defaults:
        rerun: true
      psql:
        explain: true

Effective option priority for a block, highest first:
  1. explicit `key=value` in the header
  2. bare keyword in the header (means true)
  3. language default from the frontmatter
  4. global default from the frontmatter
  5. built-in fallback
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import yaml

from mdrun.mdrun_cursor import LineCursor
from mdrun.mdrun_datatypes import BlockConfig, DocumentDefaults, BUILTIN_DEFAULTS, OPTION_NAMES
from mdrun.mdrun_header import BlockHeader, PRESENT

logger = logging.getLogger(__name__)

CONFIG_KEY = "markdown-run"
FRONTMATTER_DELIMITER = "---"


# --------------------------
# Helpers
# --------------------------

def _coerce_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def _option_map(raw: Any, where: str) -> Dict[str, bool]:
    out: Dict[str, bool] = {}
    if not isinstance(raw, dict):
        return out
    for name, value in raw.items():
        coerced = _coerce_bool(value)
        if coerced is None:
            logger.warning(f"Ignoring frontmatter option {where}.{name}: expected a boolean, got {value!r}")
            continue
        out[str(name).lower()] = coerced
    return out


# --------------------------
# Frontmatter
# --------------------------

def defaults_from_mapping(frontmatter: Any) -> DocumentDefaults:
    """Build DocumentDefaults from an already-loaded frontmatter mapping."""
    defaults = DocumentDefaults()
    if not isinstance(frontmatter, dict):
        return defaults
    section = frontmatter.get(CONFIG_KEY)
    if not isinstance(section, dict):
        return defaults

    aliases = section.get("alias")
    if isinstance(aliases, list):
        for entry in aliases:
            if not isinstance(entry, dict):
                continue
            for alias_name, target in entry.items():
                defaults.aliases[str(alias_name).lower()] = str(target).lower()

    defaults.global_defaults = _option_map(section.get("defaults"), "defaults")

    for key, value in section.items():
        if key in ("alias", "defaults") or not isinstance(value, dict):
            continue
        defaults.language_defaults[str(key).lower()] = _option_map(value, str(key))
    return defaults


def load_frontmatter_text(text: str) -> DocumentDefaults:
    """Parse the YAML between the frontmatter delimiters; never raises."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        logger.warning(f"Invalid YAML frontmatter, using built-in defaults: {e}")
        return DocumentDefaults()
    return defaults_from_mapping(data)


def read_frontmatter(cursor: LineCursor, output: List[str]) -> DocumentDefaults:
    """Consume a leading frontmatter section, copying it verbatim to output."""
    first = cursor.peek()
    if first is None or first.strip() != FRONTMATTER_DELIMITER:
        return DocumentDefaults()

    output.append(cursor.next())
    body: List[str] = []
    while True:
        line = cursor.next()
        if line is None:
            logger.warning("End of file reached inside frontmatter.")
            break
        output.append(line)
        if line.strip() == FRONTMATTER_DELIMITER:
            break
        body.append(line)

    if not body:
        return DocumentDefaults()
    return load_frontmatter_text("".join(body))


# --------------------------
# Resolution
# --------------------------

def resolve_option(name: str, header: BlockHeader, defaults: DocumentDefaults) -> bool:
    value = header.options.get(name)
    if isinstance(value, bool):
        return value
    if value is PRESENT:
        return True
    doc_default = defaults.default_for(name, header.language)
    if doc_default is not None:
        return doc_default
    return BUILTIN_DEFAULTS[name]


def resolve_block_config(header: BlockHeader, defaults: DocumentDefaults) -> BlockConfig:
    values = {name: resolve_option(name, header, defaults) for name in OPTION_NAMES}
    return BlockConfig(
        language=header.language,
        run=values["run"],
        rerun=values["rerun"],
        explain=values["explain"],
        flamegraph=values["flamegraph"],
        show_result=values["result"],
    )
