"""
Recognizes fence-open lines and tokenizes their inline options.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

from mdrun.mdrun_languages import is_supported

logger = logging.getLogger(__name__)

CODE_BLOCK_START = re.compile(r"^```(\w+)(?:\s+(.*))?$", re.IGNORECASE)
RUBY_RESULT_FENCE = re.compile(r"^```ruby\s+RESULT$", re.IGNORECASE)


class _Present:
    """Marker for a bare option keyword (`rerun` rather than `rerun=true`)."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "PRESENT"

    def __bool__(self):
        return True


PRESENT = _Present()

OptionValue = Union[bool, _Present]


@dataclass(frozen=True)
class BlockHeader:
    tag: str                 # language tag as written (lowercased)
    language: str            # canonical language after alias resolution
    options: Dict[str, OptionValue] = field(default_factory=dict)
    supported: bool = False


def tokenize_options(options_string: Optional[str]) -> Dict[str, OptionValue]:
    """Split a header's option string into {key: True|False|PRESENT}.

    An explicit `key=value` always beats a bare keyword for the same key, and
    the first explicit value for a key wins.
    """
    options: Dict[str, OptionValue] = {}
    if not options_string:
        return options
    normalized = re.sub(r"\s*=\s*", "=", options_string.strip())
    explicit = set()
    for token in normalized.split():
        if "=" in token:
            key, _, value = token.partition("=")
            key = key.lower()
            match value.lower():
                case "true":
                    parsed = True
                case "false":
                    parsed = False
                case _:
                    logger.debug(f"Ignoring option {token!r}: value must be true or false")
                    continue
            if key in explicit:
                continue
            options[key] = parsed
            explicit.add(key)
        else:
            key = token.lower()
            if key not in explicit:
                options[key] = PRESENT
    return options


def is_ruby_result_fence(line: str) -> bool:
    return bool(RUBY_RESULT_FENCE.match(line.rstrip("\r\n")))


def classify_header(line: str, aliases: Optional[Dict[str, str]] = None) -> Optional[BlockHeader]:
    """Return the parsed header for a fence-open line, or None for any other line."""
    m = CODE_BLOCK_START.match(line.rstrip("\r\n"))
    if not m:
        return None
    tag = m.group(1).lower()
    language = (aliases or {}).get(tag, tag)
    return BlockHeader(
        tag=tag,
        language=language,
        options=tokenize_options(m.group(2)),
        supported=is_supported(language),
    )
