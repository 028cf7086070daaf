"""
Renders a PostgreSQL EXPLAIN (FORMAT JSON) plan as a flamegraph SVG.

Each plan node becomes one rectangle whose width is proportional to its
`Actual Total Time`; children are stacked below their parent, laid out left
to right in plan order.
"""

import logging
import os
import re
import uuid
import zlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

import pystache

logger = logging.getLogger(__name__)

PALETTE = [
    '#e74c3c', '#3498db', '#2ecc71', '#f39c12', '#9b59b6',
    '#1abc9c', '#e67e22', '#95a5a6', '#34495e', '#e91e63',
]

SVG_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<svg width="{{width}}" height="{{height}}" xmlns="http://www.w3.org/2000/svg">
  <style>
    .frame { stroke: white; stroke-width: 1; cursor: pointer; }
    .frame:hover { stroke: black; stroke-width: 2; }
    .frame-text { font-family: monospace; font-size: {{font_size}}px; fill: white; pointer-events: none; }
    .title { font-family: Arial; font-size: 16px; font-weight: bold; fill: #333; }
    .subtitle { font-family: Arial; font-size: 12px; fill: #666; }
  </style>
  <text x="{{center}}" y="20" class="title" text-anchor="middle">{{title}}</text>
  <text x="{{center}}" y="35" class="subtitle" text-anchor="middle">Total Execution Time: {{total_time}}ms</text>
  <g transform="translate(0, 45)">
{{#frames}}
    <rect class="frame" x="{{x}}" y="{{y}}" width="{{w}}" height="{{h}}" fill="{{color}}">
      <title>{{name}}
Time: {{time}}ms
Percentage: {{percent}}%</title>
    </rect>
{{#label}}
    <text class="frame-text" x="{{text_x}}" y="{{text_y}}">{{label}}</text>
{{/label}}
{{/frames}}
  </g>
</svg>
"""


class PlanFormatError(ValueError):
    pass


@dataclass
class FlameNode:
    name: str
    time: float
    depth: int
    start: float
    children: List['FlameNode'] = field(default_factory=list)


def _num(value: float) -> str:
    return str(round(value, 2))


def extract_plan(explain: Any) -> Dict[str, Any]:
    """Return the root `Plan` mapping from an EXPLAIN JSON document."""
    if isinstance(explain, list) and explain and isinstance(explain[0], dict):
        explain = explain[0]
    if isinstance(explain, dict) and isinstance(explain.get("Plan"), dict):
        return explain["Plan"]
    raise PlanFormatError("EXPLAIN output has no 'Plan' node")


def format_node_name(node: Dict[str, Any]) -> str:
    details = []
    if node.get("Relation Name"):
        details.append(str(node["Relation Name"]))
    if node.get("Index Name"):
        details.append(f"idx:{node['Index Name']}")
    if node.get("Join Type"):
        details.append(str(node["Join Type"]))
    name = str(node.get("Node Type", "Unknown"))
    if details:
        name += f" ({', '.join(details)})"
    if node.get("Actual Total Time") is not None:
        name += f" [{_num(float(node['Actual Total Time']))}ms]"
    return name


def build_tree(plan: Dict[str, Any], depth: int = 0, start: float = 0.0) -> FlameNode:
    node = FlameNode(
        name=format_node_name(plan),
        time=float(plan.get("Actual Total Time") or 0),
        depth=depth,
        start=start,
    )
    child_start = start
    for child_plan in plan.get("Plans") or []:
        child = build_tree(child_plan, depth + 1, child_start)
        node.children.append(child)
        child_start += child.time
    return node


def max_depth(node: FlameNode) -> int:
    return max([node.depth] + [max_depth(c) for c in node.children])


def node_color(name: str) -> str:
    if re.search(r"Seq Scan", name):
        return '#e74c3c'
    if re.search(r"Index.*Scan", name):
        return '#2ecc71'
    if re.search(r"Hash Join|Nested Loop|Merge Join", name):
        return '#3498db'
    if re.search(r"Sort|Aggregate", name):
        return '#f39c12'
    if re.search(r"Result", name):
        return '#95a5a6'
    return PALETTE[zlib.crc32(name.encode("utf-8")) % len(PALETTE)]


def truncate_text(text: str, max_width: float) -> str:
    # ~7px per monospace character
    max_chars = int(max_width / 7)
    if len(text) <= max_chars:
        return text
    return text[:max(max_chars - 3, 0)] + "..."


class FlamegraphRenderer:
    def __init__(self, explain: Any, width: int = 1200, font_size: int = 12,
                 title: str = "PostgreSQL Query Execution Plan Flamegraph"):
        self.root = build_tree(extract_plan(explain))
        self.width = width
        self.font_size = font_size
        self.min_width = 1
        self.title = title

    @property
    def row_height(self) -> int:
        return self.font_size + 4

    def frames(self) -> List[Dict[str, Any]]:
        total = self.root.time
        out: List[Dict[str, Any]] = []
        if total <= 0:
            return out
        self._collect(self.root, total, 0, out)
        return out

    def _collect(self, node: FlameNode, total: float, y: int, out: List[Dict[str, Any]]) -> None:
        if node.time <= 0:
            return
        ratio = node.time / total
        w = max(self.width * ratio, self.min_width)
        x = (node.start / total) * self.width
        frame = {
            "x": _num(x), "y": y, "w": _num(w), "h": self.row_height,
            "color": node_color(node.name),
            "name": node.name,
            "time": _num(node.time),
            "percent": str(round(ratio * 100, 1)),
            "label": None,
        }
        if w > 50:
            frame["label"] = truncate_text(node.name, w - 8)
            frame["text_x"] = _num(x + 4)
            frame["text_y"] = y + self.font_size + 1
        out.append(frame)
        for child in node.children:
            self._collect(child, total, y + self.row_height + 2, out)

    def render(self) -> str:
        depth = max_depth(self.root)
        context = {
            "width": self.width,
            "height": 45 + (depth + 1) * (self.row_height + 2) + 10,
            "center": self.width // 2,
            "font_size": self.font_size,
            "title": self.title,
            "total_time": _num(self.root.time),
            "frames": self.frames(),
        }
        return pystache.render(SVG_TEMPLATE, context)


def write_flamegraph(explain: Any, out_dir: str, stem: str = "document") -> str:
    """Render and write the SVG next to the document; returns the file path."""
    svg = FlamegraphRenderer(explain).render()
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    path = os.path.join(out_dir, f"{stem}-flamegraph-{stamp}-{uuid.uuid4().hex[:6]}.svg")
    with open(path, "w", encoding="utf-8") as f:
        f.write(svg)
    logger.info(f"Flamegraph written to {path}")
    return path
