"""
Template renderer — the small templating language for paths and content.

Syntax:

    {{ dotted.path }}                      variable (map keys, list indices)
    {% if [not] dotted.path %}…{% else %}…{% endif %}
    {% for item in dotted.path %}…{% endfor %}

Inside a for body, ``item`` and ``loop`` (index, index0, first, last,
length) are in scope. Blocks nest arbitrarily.

Unknown variables are left in the output verbatim (``{{ name }}`` stays
``{{ name }}``) so partial variable sets degrade visibly. The renderer
raises only on structural problems: unterminated ``{{``/``{%`` markers,
unknown or malformed tags, and unclosed or mismatched blocks.
"""

from __future__ import annotations

import functools
import json
import logging
import re
import time
from collections import ChainMap
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from safescaffold.core.errors import TemplateSyntaxError
from safescaffold.core.models.result import RenderResult
from safescaffold.core.services.template_cache import RenderCache

logger = logging.getLogger(__name__)

Variables = dict[str, Any]

_TOKEN_RE = re.compile(r"(\{\{.*?\}\}|\{%.*?%\})", re.DOTALL)
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*$")
_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_FOR_RE = re.compile(r"^for\s+(\S+)\s+in\s+(\S+)$")

MAX_NESTING_DEPTH = 10


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


# ── AST ─────────────────────────────────────────────────────────────


@dataclass
class _Text:
    text: str


@dataclass
class _Var:
    name: str
    raw: str
    position: int


@dataclass
class _If:
    expr: str
    negate: bool
    position: int
    body: list = field(default_factory=list)
    orelse: list = field(default_factory=list)
    in_else: bool = False


@dataclass
class _For:
    target: str
    iterable: str
    position: int
    body: list = field(default_factory=list)


_Node = Union[_Text, _Var, _If, _For]


def _parse_condition(expr: str, position: int) -> tuple[str, bool]:
    expr = expr.strip()
    negate = False
    if expr.startswith("not ") or expr.startswith("not\t"):
        negate = True
        expr = expr[3:].strip()
    if not _NAME_RE.match(expr):
        raise TemplateSyntaxError(f"Invalid condition expression: {expr!r}", position=position)
    return expr, negate


@functools.lru_cache(maxsize=256)
def _parse(pattern: str) -> tuple[_Node, ...]:
    """Tokenize and parse a pattern into a node tree.

    Parsed trees are never mutated after this returns, so they are
    memoized by pattern text.
    """
    root: list[_Node] = []
    stack: list[_If | _For] = []

    def current() -> list[_Node]:
        if not stack:
            return root
        top = stack[-1]
        if isinstance(top, _If) and top.in_else:
            return top.orelse
        return top.body

    def add_text(text: str, offset: int) -> None:
        for marker in ("{{", "{%"):
            idx = text.find(marker)
            if idx != -1:
                raise TemplateSyntaxError(
                    f"Unterminated '{marker}' at position {offset + idx}",
                    position=offset + idx,
                )
        current().append(_Text(text))

    pos = 0
    for match in _TOKEN_RE.finditer(pattern):
        if match.start() > pos:
            add_text(pattern[pos:match.start()], pos)
        token = match.group(0)
        start = match.start()
        pos = match.end()

        if token.startswith("{{"):
            current().append(_Var(name=token[2:-2].strip(), raw=token, position=start))
            continue

        tag = token[2:-2].strip()
        keyword = tag.split(None, 1)[0] if tag else ""

        if keyword == "if":
            expr, negate = _parse_condition(tag[2:], start)
            block = _If(expr=expr, negate=negate, position=start)
            current().append(block)
            stack.append(block)
        elif keyword == "for":
            m = _FOR_RE.match(tag)
            if not m or not _IDENT_RE.match(m.group(1)) or not _NAME_RE.match(m.group(2)):
                raise TemplateSyntaxError(f"Malformed for tag: {token!r}", position=start)
            block = _For(target=m.group(1), iterable=m.group(2), position=start)
            current().append(block)
            stack.append(block)
        elif tag == "else":
            if not stack or not isinstance(stack[-1], _If):
                raise TemplateSyntaxError("'else' outside of an if block", position=start)
            if stack[-1].in_else:
                raise TemplateSyntaxError("Duplicate 'else' in if block", position=start)
            stack[-1].in_else = True
        elif tag in ("endif", "endfor"):
            expected = _If if tag == "endif" else _For
            if not stack:
                raise TemplateSyntaxError(f"'{tag}' without an opening block", position=start)
            if not isinstance(stack[-1], expected):
                opened = "if" if isinstance(stack[-1], _If) else "for"
                raise TemplateSyntaxError(
                    f"Mismatched '{tag}': innermost open block is '{opened}' "
                    f"at position {stack[-1].position}",
                    position=start,
                )
            stack.pop()
        else:
            raise TemplateSyntaxError(f"Unknown tag: {token!r}", position=start)

    if pos < len(pattern):
        add_text(pattern[pos:], pos)

    if stack:
        opened = stack[-1]
        kind = "if" if isinstance(opened, _If) else "for"
        raise TemplateSyntaxError(
            f"Unclosed '{kind}' block opened at position {opened.position}",
            position=opened.position,
        )

    return tuple(root)


def _depth(nodes) -> int:
    best = 0
    for node in nodes:
        if isinstance(node, _If):
            best = max(best, 1 + max(_depth(node.body), _depth(node.orelse)))
        elif isinstance(node, _For):
            best = max(best, 1 + _depth(node.body))
    return best


# ── Values ──────────────────────────────────────────────────────────


def lookup(scope: Mapping[str, Any], name: str) -> Any:
    """Resolve a dotted path. Returns MISSING when any segment is absent."""
    value: Any = scope
    for part in name.split("."):
        if isinstance(value, Mapping):
            if part not in value:
                return MISSING
            value = value[part]
        elif isinstance(value, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(value):
                return MISSING
            value = value[index]
        else:
            return MISSING
    return value


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def is_truthy(value: Any) -> bool:
    if value is MISSING:
        return False
    return bool(value)


@dataclass
class TemplateValidation:
    """Outcome of ``TemplateRenderer.validate``. Never raised."""

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    variables: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "variables": self.variables,
        }


# ── Renderer ────────────────────────────────────────────────────────


class TemplateRenderer:
    """Renders patterns against a variable bag.

    Args:
        cache: Render cache to use. A private cache is created when None
               and ``use_cache`` is true.
        use_cache: Disable caching entirely when False.
    """

    def __init__(self, cache: RenderCache | None = None, use_cache: bool = True) -> None:
        if cache is None and use_cache:
            cache = RenderCache()
        self.cache = cache

    def render(self, pattern: str, variables: Variables) -> RenderResult:
        """Render ``pattern``.

        Raises:
            TemplateSyntaxError: Unterminated or mismatched block markers.
        """
        start = time.perf_counter()

        if self.cache is not None:
            cached = self.cache.get(pattern, variables)
            if cached is not None:
                return RenderResult(
                    content=cached,
                    render_time_ms=(time.perf_counter() - start) * 1000,
                    cache_hit=True,
                )

        nodes = _parse(pattern)
        out: list[str] = []
        self._render_nodes(nodes, ChainMap(variables), out)
        content = "".join(out)

        if self.cache is not None:
            self.cache.put(pattern, variables, content)

        return RenderResult(
            content=content,
            render_time_ms=(time.perf_counter() - start) * 1000,
            cache_hit=False,
        )

    def render_string(self, pattern: str, variables: Variables) -> str:
        return self.render(pattern, variables).content

    def _render_nodes(self, nodes, scope: ChainMap, out: list[str]) -> None:
        for node in nodes:
            if isinstance(node, _Text):
                out.append(node.text)
            elif isinstance(node, _Var):
                if not _NAME_RE.match(node.name):
                    out.append(node.raw)
                    continue
                value = lookup(scope, node.name)
                out.append(node.raw if value is MISSING else format_value(value))
            elif isinstance(node, _If):
                truth = is_truthy(lookup(scope, node.expr))
                if node.negate:
                    truth = not truth
                self._render_nodes(node.body if truth else node.orelse, scope, out)
            elif isinstance(node, _For):
                items = lookup(scope, node.iterable)
                if not isinstance(items, (list, tuple)):
                    if items is not MISSING:
                        logger.debug("for over non-sequence %r; rendering nothing", node.iterable)
                    continue
                length = len(items)
                for index0, item in enumerate(items):
                    loop = {
                        "index": index0 + 1,
                        "index0": index0,
                        "first": index0 == 0,
                        "last": index0 == length - 1,
                        "length": length,
                    }
                    self._render_nodes(node.body, scope.new_child({node.target: item, "loop": loop}), out)

    # ── Conditions ──────────────────────────────────────────────────

    def evaluate_condition(self, expr: str, variables: Variables) -> bool:
        """Evaluate a file condition (``name``, ``a.b``, ``not a.b``).

        Raises:
            TemplateSyntaxError: The expression is not a dotted path.
        """
        name, negate = _parse_condition(expr, 0)
        truth = is_truthy(lookup(variables, name))
        return not truth if negate else truth

    # ── Introspection ───────────────────────────────────────────────

    def validate(self, pattern: str) -> TemplateValidation:
        """Check a pattern without rendering it. Reports, never raises."""
        result = TemplateValidation()
        try:
            nodes = _parse(pattern)
        except TemplateSyntaxError as e:
            result.valid = False
            result.errors.append(e.message)
            return result

        for raw, name in self._iter_var_tokens(nodes):
            if not _NAME_RE.match(name):
                result.errors.append(f"Invalid variable name in {raw!r}")

        depth = _depth(nodes)
        if depth > MAX_NESTING_DEPTH:
            result.warnings.append(
                f"Deep block nesting ({depth} levels, more than {MAX_NESTING_DEPTH})"
            )

        result.variables = self.get_template_variables(pattern)
        result.valid = not result.errors
        return result

    def _iter_var_tokens(self, nodes):
        for node in nodes:
            if isinstance(node, _Var):
                yield node.raw, node.name
            elif isinstance(node, _If):
                yield from self._iter_var_tokens(node.body)
                yield from self._iter_var_tokens(node.orelse)
            elif isinstance(node, _For):
                yield from self._iter_var_tokens(node.body)

    def get_template_variables(self, pattern: str) -> list[str]:
        """Names the pattern reads from the caller's bag, in first-use order.

        Loop-bound names (the for target and ``loop``) are excluded.

        Raises:
            TemplateSyntaxError: The pattern does not parse.
        """
        found: dict[str, None] = {}
        self._collect(_parse(pattern), frozenset(), found)
        return list(found)

    def _collect(self, nodes, bound: frozenset[str], found: dict[str, None]) -> None:
        def note(name: str) -> None:
            if _NAME_RE.match(name) and name.split(".", 1)[0] not in bound:
                found.setdefault(name, None)

        for node in nodes:
            if isinstance(node, _Var):
                note(node.name)
            elif isinstance(node, _If):
                note(node.expr)
                self._collect(node.body, bound, found)
                self._collect(node.orelse, bound, found)
            elif isinstance(node, _For):
                note(node.iterable)
                self._collect(node.body, bound | {node.target, "loop"}, found)

    def find_missing_variables(self, pattern: str, variables: Variables) -> list[str]:
        """Referenced names that do not resolve against ``variables``."""
        return [
            name for name in self.get_template_variables(pattern)
            if lookup(variables, name) is MISSING
        ]
