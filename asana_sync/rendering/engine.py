"""Sandboxed template evaluation for rule templates.

Rule templates use mustache syntax, the notation users already know from
GitHub Action and Asana docs::

    PR #{{pr.number}}: {{clean_title pr.title}}
    {{extract_from_body "BUILD-(\\d+)"}}
    {{#each tasks}}- {{name}} ({{#if success}}ok{{else}}failed{{/if}}){{/each}}

Each template is translated once into Jinja2 source and rendered by a
``SandboxedEnvironment``, so templates get Jinja2's sandboxing while authors
keep the mustache notation.

Rendering rules:
    - No escaping: output is plain text/HTML exactly as authored.
    - Missing properties render as empty strings (``ChainableUndefined``).
    - ``true``/``false`` for booleans, ``""`` for null, comma-joined lists.
    - :func:`evaluate_template` never raises; failures are logged and yield
      an empty string.

Supported syntax:
    - ``{{path.to.field}}``, ``{{{path}}}``, ``{{this}}``, ``{{../path}}``,
      ``{{@root.path}}``, ``{{@index}}``, ``{{@first}}``, ``{{@last}}``
    - ``{{helper arg ...}}`` with string, number, boolean, path, and
      parenthesized sub-expression arguments
    - ``{{#if}}``, ``{{#unless}}``, ``{{#each}}``, ``{{#with}}`` blocks with
      ``{{else}}`` / ``{{else if ...}}``
    - ``{{! comment }}`` and ``{{!-- comment --}}``

Key Exports:
    TemplateEngine: Compiles and renders templates with a helper registry.
    evaluate_template: Render with the default engine, never raising.
"""

import json
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog
from jinja2 import ChainableUndefined, Template, Undefined
from jinja2 import TemplateError as JinjaTemplateError
from jinja2.sandbox import SandboxedEnvironment

from asana_sync.exceptions import TemplateError
from asana_sync.rendering.helpers import HELPERS

log = structlog.get_logger(__name__)

MUSTACHE_PATTERN = re.compile(
    r"\{\{!--(?P<long_comment>.*?)--\}\}"
    r"|\{\{\{(?P<triple>.*?)\}\}\}"
    r"|\{\{(?P<double>.*?)\}\}",
    re.DOTALL,
)

EXPRESSION_TOKEN_PATTERN = re.compile(
    r"""\s*(?:
        (?P<lparen>\()
        |(?P<rparen>\))
        |(?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
        |(?P<number>-?\d+(?:\.\d+)?)(?=[\s)]|$)
        |(?P<word>[^\s()"']+)
    )""",
    re.VERBOSE | re.DOTALL,
)

# Characters a mustache identifier may not contain
IDENTIFIER_PATTERN = re.compile(r"^[^\s!\"#%&'()*+,./;<=>@\[\\\]^`{|}~]+$")

JINJA_DELIMITERS = ("{{", "{%", "{#")

LITERALS = {"true": "true", "false": "false", "null": "none", "undefined": "none"}

BLOCK_HELPERS = ("if", "unless", "each", "with")


def _finalize(value: Any) -> Any:
    """Render values the way mustache templates print them."""
    if value is None or isinstance(value, Undefined) or callable(value):
        return ""
    # Objects have no text form
    if isinstance(value, Mapping):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(_finalize(item)) for item in value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return value


def _each(value: Any) -> Iterable[Any]:
    """Iterable for ``{{#each}}``: list items, or mapping values."""
    if value is None or isinstance(value, Undefined):
        return ()
    if isinstance(value, dict):
        return list(value.values())
    if isinstance(value, (list, tuple)):
        return value
    return ()


def _jinja_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _unquote(token: str) -> str:
    quote = token[0]
    return token[1:-1].replace(f"\\{quote}", quote)


@dataclass
class _Block:
    helper: str
    scope: str | None = None


class _Translator:
    """Translate one mustache template into Jinja2 source."""

    def __init__(self, source: str, helpers: dict[str, Callable[..., Any]]) -> None:
        self.source = source
        self.helpers = helpers
        self.blocks: list[_Block] = []
        self.scopes: list[str] = []
        self.counter = 0
        self.output: list[str] = []

    def translate(self) -> str:
        position = 0
        for match in MUSTACHE_PATTERN.finditer(self.source):
            self._text(self.source[position : match.start()])
            position = match.end()

            if match.group("long_comment") is not None:
                continue
            if match.group("triple") is not None:
                self.output.append("{{ " + self._expression(match.group("triple")) + " }}")
                continue
            self._tag(match.group("double"))

        self._text(self.source[position:])

        if self.blocks:
            raise TemplateError(f"Unclosed block: {{{{#{self.blocks[-1].helper}}}}}")
        return "".join(self.output)

    def _text(self, text: str) -> None:
        if not text:
            return
        if "{{" in text:
            raise TemplateError("Unclosed mustache '{{'")
        if any(delimiter in text for delimiter in JINJA_DELIMITERS):
            self.output.append("{{ " + _jinja_string(text) + " }}")
        else:
            self.output.append(text)

    def _tag(self, body: str) -> None:
        body = body.strip().strip("~").strip()
        if not body:
            raise TemplateError("Empty mustache '{{}}'")

        if body.startswith("!"):
            return
        if body.startswith("#"):
            self._open_block(body[1:].strip())
        elif body.startswith("/"):
            self._close_block(body[1:].strip())
        elif body == "else" or body == "^":
            self._else()
        elif body.startswith("else "):
            self._else_chain(body[len("else ") :].strip())
        else:
            self.output.append("{{ " + self._expression(body) + " }}")

    def _open_block(self, body: str) -> None:
        helper, _, rest = body.partition(" ")
        rest = rest.strip()
        if helper not in BLOCK_HELPERS:
            raise TemplateError(f"Unsupported block helper: #{helper}")
        if not rest:
            raise TemplateError(f"#{helper} requires an argument")

        expression = self._expression(rest)
        if helper == "if":
            self.output.append("{% if " + expression + " %}")
            self.blocks.append(_Block("if"))
        elif helper == "unless":
            self.output.append("{% if not (" + expression + ") %}")
            self.blocks.append(_Block("unless"))
        else:
            self.counter += 1
            scope = f"_scope{self.counter}"
            if helper == "each":
                self.output.append("{% for " + scope + " in _each(" + expression + ") %}")
            else:
                self.output.append("{% with " + scope + " = " + expression + " %}")
            self.blocks.append(_Block(helper, scope))
            self.scopes.append(scope)

    def _close_block(self, helper: str) -> None:
        if not self.blocks:
            raise TemplateError(f"Unexpected closing block: /{helper}")
        block = self.blocks.pop()
        if block.helper != helper:
            raise TemplateError(f"{{{{#{block.helper}}}}} closed by {{{{/{helper}}}}}")

        if block.scope is not None:
            self.scopes.pop()
        if helper == "each":
            self.output.append("{% endfor %}")
        elif helper == "with":
            self.output.append("{% endwith %}")
        else:
            self.output.append("{% endif %}")

    def _else(self) -> None:
        if not self.blocks or self.blocks[-1].helper == "with":
            raise TemplateError("{{else}} outside of #if/#unless/#each")
        self.output.append("{% else %}")

    def _else_chain(self, body: str) -> None:
        helper, _, rest = body.partition(" ")
        if not self.blocks or self.blocks[-1].helper not in ("if", "unless") or helper not in ("if", "unless"):
            raise TemplateError(f"Unsupported else clause: {{{{else {body}}}}}")
        expression = self._expression(rest.strip())
        if helper == "unless":
            expression = f"not ({expression})"
        self.output.append("{% elif " + expression + " %}")

    def _expression(self, body: str) -> str:
        tokens = self._tokenize(body)
        expression, position = self._call(tokens, 0)
        if position != len(tokens):
            raise TemplateError(f"Unexpected token in expression: {body!r}")
        return expression

    def _tokenize(self, body: str) -> list[tuple[str, str]]:
        tokens: list[tuple[str, str]] = []
        position = 0
        body = body.strip()
        while position < len(body):
            match = EXPRESSION_TOKEN_PATTERN.match(body, position)
            if match is None or match.end() == position:
                raise TemplateError(f"Cannot parse expression: {body!r}")
            kind = match.lastgroup
            assert kind is not None
            tokens.append((kind, match.group(kind)))
            position = match.end()
            while position < len(body) and body[position].isspace():
                position += 1
        if not tokens:
            raise TemplateError("Empty expression")
        return tokens

    def _call(self, tokens: list[tuple[str, str]], position: int) -> tuple[str, int]:
        """Parse ``name arg*`` until a closing parenthesis or the end."""
        kind, value = tokens[position]
        end = len(tokens)
        # Find the extent of this call: stop at the matching rparen
        depth = 0
        for index in range(position, len(tokens)):
            if tokens[index][0] == "lparen":
                depth += 1
            elif tokens[index][0] == "rparen":
                if depth == 0:
                    end = index
                    break
                depth -= 1

        if kind == "word" and value in self.helpers:
            args: list[str] = []
            position += 1
            while position < end:
                arg, position = self._argument(tokens, position)
                args.append(arg)
            call_args = ", ".join(["_root", *args])
            return f'_helpers["{value}"]({call_args})', position

        expression, position = self._argument(tokens, position)
        if position != end:
            if kind == "word":
                raise TemplateError(f"Missing helper: {value}")
            raise TemplateError("Only helpers accept arguments")
        return expression, position

    def _argument(self, tokens: list[tuple[str, str]], position: int) -> tuple[str, int]:
        kind, value = tokens[position]
        if kind == "lparen":
            if position + 1 >= len(tokens) or tokens[position + 1][0] == "rparen":
                raise TemplateError("Empty sub-expression")
            expression, position = self._call(tokens, position + 1)
            if position >= len(tokens) or tokens[position][0] != "rparen":
                raise TemplateError("Unclosed sub-expression")
            return expression, position + 1
        if kind == "rparen":
            raise TemplateError("Unexpected ')'")
        if kind == "string":
            return _jinja_string(_unquote(value)), position + 1
        if kind == "number":
            return value, position + 1
        if value in LITERALS:
            return LITERALS[value], position + 1
        return self._path(value), position + 1

    def _path(self, path: str) -> str:
        if path.startswith("@"):
            return self._data_variable(path)

        # -1 addresses the root context
        scope_index = len(self.scopes) - 1
        while path.startswith("../"):
            path = path[3:]
            scope_index = max(scope_index - 1, -1)
        base = self.scopes[scope_index] if scope_index >= 0 else "_root"

        if path in ("this", "."):
            return base
        for prefix in ("this.", "this/", "./"):
            if path.startswith(prefix):
                path = path[len(prefix) :]
                break

        return base + self._segments(path)

    def _data_variable(self, path: str) -> str:
        if path.startswith("@root"):
            rest = path[len("@root") :].lstrip("./")
            return "_root" + (self._segments(rest) if rest else "")
        if not any(block.helper == "each" for block in self.blocks):
            raise TemplateError(f"{path} is only available inside {{{{#each}}}}")
        if path == "@index":
            return "loop.index0"
        if path == "@first":
            return "loop.first"
        if path == "@last":
            return "loop.last"
        raise TemplateError(f"Unsupported data variable: {path}")

    @staticmethod
    def _segments(path: str) -> str:
        rendered = []
        for segment in re.split(r"[./]", path):
            if segment.startswith("[") and segment.endswith("]"):
                segment = segment[1:-1]
            elif not IDENTIFIER_PATTERN.match(segment):
                raise TemplateError(f"Invalid path segment {segment!r}")
            if segment.isdigit():
                rendered.append(f"[{segment}]")
            else:
                rendered.append(f"[{_jinja_string(segment)}]")
        return "".join(rendered)


class TemplateEngine:
    """Compiles mustache rule templates into sandboxed Jinja2 templates.

    Compiled templates are cached per source string; a run evaluates the same
    handful of templates against one context, and tests reuse templates
    across many contexts.

    Example:
        >>> engine = TemplateEngine()
        >>> engine.render("PR #{{pr.number}}", {"pr": {"number": 7}})
        'PR #7'
    """

    def __init__(self, helpers: dict[str, Callable[..., Any]] | None = None) -> None:
        self.env = SandboxedEnvironment(
            undefined=ChainableUndefined,
            autoescape=False,
            keep_trailing_newline=True,
            finalize=_finalize,
        )
        self.helpers: dict[str, Callable[..., Any]] = dict(HELPERS if helpers is None else helpers)
        self._cache: dict[str, Template] = {}

    def register_helper(self, name: str, func: Callable[..., Any]) -> None:
        """Register a helper callable.

        Helpers receive the root template context first, then the template
        arguments.
        """
        if not IDENTIFIER_PATTERN.match(name):
            raise ValueError(f"Invalid helper name: {name!r}")
        self.helpers[name] = func
        self._cache.clear()

    def translate(self, template: str) -> str:
        """Translate a mustache template into Jinja2 source.

        Raises:
            TemplateError: If the template is malformed.
        """
        return _Translator(template, self.helpers).translate()

    def compile(self, template: str) -> Template:
        """Compile a template, using the cache when possible.

        Raises:
            TemplateError: If the template is malformed.
            jinja2.TemplateSyntaxError: If the translated source is invalid.
        """
        compiled = self._cache.get(template)
        if compiled is None:
            compiled = self.env.from_string(self.translate(template))
            self._cache[template] = compiled
        return compiled

    def render(self, template: str, context: dict[str, Any]) -> str:
        """Render a template, raising on failure."""
        if not template:
            return ""
        compiled = self.compile(template)
        return compiled.render(_root=context, _helpers=self.helpers, _each=_each)

    def evaluate(self, template: str, context: dict[str, Any]) -> str:
        """Render a template, returning an empty string on any failure.

        Errors are logged with the template and context at debug level so
        that a broken rule can be diagnosed from the workflow log.
        """
        try:
            return self.render(template, context)
        except (TemplateError, JinjaTemplateError) as e:
            log.error("template_evaluation_failed", error=str(e))
        except Exception as e:
            log.error("template_evaluation_failed", error=f"{type(e).__name__}: {e}")

        log.debug("template_evaluation_template", template=template)
        log.debug("template_evaluation_context", context=json.dumps(context, default=str, indent=2))
        return ""


_default_engine = TemplateEngine()


def evaluate_template(template: str, context: dict[str, Any]) -> str:
    """Evaluate a template against a context with the default engine.

    Args:
        template: Mustache template (e.g. ``"Build-{{pr.number}}"``)
        context: Template context (see ``asana_sync.rules.context``)

    Returns:
        The rendered string, or an empty string if evaluation fails
    """
    return _default_engine.evaluate(template, context)
