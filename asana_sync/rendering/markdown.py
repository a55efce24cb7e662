"""
Markdown conversion for Asana task descriptions.

Asana accepts two description formats: plain-text ``notes`` and a small HTML
dialect in ``html_notes``. PR bodies are GitHub-flavored markdown, often with
screenshots, collapsed ``<details>`` sections and template comments, none of
which survive well in Asana.

``sanitize_markdown`` keeps the markdown but removes what Asana cannot show.
``markdown_to_html`` renders with Python-Markdown and then reduces the output
to the tags Asana's rich text accepts.
"""

import re
from typing import Any

import markdown as markdown_lib
from markdown.extensions import Extension
from markdown.inlinepatterns import SimpleTagInlineProcessor

# Tags Asana rich text accepts; everything else is unwrapped
ALLOWED_TAGS = frozenset(
    {
        "body", "h1", "h2", "strong", "em", "u", "s", "code", "pre", "ol", "ul", "li",
        "a", "blockquote", "hr", "table", "tr", "td", "p", "br",
    }
)  # fmt: skip

# GitHub nests list items indented by two spaces
MARKDOWN_EXTENSIONS: list[Any] = ["tables", "fenced_code", "mdx_truly_sane_lists"]

LINKED_IMAGE_PATTERN = re.compile(r"\[!\[[^\]]*\]\([^)]*\)\]\([^)]*\)")
IMAGE_PATTERN = re.compile(r"!\[[^\]]*\]\([^)]*\)")
MARKDOWN_COMMENT_PATTERN = re.compile(r"^[ \t]*\[//\]:\s*#\s*(?:\([^)]*\)|\"[^\"]*\"|'[^']*')[ \t]*$", re.MULTILINE)
HTML_COMMENT_PATTERN = re.compile(r"<!--.*?-->", re.DOTALL)
DETAILS_PATTERN = re.compile(r"<details\b[^>]*>.*?</details>", re.DOTALL | re.IGNORECASE)
BR_PATTERN = re.compile(r"<br\s*/?>", re.IGNORECASE)
STRIKETHROUGH_PATTERN = r"(~{2})(?=\S)(.+?)(?<=\S)~{2}"

DROPPED_ELEMENT_PATTERN = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.DOTALL | re.IGNORECASE)
HEADING_PATTERN = re.compile(r"<(/?)h[3-6]\b[^>]*>", re.IGNORECASE)
TAG_PATTERN = re.compile(r"<(/?)([a-zA-Z][a-zA-Z0-9]*)\b([^>]*?)(/?)>")
HREF_PATTERN = re.compile(r"""\bhref\s*=\s*("[^"]*"|'[^']*')""", re.IGNORECASE)
SAFE_HREF_PATTERN = re.compile(r"^(?:https?|mailto):", re.IGNORECASE)
EMPTY_LINK_PATTERN = re.compile(r"<a\b[^>]*>\s*</a>")

# Renamed before the allowlist is applied
TAG_RENAMES = {"th": "td", "del": "s", "strike": "s", "b": "strong", "i": "em", "ins": "u"}


class StrikethroughExtension(Extension):
    """GitHub's ``~~text~~`` as ``<del>``, parsed after code spans."""

    def extendMarkdown(self, md: markdown_lib.Markdown) -> None:
        md.inlinePatterns.register(SimpleTagInlineProcessor(STRIKETHROUGH_PATTERN, "del"), "strikethrough", 40)


def _strip_images(text: str) -> str:
    text = LINKED_IMAGE_PATTERN.sub("", text)
    return IMAGE_PATTERN.sub("", text)


def sanitize_markdown(text: str | None) -> str:
    """Clean a markdown body for a plain-text task description.

    Removes images (standalone and link-wrapped), ``[//]: # (...)`` directives,
    HTML comments and ``<details>`` blocks including their content. ``<br>``
    becomes a newline, line endings are normalized, runs of spaces and blank
    lines are collapsed.

    Args:
        text: Markdown text

    Returns:
        Cleaned markdown, trimmed
    """
    if not text:
        return ""

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _strip_images(text)
    text = MARKDOWN_COMMENT_PATTERN.sub("", text)
    text = HTML_COMMENT_PATTERN.sub("", text)
    text = DETAILS_PATTERN.sub("", text)
    text = BR_PATTERN.sub("\n", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _rewrite_tag(match: re.Match[str]) -> str:
    closing, name, attributes, _ = match.groups()
    name = TAG_RENAMES.get(name.lower(), name.lower())

    if name not in ALLOWED_TAGS:
        return ""
    if closing:
        return f"</{name}>"
    if name == "br" or name == "hr":
        return f"<{name}/>"
    if name == "a":
        href = HREF_PATTERN.search(attributes)
        if href and SAFE_HREF_PATTERN.match(href.group(1)[1:-1].strip()):
            return f"<a href={href.group(1)}>"
    return f"<{name}>"


def markdown_to_html(text: str | None) -> str:
    """Convert markdown into the HTML subset Asana ``html_notes`` accept.

    Headings below ``h2`` are raised to ``h2``, tables lose their
    ``thead``/``tbody``/``th`` structure, images are dropped,
    ``<details>``/``<summary>`` are unwrapped and any other tag or attribute
    (except an http, https or mailto ``href`` on links) is removed. Code
    spans and blocks are kept verbatim.

    Args:
        text: Markdown text

    Returns:
        HTML fragment, empty for empty input
    """
    if not text or not text.strip():
        return ""

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = MARKDOWN_COMMENT_PATTERN.sub("", text)

    html = markdown_lib.markdown(
        text,
        extensions=[*MARKDOWN_EXTENSIONS, StrikethroughExtension()],
        output_format="html",
    )

    html = HTML_COMMENT_PATTERN.sub("", html)
    html = DROPPED_ELEMENT_PATTERN.sub("", html)
    html = HEADING_PATTERN.sub(r"<\1h2>", html)
    html = TAG_PATTERN.sub(_rewrite_tag, html)
    # Links that only wrapped an image
    html = EMPTY_LINK_PATTERN.sub("", html)
    html = re.sub(r"<p>\s*</p>", "", html)
    html = re.sub(r"\n{2,}", "\n", html)
    return html.strip()
