"""
HTML transformations for Help Scout message bodies.

Outbound: ``format_reply_html`` rewrites authored HTML into the manually
spaced block markup the Help Scout web client renders well. Each pass is a
named step so the ordering stays visible and testable.

Inbound: ``strip_html`` and ``clean_beacon_form`` turn stored thread bodies
into readable plain text for transcripts and summaries.
"""

import re
from typing import Callable, List, Optional

REDACTED_BODY = "[Content hidden - set REDACT_MESSAGE_CONTENT=false to view]"

_FLAGS = re.IGNORECASE
BR = r"<br\s*/?>"

_PRE_RE = re.compile(r"<pre[^>]*>(?:\s*<code[^>]*>)?([\s\S]*?)(?:</code>\s*)?</pre>", _FLAGS)
_BARE_CODE_RE = re.compile(r"<code(?![^>]*\bclass\s*=)([^>]*)>", _FLAGS)
_P_OPEN_RE = re.compile(r"<p\b[^>]*>", _FLAGS)
_P_CLOSE_RE = re.compile(r"</p\s*>", _FLAGS)
_BREAKS_BEFORE_BLOCK_RE = re.compile(rf"(?:{BR}\s*)+(<(?:ul|ol|div)\b[^>]*>)", _FLAGS)
_BREAKS_BEFORE_QUOTE_RE = re.compile(rf"(?:{BR}\s*)+(<blockquote\b[^>]*>)", _FLAGS)
_BLOCK_END_RE = re.compile(rf"(</(?:ul|ol|blockquote|div)\s*>)\s*(?:{BR}\s*)*", _FLAGS)
_TRAILING_BREAKS_RE = re.compile(rf"(?:\s*{BR})+\s*$", _FLAGS)


def convert_pre_blocks(html: str) -> str:
    """``<pre>`` (optionally wrapping ``<code>``) becomes a ``<div>`` with ``<br>`` line breaks."""
    def _replace(match: "re.Match[str]") -> str:
        content = match.group(1).replace("\r\n", "\n").strip("\n")
        return "<div>" + content.replace("\n", "<br>") + "</div>"

    return _PRE_RE.sub(_replace, html)


def mark_inline_code(html: str) -> str:
    """Give class-less ``<code>`` the ``inline-code`` class; classed code is untouched."""
    return _BARE_CODE_RE.sub(r'<code class="inline-code"\1>', html)


def convert_paragraphs(html: str) -> str:
    html = _P_OPEN_RE.sub("", html)
    return _P_CLOSE_RE.sub("<br><br>", html)


def collapse_breaks_before_blocks(html: str) -> str:
    return _BREAKS_BEFORE_BLOCK_RE.sub(r"\1", html)


def space_blockquotes(html: str, compact: bool) -> str:
    """An existing run of breaks before a quote becomes one gap (relaxed) or none (compact)."""
    return _BREAKS_BEFORE_QUOTE_RE.sub(r"\1" if compact else r"<br><br>\1", html)


def space_block_ends(html: str, compact: bool) -> str:
    return _BLOCK_END_RE.sub(r"\1" if compact else r"\1<br>", html)


def strip_trailing_breaks(html: str) -> str:
    return _TRAILING_BREAKS_RE.sub("", html)


def format_reply_html(html: str, compact: bool = False) -> str:
    """
    Rewrite authored HTML for Help Scout's reply renderer.

    Args:
        html: Reply body as written by the caller
        compact: Use tight spacing around block elements instead of relaxed

    Returns:
        Rewritten HTML; running it again on its own output is stable
    """
    if not html:
        return html

    steps: List[Callable[[str], str]] = [
        convert_pre_blocks,
        mark_inline_code,
        convert_paragraphs,
        collapse_breaks_before_blocks,
        lambda h: space_blockquotes(h, compact),
        lambda h: space_block_ends(h, compact),
        strip_trailing_breaks,
    ]
    for step in steps:
        html = step(html)
    return html.strip()


# -- inbound bodies --

_ENTITIES = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&#x27;", "'"),
    ("&amp;", "&"),
)


def strip_html(html: Optional[str]) -> str:
    """Reduce an HTML body to readable text with paragraph breaks preserved."""
    if not html:
        return ""
    text = re.sub(BR, "\n", html, flags=_FLAGS)
    text = re.sub(r"</(?:p|div|li|tr|h[1-6])\s*>", "\n", text, flags=_FLAGS)
    text = re.sub(r"<(?:script|style)\b[\s\S]*?</(?:script|style)\s*>", "", text, flags=_FLAGS)
    text = re.sub(r"<[^>]+>", "", text)
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", " ")
    text = re.sub(r" {2,}", " ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


_BEACON_MARKER_RE = re.compile(r'bgcolor="#EAEAEA"', _FLAGS)
_BEACON_LINK_RE = re.compile(r'<a[^>]+href="([^"]+)"[^>]*>\s*View Full Ticket\s*</a>', _FLAGS)
_BEACON_HIDDEN_RE = re.compile(r'<span[^>]*style="display:\s*none;?"[^>]*>([\s\S]*?)</span>', _FLAGS)
_TABLE_CELL_RE = re.compile(r"<td[^>]*>([\s\S]*?)</td>", _FLAGS)


def clean_beacon_form(html: Optional[str]) -> Optional[str]:
    """
    Extract the customer's message from a Beacon contact-form email.

    Beacon forms arrive as a layout table; the message sits in a hidden span
    or, failing that, the last answer cell. The "View Full Ticket" link is
    kept as a source line.
    """
    if not html or not _BEACON_MARKER_RE.search(html):
        return html

    link = _BEACON_LINK_RE.search(html)
    hidden = _BEACON_HIDDEN_RE.search(html)
    if hidden and hidden.group(1).strip():
        message = hidden.group(1).strip()
    else:
        cells = [c.strip() for c in _TABLE_CELL_RE.findall(html) if strip_html(c)]
        if not cells:
            return html
        message = cells[-1]

    if link:
        message += f"<br>\n<br>\nSource: {link.group(1)}"
    return message


def body_text(html: Optional[str], allow_pii: bool) -> str:
    """Readable text of a thread body under the PII policy."""
    if not allow_pii:
        return REDACTED_BODY
    return strip_html(clean_beacon_form(html))
