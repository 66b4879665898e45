"""Turn captured agent output into Telegram MarkdownV2 reply chunks."""

from __future__ import annotations

import re

TELEGRAM_MAX_MESSAGE_LENGTH = 4096

_FENCE = "```"
_RESERVED = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")

_FENCE_OPEN = re.compile(r"^\s*```\s*([\w+#.-]*)\s*$")
_FENCE_CLOSE = re.compile(r"^\s*```\s*$")
_QUOTE = re.compile(r"^\s*(?:\*\*)?>+\s?(.*)$")
_HEADING = re.compile(r"^\s{0,3}#{1,6}\s+(.*?)\s*#*\s*$")
_RULE = re.compile(r"^\s*([-*_])(?:\s*\1){2,}\s*$")
_LIST_ITEM = re.compile(r"^(\s*)[-*+]\s+(.*)$")
_HEADING_STRONG = re.compile(r"\*\*(.+?)\*\*")

_INLINE = re.compile(
    r"(?P<code>`(?P<code_body>[^`\n]+)`)"
    r"|(?P<link>\[(?P<label>[^\]\n]+)\]\((?P<url>[^)\s]+)\))"
    r"|\*\*(?P<strong>\S(?:.*?\S)?)\*\*"
    r"|__(?P<ustrong>\S(?:.*?\S)?)__"
    r"|~~(?P<strike>\S(?:.*?\S)?)~~"
    r"|\*(?P<em>[^*\s](?:[^*\n]*?[^*\s])?)\*"
    r"|(?<![A-Za-z0-9])_(?P<uem>[^_\s](?:[^_\n]*?[^_\s])?)_(?![A-Za-z0-9])",
)


def extract_output(raw: str) -> str:
    """Strip the queue's command-echo header and status footer.

    Assumes the queue wraps output in exactly one leading and one trailing
    line; output of one or two lines is returned as is (trimmed).
    """

    text = raw.strip()
    first_nl = text.find("\n")
    last_nl = text.rfind("\n")
    if first_nl != -1 and first_nl != last_nl:
        return text[first_nl + 1 : last_nl].strip()
    return text


def escape_markdown_v2(text: str) -> str:
    """Translate agent markdown into Telegram MarkdownV2.

    Emphasis is mapped between dialects (``**b**`` -> ``*b*``, ``*i*`` ->
    ``_i_``), quotes collapse to a ``> `` prefix and code keeps its content.
    Everything else that MarkdownV2 reserves is backslash-escaped.
    """

    lines = text.split("\n")
    out: list[str] = []
    index = 0
    while index < len(lines):
        fence = _FENCE_OPEN.match(lines[index])
        if fence is None:
            out.append(_render_line(lines[index]))
            index += 1
            continue

        body: list[str] = []
        index += 1
        while index < len(lines) and not _FENCE_CLOSE.match(lines[index]):
            body.append(lines[index])
            index += 1
        index += 1
        while out and not out[-1].strip():
            out.pop()
        code = _escape_code("\n".join(body).strip("\n"))
        out.append(f"```{fence.group(1)}\n{code}\n```" if code else f"```{fence.group(1)}\n```")
        while index < len(lines) and not lines[index].strip():
            index += 1
    return "\n".join(out)


def split_message(text: str, limit: int = TELEGRAM_MAX_MESSAGE_LENGTH) -> list[str]:
    """Cut escaped text into trimmed, non-empty chunks of at most ``limit`` characters.

    Each chunk stays valid MarkdownV2 on its own: a cut never separates a
    backslash from the character it escapes, and a code block cut in two is
    closed at the end of one chunk and reopened, with its language tag, at
    the start of the next.
    """

    chunks: list[str] = []
    remaining = text.strip()
    while len(remaining) > limit:
        chunk, remaining = _cut(remaining, limit)
        if chunk:
            chunks.append(chunk)
    if remaining:
        chunks.append(remaining)
    return chunks


def escape_text(text: str) -> str:
    return _RESERVED.sub(r"\\\1", text)


def _render_line(line: str) -> str:
    if not line.strip():
        return ""

    quote = _QUOTE.match(line)
    if quote:
        content = quote.group(1).rstrip()
        if content.endswith("||"):
            content = content[:-2].rstrip()
        return f"> {_render_inline(content)}" if content else ">"

    heading = _HEADING.match(line)
    if heading:
        content = _HEADING_STRONG.sub(r"\1", heading.group(1))
        return f"*{_render_inline(content)}*" if content else ""

    if _RULE.match(line):
        return escape_text(line.strip())

    item = _LIST_ITEM.match(line)
    if item:
        return f"{item.group(1)}• {_render_inline(item.group(2))}"

    return _render_inline(line)


def _cut(text: str, limit: int) -> tuple[str, str]:
    # A chunk that starts with a reopened fence must keep at least one code line.
    floor = text.find("\n") + 1 if text.startswith(_FENCE) else 0
    split_at = _cut_point(text, limit, floor)
    if _open_fence(text[:split_at]) is None:
        return text[:split_at].strip(), text[split_at:].strip()

    split_at = _cut_point(text, limit - len(_FENCE) - 1, floor)
    fence = _open_fence(text[:split_at])
    if fence is None:
        return text[:split_at].strip(), text[split_at:].strip()

    chunk = f"{text[:split_at].rstrip()}\n{_FENCE}"
    rest = text[split_at:].lstrip("\n")
    first_line, _, after = rest.partition("\n")
    if first_line.strip() == _FENCE:
        return chunk, after.strip()
    return chunk, f"{fence}\n{rest}".rstrip()


def _cut_point(text: str, limit: int, floor: int = 0) -> int:
    split_at = text.rfind("\n", floor + 1, limit + 1)
    if split_at != -1:
        return split_at
    split_at = limit
    head = text[:split_at]
    if (len(head) - len(head.rstrip("\\"))) % 2:
        split_at -= 1
    return split_at


def _open_fence(text: str) -> str | None:
    """Opening line of the code block still open at the end of ``text``."""

    opener: str | None = None
    for line in text.split("\n"):
        if line.startswith(_FENCE):
            opener = line.strip() if opener is None else None
    return opener


def _render_inline(text: str) -> str:
    rendered = ""
    position = 0
    for match in _INLINE.finditer(text):
        rendered = _join_spans(rendered, escape_text(text[position : match.start()]))
        rendered = _join_spans(rendered, _render_span(match))
        position = match.end()
    return _join_spans(rendered, escape_text(text[position:]))


def _join_spans(left: str, right: str) -> str:
    # "__" is always read as underline; "\r" separates adjacent italic markers.
    if right.startswith("_") and left.endswith("_"):
        body = left[:-1]
        if (len(body) - len(body.rstrip("\\"))) % 2 == 0:
            return f"{left}\r{right}"
    return left + right


def _render_span(match: re.Match[str]) -> str:
    if match.group("code") is not None:
        return f"`{_escape_code(match.group('code_body'))}`"
    if match.group("link") is not None:
        label = _render_inline(match.group("label"))
        return f"[{label}]({_escape_url(match.group('url'))})"
    strong = match.group("strong") or match.group("ustrong")
    if strong is not None:
        return f"*{_render_inline(strong)}*"
    if match.group("strike") is not None:
        return f"~{_render_inline(match.group('strike'))}~"
    emphasis = match.group("em") or match.group("uem")
    return f"_{_render_inline(emphasis)}_"


def _escape_code(text: str) -> str:
    return text.replace("\\", "\\\\").replace("`", "\\`")


def _escape_url(url: str) -> str:
    return url.replace("\\", "\\\\").replace(")", "\\)")
