"""
Salvage JSON from imperfect LLM completions.

Small local models (and the occasional hosted one) wrap JSON in markdown
fences, add a sentence of preamble, leave trailing commas, forget to quote
keys, or get cut off at the token limit. ``salvage`` applies a fixed
sequence of textual repairs and returns best-effort JSON text.

Repairs, in order:
1. Strip leading/trailing markdown code fences
2. Strip ``//`` and ``/* */`` comments outside string literals
3. Drop a stray character glued to the front of a quoted key (``{ X"name": ...}``),
   outside string literals
4. Discard everything before the first ``{`` or ``[``
5. Cut at the matching close bracket, or close a truncated structure
6. Remove trailing commas
7. Quote bare keys
8. Convert single-quoted strings to double-quoted
9. Escape raw newlines/tabs inside strings

Steps 2, 3, 6 and 7 only touch text outside string literals and steps 8
and 9 only text inside them, so already-valid JSON comes back unchanged
apart from surrounding whitespace.
The function never raises; parsing the result is the caller's job.
"""

import re
from dataclasses import dataclass, field

_FENCE_OPEN = re.compile(r"^```[\w-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?[ \t]*```$")
_KEY_COLON = re.compile(r"\s*:")
_NOT_STRAY = frozenset("\"'{}[],:")
_DANGLING_FRAGMENT = re.compile(r""",\s*"[^"]*"?\s*:?\s*"?[^"]*$""")
_DANGLING_KEY = re.compile(r""""[^"]*"\s*:\s*$""")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_$][\w$]*)(\s*:)")

_CLOSERS = {"{": "}", "[": "]"}
_SINGLE_QUOTE_CONTEXT = frozenset(":[{,")
_RAW_CONTROL = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


@dataclass
class _Scan:
    """Result of walking a bracketed structure."""

    end: int | None  # index just past the matching close, None when truncated
    stack: list[str] = field(default_factory=list)
    quote: str | None = None  # open string delimiter at end of input
    escaped: bool = False  # input ended on a backslash inside a string


def salvage(raw: str) -> str:
    """
    Return the best-effort JSON text recoverable from ``raw``.

    Args:
        raw: Completion text as returned by the model

    Returns:
        Repaired JSON text. Empty input yields an empty string; input with no
        ``{`` or ``[`` is returned unchanged.
    """
    if not raw or not raw.strip():
        return ""

    text = _strip_fences(raw.strip())
    text = _strip_comments(text)
    text = _drop_stray_key_prefixes(text)

    start = _first_bracket(text)
    if start < 0:
        return raw

    text = _close_structure(text[start:])
    return _repair_segments(text)


def _strip_fences(text: str) -> str:
    text = _FENCE_OPEN.sub("", text, count=1)
    text = _FENCE_CLOSE.sub("", text, count=1)
    return text.strip()


def _opens_single_quote(text: str, index: int) -> bool:
    """A ``'`` only starts a string where a JSON key or value could begin."""
    j = index - 1
    while j >= 0 and text[j].isspace():
        j -= 1
    return j < 0 or text[j] in _SINGLE_QUOTE_CONTEXT


def _string_end(text: str, start: int) -> int:
    """Index just past the string literal opening at ``start`` (or len(text))."""
    quote = text[start]
    j = start + 1
    while j < len(text):
        if text[j] == "\\":
            j += 2
            continue
        if text[j] == quote:
            return j + 1
        j += 1
    return len(text)


def _strip_comments(text: str) -> str:
    out: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '"' or (ch == "'" and _opens_single_quote(text, i)):
            end = _string_end(text, i)
            out.append(text[i:end])
            i = end
        elif text.startswith("//", i):
            newline = text.find("\n", i)
            i = n if newline < 0 else newline
        elif text.startswith("/*", i):
            close = text.find("*/", i + 2)
            i = n if close < 0 else close + 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def _drop_stray_key_prefixes(text: str) -> str:
    """Remove one character wedged between ``{``/``,`` and a quoted key.

    Only characters outside string literals are candidates.
    """
    out: list[str] = []
    previous = ""  # last non-space character emitted outside a string
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '"' or (ch == "'" and _opens_single_quote(text, i)):
            end = _string_end(text, i)
            out.append(text[i:end])
            previous = ch
            i = end
            continue
        if (
            previous in ("{", ",")
            and not ch.isspace()
            and ch not in _NOT_STRAY
            and i + 1 < n
            and text[i + 1] == '"'
        ):
            key_end = _string_end(text, i + 1)
            if _KEY_COLON.match(text, key_end):
                i += 1
                continue
        out.append(ch)
        if not ch.isspace():
            previous = ch
        i += 1
    return "".join(out)


def _first_bracket(text: str) -> int:
    positions = [p for p in (text.find("{"), text.find("[")) if p >= 0]
    return min(positions) if positions else -1


def _scan_structure(text: str) -> _Scan:
    stack: list[str] = []
    quote: str | None = None
    escaped = False

    for i, ch in enumerate(text):
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue

        if ch == '"' or (ch == "'" and _opens_single_quote(text, i)):
            quote = ch
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in "}]":
            if stack:
                stack.pop()
            if not stack:
                return _Scan(end=i + 1)

    return _Scan(end=None, stack=stack, quote=quote, escaped=escaped)


def _close_structure(text: str) -> str:
    """Cut at the matching close bracket, or complete a truncated structure."""
    scan = _scan_structure(text)
    if scan.end is not None:
        return text[: scan.end]

    # Output was cut off: drop the half-written trailing member, then rescan
    trimmed = _DANGLING_FRAGMENT.sub("", text).rstrip()
    trimmed = _DANGLING_KEY.sub("", trimmed).rstrip()
    scan = _scan_structure(trimmed)
    if scan.end is not None:
        return trimmed[: scan.end]

    if scan.quote:
        if scan.escaped:
            trimmed = trimmed[:-1]
        trimmed += scan.quote

    return trimmed + "".join(_CLOSERS[opener] for opener in reversed(scan.stack))


def _tokenize(text: str) -> list[tuple[str, str]]:
    """Split text into ("code" | "string" | "single", chunk) pieces."""
    tokens: list[tuple[str, str]] = []
    code_start = 0
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == '"' or (ch == "'" and _opens_single_quote(text, i)):
            if i > code_start:
                tokens.append(("code", text[code_start:i]))
            end = _string_end(text, i)
            tokens.append(("string" if ch == '"' else "single", text[i:end]))
            i = code_start = end
            continue
        i += 1
    if code_start < len(text):
        tokens.append(("code", text[code_start:]))
    return tokens


def _single_to_double(literal: str) -> str:
    body = literal[1:-1] if len(literal) > 1 and literal.endswith("'") else literal[1:]
    out: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            nxt = body[i + 1]
            out.append("'" if nxt == "'" else ch + nxt)
            i += 2
            continue
        out.append('\\"' if ch == '"' else ch)
        i += 1
    return '"' + "".join(out) + '"'


def _escape_controls(literal: str) -> str:
    return "".join(_RAW_CONTROL.get(ch, ch) for ch in literal)


def _repair_segments(text: str) -> str:
    pieces: list[str] = []
    for kind, chunk in _tokenize(text):
        if kind == "code":
            chunk = _TRAILING_COMMA.sub(r"\1", chunk)
            chunk = _BARE_KEY.sub(r'\1"\2"\3', chunk)
        else:
            if kind == "single":
                chunk = _single_to_double(chunk)
            chunk = _escape_controls(chunk)
        pieces.append(chunk)
    return "".join(pieces)
