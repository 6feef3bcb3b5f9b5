"""
Parser for tool-call expressions embedded in model output.

Grammar:

    call   := name '(' [ arg ( ',' arg )* [ ',' ] ] ')'
    arg    := key '=' '"' value '"'
    name   := [A-Za-z_] [A-Za-z0-9_:-]*
    key    := [A-Za-z_] [A-Za-z0-9_]*
    value  := any characters except an unescaped '"'   (\\" \\\\ \\n \\t escapes)

Whitespace is allowed around '=', ',' and the parentheses, but not between
the name and '('. If the text contains ```tool_code fenced blocks, only
those blocks are scanned; otherwise the whole text is, but there a call
needs at least one argument so that prose such as "run `reset()`" is not
taken for a call. Anything that does not match the grammar (unquoted
values, unterminated strings, non-string arguments) is not a call and is
skipped.
"""

from __future__ import annotations

from dataclasses import dataclass, field

FENCE_OPEN = "```tool_code"
FENCE_CLOSE = "```"

_ESCAPES = {'"': '"', "\\": "\\", "n": "\n", "t": "\t"}


@dataclass(frozen=True)
class ToolCall:
    """One parsed call: a tool name plus string arguments."""
    name: str
    arguments: dict[str, str] = field(default_factory=dict)

    @property
    def expression(self) -> str:
        args = ", ".join(f"{k}={_quote(v)}" for k, v in self.arguments.items())
        return f"{self.name}({args})"


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def parse_tool_calls(text: str | None) -> list[ToolCall]:
    """Return every tool call in ``text``, in the order they appear."""
    if not text:
        return []
    regions = _fenced_regions(text)
    if not regions:
        return [call for call in _Scanner(text).calls() if call.arguments]
    calls: list[ToolCall] = []
    for region in regions:
        calls.extend(_Scanner(region).calls())
    return calls


def _fenced_regions(text: str) -> list[str]:
    regions = []
    pos = 0
    while True:
        start = text.find(FENCE_OPEN, pos)
        if start < 0:
            break
        body = start + len(FENCE_OPEN)
        end = text.find(FENCE_CLOSE, body)
        if end < 0:
            regions.append(text[body:])
            break
        regions.append(text[body:end])
        pos = end + len(FENCE_CLOSE)
    return regions


def _is_name_start(ch: str) -> bool:
    return ch.isascii() and (ch.isalpha() or ch == "_")


def _is_name_char(ch: str) -> bool:
    return ch.isascii() and (ch.isalnum() or ch in "_:-")


def _is_key_char(ch: str) -> bool:
    return ch.isascii() and (ch.isalnum() or ch == "_")


class _ParseError(Exception):
    pass


class _Scanner:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def calls(self) -> list[ToolCall]:
        found = []
        i = 0
        n = len(self.text)
        while i < n:
            if _is_name_start(self.text[i]) and (i == 0 or not _is_name_char(self.text[i - 1])):
                self.pos = i
                try:
                    found.append(self._call())
                    i = self.pos
                    continue
                except _ParseError:
                    pass
            i += 1
        return found

    # ── grammar ───────────────────────────────────────────────

    def _call(self) -> ToolCall:
        name = self._word(_is_name_char)
        self._expect("(")
        arguments: dict[str, str] = {}
        self._skip_ws()
        if self._peek() == ")":
            self.pos += 1
            return ToolCall(name, arguments)

        while True:
            key = self._key()
            self._skip_ws()
            self._expect("=")
            self._skip_ws()
            arguments[key] = self._string()
            self._skip_ws()
            ch = self._peek()
            if ch == ",":
                self.pos += 1
                self._skip_ws()
                if self._peek() == ")":
                    self.pos += 1
                    return ToolCall(name, arguments)
                continue
            if ch == ")":
                self.pos += 1
                return ToolCall(name, arguments)
            raise _ParseError(f"expected ',' or ')' at {self.pos}")

    def _key(self) -> str:
        if not _is_name_start(self._peek()):
            raise _ParseError(f"expected argument name at {self.pos}")
        return self._word(_is_key_char)

    def _string(self) -> str:
        self._expect('"')
        out = []
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch == '"':
                self.pos += 1
                return "".join(out)
            if ch == "\\" and self.pos + 1 < len(text):
                nxt = text[self.pos + 1]
                out.append(_ESCAPES.get(nxt, "\\" + nxt))
                self.pos += 2
                continue
            out.append(ch)
            self.pos += 1
        raise _ParseError("unterminated string")

    # ── helpers ───────────────────────────────────────────────

    def _word(self, accept) -> str:
        start = self.pos
        while self.pos < len(self.text) and accept(self.text[self.pos]):
            self.pos += 1
        return self.text[start:self.pos]

    def _peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def _expect(self, ch: str) -> None:
        if self._peek() != ch:
            raise _ParseError(f"expected {ch!r} at {self.pos}")
        self.pos += 1

    def _skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1
