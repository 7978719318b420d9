"""Tokenizer-driven XML pretty-printer.

The formatter does not parse XML; it splits markup into CDATA, comment,
tag and text tokens and re-indents them by nesting depth. It is pure,
deterministic and never raises: any internal failure degrades to a
line-break-only layout.

Usage:
    from openxml_editor.formatting import format_xml

    format_xml("<a><b>hi</b></a>")  # '<a>\\n  <b>hi</b>\\n</a>'
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import NamedTuple

logger = logging.getLogger(__name__)

DEFAULT_INDENT = "  "

_BETWEEN_TAGS = re.compile(r">\s*<")

_CDATA_OPEN = "<![CDATA["
_CDATA_CLOSE = "]]>"
_COMMENT_OPEN = "<!--"
_COMMENT_CLOSE = "-->"


class TokenType(str, Enum):
    CDATA = "cdata"
    COMMENT = "comment"
    TAG = "tag"
    TEXT = "text"


class Token(NamedTuple):
    type: TokenType
    content: str


def tokenize(xml: str) -> list[Token]:
    """Split compacted markup into tokens.

    Unterminated CDATA sections and comments are tokenized by the tag
    rule; an unterminated tag is tokenized as text.
    """
    tokens: list[Token] = []
    i = 0
    length = len(xml)

    while i < length:
        if xml.startswith(_CDATA_OPEN, i):
            end = xml.find(_CDATA_CLOSE, i)
            if end != -1:
                end += len(_CDATA_CLOSE)
                tokens.append(Token(TokenType.CDATA, xml[i:end]))
                i = end
                continue

        if xml.startswith(_COMMENT_OPEN, i):
            end = xml.find(_COMMENT_CLOSE, i)
            if end != -1:
                end += len(_COMMENT_CLOSE)
                tokens.append(Token(TokenType.COMMENT, xml[i:end]))
                i = end
                continue

        if xml[i] == "<":
            end = xml.find(">", i)
            if end != -1:
                tokens.append(Token(TokenType.TAG, xml[i : end + 1]))
                i = end + 1
                continue
            # unterminated tag: the "<" itself starts a text run
            end = xml.find("<", i + 1)
        else:
            end = xml.find("<", i)

        if end == -1:
            end = length
        text = xml[i:end].strip()
        if text:
            tokens.append(Token(TokenType.TEXT, text))
        i = end

    return tokens


class XMLFormatter:
    """Re-indent XML text.

    Args:
        indent: String emitted once per nesting level.
    """

    def __init__(self, indent: str = DEFAULT_INDENT) -> None:
        self.indent = indent

    def format(self, xml: str) -> str:
        try:
            compact = _BETWEEN_TAGS.sub("><", xml.strip())
            tokens = tokenize(compact)
            logger.debug("Formatting %d chars, %d tokens", len(xml), len(tokens))
            return self._render(tokens)
        except Exception:
            logger.exception("XML formatting failed, using line-break fallback")
            return fallback_format(xml)

    def _render(self, tokens: list[Token]) -> str:
        lines: list[str] = []
        depth = 0
        index = 0
        count = len(tokens)

        while index < count:
            token = tokens[index]
            pad = self.indent * depth

            if token.type in (TokenType.CDATA, TokenType.COMMENT):
                lines.append(pad + token.content)
            elif token.type is TokenType.TEXT:
                lines.append(pad + token.content)
            else:
                tag = token.content
                if tag.startswith("<?") or tag.startswith("<!"):
                    lines.append(tag)
                elif tag.startswith("</"):
                    depth = max(0, depth - 1)
                    lines.append(self.indent * depth + tag)
                elif tag.endswith("/>"):
                    lines.append(pad + tag)
                elif _is_simple_element(tokens, index):
                    text, closing = tokens[index + 1], tokens[index + 2]
                    lines.append(pad + tag + text.content + closing.content)
                    index += 2
                else:
                    lines.append(pad + tag)
                    depth += 1
            index += 1

        return "\n".join(line.rstrip() for line in lines if line.strip())


def _is_simple_element(tokens: list[Token], index: int) -> bool:
    """Open tag followed by exactly one text token and a closing tag."""
    if index + 2 >= len(tokens):
        return False
    text, closing = tokens[index + 1], tokens[index + 2]
    return (
        text.type is TokenType.TEXT
        and closing.type is TokenType.TAG
        and closing.content.startswith("</")
    )


def fallback_format(xml: str) -> str:
    """Put every tag on its own line, trimmed, without indentation."""
    logger.warning("Using fallback XML formatting")
    lines = _BETWEEN_TAGS.sub(">\n<", xml).split("\n")
    return "\n".join(line.strip() for line in lines if line.strip())


def format_xml(xml: str, indent: str = DEFAULT_INDENT) -> str:
    """Format *xml* with ``XMLFormatter(indent)``."""
    return XMLFormatter(indent).format(xml)
