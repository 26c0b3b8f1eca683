"""
Permissive streaming XML parser with a restricted path-query layer.

The tokenizer walks the document once and pushes open-tag, text and close-tag
events into a tree builder. It is deliberately forgiving: device description
documents in the wild are not always well formed, so a closing tag that does
not match the currently open element is ignored instead of rejected.

Supported query pattern:

    /foo/bar  - every "bar" that is a direct child of a top-level "foo"
"""
import re
from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import unquote
from xml.sax.saxutils import escape, quoteattr

from ..exceptions import XmlDecodeError

ROOT_NAME = "/"

_NAME_RE = re.compile(r"[A-Za-z_:][-\w.:]*")
_TAG_BODY_RE = re.compile(r"""(?:[^<>"']|"[^"]*"|'[^']*')*>""")
_ATTRIBUTE_RE = re.compile(r"""([^\s=/]+)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+))""")
_ENTITY_RE = re.compile(r"&(#[0-9]+|#[xX][0-9a-fA-F]+|lt|gt|amp|quot|apos);")
_NAMED_ENTITIES = {"lt": "<", "gt": ">", "amp": "&", "quot": '"', "apos": "'"}


@dataclass
class XmlNode:
    """One parsed element. Only ``children`` are ownership edges."""

    name: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)
    text: str | None = None
    parent: "XmlNode | None" = field(default=None, repr=False, compare=False)
    children: list["XmlNode"] = field(default_factory=list)

    def query(self, path: str) -> list["XmlNode"]:
        return query(self, path)

    def find_text(self, path: str) -> str | None:
        """Text of the first node matching ``path``, or None."""
        for node in query(self, path):
            return node.text
        return None

    def to_xml(self) -> str:
        """Serialise this subtree. The synthetic root serialises its children only."""
        inner = (escape(self.text) if self.text else "") + "".join(
            child.to_xml() for child in self.children
        )
        if self.name is None or self.name == ROOT_NAME:
            return inner
        attrs = "".join(f' {key}={quoteattr(value)}' for key, value in self.attributes.items())
        if not inner:
            return f"<{self.name}{attrs}/>"
        return f"<{self.name}{attrs}>{inner}</{self.name}>"


class _TokenHandler(Protocol):
    def on_open_tag(self, name: str, attributes: dict[str, str]) -> None: ...
    def on_text(self, text: str) -> None: ...
    def on_close_tag(self, name: str) -> None: ...


class _TreeBuilder:
    """Receives tokenizer events and grows an XmlNode tree."""

    def __init__(self) -> None:
        self.root = XmlNode(name=ROOT_NAME)
        self._current = self.root

    def on_open_tag(self, name: str, attributes: dict[str, str]) -> None:
        node = XmlNode(name=_strip_namespace(name), attributes=attributes, parent=self._current)
        self._current.children.append(node)
        self._current = node

    def on_text(self, text: str) -> None:
        if not text.strip():
            return  # formatting whitespace
        self._current.text = text if self._current.text is None else self._current.text + text

    def on_close_tag(self, name: str) -> None:
        # Mismatched close tags are tolerated by not popping.
        if self._current.name == _strip_namespace(name) and self._current.parent is not None:
            self._current = self._current.parent


def _strip_namespace(name: str) -> str:
    if ":" in name:
        return name[name.index(":") + 1:]
    return name


def _replace_entity(match: re.Match) -> str:
    ref = match.group(1)
    if ref in _NAMED_ENTITIES:
        return _NAMED_ENTITIES[ref]
    try:
        codepoint = int(ref[2:], 16) if ref[1] in "xX" else int(ref[1:])
        return chr(codepoint)
    except (ValueError, OverflowError):
        return match.group(0)


def _unescape(value: str) -> str:
    return _ENTITY_RE.sub(_replace_entity, value)


def _parse_attributes(raw: str) -> dict[str, str]:
    attributes: dict[str, str] = {}
    for match in _ATTRIBUTE_RE.finditer(raw):
        name, double_quoted, single_quoted, bare = match.groups()
        value = next(v for v in (double_quoted, single_quoted, bare) if v is not None)
        attributes[name] = _unescape(value)
    return attributes


def _skip_until(xml_text: str, start: int, terminator: str, what: str) -> int:
    end = xml_text.find(terminator, start)
    if end == -1:
        raise XmlDecodeError(f"Unterminated {what} at offset {start}", offset=start)
    return end


def _skip_declaration(xml_text: str, start: int) -> int:
    """Return the offset just past a <!...> declaration, honouring an internal [subset]."""
    depth = 0
    for index in range(start + 2, len(xml_text)):
        char = xml_text[index]
        if char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
        elif char == ">" and depth <= 0:
            return index + 1
    raise XmlDecodeError(f"Unterminated declaration at offset {start}", offset=start)


def _tokenize(xml_text: str, handler: _TokenHandler) -> None:
    position = 0
    length = len(xml_text)
    while position < length:
        lt = xml_text.find("<", position)
        if lt == -1:
            handler.on_text(_unescape(xml_text[position:]))
            return
        if lt > position:
            handler.on_text(_unescape(xml_text[position:lt]))

        if xml_text.startswith("<!--", lt):
            position = _skip_until(xml_text, lt + 4, "-->", "comment") + 3
        elif xml_text.startswith("<![CDATA[", lt):
            end = _skip_until(xml_text, lt + 9, "]]>", "CDATA section")
            handler.on_text(xml_text[lt + 9:end])
            position = end + 3
        elif xml_text.startswith("<?", lt):
            position = _skip_until(xml_text, lt + 2, "?>", "processing instruction") + 2
        elif xml_text.startswith("<!", lt):
            position = _skip_declaration(xml_text, lt)
        elif xml_text.startswith("</", lt):
            end = _skip_until(xml_text, lt + 2, ">", "closing tag")
            name = xml_text[lt + 2:end].strip()
            if not _NAME_RE.fullmatch(name):
                raise XmlDecodeError(f"Invalid closing tag {name!r} at offset {lt}", offset=lt)
            handler.on_close_tag(name)
            position = end + 1
        else:
            match = _TAG_BODY_RE.match(xml_text, lt + 1)
            if match is None:
                raise XmlDecodeError(f"Unterminated tag at offset {lt}", offset=lt)
            body = xml_text[lt + 1:match.end() - 1]
            self_closing = body.rstrip().endswith("/")
            if self_closing:
                body = body.rstrip()[:-1]
            name_match = _NAME_RE.match(body)
            if name_match is None:
                raise XmlDecodeError(f"Invalid tag name at offset {lt}", offset=lt)
            name = name_match.group(0)
            handler.on_open_tag(name, _parse_attributes(body[name_match.end():]))
            if self_closing:
                handler.on_close_tag(name)
            position = match.end()


def parse(xml_text: str | bytes) -> XmlNode:
    """
    Parse an XML document into a tree and return the synthetic root node.

    Raises:
        XmlDecodeError: if the input is not text or contains unterminated or
            invalid markup, or holds no element at all.
    """
    if isinstance(xml_text, bytes):
        try:
            xml_text = xml_text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise XmlDecodeError(f"Document is not valid UTF-8: {e}") from e
    if not isinstance(xml_text, str):
        raise XmlDecodeError(f"Expected XML text, got {type(xml_text).__name__}")

    builder = _TreeBuilder()
    _tokenize(xml_text, builder)
    if not builder.root.children:
        raise XmlDecodeError("No element found in document")
    return builder.root


def query(root: XmlNode, path: str) -> list[XmlNode]:
    """
    Return all nodes reached by following ``path`` from ``root``, in document order.

    Each segment must equal a direct child's tag name exactly. There are no
    wildcards, attribute tests or predicates.
    """
    segments = path.split("/")
    if segments[0] == "":
        segments = segments[1:]  # leading "/"
    if not segments:
        return []
    return _sub_query(segments, root)


def _sub_query(segments: list[str], node: XmlNode) -> list[XmlNode]:
    results: list[XmlNode] = []
    head, rest = segments[0], segments[1:]
    for child in node.children:
        if child.name != head:
            continue
        if rest:
            results.extend(_sub_query(rest, child))
        else:
            results.append(child)
    return results


def decode_xml(encoded_xml: str) -> str:
    """
    Decode XML that arrived URL encoded on top of entity encoding.

    Only the five fixed entities below are reversed, ampersand last so that
    "&amp;lt;" becomes "&lt;" and not "<".
    """
    return (
        unquote(encoded_xml)
        .replace("&lt;", "<")
        .replace("&gt;", ">")
        .replace("&quot;", '"')
        .replace("&#039;", "'")
        .replace("&amp;", "&")
    )
