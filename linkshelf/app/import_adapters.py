"""Format detection and message parsers for uploaded archives."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

from .import_contract import MessageParser, ParsedMessage

LOGGER = logging.getLogger(__name__)

CHATGPT_SENDER = "ChatGPT"
UNKNOWN_SENDER = "unknown"
FRAGMENT_SEPARATOR = "\n\n---\n\n"


def decode_archive(raw: bytes | str) -> str:
    if isinstance(raw, str):
        return raw
    return raw.decode("utf-8-sig", errors="replace")


def _split_lines(raw_text: str) -> List[str]:
    return [line[:-1] if line.endswith("\r") else line for line in raw_text.split("\n")]


class ChatGPTExportParser(MessageParser):
    """Merge a ChatGPT export into a single synthetic message.

    Two shapes are recognised: the classic export (a list of conversations,
    each with a ``mapping`` of nodes) and the simpler ``{"messages": [...]}``
    shape. Anything else, including invalid JSON, yields no result.
    """

    name = "chatgpt"

    def accepts(self, filename: str) -> bool:
        return filename.lower().endswith(".json")

    def parse(self, filename: str, raw_text: str) -> Optional[Tuple[ParsedMessage, ...]]:
        merged = self.merge_text(raw_text)
        if not merged:
            return None
        return (ParsedMessage(date="", time="", sender=CHATGPT_SENDER, content=merged),)

    def merge_text(self, raw_text: str) -> Optional[str]:
        try:
            data = json.loads(raw_text)
        except json.JSONDecodeError:
            return None

        if self._is_classic_export(data):
            fragments: List[str] = []
            for conversation in data:
                if not isinstance(conversation, dict):
                    continue
                fragments.extend(self._mapping_fragments(conversation.get("mapping")))
            return FRAGMENT_SEPARATOR.join(fragments)

        if isinstance(data, dict) and isinstance(data.get("messages"), list):
            return FRAGMENT_SEPARATOR.join(self._message_text(message) for message in data["messages"])

        return None

    def _is_classic_export(self, data: Any) -> bool:
        if not (isinstance(data, list) and data and isinstance(data[0], dict)):
            return False
        mapping = data[0].get("mapping")
        return isinstance(mapping, (dict, list)) or bool(mapping)

    def _mapping_fragments(self, mapping: Any) -> List[str]:
        if not isinstance(mapping, dict):
            return []
        fragments: List[str] = []
        for node in mapping.values():
            message = node.get("message") if isinstance(node, dict) else None
            content = message.get("content") if isinstance(message, dict) else None
            parts = content.get("parts") if isinstance(content, dict) else None
            if isinstance(parts, list):
                fragments.append("\n".join(self._coerce_part(part) for part in parts))
            elif isinstance(content, str):
                fragments.append(content)
        return fragments

    def _message_text(self, message: Any) -> str:
        if not isinstance(message, Mapping):
            return ""
        content = message.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "\n".join(self._part_text(part) for part in content)
        return ""

    def _part_text(self, part: Any) -> str:
        if not isinstance(part, Mapping):
            return ""
        text = part.get("text")
        return "" if text is None else str(text)

    def _coerce_part(self, part: Any) -> str:
        if part is None:
            return ""
        if isinstance(part, str):
            return part
        if isinstance(part, Mapping):
            return self._part_text(part)
        return str(part)


class StructuredChatParser(MessageParser):
    """Parse ``[DD/MM/YYYY, HH:MM:SS] Sender: content`` chat exports.

    Lines that do not open a new message are continuation lines of the most
    recent message; continuation lines seen before any header are dropped.
    """

    name = "structured_chat"
    header_pattern = re.compile(r"^\[(\d{2}/\d{2}/\d{4}), (\d{2}:\d{2}:\d{2})\] ([^:]+): (.+)$")
    skip_blank_lines = False

    def accepts(self, filename: str) -> bool:
        return filename.lower().endswith(".txt")

    def parse(self, filename: str, raw_text: str) -> Optional[Tuple[ParsedMessage, ...]]:
        headers: List[Tuple[str, str, str]] = []
        bodies: List[List[str]] = []

        for line in _split_lines(raw_text):
            if self.skip_blank_lines and not line.strip():
                continue
            match = self.header_pattern.match(line)
            if match:
                date, time, sender, content = match.groups()
                headers.append((date, time.strip(), sender))
                bodies.append([content])
            elif bodies:
                bodies[-1].append(line)

        return tuple(
            ParsedMessage(date=date, time=time, sender=sender, content="\n".join(lines))
            for (date, time, sender), lines in zip(headers, bodies)
        )


class PlainChatParser(StructuredChatParser):
    """Parse the unbracketed ``DD/MM/YYYY, HH:MM - Sender: text`` chat style."""

    name = "plain_chat"
    header_pattern = re.compile(
        r"^(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}),?\s*"
        r"(\d{1,2}:\d{2}(?::\d{2})?\s?(?:AM|PM|am|pm)?)\s?[-–]\s(.+?):\s(.*)$"
    )
    skip_blank_lines = True


class PlainTextParser(MessageParser):
    """Wrap the whole file as one message; never fails."""

    name = "plain_text"

    def parse(self, filename: str, raw_text: str) -> Optional[Tuple[ParsedMessage, ...]]:
        return (ParsedMessage(date="", time="", sender=UNKNOWN_SENDER, content=raw_text),)


_PARSERS = {
    ChatGPTExportParser.name: ChatGPTExportParser(),
    StructuredChatParser.name: StructuredChatParser(),
    PlainChatParser.name: PlainChatParser(),
    PlainTextParser.name: PlainTextParser(),
}

DEFAULT_PARSER_ORDER: Tuple[str, ...] = (
    ChatGPTExportParser.name,
    StructuredChatParser.name,
    PlainChatParser.name,
    PlainTextParser.name,
)


def get_message_parser(name: str) -> MessageParser | None:
    key = str(name or "").strip().lower().replace("-", "_").replace(" ", "_")
    return _PARSERS.get(key)


def _resolve_parsers(parsers: Sequence[Union[str, MessageParser]]) -> List[MessageParser]:
    resolved = []
    for entry in parsers:
        parser = get_message_parser(entry) if isinstance(entry, str) else entry
        if parser is None:
            raise ValueError(f"unknown message parser '{entry}'")
        resolved.append(parser)
    return resolved


def parse_archive(
    filename: str,
    raw_text: str,
    parsers: Optional[Sequence[Union[str, MessageParser]]] = None,
) -> Tuple[ParsedMessage, ...]:
    """Run the parser strategies in order; the first non-empty result wins.

    ``parsers`` may mix registered parser names and parser instances.
    """

    candidates = _resolve_parsers(DEFAULT_PARSER_ORDER if parsers is None else parsers)
    for parser in candidates:
        if not parser.accepts(filename):
            continue
        try:
            messages = parser.parse(filename, raw_text)
        except Exception as exc:
            LOGGER.debug("Parser %s failed for %s: %s", parser.name, filename, exc)
            continue
        if messages:
            LOGGER.debug("Parser %s produced %d message(s) for %s", parser.name, len(messages), filename)
            return tuple(messages)

    return _PARSERS[PlainTextParser.name].parse(filename, raw_text) or ()
