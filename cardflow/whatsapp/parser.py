"""Admin reply parsing: "y <id>" approves, "n <id>" rejects."""

import re

from cardflow.models.whatsapp import ParsedCommand

_WHITESPACE = re.compile(r"\s+")
_APPROVE = re.compile(r"^(y|yes)\s+(.+)$", re.IGNORECASE)
_REJECT = re.compile(r"^(n|no)\s+(.+)$", re.IGNORECASE)


def normalize_message(body: str | None) -> str:
    return _WHITESPACE.sub(" ", (body or "").strip())


def parse_command(body: str | None) -> ParsedCommand:
    text = normalize_message(body)
    match = _APPROVE.match(text)
    if match:
        return ParsedCommand(action="approve", request_id=match.group(2).strip(), raw=body or "")
    match = _REJECT.match(text)
    if match:
        return ParsedCommand(action="reject", request_id=match.group(2).strip(), raw=body or "")
    return ParsedCommand(action="unknown", raw=body or "")
