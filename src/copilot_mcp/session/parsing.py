"""Conversation-ID extraction from free-text CLI output."""

import re
from typing import Iterable, List, Optional, Pattern, Union

DEFAULT_PATTERNS = (
    r"conversation[:\s]+([a-zA-Z0-9_-]+)",
    r"session[:\s]+([a-zA-Z0-9_-]+)",
    r"resume[:\s]+([a-zA-Z0-9_-]+)",
)


class ConversationIdParser:
    """
    Ordered list of regex patterns; the first pattern that matches wins.

    Each pattern must capture the token in group 1. Strings are compiled
    case-insensitively.
    """

    def __init__(self, patterns: Optional[Iterable[Union[str, Pattern]]] = None):
        self.patterns: List[Pattern] = [
            p if isinstance(p, re.Pattern) else re.compile(p, re.IGNORECASE)
            for p in (DEFAULT_PATTERNS if patterns is None else patterns)
        ]

    def parse(self, output: str) -> Optional[str]:
        if not output:
            return None
        for pattern in self.patterns:
            match = pattern.search(output)
            if match and match.group(1):
                return match.group(1)
        return None


_default_parser = ConversationIdParser()


def parse_conversation_id_from_output(output: str) -> Optional[str]:
    return _default_parser.parse(output)
