"""Extract the panel UUID and trojan password from worker HTML.

The worker's pages are not a stable contract, so each value is looked up by an
ordered list of independent matchers and the first hit wins. A page that only
yields one of the two values counts as no match.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Callable, Optional, Sequence


Matcher = Callable[[str], Optional[str]]

UUID_PATTERN = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
PASSWORD_PATTERN = r"[A-Za-z0-9\-_.]{6,}"


@dataclass(frozen=True)
class ScrapedSecrets:
    uuid: str
    tr_pass: str

    def __repr__(self) -> str:
        return f"ScrapedSecrets(uuid={self.uuid!r}, tr_pass=***)"


def _first_group(*patterns: re.Pattern[str]) -> Matcher:
    def match(text: str) -> Optional[str]:
        for pattern in patterns:
            found = pattern.search(text)
            if found:
                return found.group(1)
        return None

    return match


def _input_value(name: str, value_pattern: str) -> Matcher:
    # Attribute order differs between panel versions.
    return _first_group(
        re.compile(
            rf"<input[^>]*\bname=[\"'](?:{name})[\"'][^>]*\bvalue=[\"']({value_pattern})[\"']",
            re.IGNORECASE,
        ),
        re.compile(
            rf"<input[^>]*\bvalue=[\"']({value_pattern})[\"'][^>]*\bname=[\"'](?:{name})[\"']",
            re.IGNORECASE,
        ),
    )


def _quoted_key_value(key: str, value_pattern: str) -> Matcher:
    return _first_group(
        re.compile(rf"[\"']?\b(?:{key})\b[\"']?\s*[:=]\s*[\"']({value_pattern})[\"']"),
    )


def _labelled_value(labels: Sequence[str], value_pattern: str) -> Matcher:
    label = "|".join(re.escape(item) for item in labels)
    return _first_group(
        re.compile(rf"(?:{label})\s*:?\s*(?:<[^>]+>\s*)+({value_pattern})\s*<", re.IGNORECASE),
        re.compile(rf"(?:{label})\s*:?\s*\[\s*({value_pattern})\s*\]", re.IGNORECASE),
    )


UUID_MATCHERS: list[Matcher] = [
    _quoted_key_value("UUID", UUID_PATTERN),
    _input_value("UUID", UUID_PATTERN),
]

PASSWORD_MATCHERS: list[Matcher] = [
    _quoted_key_value("TR_PASS|TR_pass", PASSWORD_PATTERN),
    _input_value("TR_PASS|TR_pass", PASSWORD_PATTERN),
    _labelled_value(["Random Trojan Password", "Trojan Password", "password"], PASSWORD_PATTERN),
]


def first_match(text: str, matchers: Sequence[Matcher]) -> Optional[str]:
    for matcher in matchers:
        value = matcher(text)
        if value:
            return value.strip()
    return None


def scrape_secrets(text: str) -> Optional[ScrapedSecrets]:
    if not text:
        return None
    uuid_value = first_match(text, UUID_MATCHERS)
    tr_pass = first_match(text, PASSWORD_MATCHERS)
    if uuid_value is None or tr_pass is None:
        return None
    return ScrapedSecrets(uuid=uuid_value, tr_pass=tr_pass)
