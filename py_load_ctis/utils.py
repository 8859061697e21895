# Copyright 2025 Gowtham Rao <rao@ohdsi.org>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Stateless string, number and date helpers shared by the field parsers."""

import re
from datetime import date, datetime

import lxml.html

PHASE_NUMBER_MAP = {
    "1": "1",
    "2": "2",
    "3": "3",
    "4": "4",
    "i": "1",
    "ii": "2",
    "iii": "3",
    "iv": "4",
}

# Tried in order after ISO 8601
DATE_FORMATS = ("%d/%m/%Y", "%d %B %Y")

MAX_INT = 2**31 - 1


def is_blank(value: str | None) -> bool:
    """Check if a string is None, empty, whitespace-only or the literal "NULL"."""
    return value is None or not value.strip() or value.strip().upper() == "NULL"


def remove_quotes(value: str | None) -> str | None:
    """Remove one pair of surrounding double quotes, if present."""
    if value is not None and len(value) > 1 and value[0] == '"' and value[-1] == '"':
        return value[1:-1]
    return value


def unescape_html(value: str) -> str:
    """Unescape HTML entities and drop any markup, keeping the text content."""
    if is_blank(value):
        return value
    return lxml.html.fromstring(value).text_content()


def is_pos_whole_number(value: str | None) -> bool:
    return bool(value) and value.isascii() and value.isdigit()


def convert_phase_number(number: str) -> str | None:
    """Convert a phase number (1-4, possibly in Roman numerals) to a digit string."""
    return PHASE_NUMBER_MAP.get(number.lower())


def construct_multiple_phases_string(p1: str, p2: str) -> str:
    return f"{convert_phase_number(p1)}/{convert_phase_number(p2)}"


def parse_date(value: str | None) -> date | None:
    """Parse a date in ISO, d/m/yyyy or "d Month yyyy" format.

    Returns None if the value is blank or in none of the known formats.
    """
    if is_blank(value):
        return None
    value = value.strip()
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def add_to_text(current: str | None, text: str | None) -> str | None:
    """Append text on a new line to an existing text value, skipping blank text."""
    if is_blank(text):
        return current
    if is_blank(current):
        return text
    return f"{current}\n{text}"


def split_words(value: str) -> set[str]:
    """Lowercased set of the alphabetic words in a string."""
    return set(re.findall(r"[a-z]+", value.lower()))
