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
"""Field-level parsers for the free-text encodings of the CTIS export.

Each parser takes the cleaned field value and a logger, returns the parsed
value(s) and logs, rather than raises, when a fragment doesn't match the
expected grammar. The caller leaves the corresponding attribute unset.
"""

import logging
import re

from pydantic import BaseModel

from py_load_ctis.models import vocabulary as cvt
from py_load_ctis.utils import (
    MAX_INT,
    construct_multiple_phases_string,
    convert_phase_number,
    is_blank,
    is_pos_whole_number,
    split_words,
)

logger = logging.getLogger(__name__)

P_NOT_APPLICABLE = re.compile(r"N/A", re.IGNORECASE)
P_STATUS_COUNTRY = re.compile(r"(.+),(.+)", re.IGNORECASE | re.DOTALL)
# e.g. "18-64 years", "85+ years", "<37 weeks"
P_AGE_SECONDARY_SINGLE = re.compile(
    r"\D*?(<?\d+\+?)(?:[ \t]*-[ \t]*)?(\d+\+?)?[ \t]+(\w+)\D*", re.IGNORECASE,
)
# e.g. "0-17 years, 65+ years", the first number is the minimum, the last one the maximum
P_AGE_SECONDARY_MULTIPLE = re.compile(
    r"\D*?(<?\d+)[^a-zA-Z]+(\w+).*?(\d+\+?)[ \t]+(\w+)\D*", re.IGNORECASE | re.DOTALL,
)
# One comma-separated range of the age group field, e.g. "18-64 years", "In utero"
P_AGE_PRIMARY = re.compile(
    r"[ \t]*(\d+\+?|\D+)(?:-?(\d+))?[ \t]*(\w+)?[ \t]*", re.IGNORECASE,
)
P_STUDY_TOPICS = re.compile(
    r'(?:\[")?'
    r"(?:not[ \t]*possible[ \t]*to[ \t]*specify"
    r"|([^\[]+)[ \t]+\[([^\]]+)\][ \t]*-[ \t]*([^\[]+)\[([^\]]+)\])"
    r'(?:"\])?',
    re.IGNORECASE,
)
P_PHASES = re.compile(
    r".*?phase[ \t]*(iv|iii|ii|i|[1-4]).*?(?:phase[ \t]*(iv|iii|ii|i|[1-4]).*)?",
    re.IGNORECASE | re.DOTALL,
)

TOPICS_SEPARATOR = '","'
SPONSORS_SEPARATOR = ", "


class AgeRange(BaseModel):
    """Minimum and maximum eligible ages, with their units."""

    min_age: str | None = None
    min_age_unit: str | None = None
    max_age: str | None = None
    max_age_unit: str | None = None

    @classmethod
    def not_applicable(cls) -> "AgeRange":
        return cls(
            min_age=cvt.NOT_APPLICABLE,
            min_age_unit=cvt.NOT_APPLICABLE,
            max_age=cvt.NOT_APPLICABLE,
            max_age_unit=cvt.NOT_APPLICABLE,
        )


def _is_not_applicable(value: str) -> bool:
    return P_NOT_APPLICABLE.fullmatch(value) is not None


def parse_age_ranges(
    age_group: str | None,
    age_range_secondary_identifier: str | None,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> AgeRange:
    """Parse the min/max ages of a trial from its two age fields.

    The secondary identifier is used first; the age group is only parsed if
    the secondary identifier is blank or N/A. If neither can be used, all
    four age values are N/A.
    """
    if not is_blank(age_range_secondary_identifier) and not _is_not_applicable(
        age_range_secondary_identifier
    ):
        return parse_age_range_secondary_identifier(age_range_secondary_identifier, log)
    if not is_blank(age_group) and not _is_not_applicable(age_group):
        return parse_age_group(age_group, log)
    return AgeRange.not_applicable()


def parse_age_range_secondary_identifier(
    value: str, log: logging.Logger | logging.LoggerAdapter = logger,
) -> AgeRange:
    """Parse the "Age range secondary identifier" field.

    Multiple ranges are assumed to be sorted from earliest to latest.
    """
    min_age = max_age = min_age_unit = max_age_unit = None

    m_single = P_AGE_SECONDARY_SINGLE.fullmatch(value)
    if m_single:
        a1, a2, unit = m_single.groups()
        if a2 is not None:
            min_age, min_age_unit = a1, unit
            if a2.endswith("+"):  # 18-85+ years, no maximum
                max_age = cvt.NONE
            else:
                max_age, max_age_unit = a2, unit
        elif a1.startswith("<"):  # Gestational age up to <37 weeks, no minimum
            min_age = cvt.NONE
            max_age = cvt.AGE_PRETERM
        elif a1.endswith("+"):  # 85+ years, no maximum
            min_age, min_age_unit = a1[:-1], unit
            max_age = cvt.NONE
        else:
            log.warning(
                "Only one number matched for age but no < or + sign found, "
                "string: %s",
                value,
            )
    else:
        m_multiple = P_AGE_SECONDARY_MULTIPLE.fullmatch(value)
        if m_multiple:
            a1, u1, a2, u2 = m_multiple.groups()
            if a1.startswith("<"):
                min_age = cvt.NONE
            else:
                min_age, min_age_unit = a1, u1
            if a2.endswith("+"):
                max_age = cvt.NONE
            else:
                max_age, max_age_unit = a2, u2
        else:
            log.warning(
                "Couldn't match age range secondary identifier, "
                "string: %s",
                value,
            )

    return set_ages_and_units(min_age, max_age, min_age_unit, max_age_unit)


def parse_age_group(
    age_group: str, log: logging.Logger | logging.LoggerAdapter = logger,
) -> AgeRange:
    """Parse the comma-separated "Age group" field.

    The ranges are not sorted, so the lowest minimum and highest maximum are
    tracked across all of them. "In utero" is lower than any numeric minimum
    and an open-ended range ("65+ years") removes the maximum; the latter only
    sets the minimum if none has been set yet.
    """
    min_age = min_age_unit = max_age = max_age_unit = None

    for age_range in age_group.split(","):
        m = P_AGE_PRIMARY.fullmatch(age_range)
        if not m:
            log.warning("Couldn't match age group range: %s", age_range)
            continue

        a1, a2, unit = m.groups()
        if is_blank(unit):
            if "utero" in a1.lower():
                min_age = cvt.AGE_IN_UTERO
            else:
                log.warning(
                    'Age group range has no number but is not "in utero": %s',
                    age_range,
                )
            continue

        try:
            if not is_blank(a2):
                if max_age is None or (max_age != cvt.NONE and int(a2) > int(max_age)):
                    max_age, max_age_unit = a2, unit
                if min_age is None or (
                    min_age != cvt.AGE_IN_UTERO and int(a1) < int(min_age)
                ):
                    min_age, min_age_unit = a1, unit
            elif a1.endswith("+"):
                max_age = cvt.NONE
                if min_age is None:
                    min_age, min_age_unit = a1[:-1], unit
            else:
                log.warning(
                    "Age group range has one number without a plus sign: "
                    "%s, range: %s",
                    a1,
                    age_range,
                )
        except ValueError:
            log.warning(
                "Couldn't convert age group values to numbers: %s, %s, range: %s",
                a1,
                a2,
                age_range,
            )

        # Units other than years are not handled yet
        if unit.lower() != "years":
            log.warning(
                "Age group field: unit other than years found, range: %s",
                age_range,
            )

    return set_ages_and_units(min_age, max_age, min_age_unit, max_age_unit)


def set_ages_and_units(
    min_age: str | None,
    max_age: str | None,
    min_age_unit: str | None,
    max_age_unit: str | None,
) -> AgeRange:
    """Build the age range, with N/A units for "In utero" and open-ended ages."""
    age_range = AgeRange()
    if min_age is not None:
        age_range.min_age = min_age
        if min_age_unit is not None and min_age != cvt.AGE_IN_UTERO:
            age_range.min_age_unit = min_age_unit
        else:
            age_range.min_age_unit = cvt.NOT_APPLICABLE
    if max_age is not None:
        age_range.max_age = max_age
        if max_age_unit is not None and max_age != cvt.NONE:
            age_range.max_age_unit = max_age_unit
        else:
            age_range.max_age_unit = cvt.NOT_APPLICABLE
    return age_range


def parse_countries(
    value: str | None, log: logging.Logger | logging.LoggerAdapter = logger,
) -> list[tuple[str, str | None]]:
    """Parse "Location(s) and recruitment status" into (country, status) pairs.

    The value looks like "France:Ongoing, recruiting,Spain:Ended". Every
    segment between two colons holds the status of the previous country and,
    after its last comma, the name of the next country.
    """
    if is_blank(value):
        return []

    segments = value.split(":")
    while segments and not segments[-1]:
        segments.pop()

    if len(segments) < 2:
        log.warning(
            'Couldn\'t parse "Location(s) and recruitment status": %s',
            value,
        )
        return []

    pairs: list[tuple[str, str | None]] = []

    def add_pair(country: str, status: str) -> None:
        if not is_blank(country):
            pairs.append((country.strip(), None if is_blank(status) else status.strip()))

    if len(segments) == 2:
        add_pair(segments[0], segments[1])
        return pairs

    current_country = segments[0]
    for ind, segment in enumerate(segments[1:-1], start=1):
        # Country names never contain a comma in the data
        m = P_STATUS_COUNTRY.fullmatch(segment)
        if m:
            add_pair(current_country, m.group(1))
            current_country = m.group(2)
        else:
            log.warning(
                "Couldn't match country and status in segment %d, "
                "full string: %s",
                ind,
                value,
            )
    add_pair(current_country, segments[-1])
    return pairs


def parse_topics(
    value: str | None, log: logging.Logger | logging.LoggerAdapter = logger,
) -> list[tuple[str, str]]:
    """Parse the "Therapeutic area" field into unique (label, code) topics.

    Entries are parent/child pairs such as "Diseases [C] - Neoplasms [C04]".
    A code is only returned once per field, whichever position it was seen in.
    """
    if is_blank(value):
        return []

    topics: list[tuple[str, str]] = []
    added_codes: set[str] = set()
    for topic_pair in value.split(TOPICS_SEPARATOR):
        m = P_STUDY_TOPICS.fullmatch(topic_pair.strip())
        if not m:
            log.warning("Couldn't parse study topics pair: %s", topic_pair)
            continue
        if m.group(1) is None:  # "not possible to specify"
            continue
        for label, code in ((m.group(1), m.group(2)), (m.group(3), m.group(4))):
            code = code.strip()
            if code not in added_codes:
                topics.append((label.strip(), code))
                added_codes.add(code)
    return topics


def parse_trial_phase(
    value: str | None, log: logging.Logger | logging.LoggerAdapter = logger,
) -> str | None:
    """Extract the phase(s) of a trial, e.g. "Phase II and Phase III" -> "2/3"."""
    if is_blank(value):
        return None

    m = P_PHASES.fullmatch(value)
    if not m:
        log.warning("Couldn't parse trial phase: %s", value)
        return None

    p1, p2 = m.groups()
    if p2 is None:
        return convert_phase_number(p1)
    return construct_multiple_phases_string(p1, p2)


def parse_sponsors(
    sponsors: str | None,
    sponsor_types: str | None,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> list[tuple[str, str]]:
    """Pair each sponsor with its type, dropping repeated sponsor names.

    Both fields are ", "-separated lists aligned by index. If their lengths
    differ no sponsor is returned.
    """
    if is_blank(sponsors):
        return []

    names = [name.strip() for name in sponsors.split(SPONSORS_SEPARATOR)]
    types = [] if is_blank(sponsor_types) else [
        t.strip() for t in sponsor_types.split(SPONSORS_SEPARATOR)
    ]
    if len(names) != len(types):
        log.warning(
            "Number of sponsors (%d) and sponsor types (%d) differ, "
            "sponsors: %s, types: %s",
            len(names),
            len(types),
            sponsors,
            sponsor_types,
        )
        return []

    seen: set[str] = set()
    unique: list[tuple[str, str]] = []
    for name, sponsor_type in zip(names, types):
        if name in seen or is_blank(name):
            continue
        seen.add(name)
        unique.append((name, sponsor_type))
    return unique


def parse_gender(
    value: str | None, log: logging.Logger | logging.LoggerAdapter = logger,
) -> str | None:
    """Map the "Gender" field to All, Female or Male."""
    if is_blank(value):
        return None

    words = split_words(value)
    men = cvt.GENDER_MEN.lower() in words
    women = cvt.GENDER_WOMEN.lower() in words
    if men and women:
        return cvt.GENDER_ALL
    if men:
        return cvt.GENDER_MEN
    if women:
        return cvt.GENDER_WOMEN
    log.warning('Gender contains neither "female" nor "male": %s', value)
    return None


def parse_enrolment(
    value: str | None, log: logging.Logger | logging.LoggerAdapter = logger,
) -> int | None:
    """Parse the number of participants, capped to the maximum 32-bit integer."""
    if is_blank(value):
        return None
    if not is_pos_whole_number(value):
        log.warning("Enrolment is not a whole number: %s", value)
        return None
    return min(int(value), MAX_INT)
