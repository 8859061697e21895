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
"""Pydantic models for the canonical, registry-agnostic study record.

A `Study` owns its dependent items through back-reference lists (e.g.
`study_countries`). Each dependent item points back to its owner by the
owner's `item_id`, so the graph can be dumped without cycles.
"""

from datetime import date
from typing import Any, ClassVar

from pydantic import BaseModel, Field


class CanonicalItem(BaseModel):
    """Base class for every entity written to the sink."""

    entity_name: ClassVar[str] = ""
    # Back-reference lists, excluded from the item's own field values
    collections: ClassVar[tuple[str, ...]] = ()

    item_id: str

    def field_values(self) -> dict[str, Any]:
        """The item's id, attribute and reference values, without its children."""
        return self.model_dump(
            mode="json", exclude=set(self.collections), exclude_none=True,
        )

    def children(self) -> list["CanonicalItem"]:
        """All directly owned items, in collection order."""
        return [child for name in self.collections for child in getattr(self, name)]


class StudyIdentifier(CanonicalItem):
    entity_name: ClassVar[str] = "StudyIdentifier"

    identifier_value: str
    identifier_type: str | None = None
    identifier_link: str | None = None
    study: str | None = None


class StudyTitle(CanonicalItem):
    entity_name: ClassVar[str] = "StudyTitle"

    title_type: str
    title_text: str
    study: str | None = None


class StudyCountry(CanonicalItem):
    entity_name: ClassVar[str] = "StudyCountry"

    country_name: str
    status: str | None = None
    study: str | None = None


class StudyCondition(CanonicalItem):
    entity_name: ClassVar[str] = "StudyCondition"

    original_value: str
    original_ct_type: str | None = None
    original_ct_code: str | None = None
    study: str | None = None


class StudyTopic(CanonicalItem):
    entity_name: ClassVar[str] = "StudyTopic"

    original_value: str
    original_ct_type: str | None = None
    original_ct_code: str | None = None
    topic_type: str | None = None
    study: str | None = None


class StudyFeature(CanonicalItem):
    entity_name: ClassVar[str] = "StudyFeature"

    feature_type: str
    feature_value: str
    study: str | None = None


class Organisation(CanonicalItem):
    entity_name: ClassVar[str] = "Organisation"

    name: str
    contrib_type: str | None = None
    org_type: str | None = None
    study: str | None = None


class ObjectIdentifier(CanonicalItem):
    entity_name: ClassVar[str] = "ObjectIdentifier"

    identifier_value: str
    identifier_type: str | None = None
    data_object: str | None = None


class ObjectDate(CanonicalItem):
    entity_name: ClassVar[str] = "ObjectDate"

    date_type: str
    start_date: date | None = None
    data_object: str | None = None


class ObjectInstance(CanonicalItem):
    entity_name: ClassVar[str] = "ObjectInstance"

    url: str
    resource_type: str | None = None
    data_object: str | None = None


class DataObject(CanonicalItem):
    """A typed artifact of a study (protocol, registry entry, approval notice)."""

    entity_name: ClassVar[str] = "DataObject"
    collections: ClassVar[tuple[str, ...]] = (
        "object_identifiers",
        "object_dates",
        "object_instances",
    )

    object_class: str | None = None
    object_type: str
    title: str
    display_title: str | None = None
    linked_study: str | None = None

    object_identifiers: list[ObjectIdentifier] = Field(default_factory=list)
    object_dates: list[ObjectDate] = Field(default_factory=list)
    object_instances: list[ObjectInstance] = Field(default_factory=list)


class Study(CanonicalItem):
    """The canonical record for one trial, keyed by its base identifier."""

    entity_name: ClassVar[str] = "Study"
    collections: ClassVar[tuple[str, ...]] = (
        "study_identifiers",
        "study_titles",
        "study_objects",
        "study_countries",
        "study_conditions",
        "study_topics",
        "study_features",
        "study_organisations",
    )

    primary_identifier: str
    display_title: str | None = None
    study_status: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    study_enrolment: int | None = None
    study_gender_elig: str | None = None
    min_age: str | None = None
    min_age_unit: str | None = None
    max_age: str | None = None
    max_age_unit: str | None = None
    primary_outcome: str | None = None
    secondary_outcome: str | None = None
    brief_description: str | None = None

    study_identifiers: list[StudyIdentifier] = Field(default_factory=list)
    study_titles: list[StudyTitle] = Field(default_factory=list)
    study_objects: list[DataObject] = Field(default_factory=list)
    study_countries: list[StudyCountry] = Field(default_factory=list)
    study_conditions: list[StudyCondition] = Field(default_factory=list)
    study_topics: list[StudyTopic] = Field(default_factory=list)
    study_features: list[StudyFeature] = Field(default_factory=list)
    study_organisations: list[Organisation] = Field(default_factory=list)


# Entity name -> (reference to the owner, owner's back-reference list)
ITEM_LINKS: dict[str, tuple[str, str]] = {
    "StudyIdentifier": ("study", "study_identifiers"),
    "StudyTitle": ("study", "study_titles"),
    "DataObject": ("linked_study", "study_objects"),
    "StudyCountry": ("study", "study_countries"),
    "StudyCondition": ("study", "study_conditions"),
    "StudyTopic": ("study", "study_topics"),
    "StudyFeature": ("study", "study_features"),
    "Organisation": ("study", "study_organisations"),
    "ObjectIdentifier": ("data_object", "object_identifiers"),
    "ObjectDate": ("data_object", "object_dates"),
    "ObjectInstance": ("data_object", "object_instances"),
}


def link_item(owner: CanonicalItem, item: CanonicalItem) -> None:
    """Set the item's reference to its owner and add it to the owner's list.

    Raises:
        KeyError: If the item's entity has no owner in `ITEM_LINKS`.
        AttributeError: If the owner has no such back-reference list.
    """
    reference, collection = ITEM_LINKS[item.entity_name]
    setattr(item, reference, owner.item_id)
    getattr(owner, collection).append(item)
