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
"""Converts rows of the CTIS export into canonical study records."""

import logging
from datetime import date
from typing import Any, TypeVar

from py_load_ctis.extractor.ctis import CtisFileExtractor
from py_load_ctis.log import TrialLogAdapter
from py_load_ctis.models import vocabulary as cvt
from py_load_ctis.models.canonical import (
    CanonicalItem,
    DataObject,
    ObjectDate,
    ObjectIdentifier,
    ObjectInstance,
    Organisation,
    Study,
    StudyCondition,
    StudyCountry,
    StudyFeature,
    StudyIdentifier,
    StudyTitle,
    StudyTopic,
    link_item,
)
from py_load_ctis.transformers.cleaners import BaseValueCleaner, CtisValueCleaner
from py_load_ctis.transformers.parsers import (
    parse_age_ranges,
    parse_countries,
    parse_enrolment,
    parse_gender,
    parse_sponsors,
    parse_topics,
    parse_trial_phase,
)
from py_load_ctis.transformers.session import ConverterSession
from py_load_ctis.utils import add_to_text, is_blank, parse_date

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT", bound=CanonicalItem)

F_TRIAL_NUMBER = "Trial number"
F_TITLE = "Title of the trial"
F_PROTOCOL_CODE = "Protocol code"
F_OVERALL_STATUS = "Overall trial status"
F_LOCATIONS = "Location(s) and recruitment status"
F_TRIAL_REGION = "Trial region"
F_AGE_GROUP = "Age group"
F_AGE_SECONDARY_ID = "Age range secondary identifier"
F_GENDER = "Gender"
F_ENROLMENT = "Number of participants enrolled"
F_MEDICAL_CONDITIONS = "Medical conditions"
F_THERAPEUTIC_AREA = "Therapeutic area"
F_TRIAL_PHASE = "Trial phase"
F_SPONSORS = "Sponsor/Co-Sponsors"
F_SPONSOR_TYPE = "Sponsor type"
F_PRODUCT = "Product"
F_PRIMARY_ENDPOINT = "Primary endpoint"
F_SECONDARY_ENDPOINT = "Secondary endpoint"
F_START_DATE = "Start date"
F_END_DATE = "End date"
F_DECISION_DATE = "Decision date"
F_LAST_UPDATED = "Last updated"

# Every column read by TrialTransformer.assemble
REQUIRED_FIELDS = (
    F_TRIAL_NUMBER,
    F_TITLE,
    F_PROTOCOL_CODE,
    F_OVERALL_STATUS,
    F_LOCATIONS,
    F_TRIAL_REGION,
    F_AGE_GROUP,
    F_AGE_SECONDARY_ID,
    F_GENDER,
    F_ENROLMENT,
    F_MEDICAL_CONDITIONS,
    F_THERAPEUTIC_AREA,
    F_TRIAL_PHASE,
    F_SPONSORS,
    F_SPONSOR_TYPE,
    F_PRODUCT,
    F_PRIMARY_ENDPOINT,
    F_SECONDARY_ENDPOINT,
    F_START_DATE,
    F_END_DATE,
    F_DECISION_DATE,
    F_LAST_UPDATED,
)


class MissingColumnsError(ValueError):
    """Raised when the header row lacks columns the transformer reads."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"CTIS data file is missing columns: {', '.join(missing)}")


class RowView:
    """Field access by header name into one row, with values cleaned."""

    def __init__(
        self, fields_to_ind: dict[str, int], values: list[str], cleaner: BaseValueCleaner,
    ) -> None:
        self.fields_to_ind = fields_to_ind
        self.values = values
        self.cleaner = cleaner

    def get(self, field: str) -> str:
        return self.cleaner.clean_value(self.values[self.fields_to_ind[field]])


class TrialTransformer:
    """Assembles one canonical `Study` per accepted CTIS row.

    Rows go through the session's resubmission check first; accepted rows are
    parsed field by field and the resulting study is staged in the session
    until it is flushed.
    """

    def __init__(
        self,
        session: ConverterSession | None = None,
        cleaner: BaseValueCleaner | None = None,
    ) -> None:
        self.session = session or ConverterSession()
        self.cleaner = cleaner or CtisValueCleaner()
        self.log = TrialLogAdapter(logger)
        self.rows_read = 0
        self.failed_rows = 0

    def process(self, extractor: CtisFileExtractor) -> ConverterSession:
        """Converts every row read by the extractor.

        A row that fails to convert is logged and skipped.

        Raises:
            MissingColumnsError: If a column read by the transformer is missing.
        """
        fields_to_ind = extractor.read_headers()
        missing = [field for field in REQUIRED_FIELDS if field not in fields_to_ind]
        if missing:
            raise MissingColumnsError(missing)

        for values in extractor.iter_rows():
            self.rows_read += 1
            try:
                self.transform_row(RowView(fields_to_ind, values, self.cleaner))
            except Exception:
                self.failed_rows += 1
                self.log.exception("Failed to convert row %d, skipping it", self.rows_read)
            finally:
                self.log.trial_id = None
        return self.session

    def transform_row(self, row: RowView) -> Study | None:
        """Converts and stages one row; returns None if the row is rejected."""
        trial_id = row.get(F_TRIAL_NUMBER)
        self.log.trial_id = trial_id

        base_id = self.session.resolve(trial_id, self.log)
        if base_id is None:
            return None

        study = self.assemble(base_id, trial_id, row)
        self.session.stage(base_id, study)
        return study

    def assemble(self, base_id: str, trial_id: str, row: RowView) -> Study:
        """Builds the study and its dependent items from the row's fields."""
        study = self.session.create_item(Study, primary_identifier=base_id)
        trial_url = cvt.CTIS_TRIAL_URL.format(trial_id=trial_id)

        self.add_item(
            study,
            StudyIdentifier,
            identifier_value=trial_id,
            identifier_type=cvt.ID_TYPE_TRIAL_REGISTRY,
            identifier_link=trial_url,
        )

        # Title first, the data objects' display titles are built from it
        title = row.get(F_TITLE)
        if not is_blank(title):
            study.display_title = title
            self.add_item(
                study, StudyTitle, title_type=cvt.TITLE_TYPE_SCIENTIFIC, title_text=title,
            )
        else:
            study.display_title = cvt.TITLE_UNKNOWN

        # No date, the sponsor's protocol code can change at any time
        protocol_code = row.get(F_PROTOCOL_CODE)
        if not is_blank(protocol_code):
            protocol = self.add_data_object(
                study, cvt.O_TYPE_STUDY_PROTOCOL, cvt.O_TYPE_STUDY_PROTOCOL,
            )
            self.add_item(
                protocol,
                ObjectIdentifier,
                identifier_value=protocol_code,
                identifier_type=cvt.ID_TYPE_SPONSOR,
            )

        status = row.get(F_OVERALL_STATUS)
        if not is_blank(status):
            study.study_status = status

        for country, country_status in parse_countries(row.get(F_LOCATIONS), self.log):
            self.add_item(study, StudyCountry, country_name=country, status=country_status)

        # Only tells whether all sites are in the EEA
        row.get(F_TRIAL_REGION)

        ages = parse_age_ranges(row.get(F_AGE_GROUP), row.get(F_AGE_SECONDARY_ID), self.log)
        study.min_age = ages.min_age
        study.min_age_unit = ages.min_age_unit
        study.max_age = ages.max_age
        study.max_age_unit = ages.max_age_unit

        study.study_gender_elig = parse_gender(row.get(F_GENDER), self.log)
        study.study_enrolment = parse_enrolment(row.get(F_ENROLMENT), self.log)

        # Kept as free text, no mapping to a conditions vocabulary
        conditions = row.get(F_MEDICAL_CONDITIONS)
        if not is_blank(conditions):
            self.add_item(
                study,
                StudyCondition,
                original_value=conditions,
                original_ct_type=cvt.CV_MEDDRA,
            )

        for label, code in parse_topics(row.get(F_THERAPEUTIC_AREA), self.log):
            self.add_item(
                study,
                StudyTopic,
                original_value=label,
                original_ct_type=cvt.CV_MESH_TREE,
                original_ct_code=code,
            )

        phase = parse_trial_phase(row.get(F_TRIAL_PHASE), self.log)
        if phase is not None:
            self.add_item(
                study, StudyFeature, feature_type=cvt.FEATURE_T_PHASE, feature_value=phase,
            )

        for name, sponsor_type in parse_sponsors(
            row.get(F_SPONSORS), row.get(F_SPONSOR_TYPE), self.log,
        ):
            self.add_item(
                study,
                Organisation,
                name=name,
                contrib_type=cvt.CONTRIBUTOR_TYPE_SPONSOR,
                org_type=None if is_blank(sponsor_type) else sponsor_type,
            )

        study.brief_description = add_to_text(study.brief_description, row.get(F_PRODUCT))

        primary_endpoint = row.get(F_PRIMARY_ENDPOINT)
        if not is_blank(primary_endpoint):
            study.primary_outcome = primary_endpoint
            study.brief_description = add_to_text(study.brief_description, primary_endpoint)

        secondary_endpoint = row.get(F_SECONDARY_ENDPOINT)
        if not is_blank(secondary_endpoint):
            study.secondary_outcome = secondary_endpoint

        study.start_date = self.parse_date(row.get(F_START_DATE), F_START_DATE)
        study.end_date = self.parse_date(row.get(F_END_DATE), F_END_DATE)

        decision_date = self.parse_date(row.get(F_DECISION_DATE), F_DECISION_DATE)
        if decision_date is not None:
            approval = self.add_data_object(
                study,
                cvt.O_TYPE_ETHICS_APPROVAL_NOTIFICATION,
                cvt.O_TYPE_ETHICS_APPROVAL_NOTIFICATION,
            )
            self.add_item(
                approval, ObjectDate, date_type=cvt.DATE_TYPE_ISSUED, start_date=decision_date,
            )

        registry_entry = self.add_data_object(
            study, cvt.O_TYPE_TRIAL_REGISTRY_ENTRY, cvt.O_TITLE_REGISTRY_ENTRY,
        )
        self.add_item(
            registry_entry,
            ObjectInstance,
            url=trial_url,
            resource_type=cvt.O_RESOURCE_TYPE_WEB_TEXT,
        )
        last_updated = self.parse_date(row.get(F_LAST_UPDATED), F_LAST_UPDATED)
        if last_updated is not None:
            self.add_item(
                registry_entry,
                ObjectDate,
                date_type=cvt.DATE_TYPE_UPDATED,
                start_date=last_updated,
            )

        return study

    def add_item(self, owner: CanonicalItem, item_class: type[ItemT], **values: Any) -> ItemT:
        """Creates an item and links it to its owner, in both directions."""
        item = self.session.create_item(item_class, **values)
        link_item(owner, item)
        return item

    def add_data_object(self, study: Study, object_type: str, title: str) -> DataObject:
        if study.display_title != cvt.TITLE_UNKNOWN:
            display_title = f"{study.display_title} - {title}"
        else:
            display_title = title
        return self.add_item(
            study,
            DataObject,
            object_class=cvt.O_CLASS_TEXT,
            object_type=object_type,
            title=title,
            display_title=display_title,
        )

    def parse_date(self, value: str, field: str) -> date | None:
        parsed = parse_date(value)
        if parsed is None and not is_blank(value):
            self.log.warning('Couldn\'t parse "%s" as a date: %s', field, value)
        return parsed
