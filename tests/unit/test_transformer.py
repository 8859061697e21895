import io
import logging
from datetime import date
from unittest.mock import MagicMock

import pytest

from py_load_ctis.extractor.ctis import CtisFileExtractor
from py_load_ctis.loaders.memory import MemoryLoader
from py_load_ctis.models import vocabulary as cvt
from py_load_ctis.transformers.cleaners import BaseValueCleaner
from py_load_ctis.transformers.ctis import (
    REQUIRED_FIELDS,
    MissingColumnsError,
    RowView,
    TrialTransformer,
)

pytestmark = pytest.mark.unit

BASE_ID = "2023-503698-11"


@pytest.fixture
def transformer():
    return TrialTransformer()


def process(transformer, ctis_csv, *rows):
    return transformer.process(CtisFileExtractor(ctis_csv(*rows)))


def test_row_view_cleans_values():
    cleaner = MagicMock(spec=BaseValueCleaner)
    cleaner.clean_value.return_value = "cleaned"
    row = RowView({"Gender": 1}, ["x", " Male "], cleaner)

    assert row.get("Gender") == "cleaned"
    cleaner.clean_value.assert_called_once_with(" Male ")


def test_transform_full_row(transformer, ctis_csv, trial_row):
    session = process(transformer, ctis_csv, trial_row)

    study = session.studies[BASE_ID]
    assert study.primary_identifier == BASE_ID
    assert study.display_title == trial_row["Title of the trial"]
    assert study.study_status == "Ongoing"
    assert (study.min_age, study.min_age_unit) == ("18", "years")
    assert (study.max_age, study.max_age_unit) == (cvt.NONE, cvt.NOT_APPLICABLE)
    assert study.study_gender_elig == cvt.GENDER_ALL
    assert study.study_enrolment == 120
    assert study.primary_outcome == "Overall survival"
    assert study.secondary_outcome == "Progression-free survival"
    assert study.brief_description == "Drug X\nOverall survival"
    assert study.start_date == date(2023, 5, 1)
    assert study.end_date == date(2026, 6, 15)

    [identifier] = study.study_identifiers
    assert identifier.identifier_value == "2023-503698-11-00"
    assert identifier.identifier_type == cvt.ID_TYPE_TRIAL_REGISTRY
    assert identifier.identifier_link.endswith("EUCT=2023-503698-11-00")
    assert identifier.study == study.item_id

    [title] = study.study_titles
    assert title.title_type == cvt.TITLE_TYPE_SCIENTIFIC

    assert [(c.country_name, c.status) for c in study.study_countries] == [
        ("France", "Ongoing, recruiting"),
        ("Spain", "Ended"),
    ]
    [condition] = study.study_conditions
    assert condition.original_ct_type == cvt.CV_MEDDRA
    assert [t.original_ct_code for t in study.study_topics] == ["C", "C04", "C20"]
    assert {t.original_ct_type for t in study.study_topics} == {cvt.CV_MESH_TREE}
    assert [(f.feature_type, f.feature_value) for f in study.study_features] == [
        (cvt.FEATURE_T_PHASE, "2"),
    ]
    assert [(o.name, o.contrib_type) for o in study.study_organisations] == [
        ("Pharma A", cvt.CONTRIBUTOR_TYPE_SPONSOR),
        ("University B", cvt.CONTRIBUTOR_TYPE_SPONSOR),
    ]
    assert study.study_organisations[1].org_type == "Hospital/Clinic/Other health care facility"


def test_transform_data_objects(transformer, ctis_csv, trial_row):
    session = process(transformer, ctis_csv, trial_row)

    protocol, approval, registry_entry = session.studies[BASE_ID].study_objects
    assert protocol.object_type == cvt.O_TYPE_STUDY_PROTOCOL
    assert protocol.display_title == f"{trial_row['Title of the trial']} - Study protocol"
    [protocol_id] = protocol.object_identifiers
    assert protocol_id.identifier_value == "XYZ-001"
    assert protocol_id.identifier_type == cvt.ID_TYPE_SPONSOR
    assert protocol_id.data_object == protocol.item_id

    assert approval.object_type == cvt.O_TYPE_ETHICS_APPROVAL_NOTIFICATION
    [issued] = approval.object_dates
    assert (issued.date_type, issued.start_date) == (cvt.DATE_TYPE_ISSUED, date(2023, 4, 20))

    assert registry_entry.object_type == cvt.O_TYPE_TRIAL_REGISTRY_ENTRY
    assert registry_entry.title == cvt.O_TITLE_REGISTRY_ENTRY
    [instance] = registry_entry.object_instances
    assert instance.resource_type == cvt.O_RESOURCE_TYPE_WEB_TEXT
    assert instance.url == cvt.CTIS_TRIAL_URL.format(trial_id="2023-503698-11-00")
    [updated] = registry_entry.object_dates
    assert (updated.date_type, updated.start_date) == (cvt.DATE_TYPE_UPDATED, date(2024, 12, 2))


def test_transform_sparse_row(transformer, ctis_csv):
    session = process(transformer, ctis_csv, {"Trial number": "2024-512345-67-00"})

    study = session.studies["2024-512345-67"]
    assert study.display_title == cvt.TITLE_UNKNOWN
    assert study.study_titles == []
    assert study.min_age == cvt.NOT_APPLICABLE
    assert study.max_age_unit == cvt.NOT_APPLICABLE
    assert study.brief_description is None
    assert study.study_enrolment is None
    # Only the registry entry, without a date
    [registry_entry] = study.study_objects
    assert registry_entry.display_title == cvt.O_TITLE_REGISTRY_ENTRY
    assert registry_entry.object_dates == []


@pytest.mark.parametrize("order", [("01", "02"), ("02", "01")])
def test_highest_resubmission_retained_in_any_order(transformer, ctis_csv, trial_row, order):
    rows = [
        {**trial_row, "Trial number": f"{BASE_ID}-{suffix}", "Title of the trial": f"Title {suffix}"}
        for suffix in order
    ]

    session = process(transformer, ctis_csv, *rows)

    assert list(session.studies) == [BASE_ID]
    study = session.studies[BASE_ID]
    assert study.display_title == "Title 02"
    assert study.study_identifiers[0].identifier_value == f"{BASE_ID}-02"
    assert session.resubmissions == {BASE_ID: 2}
    assert session.rejected_rows == (1 if order == ("02", "01") else 0)


def test_malformed_trial_number_not_staged(transformer, ctis_csv, trial_row):
    session = process(
        transformer,
        ctis_csv,
        trial_row,
        {**trial_row, "Trial number": "2024-512345-67"},
    )
    assert list(session.resubmissions) == [BASE_ID]
    assert list(session.studies) == [BASE_ID]
    assert session.rejected_rows == 1


def test_no_phase_logs_once(transformer, ctis_csv, trial_row, caplog):
    row = {**trial_row, "Trial phase": "Not applicable"}
    with caplog.at_level(logging.WARNING):
        session = process(transformer, ctis_csv, row)

    assert session.studies[BASE_ID].study_features == []
    phase_lines = [r.getMessage() for r in caplog.records if "trial phase" in r.getMessage()]
    assert phase_lines == ["2023-503698-11-00 - Couldn't parse trial phase: Not applicable"]


def test_sponsor_mismatch_logs_once(transformer, ctis_csv, trial_row, caplog):
    row = {**trial_row, "Sponsor type": "Industry, Non-industry, Other"}
    with caplog.at_level(logging.WARNING):
        session = process(transformer, ctis_csv, row)

    assert session.studies[BASE_ID].study_organisations == []
    assert len([r for r in caplog.records if "sponsor types" in r.getMessage()]) == 1


def test_unparsable_date_logged_and_unset(transformer, ctis_csv, trial_row, caplog):
    row = {**trial_row, "Start date": "early 2023"}
    with caplog.at_level(logging.WARNING):
        session = process(transformer, ctis_csv, row)

    assert session.studies[BASE_ID].start_date is None
    assert 'Couldn\'t parse "Start date" as a date: early 2023' in caplog.text


def test_failed_row_is_skipped(transformer, ctis_csv, trial_row, caplog):
    buffer = ctis_csv(trial_row)
    short_row = "2024-512345-67-00,Too short\n"
    content = buffer.getvalue() + short_row
    extractor = CtisFileExtractor(io.StringIO(content))

    with caplog.at_level(logging.ERROR):
        session = transformer.process(extractor)

    assert list(session.studies) == [BASE_ID]
    assert transformer.rows_read == 2
    assert transformer.failed_rows == 1
    assert "Failed to convert row 2" in caplog.text
    # The resubmission was accepted before the row failed
    assert session.resubmissions["2024-512345-67"] == 0


def test_missing_columns(transformer, ctis_csv, trial_row):
    headers = [h for h in REQUIRED_FIELDS if h not in ("Gender", "Product")]
    with pytest.raises(MissingColumnsError) as exc_info:
        transformer.process(CtisFileExtractor(ctis_csv(trial_row, headers=headers)))
    assert exc_info.value.missing == ["Gender", "Product"]
    assert isinstance(exc_info.value, ValueError)


def test_flush_to_memory_loader(transformer, ctis_csv, trial_row):
    session = process(transformer, ctis_csv, trial_row)
    loader = MemoryLoader()

    assert session.flush(loader) == 1

    [study] = loader.items["Study"]
    assert study["parent_id"] is None
    assert study["start_date"] == "2023-05-01"
    assert len(loader.items["StudyTopic"]) == 3
    assert {row["parent_id"] for row in loader.items["ObjectDate"]} <= {
        row["item_id"] for row in loader.items["DataObject"]
    }
