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

import csv
import io

import pytest

from py_load_ctis.transformers.ctis import REQUIRED_FIELDS

TOPICS = (
    '["Diseases [C] - Neoplasms [C04]",'
    '"Diseases [C] - Immune System Diseases [C20]"]'
)


@pytest.fixture
def trial_row():
    """A fully populated CTIS export row, as a header -> value mapping."""
    return {
        "Trial number": "2023-503698-11-00",
        "Title of the trial": "A study of drug X in adults with lung cancer",
        "Protocol code": "XYZ-001",
        "Overall trial status": "Ongoing",
        "Location(s) and recruitment status": "France:Ongoing, recruiting,Spain:Ended",
        "Trial region": "EEA only",
        "Age group": "18-64 years",
        "Age range secondary identifier": "18-64 years, 65+ years",
        "Gender": "Female, Male",
        "Number of participants enrolled": "120",
        "Medical conditions": "Non-small cell lung cancer",
        "Therapeutic area": TOPICS,
        "Trial phase": "Therapeutic exploratory (Phase II)",
        "Sponsor/Co-Sponsors": "Pharma A, University B",
        "Sponsor type": "Pharmaceutical company, Hospital/Clinic/Other health care facility",
        "Product": "Drug X",
        "Primary endpoint": "Overall survival",
        "Secondary endpoint": "Progression-free survival",
        "Start date": "2023-05-01",
        "End date": "15/06/2026",
        "Decision date": "20/04/2023",
        "Last updated": "2 December 2024",
    }


@pytest.fixture
def ctis_csv():
    """Builds an in-memory CTIS export from header -> value mappings."""

    def _make(*rows, headers=REQUIRED_FIELDS):
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(headers)
        for row in rows:
            writer.writerow([row.get(header, "") for header in headers])
        buffer.seek(0)
        return buffer

    return _make
