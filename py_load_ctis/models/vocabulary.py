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
"""Controlled terms of the canonical study model."""

# Studies
NOT_APPLICABLE = "N/A"
UNKNOWN = "Unknown"
NONE = "None"
TITLE_UNKNOWN = "Unknown study title"
GENDER_ALL = "All"
GENDER_WOMEN = "Female"
GENDER_MEN = "Male"
AGE_IN_UTERO = "In utero"
# Not a maximum age as such, the CTIS secondary identifier only states a boundary
AGE_PRETERM = "Preterm newborn infants (up to gestational age<37 weeks)"
FEATURE_T_PHASE = "Phase"
TITLE_TYPE_SCIENTIFIC = "Scientific title"
CONTRIBUTOR_TYPE_SPONSOR = "Sponsor"

# Identifiers
ID_TYPE_TRIAL_REGISTRY = "Trial registry ID"
ID_TYPE_SPONSOR = "Sponsor's ID"

# Objects
O_CLASS_TEXT = "Text"
O_TYPE_STUDY_PROTOCOL = "Study protocol"
O_TYPE_TRIAL_REGISTRY_ENTRY = "Trial registry entry"
O_TYPE_ETHICS_APPROVAL_NOTIFICATION = "Ethics approval notification"
O_TITLE_REGISTRY_ENTRY = "Registry web page"
O_RESOURCE_TYPE_WEB_TEXT = "Web text"
DATE_TYPE_ISSUED = "Issued"
DATE_TYPE_UPDATED = "Updated"

# External vocabularies
CV_MEDDRA = "MedDRA"
CV_MESH_TREE = "MeSH Tree"

CTIS_TRIAL_URL = "https://euclinicaltrials.eu/search-for-clinical-trials/?lang=en&EUCT={trial_id}"
