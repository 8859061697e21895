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
"""Cross-row state of one conversion run: resubmissions and staged studies."""

import itertools
import logging
from typing import TypeVar

from py_load_ctis.loaders.base import BaseLoader
from py_load_ctis.models.canonical import CanonicalItem, Study
from py_load_ctis.utils import is_pos_whole_number

logger = logging.getLogger(__name__)

# e.g. 2023-503698-11-00: base identifier, separator, resubmission number
TRIAL_ID_LENGTH = 17
BASE_ID_LENGTH = 14

ItemT = TypeVar("ItemT", bound=CanonicalItem)


class ConverterSession:
    """Owns the identity map and the staging cache of a single conversion run.

    `resubmissions` maps each base identifier to the highest resubmission
    number seen so far, and `studies` holds the study assembled from that
    resubmission. Studies are only handed to a loader by `flush()`, once the
    whole input has been read, so a later resubmission can replace an earlier
    one.
    """

    def __init__(self) -> None:
        self.resubmissions: dict[str, int] = {}
        self.studies: dict[str, Study] = {}
        self.rejected_rows = 0
        self.flushed = False
        self._item_ids = itertools.count(1)

    def resolve(
        self, trial_id: str | None, log: logging.Logger | logging.LoggerAdapter = logger,
    ) -> str | None:
        """Decide whether a row with this trial number should be converted.

        Returns the base identifier if the row's resubmission is the highest
        seen so far, evicting any study staged from a lower resubmission.
        Returns None, without changing any state, if the trial number is
        malformed or its resubmission is not higher than the one already seen.
        """
        if trial_id is None or len(trial_id) != TRIAL_ID_LENGTH:
            log.warning(
                "Trial number is not %d characters long, skipping row: %s",
                TRIAL_ID_LENGTH,
                trial_id,
            )
            self.rejected_rows += 1
            return None

        base_id = trial_id[:BASE_ID_LENGTH]
        suffix = trial_id[BASE_ID_LENGTH + 1:]
        if not is_pos_whole_number(suffix):
            log.warning(
                "Couldn't parse resubmission number of trial number, skipping row: %s",
                trial_id,
            )
            self.rejected_rows += 1
            return None

        resubmission = int(suffix)
        resolved = self.resubmissions.get(base_id)
        if resolved is not None and resubmission <= resolved:
            log.warning(
                "Resubmission %02d is not newer than already parsed resubmission %02d, "
                "skipping row",
                resubmission,
                resolved,
            )
            self.rejected_rows += 1
            return None

        if base_id in self.studies:
            del self.studies[base_id]
            log.info(
                "Replacing study of resubmission %02d with resubmission %02d",
                resolved,
                resubmission,
            )
        self.resubmissions[base_id] = resubmission
        return base_id

    def create_item(self, item_class: type[ItemT], **values) -> ItemT:
        """Instantiate a canonical item with a new, run-unique item id."""
        return item_class(item_id=f"{next(self._item_ids)}_{item_class.entity_name}", **values)

    def stage(self, base_id: str, study: Study) -> None:
        self.studies[base_id] = study

    def flush(self, loader: BaseLoader) -> int:
        """Write every staged study and its dependent items to the loader.

        Returns:
            The number of studies written.

        Raises:
            RuntimeError: If the session has already been flushed.
        """
        if self.flushed:
            raise RuntimeError("Session has already been flushed.")

        for study in self.studies.values():
            self._create_items(loader, study, None)
        loader.flush()

        count = len(self.studies)
        self.flushed = True
        self.studies = {}
        logger.info("Flushed %d studies.", count)
        return count

    def _create_items(
        self, loader: BaseLoader, item: CanonicalItem, parent_id: str | None,
    ) -> None:
        loader.create_item(item.entity_name, item.field_values(), parent_id)
        for child in item.children():
            self._create_items(loader, child, item.item_id)
