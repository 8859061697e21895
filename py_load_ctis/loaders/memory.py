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
"""An in-memory sink, optionally written out as JSON Lines."""

import json
import logging
from collections import defaultdict
from pathlib import Path
from typing import Any

from py_load_ctis.loaders.base import BaseLoader

logger = logging.getLogger(__name__)


class MemoryLoader(BaseLoader):
    """Keeps created items in memory, grouped by entity.

    If `output` is set, `flush` writes one JSON object per item to that file,
    with `entity` and `parent_id` keys next to the item's values.
    """

    def __init__(self, output: Path | None = None) -> None:
        self.output = output
        self.items: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.flush_count = 0

    def create_item(
        self, entity_name: str, values: dict[str, Any], parent_id: str | None,
    ) -> None:
        self.items[entity_name].append({**values, "parent_id": parent_id})

    def flush(self) -> None:
        if self.output is not None:
            with open(self.output, "w", encoding="utf-8") as f:
                for entity_name, rows in self.items.items():
                    for row in rows:
                        f.write(json.dumps({"entity": entity_name, **row}, ensure_ascii=False))
                        f.write("\n")
            logger.info("Wrote %d items to %s", self.item_count, self.output)
        self.flush_count += 1

    @property
    def item_count(self) -> int:
        return sum(len(rows) for rows in self.items.values())
