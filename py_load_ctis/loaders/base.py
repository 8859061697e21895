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
"""Defines the abstract base class for canonical record sinks."""

from abc import ABC, abstractmethod
from typing import Any


class BaseLoader(ABC):
    """Abstract Base Class for all sinks of canonical items.

    A conversion run creates every item of its retained studies through
    `create_item` and then calls `flush` exactly once.
    """

    @abstractmethod
    def create_item(
        self, entity_name: str, values: dict[str, Any], parent_id: str | None,
    ) -> None:
        """Stages one item of a canonical entity.

        Args:
            entity_name: The entity of the item, e.g. "Study" or "StudyTopic".
            values: The item's field values, including its `item_id` key.
            parent_id: The item id of the owning item, None for studies.
        """
        ...

    @abstractmethod
    def flush(self) -> None:
        """Writes all staged items to the destination in a single batch."""
        ...
