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
"""Reads the CTIS public portal CSV export row by row."""

import csv
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

logger = logging.getLogger(__name__)

BOM = "\ufeff"
# Some free-text fields (endpoints, products) exceed the default 128 KiB limit
FIELD_SIZE_LIMIT = 2**31 - 1


class CtisFileExtractor:
    """Tokenizes a comma-separated, double-quoted CTIS export.

    The first row is the header row. A malformed line is logged and skipped,
    the following rows are still read.
    """

    def __init__(self, stream: IO[str]) -> None:
        csv.field_size_limit(FIELD_SIZE_LIMIT)
        self.reader = csv.reader(stream, delimiter=",", quotechar='"', strict=True)
        self.malformed_rows = 0

    def read_headers(self) -> dict[str, int]:
        """Reads the header row and maps each header name to its column index.

        Raises:
            ValueError: If the input has no header row.
        """
        headers = next(self.reader, None)
        if not headers:
            raise ValueError("CTIS data file has no header row.")
        # The export may start with an invisible byte order mark
        if headers[0].startswith(BOM):
            headers[0] = headers[0][len(BOM):]
        return {header: ind for ind, header in enumerate(headers)}

    def iter_rows(self) -> Iterator[list[str]]:
        """Yields the raw field values of each data row, in file order."""
        while True:
            try:
                row = next(self.reader)
            except StopIteration:
                return
            except csv.Error as e:
                self.malformed_rows += 1
                logger.warning(
                    "Found malformed line, skipping it (line %d): %s", self.reader.line_num, e,
                )
                continue
            if row:
                yield row


@contextmanager
def open_extractor(path: str | Path) -> Iterator[CtisFileExtractor]:
    """Opens a CTIS export file and yields an extractor reading it."""
    with open(path, "r", encoding="utf-8", newline="") as f:
        yield CtisFileExtractor(f)
