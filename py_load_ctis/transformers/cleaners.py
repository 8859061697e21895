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
"""Value cleaners applied to every raw field read from a registry export.

The cleaner is injected into the transformer, so registries with other
encodings can reuse the same assembly code.
"""

import abc

from py_load_ctis.utils import remove_quotes, unescape_html


class BaseValueCleaner(abc.ABC):
    """Abstract Base Class for per-registry value cleaning."""

    @abc.abstractmethod
    def clean_value(self, value: str, strip: bool = True) -> str:
        """Clean a raw field value according to the registry's encoding.

        Args:
            value: The raw value, as split by the CSV tokenizer.
            strip: Whether to strip leading and trailing whitespace.

        Returns:
            The cleaned value.
        """
        raise NotImplementedError


class CtisValueCleaner(BaseValueCleaner):
    """CTIS exports are plain CSV: only whitespace is removed."""

    def clean_value(self, value: str, strip: bool = True) -> str:
        return value.strip() if strip else value


class HtmlValueCleaner(BaseValueCleaner):
    """For exports with quoted, HTML-escaped values (e.g. the WHO ICTRP dump)."""

    def clean_value(self, value: str, strip: bool = True) -> str:
        value = unescape_html(remove_quotes(value))
        return value.strip() if strip else value
