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
"""Log setup and the per-trial log adapter used by the converter."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, MutableMapping

LOG_FORMAT = "%(asctime)s.%(msecs)03d - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d_%H:%M:%S"


def configure_logging(
    log_dir: Path, suffix: str = "ctis", level: str | int = logging.INFO,
) -> Path:
    """Attach a timestamped log file and a console handler to the root logger.

    Args:
        log_dir: Directory for the log file, created if it does not exist.
        suffix: Suffix of the log file name, e.g. the data source.
        level: Root logger level.

    Returns:
        The path of the log file that was opened.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"{timestamp}_{suffix}.log"

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(file_handler)
    root.addHandler(console_handler)
    return log_file


class TrialLogAdapter(logging.LoggerAdapter):
    """Prefixes log messages with the trial number currently being parsed.

    The trial number is optional; without one the message is logged as-is.
    """

    def __init__(self, logger: logging.Logger, trial_id: str | None = None) -> None:
        super().__init__(logger, {"trial_id": trial_id})

    @property
    def trial_id(self) -> str | None:
        return self.extra["trial_id"]

    @trial_id.setter
    def trial_id(self, value: str | None) -> None:
        self.extra["trial_id"] = value

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any],
    ) -> tuple[Any, MutableMapping[str, Any]]:
        if self.trial_id:
            return f"{self.trial_id} - {msg}", kwargs
        return msg, kwargs
