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
"""Manages the application's configuration using Pydantic."""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Manages configuration for the CTIS loader.

    Reads settings from environment variables with the prefix 'CTIS_'.
    """

    model_config = SettingsConfigDict(env_prefix="CTIS_")

    # Database connection settings
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgres"
    # S105: Hardcoded password is used for local development.
    # In production, this should be set via environment variables.
    db_password: str = "postgres"
    db_name: str = "ctis"
    db_schema: str = "mdr"

    # Logging
    log_dir: Path = Path("logs")
    log_level: str = "INFO"

    # Provenance of the loaded dataset
    data_source_name: str = "CTIS"
    dataset_title: str = "CTIS_trials_20241202"

    @computed_field
    @property
    def db_connection_string(self) -> str:
        """Construct the libpq connection string from individual settings."""
        return (
            f"host='{self.db_host}' port='{self.db_port}' "
            f"user='{self.db_user}' password='{self.db_password}' "
            f"dbname='{self.db_name}'"
        )


def load_config(config_file: str | Path | None) -> dict[str, Any]:
    """Loads configuration overrides from a YAML file."""
    if config_file:
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning("Config file not found: %s", config_file)
    return {}
