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
"""Command line entry point of the CTIS loader."""

import logging
from datetime import datetime, timezone
from pathlib import Path

import typer

from py_load_ctis.config import Settings, load_config
from py_load_ctis.extractor.ctis import open_extractor
from py_load_ctis.loaders.base import BaseLoader
from py_load_ctis.loaders.memory import MemoryLoader
from py_load_ctis.loaders.postgres import PostgresLoader
from py_load_ctis.log import configure_logging
from py_load_ctis.transformers.ctis import TrialTransformer

logger = logging.getLogger(__name__)

app = typer.Typer(help="Load the CTIS public trials export into the canonical study model.")


@app.callback()
def callback() -> None:
    """CTIS loader."""


@app.command()
def run(
    input_file: Path = typer.Argument(..., help="CTIS CSV export to convert."),
    config_file: str = typer.Option("config.yaml", help="Path to YAML config file."),
    output: Path = typer.Option(
        None, help="Write the records as JSON Lines to this file instead of PostgreSQL.",
    ),
    log_dir: Path = typer.Option(None, help="Override the log directory."),
):
    """Convert a CTIS export and load the resulting studies."""
    config = load_config(config_file)
    settings = Settings(**config)
    if log_dir is not None:
        settings.log_dir = log_dir

    log_file = configure_logging(
        settings.log_dir, suffix=settings.data_source_name.lower(), level=settings.log_level,
    )
    start_time = datetime.now(timezone.utc)
    logger.info(
        "Converting %s (%s, %s), logging to %s",
        input_file,
        settings.data_source_name,
        settings.dataset_title,
        log_file,
    )

    loader: BaseLoader
    if output is not None:
        loader = MemoryLoader(output=output)
    else:
        loader = PostgresLoader(dsn=settings.db_connection_string, schema=settings.db_schema)

    transformer = TrialTransformer()
    try:
        with open_extractor(input_file) as extractor:
            session = transformer.process(extractor)
            malformed_rows = extractor.malformed_rows
        flushed = session.flush(loader)
    except Exception as e:
        logger.error("Conversion failed: %s", e, exc_info=True)
        raise typer.Exit(code=1)
    finally:
        duration = datetime.now(timezone.utc) - start_time
        logger.info("Conversion finished in %s.", duration)

    logger.info(
        "Rows read: %d, malformed: %d, rejected: %d, failed: %d, studies flushed: %d",
        transformer.rows_read,
        malformed_rows,
        session.rejected_rows,
        transformer.failed_rows,
        flushed,
    )


def main():
    app()


if __name__ == "__main__":
    main()
