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
"""PostgreSQL sink using the native COPY command."""

import csv
import io
import json
import logging
import re
from collections import defaultdict
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, Iterator

import psycopg
from jinja2 import Environment, FileSystemLoader
from psycopg import sql
from psycopg.rows import dict_row

from py_load_ctis.loaders.base import BaseLoader
from py_load_ctis.models.canonical import ITEM_LINKS

logger = logging.getLogger(__name__)

SQL_DIR = Path(__file__).resolve().parent.parent / "sql"
ENTITY_NAMES = ("Study", *ITEM_LINKS)


def table_name(entity_name: str) -> str:
    """Snake case table name of an entity, e.g. "StudyTopic" -> "study_topic"."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", entity_name).lower()


class PostgresLoader(BaseLoader):
    """PostgreSQL implementation of the BaseLoader.

    Items are buffered per entity by `create_item`. `flush` creates the
    entity tables from the `create_tables.sql` template and loads every
    buffer with `COPY FROM STDIN`, all in one transaction.
    """

    def __init__(self, dsn: str, schema: str = "mdr", replace: bool = True):
        """Initializes the PostgresLoader with connection details.

        Args:
            dsn: The connection string for the PostgreSQL database.
            schema: The schema holding the entity tables.
            replace: Whether to empty the entity tables before loading.
        """
        self.dsn = dsn
        self.schema = schema
        self.replace = replace
        self.rows: dict[str, list[tuple[str, str | None, str]]] = defaultdict(list)
        self.jinja_env = Environment(
            loader=FileSystemLoader(SQL_DIR),
            autoescape=False,  # SQL is not HTML
        )

    @contextmanager
    def get_conn(self) -> Iterator[psycopg.Connection]:
        """Manages the PostgreSQL connection and transaction.

        Yields a connection object and handles commit on success or rollback on error.
        """
        with psycopg.connect(
            self.dsn,
            row_factory=dict_row,
        ) as conn, conn.transaction():
            yield conn

    def prepare_schema(self, conn: psycopg.Connection) -> None:
        """Creates the schema and entity tables if they don't exist."""
        template = self.jinja_env.get_template("create_tables.sql")
        ddl = template.render(
            schema=self.schema,
            tables=[table_name(name) for name in ENTITY_NAMES],
            replace=self.replace,
        )
        self.execute_sql(ddl, conn)

    def bulk_load_stream(
        self,
        target_table: str,
        data_stream: IO[bytes],
        conn: psycopg.Connection,
    ) -> None:
        """Uses `COPY FROM STDIN` to bulk load data into PostgreSQL.

        Args:
            target_table: The fully qualified name (e.g., "schema.table") to load into.
            data_stream: A file-like object containing CSV formatted data.
            conn: An active psycopg connection.
        """
        schema, table = target_table.split(".")
        qualified_table = sql.SQL("{}.{}").format(
            sql.Identifier(schema),
            sql.Identifier(table),
        )

        copy_sql = sql.SQL("COPY {} (item_id, parent_id, data) FROM STDIN WITH (FORMAT CSV)").format(
            qualified_table,
        )

        with conn.cursor() as cur, cur.copy(copy_sql) as copy:
            while data := data_stream.read(1024 * 1024):  # Read in 1MB chunks
                copy.write(data)

    def execute_sql(self, sql_string: str, conn: psycopg.Connection) -> None:
        """Executes an arbitrary SQL command.

        Args:
            sql_string: The SQL string to execute.
            conn: An active database connection object.
        """
        with conn.cursor() as cur:
            cur.execute(sql_string)

    def create_item(
        self, entity_name: str, values: dict[str, Any], parent_id: str | None,
    ) -> None:
        self.rows[entity_name].append(
            (values["item_id"], parent_id, json.dumps(values, ensure_ascii=False)),
        )

    def flush(self) -> None:
        with self.get_conn() as conn:
            self.prepare_schema(conn)
            for entity_name, rows in self.rows.items():
                target_table = f"{self.schema}.{table_name(entity_name)}"
                logger.info("Loading %d rows into %s", len(rows), target_table)
                self.bulk_load_stream(target_table, _rows_to_csv_stream(rows), conn)
        self.rows = defaultdict(list)


def _rows_to_csv_stream(rows: list[tuple[str, str | None, str]]) -> IO[bytes]:
    """Converts buffered rows to an in-memory CSV byte stream."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerows(rows)
    return io.BytesIO(buffer.getvalue().encode("utf-8"))
