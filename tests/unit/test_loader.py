import csv
import io
import json
from unittest.mock import MagicMock, patch

import pytest

from py_load_ctis.loaders.memory import MemoryLoader
from py_load_ctis.loaders.postgres import PostgresLoader, _rows_to_csv_stream, table_name

pytestmark = pytest.mark.unit


@pytest.fixture
def mock_psycopg():
    """Mocks the entire psycopg library via a patch, isolating loader from the DB."""
    with patch("py_load_ctis.loaders.postgres.psycopg") as mock_psycopg_lib:
        # Mock the context manager protocol for connect()
        mock_conn = MagicMock()
        mock_psycopg_lib.connect.return_value.__enter__.return_value = mock_conn
        yield mock_psycopg_lib, mock_conn


@pytest.fixture
def mock_cursor(mock_psycopg):
    _, mock_conn = mock_psycopg
    cursor = MagicMock()
    mock_conn.cursor.return_value.__enter__.return_value = cursor
    return cursor


def test_table_name():
    assert table_name("Study") == "study"
    assert table_name("StudyTopic") == "study_topic"
    assert table_name("ObjectDate") == "object_date"


def test_loader_get_conn(mock_psycopg):
    """Tests that get_conn initiates a connection and starts a transaction."""
    mock_psycopg_lib, mock_conn = mock_psycopg
    loader = PostgresLoader(dsn="test_dsn")

    with loader.get_conn() as conn:
        assert conn is mock_conn

    mock_psycopg_lib.connect.assert_called_once()
    assert mock_psycopg_lib.connect.call_args[0][0] == "test_dsn"
    mock_conn.transaction.assert_called_once()


def test_loader_prepare_schema(mock_psycopg, mock_cursor):
    """Tests that prepare_schema renders the DDL template for every entity table."""
    _, mock_conn = mock_psycopg

    loader = PostgresLoader(dsn="test_dsn", schema="my_schema")
    loader.prepare_schema(mock_conn)

    executed_sql = mock_cursor.execute.call_args[0][0]
    assert "CREATE SCHEMA IF NOT EXISTS my_schema" in executed_sql
    assert "CREATE TABLE IF NOT EXISTS my_schema.study (" in executed_sql
    assert "CREATE TABLE IF NOT EXISTS my_schema.object_instance (" in executed_sql
    assert "TRUNCATE TABLE my_schema.study_topic;" in executed_sql


def test_loader_prepare_schema_without_replace(mock_psycopg, mock_cursor):
    _, mock_conn = mock_psycopg

    PostgresLoader(dsn="test_dsn", replace=False).prepare_schema(mock_conn)

    assert "TRUNCATE" not in mock_cursor.execute.call_args[0][0]


def test_loader_bulk_load_stream(mock_psycopg, mock_cursor):
    """Tests that bulk_load_stream uses the cursor's copy method."""
    _, mock_conn = mock_psycopg
    mock_copy_context = MagicMock()
    mock_cursor.copy.return_value.__enter__.return_value = mock_copy_context

    loader = PostgresLoader(dsn="test_dsn")
    data_stream = io.BytesIO(b"1_Study,,{}")

    loader.bulk_load_stream("my_schema.my_table", data_stream, mock_conn)

    mock_cursor.copy.assert_called_once()
    copy_sql = str(mock_cursor.copy.call_args[0][0])
    assert "COPY" in copy_sql
    assert "my_schema" in copy_sql
    assert "my_table" in copy_sql
    assert "FORMAT CSV" in copy_sql
    mock_copy_context.write.assert_called_once_with(b"1_Study,,{}")


def test_loader_execute_sql(mock_psycopg, mock_cursor):
    """Tests that execute_sql passes the command through to the cursor."""
    _, mock_conn = mock_psycopg

    loader = PostgresLoader(dsn="test_dsn")
    loader.execute_sql("SELECT 1;", mock_conn)

    mock_cursor.execute.assert_called_once_with("SELECT 1;")


def test_loader_flush_loads_buffered_items(mock_psycopg):
    loader = PostgresLoader(dsn="test_dsn")
    loader.create_item("Study", {"item_id": "1_Study", "display_title": "Title"}, None)
    loader.create_item("StudyCountry", {"item_id": "2_StudyCountry"}, "1_Study")
    loader.create_item("StudyCountry", {"item_id": "3_StudyCountry"}, "1_Study")

    with patch.object(loader, "prepare_schema") as prepare_schema, patch.object(
        loader, "bulk_load_stream"
    ) as bulk_load_stream:
        loader.flush()

    prepare_schema.assert_called_once()
    tables = [c.args[0] for c in bulk_load_stream.call_args_list]
    assert tables == ["mdr.study", "mdr.study_country"]
    assert loader.rows == {}


def test_loader_flush_propagates_errors(mock_psycopg):
    loader = PostgresLoader(dsn="test_dsn")
    loader.create_item("Study", {"item_id": "1_Study"}, None)

    with patch.object(loader, "prepare_schema", side_effect=RuntimeError("boom")):
        with pytest.raises(RuntimeError, match="boom"):
            loader.flush()


def test_rows_to_csv_stream():
    """The JSON column is quoted by the CSV writer."""
    values = {"item_id": "2_StudyCountry", "country_name": "Côte d'Ivoire"}
    stream = _rows_to_csv_stream([("2_StudyCountry", "1_Study", json.dumps(values, ensure_ascii=False))])

    [row] = list(csv.reader(io.StringIO(stream.read().decode("utf-8"))))
    assert row[:2] == ["2_StudyCountry", "1_Study"]
    assert json.loads(row[2]) == values


def test_rows_to_csv_stream_null_parent():
    stream = _rows_to_csv_stream([("1_Study", None, "{}")])
    assert stream.read() == b'1_Study,,{}\r\n'


def test_memory_loader_keeps_items():
    loader = MemoryLoader()
    loader.create_item("Study", {"item_id": "1_Study"}, None)
    loader.create_item("StudyTitle", {"item_id": "2_StudyTitle"}, "1_Study")
    loader.flush()

    assert loader.items["StudyTitle"] == [{"item_id": "2_StudyTitle", "parent_id": "1_Study"}]
    assert loader.item_count == 2
    assert loader.flush_count == 1


def test_memory_loader_writes_json_lines(tmp_path):
    output = tmp_path / "studies.jsonl"
    loader = MemoryLoader(output=output)
    loader.create_item("Study", {"item_id": "1_Study", "display_title": "Étude"}, None)
    loader.flush()

    lines = output.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line) for line in lines] == [
        {"entity": "Study", "item_id": "1_Study", "display_title": "Étude", "parent_id": None},
    ]
