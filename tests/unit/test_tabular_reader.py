from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import pytest

from otm_importer.tabular.reader import (
    HeaderRowError,
    MissingColumnsError,
    NoDataRowsError,
    UnreadableArtifactError,
    cell_text,
    decode_text,
    parse_line,
    read_artifact,
    read_spreadsheet,
    read_text,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, ""),
        ("  9 ", "9"),
        (30, "30"),
        (30.0, "30"),
        (12.5, "12.5"),
        (12.50, "12.5"),
        (float("nan"), ""),
        (Decimal("87.30"), "87.3"),
        (True, "1"),
        (date(2025, 3, 1), "2025-03-01"),
        (datetime(2025, 3, 1, 0, 0), "2025-03-01"),
    ],
)
def test_cell_text(value, expected):
    assert cell_text(value) == expected


@pytest.mark.parametrize(
    "line,expected",
    [
        ("101\t30\t25", ["101", "30", "25"]),
        ("101;30;25", ["101", "30", "25"]),
        ("101,30,25", ["101", "30", "25"]),
        ('101;"87,5";25', ["101", "87,5", "25"]),
        ("101, 30 ,25", ["101", "30", "25"]),
    ],
)
def test_parse_line_detects_delimiter_per_line(line, expected):
    assert parse_line(line) == expected


def test_read_text_maps_headers_and_keeps_line_numbers():
    text = "Pupil ID\tFan 1\tFan 2\tOna tili\tMatematika\tTarix\n\n101\t30\t25\t9\t8\t10\n102\t1\t2\t3\t4\t5\n"
    data = read_text(text)
    assert data.headers == ["pupil_id", "major1", "major2", "mandatory1", "mandatory2", "mandatory3"]
    assert [r.line for r in data.rows] == [3, 4]
    assert data.rows[0].get("major1") == "30"
    data.require_columns()


def test_read_text_tolerates_ragged_lines():
    text = "pupil_id,major1,major2,mandatory1,mandatory2,mandatory3\n101,30\n102,1,2,3,4,5,extra\n"
    data = read_text(text)
    short, long_ = data.rows
    assert short.get("mandatory3") == ""
    assert long_.get("col_7") == "extra"


def test_read_text_mixed_delimiters_across_lines():
    text = "pupil_id;major1;major2;mandatory1;mandatory2;mandatory3\n101\t30\t25\t9\t8\t10\n"
    data = read_text(text)
    assert data.rows[0].get("mandatory3") == "10"


def test_read_text_without_header_uses_positional_schema():
    data = read_text("101\t30\t25\t9\t8\t10\t7\n", has_header=False)
    row = data.rows[0]
    assert row.get("pupil_id") == "101"
    assert row.get("exam_id") == "7"
    assert data.has_header is False
    data.require_columns()  # positional input is never checked


def test_read_text_rejects_empty_paste():
    with pytest.raises(NoDataRowsError, match="Paste data is empty"):
        read_text("  \n\t\n")


def test_read_text_header_only_has_no_data_rows():
    with pytest.raises(NoDataRowsError):
        read_text("pupil_id,major1\n,\n")


def test_require_columns_lists_every_missing_column():
    data = read_text("pupil_id,major1\n101,30\n")
    with pytest.raises(MissingColumnsError) as e:
        data.require_columns()
    assert e.value.missing == ["major2", "mandatory1", "mandatory2", "mandatory3"]
    assert "Missing required column: major2" in str(e.value)


def test_read_spreadsheet_first_sheet(tmp_path: Path, make_xlsx):
    path = tmp_path / "scores.xlsx"
    path.write_bytes(
        make_xlsx(
            [
                ["Pupil ID", "Fan 1", "Fan 2", "Ona tili", "Matematika", "Tarix", "Fan 1 sertifikat"],
                [101, 30, 25, 9, 8, 10, 87.5],
                [None, None, None, None, None, None, None],
                [102, 1.0, 2, 3, 4, 5, None],
            ]
        )
    )
    data = read_spreadsheet(path)
    assert data.headers[:2] == ["pupil_id", "major1"]
    first, second = data.rows
    assert first.line == 2
    assert first.get("major1_percent") == "87.5"
    assert second.get("major1") == "1"
    assert second.get("major1_percent") == ""


def test_read_text_empty_header_row():
    with pytest.raises(HeaderRowError):
        read_text(",,,\n101,30\n")


def test_read_spreadsheet_unreadable(tmp_path: Path):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"PK\x03\x04 not really a workbook")
    with pytest.raises(UnreadableArtifactError):
        read_spreadsheet(path)


def test_read_artifact_csv_in_cp1251(tmp_path: Path):
    path = tmp_path / "scores.csv"
    text = "pupil_id;Fan 1;Fan 2;Ona tili;Matematika;Tarix;Примечание\n101;30;25;9;8;10;хорошо\n"
    path.write_bytes(text.encode("cp1251"))
    data = read_artifact(path)
    assert data.rows[0].get("major1") == "30"
    assert data.rows[0].get("примечание") == "хорошо"


def test_read_artifact_rejects_other_extensions(tmp_path: Path):
    path = tmp_path / "scores.xls"
    path.write_bytes(b"\xd0\xcf\x11\xe0")
    with pytest.raises(UnreadableArtifactError):
        read_artifact(path)


def test_decode_text_strips_bom():
    assert decode_text("\ufeffpupil_id".encode("utf-8")) == "pupil_id"
