"""Tests for reading and writing spreadsheet files."""

import io

import pandas as pd
import pytest

from grid_engine.spreadsheet_io import cleanup_data, file_extension, grid_to_csv_text, parse_file, save_grid


class TestParseFile:
    def test_csv_bytes(self):
        grid = parse_file(b"Part No,Qty,Price\nA-1,3,2.50\n,,\nB-2,,7\n", "parts.csv")
        assert grid == [["Part No", "Qty", "Price"], ["A-1", "3", "2.50"], ["B-2", "", "7"]]

    def test_xlsx_first_sheet_only(self):
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            pd.DataFrame([["Part No", "Qty"], ["A-1", 3], ["B-2", 2.5]]).to_excel(
                writer, sheet_name="Parts", index=False, header=False)
            pd.DataFrame([["Other"]]).to_excel(writer, sheet_name="Notes", index=False, header=False)
        buffer.seek(0)

        grid = parse_file(buffer, "parts.xlsx")
        assert grid == [["Part No", "Qty"], ["A-1", "3"], ["B-2", "2.5"]]

    def test_csv_with_ragged_rows(self):
        grid = parse_file(b"Part No,Qty\nA-1,2\nB-2,3,extra note\n", "parts.csv")
        assert grid == [["Part No", "Qty", ""], ["A-1", "2", ""], ["B-2", "3", "extra note"]]

    def test_csv_quoted_newline_and_bom(self):
        grid = parse_file('\ufeffPart No,Note\nA-1,"two\nlines"\n'.encode("utf-8"), "parts.csv")
        assert grid == [["Part No", "Note"], ["A-1", "two\nlines"]]

    def test_ragged_csv_reference_renders_as_text(self):
        text = grid_to_csv_text(b"A,B\n1,2,3\n", "ref.csv")
        assert text == "A,B,\n1,2,3\n"

    def test_unsupported_extension(self):
        with pytest.raises(ValueError):
            parse_file(b"data", "notes.txt")

    def test_csv_text_for_the_model(self):
        assert grid_to_csv_text(b"A,B\n1,2\n", "ref.csv") == "A,B\n1,2\n"


class TestHelpers:
    def test_cleanup_drops_blank_rows(self):
        assert cleanup_data([["a", None], None, [" ", ""], [float("nan"), 1.0]]) == [["a", ""], ["", "1"]]

    def test_file_extension(self):
        assert file_extension("Report.XLSX") == "xlsx"
        assert file_extension("no_extension") == ""


class TestSaveGrid:
    def test_csv_pads_ragged_rows(self):
        output = save_grid([["A", "B", "C"], ["1"]], "csv")
        assert output.read().decode("utf-8") == "A,B,C\n1,,\n"

    def test_xlsx_round_trip(self):
        grid = [["Part No", "Net Price"], ["A-1", "12.50"]]
        assert parse_file(save_grid(grid, "xlsx"), "out.xlsx") == grid

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            save_grid([["A"]], "ods")
