import json
import unittest
from datetime import date

import codec
from errors import (
    EmptyFieldsError,
    EmptyFileError,
    HeaderMismatchError,
    InvalidFileError,
    UnsupportedFormatError,
)
from schemas.station import UNSET_DATE
from tests.helpers import sample_dataset

HEADERS = codec.FIRST_HEADER_LINE + "\n" + codec.SECOND_HEADER_LINE + "\n"

ROW_1 = '"1";"Gas station No. 1";"1001";"GS-1";"Central";"Arbat";"Arbat st., 1";"X";"01.01.2020";"{coordinates=[37.59, 55.75]}";"";\n'
ROW_2 = '"2";"Gas station No. 2";"1002";"GS-2";"Northern";"Airport";"Leningradsky ave., 5";"Y";"15.06.2021";"";"";\n'


def csv_bytes(*rows: str) -> bytes:
    return (HEADERS + "".join(rows)).encode("utf-8")


class CsvTests(unittest.TestCase):
    def test_reads_rows_after_both_header_lines(self) -> None:
        records = codec.decode(csv_bytes(ROW_1, ROW_2), ".csv")

        self.assertIsInstance(records, tuple)
        self.assertEqual([r.id for r in records], [1, 2])
        first = records[0]
        self.assertEqual(first.full_name, "Gas station No. 1")
        self.assertEqual(first.global_id, 1001)
        self.assertEqual(first.owner, "X")
        self.assertEqual(first.test_date, date(2020, 1, 1))
        self.assertEqual(first.geodata_center, "{coordinates=[37.59, 55.75]}")

    def test_accepts_utf8_bom(self) -> None:
        records = codec.decode(b"\xef\xbb\xbf" + csv_bytes(ROW_1), ".CSV")
        self.assertEqual(len(records), 1)

    def test_header_mismatch(self) -> None:
        raw = ('"ID";"Name";\n' + codec.SECOND_HEADER_LINE + "\n" + ROW_1).encode("utf-8")
        with self.assertRaises(HeaderMismatchError):
            codec.decode(raw, ".csv")

    def test_too_short_file(self) -> None:
        with self.assertRaises(InvalidFileError):
            codec.decode(codec.FIRST_HEADER_LINE.encode("utf-8"), ".csv")

    def test_headers_only_is_empty(self) -> None:
        with self.assertRaises(EmptyFileError):
            codec.decode(csv_bytes(), ".csv")

    def test_non_numeric_id_is_invalid(self) -> None:
        row = ROW_1.replace('"1";"Gas', '"one";"Gas', 1)
        with self.assertRaises(InvalidFileError):
            codec.decode(csv_bytes(row), ".csv")

    def test_every_record_missing_a_field(self) -> None:
        row = ROW_1.replace('"X"', '""')
        with self.assertRaises(EmptyFieldsError) as ctx:
            codec.decode(csv_bytes(row), ".csv")
        self.assertEqual(ctx.exception.message, "All fields of one type are empty or null.")

    def test_written_csv_has_both_headers_and_quoted_values(self) -> None:
        content, filename = codec.encode(sample_dataset(), ".csv")
        lines = content.decode("utf-8").splitlines()

        self.assertEqual(filename, "Updated data.csv")
        self.assertEqual(lines[0], codec.FIRST_HEADER_LINE)
        self.assertEqual(lines[1], codec.SECOND_HEADER_LINE)
        self.assertEqual(len(lines), 2 + len(sample_dataset()))
        self.assertTrue(lines[2].startswith('"1";"Gas station No. 1";"1001";'))
        self.assertIn('"01.01.2020"', lines[2])

    def test_written_csv_reads_back(self) -> None:
        content, _ = codec.encode(sample_dataset(), ".csv")
        self.assertEqual(codec.decode(content, ".csv"), sample_dataset())


class JsonTests(unittest.TestCase):
    def test_reads_aliased_keys(self) -> None:
        payload = [{
            "ID": 1, "FullName": "Gas station No. 1", "global_id": 1001, "ShortName": "GS-1",
            "AdmArea": "Central", "District": "Arbat", "Address": "Arbat st., 1", "Owner": "X",
            "TestDate": "2020-01-01T00:00:00", "geodata_center": "", "geoarea": "",
        }]
        records = codec.decode(json.dumps(payload).encode("utf-8"), ".json")
        self.assertEqual(records[0].test_date, date(2020, 1, 1))
        self.assertEqual(records[0].district, "Arbat")

    def test_missing_date_is_unset(self) -> None:
        payload = [{"ID": 1, "FullName": "A", "global_id": 2, "Owner": "X"}]
        with self.assertRaises(EmptyFieldsError):
            codec.decode(json.dumps(payload).encode("utf-8"), ".json")
        self.assertEqual(codec.format_date(UNSET_DATE), "")

    def test_all_blank_records(self) -> None:
        with self.assertRaises(EmptyFieldsError) as ctx:
            codec.decode(b"[{}, {}]", ".json")
        self.assertEqual(ctx.exception.message, "All fields are empty or null.")

    def test_invalid_json(self) -> None:
        for raw in (b"{not json", b'{"ID": 1}'):
            with self.assertRaises(InvalidFileError):
                codec.decode(raw, ".json")

    def test_empty_array(self) -> None:
        with self.assertRaises(EmptyFileError):
            codec.decode(b"[]", ".json")

    def test_written_json(self) -> None:
        content, filename = codec.encode(sample_dataset()[:1], ".json")
        payload = json.loads(content.decode("utf-8"))

        self.assertEqual(filename, "Updated data.json")
        self.assertEqual(payload[0]["ID"], 1)
        self.assertEqual(payload[0]["Owner"], "X")
        self.assertEqual(payload[0]["TestDate"], "2020-01-01")


class FormatTests(unittest.TestCase):
    def test_detect_format(self) -> None:
        self.assertEqual(codec.detect_format("Data.CSV"), ".csv")
        self.assertEqual(codec.detect_format("export.json"), ".json")
        self.assertEqual(codec.detect_format("notes"), "")

    def test_unsupported_format(self) -> None:
        with self.assertRaises(UnsupportedFormatError) as ctx:
            codec.decode(b"x", ".txt")
        self.assertIn(".txt", ctx.exception.message)

    def test_encode_nothing(self) -> None:
        with self.assertRaises(EmptyFileError):
            codec.encode((), ".json")


if __name__ == "__main__":
    unittest.main()
