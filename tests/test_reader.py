import io
import unittest
from datetime import datetime

from openpyxl import Workbook

from ncm_dashboard.codec import date_to_serial, ratio_to_percent_text
from ncm_dashboard.errors import ParseError
from ncm_dashboard.fields import EXPECTED_FIELDS, LAST_UPDATE_FIELD, USD_PER_KG_FIELD
from ncm_dashboard.reader import detect_header_row, parse, parse_rows


def xlsx_bytes(rows):
    wb = Workbook()
    ws = wb.active
    ws.title = "Tributos"
    for row in rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class HeaderDetectionTests(unittest.TestCase):
    def test_title_row_is_skipped(self):
        rows = [["Relatório de importação"], ["NCM", "IVA"], ["1234", "18"]]
        self.assertEqual(detect_header_row(rows), 1)

    def test_empty_leading_rows_are_skipped(self):
        rows = [[None, None], [None], ["Código", "CEST"], ["1", "2"]]
        self.assertEqual(detect_header_row(rows), 2)

    def test_only_first_three_rows_are_scanned(self):
        rows = [["a"], ["b"], ["c"], ["NCM"]]
        self.assertEqual(detect_header_row(rows), 0)


class ParseRowsTests(unittest.TestCase):
    def test_missing_fields_are_reported_and_defaulted(self):
        parsed = parse_rows([["NCM", "CEST"], ["39191010", "01.002.00"]], "Plan1")
        self.assertEqual(
            parsed["missing_fields"],
            [field for field in EXPECTED_FIELDS if field not in ("NCM", "CEST")],
        )
        row = parsed["rows"][0]
        for field in EXPECTED_FIELDS:
            self.assertIn(field, row)
        self.assertEqual(row["IVA"], "")
        self.assertEqual(row[LAST_UPDATE_FIELD], "")

    def test_blank_row_between_data_rows_is_dropped(self):
        parsed = parse_rows(
            [["NCM", "IVA"], ["1234", 18], [None, None], ["5678", 12]],
            "Plan1",
        )
        self.assertEqual([row["NCM"] for row in parsed["rows"]], ["1234", "5678"])

    def test_whitespace_only_row_is_dropped(self):
        parsed = parse_rows([["NCM"], ["   "], ["1234"]], "Plan1")
        self.assertEqual(len(parsed["rows"]), 1)

    def test_unknown_columns_are_kept_and_blank_headers_skipped(self):
        parsed = parse_rows([["NCM", None, "Observação"], ["1234", "lixo", "revisar"]], "Plan1")
        row = parsed["rows"][0]
        self.assertEqual(row["Observação"], "revisar")
        self.assertNotIn("", row)
        self.assertNotIn("lixo", row.values())
        self.assertEqual(parsed["raw_headers"], ["NCM", "", "Observação"])
        self.assertEqual(parsed["headers"], ["NCM", "Observação"])

    def test_header_variants_map_to_fields(self):
        parsed = parse_rows(
            [["Ultima Atualizacao", "PIS ", "U$/KG\nconsiderado", "Itajaí"], ["15/01/2024", 2.1, "4,25", 0.92]],
            "Plan1",
        )
        row = parsed["rows"][0]
        self.assertEqual(row[LAST_UPDATE_FIELD], date_to_serial(datetime(2024, 1, 15)))
        self.assertAlmostEqual(row["PIS"], 0.021)
        self.assertEqual(row[USD_PER_KG_FIELD], 4.25)
        self.assertEqual(row["Itajai"], 0.92)

    def test_short_rows_fill_remaining_fields(self):
        parsed = parse_rows([["NCM", "IVA", "CEST"], ["1234"]], "Plan1")
        self.assertEqual(parsed["rows"][0]["CEST"], "")

    def test_zero_rows_is_a_parse_error(self):
        with self.assertRaisesRegex(ParseError, "A planilha está vazia"):
            parse_rows([], "Plan1")


class ParseFileTests(unittest.TestCase):
    def test_two_row_csv_scenario(self):
        parsed = parse(b"NCM,IVA\n39191010,93\n1234,\n", "tributos.csv")
        first, second = parsed["rows"]
        self.assertEqual(first["NCM"], "39191010")
        self.assertEqual(first["IVA"], 0.93)
        self.assertEqual(second["IVA"], "")
        self.assertEqual(ratio_to_percent_text(first["IVA"]), "93,00%")

    def test_workbook_with_title_row_and_dates(self):
        raw = xlsx_bytes(
            [
                ["Tabela de tributação"],
                ["NCM", "Última Atualização", "IVA", "ICMS"],
                [39191010, datetime(2024, 1, 15), 93, 0.17],
                [None, None, None, None],
                ["8517.13.00", 45323, 0, 12],
            ]
        )
        parsed = parse(raw, "tributos.xlsx")
        self.assertEqual(parsed["sheet_name"], "Tributos")
        self.assertEqual(parsed["header_row_index"], 1)
        self.assertEqual(len(parsed["rows"]), 2)
        first, second = parsed["rows"]
        self.assertEqual(first["NCM"], "39191010")
        self.assertEqual(first[LAST_UPDATE_FIELD], date_to_serial(datetime(2024, 1, 15)))
        self.assertEqual(first["IVA"], 0.93)
        self.assertEqual(first["ICMS"], 0.17)
        self.assertEqual(second[LAST_UPDATE_FIELD], 45323)
        self.assertEqual(second["IVA"], 0)
        self.assertEqual(second["ICMS"], 0.12)

    def test_empty_csv_is_rejected(self):
        with self.assertRaises(ParseError):
            parse(b"", "vazio.csv")

    def test_unsupported_upload_is_rejected(self):
        with self.assertRaisesRegex(ParseError, r"\.xls, \.xlsx"):
            parse(b"NCM\n1234\n", "dados.txt")


if __name__ == "__main__":
    unittest.main()
