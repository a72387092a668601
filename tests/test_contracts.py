import re
import unittest
from datetime import datetime

from ncm_dashboard.contracts import (
    CONTRACT_VERSIONS,
    build_contract,
    build_import_batch,
    build_import_summary,
    utc_now_iso,
)

PARSED = {
    "rows": [{"NCM": "39191010"}, {"NCM": "85171300"}],
    "headers": ["NCM", "IPI"],
    "sheet_name": "Plan1",
    "missing_fields": ["CEST"],
}


class ContractTests(unittest.TestCase):
    def test_every_contract_is_versioned(self):
        for name, version in CONTRACT_VERSIONS.items():
            self.assertEqual(build_contract(name), {"name": name, "version": version})
        with self.assertRaises(KeyError):
            build_contract("ncm_dashboard.unknown")

    def test_utc_timestamp_shape(self):
        self.assertRegex(utc_now_iso(), r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")

    def test_import_batch_merges_upload_metadata(self):
        stamp = datetime(2024, 3, 1, 10, 0)
        batch = build_import_batch(PARSED, {"file_name": "ncm.xlsx", "file_size": 2048}, stamp)
        self.assertEqual(batch["total_rows"], 2)
        self.assertEqual(batch["headers"], ["NCM", "IPI"])
        self.assertEqual(batch["sheet_name"], "Plan1")
        self.assertEqual(batch["uploaded_at"], stamp)
        self.assertEqual(batch["file_name"], "ncm.xlsx")
        self.assertEqual(batch["file_size"], 2048)

    def test_import_batch_without_metadata(self):
        batch = build_import_batch(PARSED, None, datetime(2024, 3, 1))
        self.assertNotIn("file_name", batch)

    def test_import_summary_saved_and_dry_run(self):
        saved = {"success": True, "total_rows": 2, "document_ids": ["a", "b"]}
        summary = build_import_summary(
            file_name="ncm.xlsx", parsed=PARSED, saved=saved, warnings=["Missing field: CEST"]
        )
        self.assertEqual(summary["contract"]["name"], "ncm_dashboard.import_summary")
        self.assertEqual(summary["status"], "saved")
        self.assertEqual(summary["rows_parsed"], 2)
        self.assertEqual(summary["rows_saved"], 2)
        self.assertEqual(summary["document_ids"], ["a", "b"])
        self.assertEqual(summary["missing_fields"], ["CEST"])
        self.assertEqual(summary["warnings_count"], 1)

        dry = build_import_summary(file_name="ncm.xlsx", parsed=PARSED)
        self.assertEqual(dry["status"], "dry_run")
        self.assertEqual(dry["rows_saved"], 0)
        self.assertEqual(dry["document_ids"], [])
        self.assertTrue(re.match(r"^\d{4}-", dry["generated_at"]))


if __name__ == "__main__":
    unittest.main()
