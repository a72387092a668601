from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from openpyxl import load_workbook


ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "ncm_dashboard.cli"]
SAMPLE_CSV = ROOT / "sample-data" / "ncm_sample.csv"


class NcmDashboardCliTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmpdir.cleanup)
        self.tmp = Path(self._tmpdir.name)
        self.database_url = f"sqlite:///{self.tmp / 'cli.db'}"

    def run_cli(self, *args: str) -> subprocess.CompletedProcess[str]:
        env = dict(os.environ)
        env["NCM_DASHBOARD_LOG_DIR"] = str(self.tmp / "logs")
        env["NCM_ENABLE_ENRICHMENT"] = "0"
        return subprocess.run(
            [*CLI, "--database-url", self.database_url, *args],
            cwd=ROOT,
            capture_output=True,
            text=True,
            env=env,
        )

    def import_sample(self) -> dict:
        proc = self.run_cli("import", str(SAMPLE_CSV), "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        return json.loads(proc.stdout)

    def list_json(self, *args: str) -> dict:
        proc = self.run_cli("list", "--json", *args)
        self.assertEqual(proc.returncode, 0, proc.stderr)
        return json.loads(proc.stdout)

    def test_import_saves_rows_and_records_history(self):
        summary = self.import_sample()
        self.assertEqual(summary["contract"]["name"], "ncm_dashboard.import_summary")
        self.assertEqual(summary["status"], "saved")
        self.assertEqual(summary["rows_saved"], 3)
        self.assertEqual(len(summary["document_ids"]), 3)

        proc = self.run_cli("history", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        history = json.loads(proc.stdout)
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]["file_name"], "ncm_sample.csv")
        self.assertEqual(history[0]["total_rows"], 3)

    def test_dry_run_saves_nothing(self):
        proc = self.run_cli("import", str(SAMPLE_CSV), "--dry-run")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Dry run", proc.stdout)
        self.assertEqual(self.list_json()["total_records"], 0)

    def test_unsupported_input_returns_exit_2(self):
        bad = self.tmp / "notes.txt"
        bad.write_text("hello", encoding="utf-8")
        proc = self.run_cli("import", str(bad))
        self.assertEqual(proc.returncode, 2)
        self.assertIn("selecione um arquivo Excel", proc.stderr)

    def test_missing_input_returns_exit_1(self):
        proc = self.run_cli("import", str(self.tmp / "nope.csv"))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("File not found", proc.stderr)

    def test_list_sorts_and_filters(self):
        self.import_sample()
        listing = self.list_json("--sort", "NCM", "--desc")
        self.assertEqual(
            [record["NCM"] for record in listing["records"]],
            ["85171300", "39232190", "39191010"],
        )
        filtered = self.list_json("--query", "3923")
        self.assertEqual(filtered["total_records"], 1)

        proc = self.run_cli("list")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("3919.10.10", proc.stdout)
        self.assertIn("Page 1 of 1 (3 records)", proc.stdout)

    def test_create_requires_ncm_and_rejects_unknown_fields(self):
        proc = self.run_cli("create", "--set", "IPI=5")
        self.assertEqual(proc.returncode, 5)
        self.assertIn("NCM é obrigatório", proc.stderr)

        proc = self.run_cli("create", "--set", "NCM=1", "--set", "Bogus=2")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Bogus", proc.stderr)

        proc = self.run_cli("create", "--set", "NCM=84713012", "--set", "IPI=15")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        listing = self.list_json()
        self.assertEqual(listing["total_records"], 1)
        self.assertEqual(listing["records"][0]["id"], proc.stdout.strip())

    def test_delete_needs_confirmation(self):
        ids = self.import_sample()["document_ids"]
        proc = self.run_cli("delete", ids[0], ids[1])
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Tem certeza que deseja excluir 2 registro(s)?", proc.stderr)
        self.assertEqual(self.list_json()["total_records"], 3)

        proc = self.run_cli("delete", ids[0], ids[1], "--yes")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Deleted 2 records.", proc.stdout)
        self.assertEqual(self.list_json()["total_records"], 1)

    def test_export_writes_workbook(self):
        self.import_sample()
        output = self.tmp / "out" / "dados.xlsx"
        proc = self.run_cli("export", "-o", str(output))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Exported 3 records", proc.stderr)
        sheet = load_workbook(output)["Dados"]
        self.assertEqual(sheet.max_row, 4)
        self.assertEqual(sheet.cell(row=1, column=1).value, "NCM")

    def test_lookup_exit_codes(self):
        proc = self.run_cli("lookup", "3919.10.10", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertTrue(payload["found"])
        self.assertEqual(payload["unit"], "KG")

        proc = self.run_cli("lookup", "01012100", "--no-enrich")
        self.assertEqual(proc.returncode, 4)
        self.assertIn("systax.com.br", proc.stdout)

        proc = self.run_cli("lookup", "123")
        self.assertEqual(proc.returncode, 4)
        self.assertIn("NCM inválido", proc.stderr)

    def test_bad_arguments_return_exit_1(self):
        proc = self.run_cli("list", "--page", "abc")
        self.assertEqual(proc.returncode, 1)

    def test_version(self):
        proc = self.run_cli("version")
        self.assertEqual(proc.returncode, 0)
        self.assertEqual(proc.stdout.strip(), "0.1.0")


if __name__ == "__main__":
    unittest.main()
