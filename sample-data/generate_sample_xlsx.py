#!/usr/bin/env python3
"""
Generates sample-data/ncm_sample.xlsx, an NCM sheet laid out the way real
uploads tend to arrive.

Run from the repo root:
    python sample-data/generate_sample_xlsx.py

Quirks baked in:
  - A title row above the header row (header detection must skip it)
  - Header spellings that differ from the canonical field names
    ("Ultima atualizacao", "PIS ", "U$/KG\\nconsiderado", "Itajaí")
  - Percent columns mixing whole percents (18) and ratios (0.0965)
  - A real date cell, a serial number and an empty date
  - A fully blank row in the middle
  - An extra "Observação" column that maps to no field
"""

from datetime import datetime
from pathlib import Path

import openpyxl

OUTPUT = Path(__file__).parent / "ncm_sample.xlsx"

wb = openpyxl.Workbook()
ws = wb.active
ws.title = "Tributos"

ws.append(["Tabela de tributação - importação"])
ws.append([
    "NCM", "Ultima atualizacao", "CEST", "IVA", "II", "IPI", "PIS ", "COFINS",
    "ICMS", "U$/KG\nconsiderado", "Santos", "Itajaí", "Observação",
])

data = [
    ["3919.10.10", datetime(2024, 1, 15), None, 93, 18, 15, 2.1, 0.0965, 17, 4.25, 0.85, 0.92, "revisar"],
    [39232190, 45323, "01.002.00", 0.4, 16, 9.75, 2.1, 9.65, 18, 3.1, 0.6, 0.64, None],
    [None] * 13,
    ["8517.13.00", None, "21.053.00", 0, 16, 15, 2.1, 9.65, 12, 120.5, 1.2, 1.35, None],
]

for row in data:
    ws.append(row)

ws["B3"].number_format = "DD/MM/YYYY"

wb.save(OUTPUT)
print(f"Created: {OUTPUT}")
