"""Tests for the command-line entry point."""
import io
import json
import os
import shutil
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

from statementflow.main import main


STATEMENT = """NOVO BANCO
Fatura do Cartão de Crédito
N.º Cartão Nome
0342******9766 GOLD 360 ANDRE CRUZ SOUZA

Cartão n.º 0342******9766
05/01/2024 CONTINENTE CASCAIS 45,32
12/01/2024 WORTEN ALMADA 85,00

Pagamento a prestações
Prestações Ref.ª: 00122905
Transação: WORTEN ALMADA
N.º Prestação 3/6
Valor: 85,00
"""


class TestMain(unittest.TestCase):
    """Test CLI commands against a temporary data directory."""

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())
        self.config_path = self.test_dir / "config.yaml"
        self.config_path.write_text("llm:\n  enabled: false\nlogging:\n  level: WARNING\n", encoding="utf-8")
        self.statement = self.test_dir / "fatura.txt"
        self.statement.write_text(STATEMENT, encoding="utf-8")
        self.env = mock.patch.dict(os.environ, {"STATEMENTFLOW_HOME": str(self.test_dir / "home")})
        self.env.start()

    def tearDown(self):
        self.env.stop()
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def run_main(self, *args):
        out = io.StringIO()
        with redirect_stdout(out):
            code = main(["--config", str(self.config_path), *args])
        return code, out.getvalue()

    def test_ingest_to_output_file(self):
        output = self.test_dir / "payload.json"
        code, _ = self.run_main("ingest", str(self.statement), "--customer", "customer1", "--output", str(output))

        self.assertEqual(code, 0)
        with open(output, "r", encoding="utf-8") as f:
            data = json.load(f)
        self.assertEqual(data["documentType"], "credit_card")
        self.assertEqual(len(data["transactions"]), 2)

    def test_plans_listed_and_cleared(self):
        self.run_main("ingest", str(self.statement), "--customer", "customer1")

        code, out = self.run_main("list-plans", "--customer", "customer1")
        self.assertEqual(code, 0)
        self.assertIn("00122905", out)

        code, out = self.run_main("clear-plans", "--customer", "customer1")
        self.assertEqual(code, 0)
        self.assertIn("Cleared 1", out)

        _, out = self.run_main("list-plans", "--customer", "customer1")
        self.assertIn("No installment plans", out)

    def test_missing_file(self):
        code, _ = self.run_main("ingest", str(self.test_dir / "missing.pdf"))
        self.assertEqual(code, 1)

    def test_output_with_several_files(self):
        code, _ = self.run_main("ingest", str(self.statement), str(self.statement), "--output", "x.json")
        self.assertEqual(code, 2)

    def test_bad_config(self):
        self.config_path.write_text("processing:\n  max_concurrency: 0\n", encoding="utf-8")
        code, _ = self.run_main("list-plans")
        self.assertEqual(code, 2)


if __name__ == "__main__":
    unittest.main()
