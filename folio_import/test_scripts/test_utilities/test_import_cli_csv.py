"""
Test CSV reading of the import CLI.
"""
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[3]
sys.path.insert(0, str(PROJECT_ROOT))

from import_cli import read_csv


def test_read_csv_skips_blank_rows(tmp_path):
    path = tmp_path / "trades.csv"
    path.write_text("Ticker,Type,Shares\nAAPL,buy,10\n,,\n\nMSFT,sell,5\n", encoding="utf-8")

    assert read_csv(str(path)) == [["Ticker", "Type", "Shares"], ["AAPL", "buy", "10"], ["MSFT", "sell", "5"]]


def test_read_csv_strips_bom(tmp_path):
    path = tmp_path / "export.csv"
    path.write_bytes("\ufeffSymbol,Quantity\nAAPL,-5\n".encode("utf-8"))

    assert read_csv(str(path))[0] == ["Symbol", "Quantity"]
