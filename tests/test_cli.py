import argparse
import io
import json
import struct
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

from fake_ledger import FakeLedger
from solders.pubkey import Pubkey

from scriptorium.accounts import find_inscription_metadata_pda, find_inscription_shard_pda
from scriptorium.cli import _collect_mints, main
from scriptorium.config import SolanaCliConfig
from scriptorium.constants import KEY_INSCRIPTION_SHARD


class _ConnectedLedger(FakeLedger):
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None


def _run_main(argv: list[str]) -> tuple[int, str]:
    buf = io.StringIO()
    with patch("scriptorium.config.load_solana_cli_config", return_value=SolanaCliConfig()), redirect_stdout(buf):
        code = main(argv)
    return code, buf.getvalue()


class CollectMintsTests(unittest.TestCase):
    def test_merges_flags_and_json_file_without_duplicates(self) -> None:
        first, second = str(Pubkey.new_unique()), str(Pubkey.new_unique())
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "mints.json"
            path.write_text(json.dumps([first, second]))
            mints = _collect_mints(argparse.Namespace(mint=[first, first], mints_file=str(path)))
        self.assertEqual([str(m) for m in mints], [first, second])

    def test_line_file(self) -> None:
        mint = str(Pubkey.new_unique())
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "mints.txt"
            path.write_text(f"\n{mint}\n\n")
            mints = _collect_mints(argparse.Namespace(mint=None, mints_file=str(path)))
        self.assertEqual([str(m) for m in mints], [mint])

    def test_rejects_empty_and_malformed_input(self) -> None:
        with self.assertRaises(ValueError):
            _collect_mints(argparse.Namespace(mint=None, mints_file=None))
        with self.assertRaises(ValueError):
            _collect_mints(argparse.Namespace(mint=["not-a-key"], mints_file=None))
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "mints.json"
            path.write_text('{"mint": "x"}')
            with self.assertRaises(ValueError):
                _collect_mints(argparse.Namespace(mint=None, mints_file=str(path)))


class MainTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.payload_path = Path(self.tmp.name) / "payload.bin"
        self.payload = bytes((i * 13) % 256 for i in range(1200))
        self.payload_path.write_bytes(self.payload)
        self.account = Pubkey.new_unique()
        self.ledger = _ConnectedLedger()

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_missing_payload_file_returns_1(self) -> None:
        code, out = _run_main(["verify", str(Path(self.tmp.name) / "missing.bin"), "--account", str(self.account)])
        self.assertEqual(code, 1)
        self.assertIn("Payload not found", out)

    def test_mismatched_metadata_account_is_rejected_before_connecting(self) -> None:
        with patch("scriptorium.cli._connect") as connect:
            code, out = _run_main(
                [
                    "inscribe",
                    "file",
                    str(self.payload_path),
                    "--account",
                    str(self.account),
                    "--metadata-account",
                    str(Pubkey.new_unique()),
                ]
            )
        self.assertEqual(code, 1)
        self.assertIn("does not match derived address", out)
        connect.assert_not_called()

    def test_skip_everything_is_rejected(self) -> None:
        code, out = _run_main(["inscribe", "nft", "--mint", str(Pubkey.new_unique()), "--skip-json", "--skip-media"])
        self.assertEqual(code, 1)
        self.assertIn("nothing to inscribe", out)

    def test_inscribe_file_writes_payload(self) -> None:
        self.ledger.create_account(self.account)
        with patch("scriptorium.cli._connect", return_value=self.ledger):
            code, out = _run_main(
                ["inscribe", "file", str(self.payload_path), "--account", str(self.account), "--rpc-url", "http://127.0.0.1:8899"]
            )
        self.assertEqual(code, 0)
        self.assertEqual(self.ledger.data(self.account), self.payload)
        self.assertIn("Inscribed 1200 bytes (1 allocations, 3 writes)", out)
        self.assertIn(f"https://igw.metaplex.com/localnet/{self.account}", out)
        metadata_account, _ = find_inscription_metadata_pda(self.account)
        self.assertNotIn(metadata_account, self.ledger.accounts)

    def test_inscribe_file_on_missing_account_fails(self) -> None:
        with patch("scriptorium.cli._connect", return_value=self.ledger):
            code, out = _run_main(["inscribe", "file", str(self.payload_path), "--account", str(self.account)])
        self.assertEqual(code, 1)
        self.assertIn("Account does not exist", out)

    def test_verify_reports_match_and_mismatch(self) -> None:
        self.ledger.create_account(self.account, self.payload)
        with patch("scriptorium.cli._connect", return_value=self.ledger):
            code, out = _run_main(["verify", str(self.payload_path), "--account", str(self.account)])
        self.assertEqual(code, 0)
        self.assertIn("matches", out)

        self.ledger.create_account(self.account, self.payload[:-1])
        with patch("scriptorium.cli._connect", return_value=self.ledger):
            code, out = _run_main(["verify", str(self.payload_path), "--account", str(self.account)])
        self.assertEqual(code, 1)
        self.assertIn("does not match", out)

    def test_fetch_nft_reports_uninscribed_mint(self) -> None:
        output = Path(self.tmp.name) / "inscriptions.json"
        with patch("scriptorium.cli._connect", return_value=self.ledger):
            code, out = _run_main(["fetch", "nft", "--mint", str(Pubkey.new_unique()), "-o", str(output)])
        self.assertEqual(code, 1)
        self.assertIn("Account does not exist", out)
        self.assertFalse(output.exists())

    def test_shards_fetch_writes_json(self) -> None:
        address, _ = find_inscription_shard_pda(2)
        self.ledger.create_account(address, struct.pack("<BBBQ", KEY_INSCRIPTION_SHARD, 254, 2, 4))
        output = Path(self.tmp.name) / "out" / "shards.json"
        with patch("scriptorium.cli._connect", return_value=self.ledger):
            code, _out = _run_main(["shards", "fetch", "-s", "2", "-o", str(output)])
        self.assertEqual(code, 0)
        written = json.loads(output.read_text())
        self.assertEqual(written[0]["shardNumber"], 2)
        self.assertEqual(written[0]["realCount"], str(4 * 32 + 2))


if __name__ == "__main__":
    unittest.main()
