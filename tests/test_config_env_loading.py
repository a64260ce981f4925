from __future__ import annotations

import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]


def _import_config(bot_env_file: str, expression: str = "'ok'") -> subprocess.CompletedProcess[str]:
    """Import `config` in a fresh interpreter with BOT_ENV_FILE set and print `expression`."""
    env = os.environ.copy()
    env["BOT_ENV_FILE"] = bot_env_file
    return subprocess.run(
        [sys.executable, "-c", f"import os, config; print({expression})"],
        cwd=str(ROOT),
        env=env,
        capture_output=True,
        text=True,
    )


class ConfigEnvLoadingTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.env_path = Path(self._tmp.name) / "bot.env"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write_env(self, *lines: str) -> str:
        self.env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return str(self.env_path)

    def test_missing_bot_env_file_fails_fast(self) -> None:
        result = _import_config(str(Path(self._tmp.name) / "absent.env"))
        self.assertNotEqual(result.returncode, 0)
        details = (result.stdout + "\n" + result.stderr).lower()
        self.assertIn("bot_env_file", details)
        self.assertIn("does not exist", details)

    def test_directory_is_rejected(self) -> None:
        result = _import_config(self._tmp.name)
        self.assertNotEqual(result.returncode, 0)
        self.assertIn("IsADirectoryError", result.stderr)

    def test_override_file_wins_and_tolerates_bom(self) -> None:
        self.env_path.write_text("UNITTEST_BOT_ENV_FLAG=loaded\n", encoding="utf-8-sig")
        result = _import_config(str(self.env_path), "os.getenv('UNITTEST_BOT_ENV_FLAG', '')")
        self.assertEqual(result.returncode, 0, msg=result.stderr)
        self.assertEqual(result.stdout.strip(), "loaded")

    def test_trading_keys_are_parsed_and_clamped(self) -> None:
        path = self._write_env(
            "TRAIL_TIERS=0:25, 200:4,bad,60:150,80:8",
            "MONITOR_INTERVAL_SECONDS=0.2",
            "TRADE_PERCENT=250",
            "DRY_RUN=yes",
        )
        result = _import_config(
            path,
            "f'{config.TRAIL_TIERS}|{config.MONITOR_INTERVAL_SECONDS}|{config.TRADE_PERCENT}|{config.DRY_RUN}'",
        )
        self.assertEqual(result.returncode, 0, msg=result.stderr)
        self.assertEqual(result.stdout.strip(), "[(200.0, 4.0), (80.0, 8.0), (0.0, 25.0)]|1.0|100.0|True")


if __name__ == "__main__":
    unittest.main()
