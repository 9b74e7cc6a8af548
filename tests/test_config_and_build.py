import json
import os
import sys
import tempfile
import unittest


sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))


from sqn.config import load_config  # noqa: E402
from sqn.runner import build_runner  # noqa: E402
from sqn.timer import RepeatingTimer  # noqa: E402


def _write_config(td: str, cfg: dict) -> str:
    path = os.path.join(td, "config.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(cfg, f, ensure_ascii=False)
    return path


class TestConfigAndBuild(unittest.TestCase):
    def test_load_config_applies_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            config = load_config(_write_config(td, {"server": {"url": "https://sonar.example.com"}}))

        self.assertEqual(config.server.url, "https://sonar.example.com")
        self.assertIsNone(config.server.login_env)
        self.assertEqual(config.server.timeout_seconds, 100)
        self.assertIsNone(config.project_key)
        self.assertTrue(config.notifications.enabled)
        self.assertEqual(config.notifications.poll_interval_seconds, 60)
        self.assertEqual(config.sqlite_path, "./sqn_state.sqlite3")

    def test_load_config_clamps_poll_interval(self) -> None:
        cfg = {
            "server": {"url": "https://sonar.example.com"},
            "notifications": {"poll_interval_seconds": 0},
        }
        with tempfile.TemporaryDirectory() as td:
            config = load_config(_write_config(td, cfg))
        self.assertEqual(config.notifications.poll_interval_seconds, 1)

    def test_load_config_requires_server_url(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = _write_config(td, {"server": {}})
            with self.assertRaises(ValueError):
                load_config(path)

    def test_build_runner_resolves_credentials_from_env(self) -> None:
        cfg = {
            "server": {"url": "https://sonar.example.com", "login_env": "SQN_TEST_TOKEN"},
            "project_key": "my:project",
            "notifications": {"poll_interval_seconds": 30},
            "state": {"sqlite_path": ":memory:"},
        }
        with tempfile.TemporaryDirectory() as td:
            path = _write_config(td, cfg)
            os.environ["SQN_TEST_TOKEN"] = "t"
            try:
                config = load_config(path)
                runner = build_runner(config)
                connection = runner.connection_information()
            finally:
                os.environ.pop("SQN_TEST_TOKEN", None)

        self.assertEqual(connection.server_uri, "https://sonar.example.com")
        self.assertEqual(connection.login, "t")
        self.assertIsNone(connection.password)
        self.assertFalse(runner.session.is_connected)
        self.assertIsInstance(runner.poller._timer, RepeatingTimer)  # noqa: SLF001
        self.assertEqual(runner.poller._timer.interval_seconds, 30)  # noqa: SLF001
