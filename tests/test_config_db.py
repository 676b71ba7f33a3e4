import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from pydantic import ValidationError

from safely.dal import db
from safely.infra.config import AppSettings, DBSettings, RetrySettings, load_app_config, load_settings

CONFIG = {
    "app_name": "ledger",
    "db": {"host": "db.local", "user": "app", "password": "p@ss:word", "database": "ledger"},
    "retry": {"max_tries": 3, "base_sleep": 0.05},
}


class ConfigTests(unittest.TestCase):
    def test_load_settings(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "app.json"
            path.write_text(json.dumps(CONFIG), encoding="utf-8")
            settings = load_settings(path)
        self.assertEqual(settings.app_name, "ledger")
        self.assertEqual(settings.db.port, 3306)
        self.assertEqual(settings.db.driver, "mysql+pymysql")
        self.assertEqual(settings.retry.max_tries, 3)
        self.assertFalse(settings.logging.console)

    def test_load_app_config_missing(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(FileNotFoundError):
                load_app_config(Path(tmp))

    def test_load_app_config(self):
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / "config").mkdir()
            (Path(tmp) / "config" / "app.json").write_text(json.dumps(CONFIG), encoding="utf-8")
            settings = load_app_config(Path(tmp))
        self.assertEqual(settings.db.database, "ledger")

    def test_env_overrides(self):
        env = {"SAFELY_DB__DATABASE": "from_env", "SAFELY_LOGGING__LOG_SQL": "true"}
        with patch.dict(os.environ, env):
            settings = AppSettings()
        self.assertEqual(settings.db.database, "from_env")
        self.assertTrue(settings.logging.log_sql)

    def test_retry_validation(self):
        with self.assertRaises(ValidationError):
            RetrySettings(max_tries=0)


class DatabaseTests(unittest.TestCase):
    def tearDown(self):
        db.bind_sessionmaker(None)
        db.set_retry_policy(RetrySettings())

    def test_mysql_url_escapes_password(self):
        url = db.make_url(DBSettings(**CONFIG["db"]))
        self.assertEqual(url.drivername, "mysql+pymysql")
        self.assertEqual(url.password, "p@ss:word")
        self.assertEqual(url.query, {"charset": "utf8mb4"})
        self.assertIn("p%40ss%3Aword@db.local:3306/ledger", url.render_as_string(hide_password=False))

    def test_sqlite_url(self):
        url = db.make_url(DBSettings(driver="sqlite", database=":memory:"))
        self.assertIsNone(url.port)
        self.assertEqual(url.query, {})

    def test_lock_timeout_hook_sets_session_variable(self):
        engine = object()
        with patch("safely.dal.db.event.listen") as listen:
            db._install_lock_timeout(engine, 7)
        target, name, listener = listen.call_args[0]
        self.assertIs(target, engine)
        self.assertEqual(name, "connect")

        dbapi_conn = MagicMock()
        listener(dbapi_conn, None)
        cursor = dbapi_conn.cursor.return_value
        cursor.execute.assert_called_once_with("SET SESSION innodb_lock_wait_timeout = 7")
        cursor.close.assert_called_once_with()

    def test_lock_timeout_only_for_mysql(self):
        with patch("safely.dal.db._install_lock_timeout") as install:
            engine = db.make_engine(DBSettings(**CONFIG["db"], lock_timeout=5))
            install.assert_called_once_with(engine, 5)
            engine.dispose()

            install.reset_mock()
            engine = db.make_engine(DBSettings(driver="sqlite", database=":memory:", lock_timeout=5))
            install.assert_not_called()
            engine.dispose()

    def test_ping(self):
        engine = db.make_engine(DBSettings(driver="sqlite", database=":memory:"))
        try:
            self.assertTrue(db.ping(engine))
        finally:
            engine.dispose()

    def test_setup_database_registers_defaults(self):
        settings = AppSettings(
            db=DBSettings(driver="sqlite", database=":memory:"),
            retry=RetrySettings(max_tries=4, base_sleep=0),
        )
        with self.assertLogs("safely.dal.db", "INFO"):
            engine, SessionLocal = db.setup_database(settings)
        try:
            self.assertIs(db.get_sessionmaker(), SessionLocal)
            self.assertEqual(db.get_retry_policy().max_tries, 4)

            from safely.dal.runner import SafelyTransaction

            runner = SafelyTransaction(lambda session: session.bind is engine)
            self.assertEqual(runner.max_tries, 4)
            self.assertTrue(runner.run())
        finally:
            engine.dispose()


if __name__ == "__main__":
    unittest.main()
