import logging
import os
import sys
import tempfile
import unittest


class _CoreTestCase(unittest.TestCase):
    def setUp(self):
        repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
        src_path = os.path.join(repo_root, "src")
        if src_path not in sys.path:
            sys.path.insert(0, src_path)

    def _write(self, text):
        fh = tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False, encoding="utf-8")
        fh.write(text)
        fh.close()
        self.addCleanup(os.unlink, fh.name)
        return fh.name


class TestConfigLoader(_CoreTestCase):
    def test_defaults(self):
        from actionkit.config import load_config

        cfg = load_config(env={})
        self.assertEqual(cfg.s3.object_size_limit_mib, 5)
        self.assertEqual(cfg.sql.connect_timeout_s, 5)
        self.assertIsNone(cfg.http.timeout_s)
        self.assertIsNone(cfg.aiagent.base_url)
        self.assertFalse(cfg.audit.enabled)

    def test_yaml_then_env_then_overrides(self):
        from actionkit.config import load_config

        path = self._write("s3:\n  object_size_limit_mib: 2\nsql:\n  connect_timeout_s: 3\naiagent:\n  base_url: http://a\n")
        cfg = load_config(
            path,
            env={"ACTIONKIT_SQL__CONNECT_TIMEOUT_S": "9", "ACTIONKIT_AUDIT__ENABLED": "true", "OTHER": "x"},
            overrides={"aiagent": {"token": "t"}},
        )
        self.assertEqual(cfg.s3.object_size_limit_mib, 2)
        self.assertEqual(cfg.sql.connect_timeout_s, 9)
        self.assertTrue(cfg.audit.enabled)
        self.assertEqual((cfg.aiagent.base_url, cfg.aiagent.token), ("http://a", "t"))

    def test_s3_limit_environment_variable(self):
        from actionkit.config import load_config
        from actionkit.core.errors import ConfigError

        self.assertEqual(load_config(env={"ILLA_S3_LIMIT": "12"}).s3.object_size_limit_mib, 12)
        self.assertEqual(load_config(env={"ILLA_S3_LIMIT": "0.5"}).s3.object_size_limit_mib, 0.5)
        with self.assertRaises(ConfigError):
            load_config(env={"ILLA_S3_LIMIT": "lots"})
        with self.assertRaises(ConfigError):
            load_config(env={"ILLA_S3_LIMIT": "0"})

    def test_bad_files(self):
        from actionkit.config import load_config
        from actionkit.core.errors import ConfigError

        with self.assertRaises(ConfigError):
            load_config(self._write("s3: [unclosed\n"), env={})
        with self.assertRaises(ConfigError):
            load_config(self._write("- a\n- b\n"), env={})
        with self.assertRaises(ConfigError):
            load_config(os.path.join(tempfile.gettempdir(), "actionkit-missing.yaml"), env={})

    def test_set_and_get_default(self):
        from actionkit.config import RuntimeConfig, get_config, set_config

        custom = RuntimeConfig.model_validate({"sql": {"max_result_bytes": 10}})
        set_config(custom)
        self.addCleanup(set_config, None)
        self.assertIs(get_config(), custom)


class TestErrors(_CoreTestCase):
    def test_exit_codes_follow_class_hierarchy(self):
        from actionkit.core.errors import (
            ActionError,
            InvalidActionError,
            OversizeObjectError,
            SQLSyntaxError,
            UnsupportedTypeError,
            get_exit_code,
        )

        class Custom(InvalidActionError):
            pass

        self.assertEqual(get_exit_code(ActionError("x")), 1)
        self.assertEqual(get_exit_code(UnsupportedTypeError("x")), 3)
        self.assertEqual(get_exit_code(Custom("x")), 5)
        self.assertEqual(get_exit_code(OversizeObjectError("x")), 10)
        self.assertEqual(get_exit_code(SQLSyntaxError("x", line_number=1, description="d")), 7)

    def test_sql_syntax_error_shape(self):
        from actionkit.core.errors import OperationFailedError, SQLSyntaxError

        err = SQLSyntaxError.from_driver_message(
            "Error 1064: You have an error in your SQL syntax; check the manual to use near 'FORM t' at line 2"
        )
        self.assertIsInstance(err, OperationFailedError)
        self.assertEqual(err.to_dict(), {"lineNumber": 2, "message": "SQL syntax error near 'FORM t' at line 2"})


class TestTemplate(_CoreTestCase):
    def test_render_leaves_unknown_placeholders(self):
        from actionkit.template import render_template

        self.assertEqual(render_template("a {{ x }} {{y}}", {"x": 1}), "a 1 {{y}}")
        self.assertEqual(render_template("{{ok}} {{none}}", {"ok": True, "none": None}), "true null")
        self.assertEqual(render_template("{{o}}", {"o": {"k": [1]}}), '{"k":[1]}')
        self.assertEqual(render_template('"{{s}}"', {"s": 'a"b'}, json_escape=True), '"a\\"b"')
        self.assertEqual(render_template("{{x}}", None), "{{x}}")

    def test_exact_placeholder_and_binds(self):
        from actionkit.template import exact_placeholder, to_bind_params

        self.assertEqual(exact_placeholder(" {{ user.id }} "), "user.id")
        self.assertIsNone(exact_placeholder("id={{x}}"))
        self.assertIsNone(exact_placeholder(3))
        self.assertEqual(
            to_bind_params("SELECT * FROM t WHERE a = {{a}} AND b = {{ b }} AND c = {{c}}", {"a": 1, "b": "x'"}),
            ("SELECT * FROM t WHERE a = :p0 AND b = :p1 AND c = {{c}}", {"p0": 1, "p1": "x'"}),
        )


class TestActionLogger(_CoreTestCase):
    def test_redacts_secret_keys_recursively(self):
        from actionkit.observability.logging import ActionLogger

        log = ActionLogger("actionkit.test")
        redacted = log._redact_dict(
            {"host": "h", "databasePassword": "pw", "authContent": {"token": "t"}, "items": [{"apiKey": "k"}], "secret": ""}
        )
        self.assertEqual(redacted["host"], "h")
        self.assertEqual(redacted["databasePassword"], "[REDACTED]")
        self.assertEqual(redacted["authContent"], {"token": "[REDACTED]"})
        self.assertEqual(redacted["items"], [{"apiKey": "[REDACTED]"}])
        self.assertEqual(redacted["secret"], "")
        self.assertEqual(log._redact_secrets("Authorization: Bearer abc"), "[REDACTED: Contains secrets]")
        self.assertEqual(log._redact_secrets("connected to db"), "connected to db")

    def test_operation_logs_failure_and_reraises(self):
        from actionkit.core.errors import OperationFailedError
        from actionkit.observability.logging import ActionLogger

        log = ActionLogger("actionkit.test.op")
        with self.assertLogs("actionkit.test.op", level=logging.ERROR) as captured:
            with self.assertRaises(OperationFailedError):
                with log.operation("run", resource_type="s3"):
                    raise OperationFailedError("boom")
        self.assertIn("Operation run failed", captured.output[0])
        self.assertIn("OperationFailedError", captured.output[0])

    def test_set_verbose(self):
        from actionkit.observability.logging import get_logger, set_verbose

        set_verbose(True)
        self.addCleanup(set_verbose, False)
        self.assertTrue(get_logger().logger.isEnabledFor(logging.DEBUG))


if __name__ == "__main__":
    unittest.main()
