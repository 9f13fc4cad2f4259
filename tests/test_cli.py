import json
import os
import sys
import tempfile
import unittest


class TestCLI(unittest.TestCase):
    def setUp(self):
        repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
        src_path = os.path.join(repo_root, "src")
        if src_path not in sys.path:
            sys.path.insert(0, src_path)
        from typer.testing import CliRunner

        self.runner = CliRunner()

    def _json_file(self, payload):
        fh = tempfile.NamedTemporaryFile("w", suffix=".json", delete=False, encoding="utf-8")
        fh.write(payload if isinstance(payload, str) else json.dumps(payload))
        fh.close()
        self.addCleanup(os.unlink, fh.name)
        return fh.name

    def test_types_lists_registered_tags(self):
        from actionkit.cli import app

        result = self.runner.invoke(app, ["types"])
        self.assertEqual(result.exit_code, 0)
        lines = result.stdout.split()
        self.assertIn("postgresql", lines)
        self.assertIn("restapi", lines)

    def test_run_transformer_prints_result(self):
        from actionkit.cli import app

        result = self.runner.invoke(app, ["run", "transformer"])
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(json.loads(result.stdout), {"success": True, "rows": [], "extra": {}})

    def test_unknown_type_exit_code(self):
        from actionkit.cli import app

        result = self.runner.invoke(app, ["run", "nosuch", "-r", self._json_file({})])
        self.assertEqual(result.exit_code, 3)
        self.assertIn("Error: unsupported resource type", result.output)

    def test_validate_reports_invalid_resource(self):
        from actionkit.cli import app

        resource = self._json_file({"baseURL": "http://x", "authentication": "bearer"})
        result = self.runner.invoke(app, ["validate", "restapi", "-r", resource])
        self.assertEqual(result.exit_code, 4)

        ok = self._json_file({"baseURL": "http://x"})
        action = self._json_file({"method": "GET"})
        result = self.runner.invoke(app, ["validate", "restapi", "-r", ok, "-a", action])
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(json.loads(result.stdout), {"valid": True})

    def test_malformed_options_file_is_config_error(self):
        from actionkit.cli import app

        result = self.runner.invoke(app, ["validate", "restapi", "-r", self._json_file("{not json")])
        self.assertEqual(result.exit_code, 2)
        self.assertIn("not valid JSON", result.output)

        result = self.runner.invoke(app, ["test", "restapi", "-r", self._json_file("[1, 2]")])
        self.assertEqual(result.exit_code, 2)

    def test_unsupported_probe_exit_code(self):
        from actionkit.cli import app

        result = self.runner.invoke(app, ["test", "restapi", "-r", self._json_file({"baseURL": "http://x"})])
        self.assertEqual(result.exit_code, 9)

    def test_version(self):
        from actionkit.cli import app

        result = self.runner.invoke(app, ["--version"])
        self.assertEqual(result.exit_code, 0)
        self.assertTrue(result.stdout.strip())


if __name__ == "__main__":
    unittest.main()
