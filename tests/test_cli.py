import io
import json
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import patch

from ddb_bootstrap import cli
from ddb_bootstrap.differ import Create, Skip
from ddb_bootstrap.orchestrator import Report, Status
from ddb_bootstrap.prober import ProbeResult
from ddb_bootstrap.provisioner import ActionResult, Outcome
from ddb_bootstrap.schema import parse

SCHEMA = (
    '[{"name": "users", "primaryKeyAttribute": "id", "primaryKeyType": "STRING", "readCapacity": 1, "writeCapacity": 1},'
    ' {"name": "users_email_lookup", "primaryKeyAttribute": "email", "primaryKeyType": "STRING",'
    ' "readCapacity": 5, "writeCapacity": 5}]'
)


def _report(status: Status) -> Report:
    specs = parse(json.loads(SCHEMA)).tables
    results = [
        ActionResult(Skip("users"), Outcome.ALREADY_EXISTS),
        ActionResult(Create(specs[1]), Outcome.APPLIED if status == Status.SUCCESS else Outcome.FAILED),
    ]
    return Report(probe=ProbeResult(ready=True, elapsed_attempts=2), results=results, status=status)


def _main(argv):
    out, err = io.StringIO(), io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        code = cli.main(argv)
    return code, out.getvalue(), err.getvalue()


@patch("ddb_bootstrap.cli.load_dotenv")
@patch("ddb_bootstrap.cli._install_cancel_handlers")
class CliTests(unittest.TestCase):
    @patch("ddb_bootstrap.cli.run_bootstrap")
    def test_success_exits_zero_and_prints_lines(self, mock_run, _sig, _env) -> None:
        mock_run.return_value = _report(Status.SUCCESS)
        code, out, _ = _main([
            "bootstrap", "--endpoint", "http://localhost:8000", "--schema", SCHEMA,
            "--max-attempts", "5", "--interval", "250", "--timeout", "1500",
        ])
        self.assertEqual(code, cli.EXIT_OK)
        lines = [json.loads(l) for l in out.strip().splitlines()]
        self.assertEqual(len(lines), 3)
        self.assertEqual(lines[0]["outcome"], "already_exists")
        self.assertEqual(lines[1]["outcome"], "applied")
        self.assertEqual(lines[2]["status"], "success")

        descriptor, settings = mock_run.call_args.args[:2]
        self.assertEqual(descriptor.names, ["users", "users_email_lookup"])
        self.assertEqual(settings.endpoint, "http://localhost:8000")
        self.assertEqual(settings.max_attempts, 5)
        self.assertEqual(settings.interval, 0.25)
        self.assertEqual(settings.timeout, 1.5)
        self.assertFalse(settings.dry_run)

    @patch("ddb_bootstrap.cli.run_bootstrap")
    def test_provisioning_failure_exit_code(self, mock_run, _sig, _env) -> None:
        mock_run.return_value = _report(Status.PROVISIONING_FAILED)
        code, _, _ = _main(["bootstrap", "--schema", SCHEMA])
        self.assertEqual(code, cli.EXIT_PROVISIONING_FAILED)

    @patch("ddb_bootstrap.cli.run_bootstrap")
    def test_probe_failure_exit_code_is_distinct(self, mock_run, _sig, _env) -> None:
        mock_run.return_value = Report(
            probe=ProbeResult(ready=False, elapsed_attempts=10, last_error="refused"),
            status=Status.PROBE_FAILED,
            error="endpoint not ready",
        )
        code, out, err = _main(["bootstrap", "--schema", SCHEMA])
        self.assertEqual(code, cli.EXIT_PROBE_FAILED)
        self.assertNotEqual(cli.EXIT_PROBE_FAILED, cli.EXIT_PROVISIONING_FAILED)
        self.assertIn("endpoint not ready", err)
        self.assertEqual(json.loads(out.strip())["status"], "probe_failed")

    @patch("ddb_bootstrap.cli.run_bootstrap")
    def test_invalid_schema_never_touches_store(self, mock_run, _sig, _env) -> None:
        code, out, err = _main(["bootstrap", "--schema", '[{"name": ""}]'])
        self.assertEqual(code, cli.EXIT_INVALID_SCHEMA)
        mock_run.assert_not_called()
        self.assertEqual(out, "")
        self.assertIn("missing table name", err)

    @patch("ddb_bootstrap.cli.run_bootstrap")
    def test_out_of_range_numbers_are_usage_errors(self, mock_run, _sig, _env) -> None:
        for flag, value in (("--max-attempts", "0"), ("--interval", "-5"), ("--timeout", "0"), ("--workers", "0")):
            with self.subTest(flag=flag):
                with self.assertRaises(SystemExit) as ctx:
                    _main(["bootstrap", "--schema", SCHEMA, flag, value])
                self.assertEqual(ctx.exception.code, 2)
        mock_run.assert_not_called()

    @patch("ddb_bootstrap.dynamo.client.boto3.client", side_effect=ValueError("Invalid endpoint: not a url"))
    def test_malformed_endpoint_has_its_own_exit_code(self, _client, _sig, _env) -> None:
        code, out, err = _main(["bootstrap", "--endpoint", "not a url", "--schema", SCHEMA, "--max-attempts", "1"])
        self.assertEqual(code, cli.EXIT_INVALID_ENDPOINT)
        self.assertNotIn(code, (cli.EXIT_OK, cli.EXIT_PROVISIONING_FAILED, cli.EXIT_PROBE_FAILED, cli.EXIT_INVALID_SCHEMA))
        self.assertEqual(out, "")
        self.assertIn("invalid endpoint: Invalid endpoint: not a url", err)

        code, _, _ = _main(["probe", "--endpoint", "not a url", "--max-attempts", "1"])
        self.assertEqual(code, cli.EXIT_INVALID_ENDPOINT)

    @patch("ddb_bootstrap.cli.run_bootstrap")
    def test_plan_is_a_dry_run(self, mock_run, _sig, _env) -> None:
        mock_run.return_value = _report(Status.SUCCESS)
        _main(["plan", "--schema", SCHEMA])
        self.assertTrue(mock_run.call_args.args[1].dry_run)

    @patch("ddb_bootstrap.cli.probe")
    def test_probe_command(self, mock_probe, _sig, _env) -> None:
        mock_probe.return_value = ProbeResult(ready=False, elapsed_attempts=3, last_error="refused")
        code, out, _ = _main(["probe", "--endpoint", "http://x", "--max-attempts", "3"])
        self.assertEqual(code, cli.EXIT_PROBE_FAILED)
        self.assertEqual(json.loads(out)["elapsed_attempts"], 3)
        self.assertEqual(mock_probe.call_args.args[:2], ("http://x", 3))

    def test_validate_command(self, _sig, _env) -> None:
        code, out, _ = _main(["validate", "--schema", SCHEMA])
        self.assertEqual(code, cli.EXIT_OK)
        first = json.loads(out.splitlines()[0])
        self.assertEqual(first["key"], "id:STRING")


if __name__ == "__main__":
    unittest.main()
