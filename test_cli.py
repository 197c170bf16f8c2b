#!/usr/bin/env python3
"""
Tests for command line configuration of the Dataverse MCP server.
"""

import io
import os
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import AsyncMock, patch

import dataverse_mcp
from dataverse_mcp_lib.models import SolutionContext

CLEAN_ENV = {"PATH": os.environ.get("PATH", "")}


@patch("dataverse_mcp.signal.signal")
class TestMain(unittest.TestCase):

    def run_main(self, argv, env=None):
        stdout, stderr = io.StringIO(), io.StringIO()
        with patch.dict(os.environ, env if env is not None else CLEAN_ENV, clear=True):
            with redirect_stdout(stdout), redirect_stderr(stderr):
                with self.assertRaises(SystemExit) as ctx:
                    dataverse_mcp.main(argv)
        return ctx.exception.code, stdout.getvalue(), stderr.getvalue()

    def test_missing_url_exits_with_error(self, _signal):
        code, _, stderr = self.run_main([])
        self.assertEqual(code, 1)
        self.assertIn("ERROR: Dataverse environment URL not provided.", stderr)

    def test_trace_lists_tools(self, _signal):
        code, stdout, _ = self.run_main(["--url", "https://org.crm.dynamics.com/", "--trace", "--tool-prefix", "dv_"])

        self.assertEqual(code, 0)
        self.assertIn("Environment URL: https://org.crm.dynamics.com\n", stdout)
        self.assertIn("Web API Root: https://org.crm.dynamics.com/api/data/v9.2", stdout)
        self.assertIn("Tool: dv_generate_webapi_call", stdout)
        self.assertIn("Tool: dv_clear_solution_context", stdout)
        self.assertIn("Authentication: None (generation only)", stdout)
        self.assertIn("Resource: webapi://{operation}/{entity_set_name}/{entity_id}", stdout)
        self.assertIn("Resource: powerpages-auth://patterns", stdout)

    def test_environment_configuration(self, _signal):
        env = dict(CLEAN_ENV, DATAVERSE_URL="https://env.crm.dynamics.com",
                   DATAVERSE_ACCESS_TOKEN="tok", DATAVERSE_API_VERSION="v9.1")
        code, stdout, _ = self.run_main(["--trace"], env=env)

        self.assertEqual(code, 0)
        self.assertIn("Web API Root: https://env.crm.dynamics.com/api/data/v9.1", stdout)
        self.assertIn("Authentication: Bearer token", stdout)

    def test_flags_override_environment(self, _signal):
        env = dict(CLEAN_ENV, DATAVERSE_URL="https://env.crm.dynamics.com")
        code, stdout, _ = self.run_main(["--url", "https://flag.crm.dynamics.com", "--api-version", "v9.0", "--trace"], env=env)

        self.assertEqual(code, 0)
        self.assertIn("Web API Root: https://flag.crm.dynamics.com/api/data/v9.0", stdout)

    def test_initial_solution_context(self, _signal):
        context = SolutionContext(solution_unique_name="ContosoCore", customization_prefix="cr123")
        with patch("dataverse_mcp.DataverseClient.set_solution_context", new=AsyncMock(return_value=context)) as mock_set:
            # The mocked coroutine does not store the context, so trace shows none
            code, _, _ = self.run_main(["--url", "https://org.crm.dynamics.com", "--solution", "ContosoCore", "--trace"])

        self.assertEqual(code, 0)
        mock_set.assert_awaited_once_with("ContosoCore")

    def test_startup_failure_is_fatal(self, _signal):
        with patch("dataverse_mcp.DataverseMCPBridge", side_effect=RuntimeError("boom")):
            code, _, stderr = self.run_main(["--url", "https://org.crm.dynamics.com"])

        self.assertEqual(code, 1)
        self.assertIn("--- FATAL ERROR ---", stderr)
        self.assertIn("boom", stderr)

    @patch("dataverse_mcp.DataverseMCPBridge")
    def test_http_transport(self, mock_bridge, _signal):
        mock_bridge.return_value.run.side_effect = SystemExit(0)

        code, _, _ = self.run_main(["--url", "https://org.crm.dynamics.com", "--transport", "http", "--http-addr", "127.0.0.1:9000"])

        self.assertEqual(code, 0)
        mock_bridge.return_value.run.assert_called_once_with(transport="http", host="127.0.0.1", port=9000)


class TestHelpers(unittest.TestCase):

    def test_parse_http_addr(self):
        cases = [
            ("127.0.0.1:9000", ("127.0.0.1", 9000)),
            (":8081", ("0.0.0.0", 8081)),
            ("7000", ("0.0.0.0", 7000)),
            ("nonsense", ("0.0.0.0", 8080)),
        ]
        for addr, expected in cases:
            with self.subTest(addr=addr):
                self.assertEqual(dataverse_mcp.parse_http_addr(addr), expected)

    def test_resolve_setting_priority(self):
        with patch.dict(os.environ, {"DATAVERSE_URL": "https://env"}, clear=True):
            self.assertEqual(dataverse_mcp.resolve_setting("https://flag", "DATAVERSE_URL"), "https://flag")
            self.assertEqual(dataverse_mcp.resolve_setting(None, "DATAVERSE_URL"), "https://env")
            self.assertEqual(dataverse_mcp.resolve_setting(None, "DATAVERSE_SOLUTION", "default"), "default")


if __name__ == "__main__":
    unittest.main()
