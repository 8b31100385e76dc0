"""
Unit tests for CLI module.
"""

import json
import unittest
from unittest.mock import MagicMock, patch

from cluster_upgrade.cli import build_parser, main
from cluster_upgrade.errors import InventoryError


class TestCLI(unittest.TestCase):
    """Test CLI argument parsing and entry point."""

    def test_build_parser_defaults(self):
        """Test parser defaults mirror the configuration defaults."""
        args = build_parser().parse_args(["status"])

        self.assertEqual(args.command, "status")
        self.assertEqual(args.transport, "ssh")
        self.assertEqual(args.upgrade_timeout, 3600)
        self.assertEqual(args.cleanup_timeout, 300)
        self.assertFalse(args.storage)
        self.assertFalse(args.verbose)

    def test_parser_with_all_options(self):
        """Test parser handles all command-line options."""
        args = build_parser().parse_args(
            [
                "advance",
                "--inventory",
                "/tmp/inventory.json",
                "--state-file",
                "/tmp/progress.json",
                "--transport",
                "agent",
                "--ssh-user",
                "crowbar",
                "--agent-port",
                "9000",
                "--upgrade-timeout",
                "7200",
                "--cleanup-timeout",
                "600",
                "--probe-timeout",
                "30",
                "--storage",
                "--verbose",
            ]
        )

        self.assertEqual(args.command, "advance")
        self.assertEqual(args.inventory, "/tmp/inventory.json")
        self.assertEqual(args.state_file, "/tmp/progress.json")
        self.assertEqual(args.transport, "agent")
        self.assertEqual(args.ssh_user, "crowbar")
        self.assertEqual(args.agent_port, 9000)
        self.assertEqual(args.upgrade_timeout, 7200)
        self.assertEqual(args.cleanup_timeout, 600)
        self.assertEqual(args.probe_timeout, 30)
        self.assertTrue(args.storage)
        self.assertTrue(args.verbose)

    def test_parser_rejects_unknown_command(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args(["reboot"])

    @patch("cluster_upgrade.cli.setup_logging")
    @patch("cluster_upgrade.cli.UpgradeApi.from_config")
    def test_main_advance_success(self, mock_from_config, mock_logging):
        """Test main returns 0 when the upgrade finished."""
        api = MagicMock()
        api.nodes.return_value = {"status": "ok", "message": "Upgrade of all nodes finished"}
        mock_from_config.return_value = api

        with patch("builtins.print") as mock_print:
            exit_code = main(["advance"])

        self.assertEqual(exit_code, 0)
        api.nodes.assert_called_once()
        self.assertIn("Upgrade of all nodes finished", mock_print.call_args[0][0])

    @patch("cluster_upgrade.cli.setup_logging")
    @patch("cluster_upgrade.cli.UpgradeApi.from_config")
    def test_main_returns_one_on_failure(self, mock_from_config, mock_logging):
        api = MagicMock()
        api.admin_repo_check.return_value = {
            "status": "service_unavailable",
            "message": "zypper is locked",
        }
        mock_from_config.return_value = api

        with patch("builtins.print"):
            exit_code = main(["repocheck"])

        self.assertEqual(exit_code, 1)

    @patch("cluster_upgrade.cli.setup_logging")
    @patch("cluster_upgrade.cli.UpgradeApi.from_config")
    def test_main_bad_inventory(self, mock_from_config, mock_logging):
        """Test an unreadable inventory is reported instead of raised."""
        mock_from_config.side_effect = InventoryError(
            "Cannot read inventory /etc/crowbar/upgrade-inventory.json"
        )

        with patch("builtins.print") as mock_print:
            exit_code = main(["status"])

        self.assertEqual(exit_code, 1)
        result = json.loads(mock_print.call_args[0][0])
        self.assertEqual(result["status"], "unprocessable_entity")
        self.assertIn("Cannot read inventory", result["message"])

    @patch("cluster_upgrade.cli.setup_logging")
    @patch("cluster_upgrade.cli.UpgradeApi.from_config")
    def test_main_node_repocheck(self, mock_from_config, mock_logging):
        api = MagicMock()
        api.node_repo_check.return_value = {"status": "ok", "message": ""}
        mock_from_config.return_value = api

        with patch("builtins.print"):
            exit_code = main(["node-repocheck"])

        self.assertEqual(exit_code, 0)
        api.node_repo_check.assert_called_once()

    @patch("cluster_upgrade.cli.setup_logging")
    @patch("cluster_upgrade.cli.UpgradeApi.from_config")
    def test_main_passes_config(self, mock_from_config, mock_logging):
        api = MagicMock()
        api.cancel.return_value = {"status": "ok", "message": ""}
        mock_from_config.return_value = api

        with patch("builtins.print"):
            main(["cancel", "--transport", "agent", "--verbose"])

        config = mock_from_config.call_args[0][0]
        self.assertEqual(config.transport, "agent")
        self.assertTrue(config.verbose)
        mock_logging.assert_called_once_with(verbose=True, log_file=config.log_file)


if __name__ == "__main__":
    unittest.main()
