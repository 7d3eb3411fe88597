"""Tests for the enhancer run and its CLI exit codes."""

import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

import httpx

from pdc_enhancer.core.config import Settings
from pdc_enhancer.enhancer import main, run_enhancer
from pdc_enhancer.services.csv_ingest import CsvIngestionError
from pdc_enhancer.services.inventory import InventoryClientError
from pdc_enhancer.services.metrics import MetricsPublishError

CSV_TEXT = (
    "Node,Scan timestamp,Scan type,Scanned benchmark,Scanned profile,"
    "Adjusted compliance score,Exception score\n"
    "node1.example.com,2025-01-01T10:00:00Z,ad hoc,CIS Ubuntu,Level 1 - Server,85,82\n"
)

INVENTORY_BODY = [
    {"certname": "node1.example.com", "environment": "production", "facts": {"os": {"family": "Debian"}}},
    {"certname": "node2.example.com", "environment": "production", "facts": {"os": {"family": "RedHat"}}},
]


def _response(status_code: int, **kwargs: object) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("GET", "http://puppetdb"), **kwargs)


def _mock_client(mock_client_class: MagicMock, responses: list[object]) -> MagicMock:
    instance = MagicMock()
    instance.request.side_effect = responses
    mock_client_class.return_value.__enter__.return_value = instance
    mock_client_class.return_value.__exit__.return_value = None
    return instance


class TestRunEnhancer(unittest.TestCase):
    """run_enhancer publishes a complete file or leaves the previous one alone."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.dropzone = os.path.join(self._tmp.name, "dropzone")
        os.makedirs(self.dropzone)
        self.settings = Settings(
            _env_file=None,
            SCM_DIR=os.path.join(self._tmp.name, "scm"),
            DROPZONE_PATH=self.dropzone,
            PUPPETDB_FACTS="os.family",
            INFRA_ASSISTANT_ENABLED=False,
            HTTP_RETRIES=3,
            RETRY_DELAY=2.0,
        )
        self.output = self.settings.output_path

    def write_csv(self) -> None:
        os.makedirs(self.settings.score_data_dir)
        with open(self.settings.current_export_path, "w", encoding="utf-8") as f:
            f.write(CSV_TEXT)

    def read_output(self) -> str:
        with open(self.output, encoding="utf-8") as f:
            return f.read()

    @patch("pdc_enhancer.services.inventory.httpx.Client")
    def test_publishes_merged_metrics(self, mock_client_class: MagicMock) -> None:
        self.write_csv()
        _mock_client(mock_client_class, [_response(200, json=INVENTORY_BODY)])

        path = run_enhancer(self.settings, sleep=MagicMock(), logger=MagicMock())

        self.assertEqual(path, self.output)
        body = self.read_output()
        self.assertIn('puppet_node_cis_adjusted_compliance_score{certname="node1.example.com"} 85', body)
        self.assertIn('puppet_node_cis_scanned{certname="node2.example.com"} 0', body)
        self.assertIn("puppet_enhancer_nodes 2", body)

    @patch("pdc_enhancer.services.inventory.httpx.Client")
    def test_first_run_without_csv_still_publishes(self, mock_client_class: MagicMock) -> None:
        _mock_client(mock_client_class, [_response(200, json=INVENTORY_BODY)])
        logger = MagicMock()

        run_enhancer(self.settings, sleep=MagicMock(), logger=logger)

        body = self.read_output()
        self.assertIn('puppet_node_info{certname="node1.example.com",environment="production",os_family="Debian"} 1', body)
        self.assertNotIn("puppet_node_cis_adjusted_compliance_score", body)
        self.assertTrue(any("not found" in c[0][0] for c in logger.warning.call_args_list))

    @patch("pdc_enhancer.services.inventory.httpx.Client")
    def test_persistent_503_leaves_metrics_untouched(self, mock_client_class: MagicMock) -> None:
        self.write_csv()
        with open(self.output, "w", encoding="utf-8") as f:
            f.write("previous 1\n")
        instance = _mock_client(mock_client_class, [_response(503)] * 3)
        sleep = MagicMock()

        with self.assertRaises(InventoryClientError):
            run_enhancer(self.settings, sleep=sleep, logger=MagicMock())

        self.assertEqual(instance.request.call_count, 3)
        self.assertEqual([c[0][0] for c in sleep.call_args_list], [2.0, 2.0])
        self.assertEqual(self.read_output(), "previous 1\n")
        self.assertEqual(os.listdir(self.dropzone), [os.path.basename(self.output)])

    @patch("pdc_enhancer.services.inventory.httpx.Client")
    def test_unparseable_csv_aborts_before_fetch(self, mock_client_class: MagicMock) -> None:
        os.makedirs(self.settings.score_data_dir)
        with open(self.settings.current_export_path, "wb") as f:
            f.write(b"Node,Scan timestamp\n\xff\xfe,bad\n")

        with self.assertRaises(CsvIngestionError):
            run_enhancer(self.settings, sleep=MagicMock(), logger=MagicMock())
        mock_client_class.assert_not_called()
        self.assertFalse(os.path.exists(self.output))

    @patch("pdc_enhancer.services.inventory.httpx.Client")
    def test_output_override(self, mock_client_class: MagicMock) -> None:
        _mock_client(mock_client_class, [_response(200, json=[])])
        target = os.path.join(self.dropzone, "custom.prom")
        self.assertEqual(run_enhancer(self.settings, output_path=target, sleep=MagicMock(), logger=MagicMock()), target)
        self.assertTrue(os.path.exists(target))


@patch("pdc_enhancer.enhancer.setup_logging")
@patch("pdc_enhancer.enhancer.load_dotenv")
@patch("pdc_enhancer.enhancer.get_settings")
class TestEnhancerMain(unittest.TestCase):
    """main returns 0 on success and 1 for every failure class."""

    @patch("pdc_enhancer.enhancer.run_enhancer", return_value="/tmp/m.prom")
    def test_success(self, mock_run: MagicMock, mock_settings: MagicMock, *_: MagicMock) -> None:
        self.assertEqual(main(["-q", "-o", "/tmp/m.prom"]), 0)
        self.assertEqual(mock_run.call_args[1]["output_path"], "/tmp/m.prom")

    def test_failures_exit_one(self, mock_settings: MagicMock, *_: MagicMock) -> None:
        errors = [
            CsvIngestionError("bad csv", "/x.csv"),
            InventoryClientError("PuppetDB down", status_code=503, attempts=3),
            MetricsPublishError("Dropzone directory does not exist", "/missing/m.prom"),
            RuntimeError("boom"),
        ]
        for error in errors:
            with self.subTest(error=type(error).__name__):
                with patch("pdc_enhancer.enhancer.run_enhancer", side_effect=error):
                    self.assertEqual(main([]), 1)

    def test_quiet_and_log_level_flags(self, mock_settings: MagicMock, _dotenv: MagicMock, mock_logging: MagicMock) -> None:
        with patch("pdc_enhancer.enhancer.run_enhancer", return_value="/tmp/m.prom"):
            main(["-q", "--log-level", "DEBUG"])
        mock_logging.assert_called_once_with("DEBUG", quiet=True)


if __name__ == "__main__":
    unittest.main()
