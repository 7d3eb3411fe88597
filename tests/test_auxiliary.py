"""Unit tests for pdc_enhancer.services.auxiliary: Infra Assistant annotations."""

import unittest
from unittest.mock import MagicMock, patch

import httpx

from pdc_enhancer.core.config import Settings
from pdc_enhancer.services.auxiliary import (
    ANNOTATIONS_PATH,
    AuxiliaryServiceError,
    fetch_annotations,
)


def _settings(**overrides: object) -> Settings:
    return Settings(_env_file=None, **overrides)


def _response(status_code: int, **kwargs: object) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("GET", "https://infra"), **kwargs)


def _mock_client(mock_client_class: MagicMock, responses: list[object]) -> MagicMock:
    instance = MagicMock()
    instance.request.side_effect = responses
    mock_client_class.return_value.__enter__.return_value = instance
    mock_client_class.return_value.__exit__.return_value = None
    return instance


class TestFetchAnnotations(unittest.TestCase):
    """fetch_annotations shares the retry contract of the PuppetDB client."""

    @patch("pdc_enhancer.services.auxiliary.httpx.Client")
    def test_parses_global_and_node_annotations(self, mock_client_class: MagicMock) -> None:
        body = {
            "global": {"pe_version": "2023.8.1", "replicas": 2},
            "nodes": {"Node1.Example.com": {"role": "compiler"}},
        }
        instance = _mock_client(mock_client_class, [_response(200, json=body)])
        settings = _settings(INFRA_ASSISTANT_HOST="infra.example.com", INFRA_ASSISTANT_PORT=8146)

        annotations = fetch_annotations(settings, sleep=MagicMock(), logger=MagicMock())

        self.assertEqual(annotations.global_, {"pe_version": "2023.8.1", "replicas": "2"})
        self.assertEqual(annotations.nodes, {"node1.example.com": {"role": "compiler"}})
        url = instance.request.call_args[0][1]
        self.assertEqual(url, f"https://infra.example.com:8146{ANNOTATIONS_PATH}")

    @patch("pdc_enhancer.services.auxiliary.httpx.Client")
    def test_non_string_values_rendered_as_text(self, mock_client_class: MagicMock) -> None:
        body = {
            "global": {"ha_enabled": True, "replica": None},
            "nodes": {"n1": {"tags": ["web", "db"], "meta": {"b": 1, "a": 2}, "primary": False}},
        }
        _mock_client(mock_client_class, [_response(200, json=body)])

        annotations = fetch_annotations(_settings(), sleep=MagicMock(), logger=MagicMock())

        self.assertEqual(annotations.global_, {"ha_enabled": "true", "replica": ""})
        self.assertEqual(
            annotations.nodes["n1"],
            {"tags": '["web", "db"]', "meta": '{"a": 2, "b": 1}', "primary": "false"},
        )

    @patch("pdc_enhancer.services.auxiliary.httpx.Client")
    def test_disabled_skips_request(self, mock_client_class: MagicMock) -> None:
        annotations = fetch_annotations(
            _settings(INFRA_ASSISTANT_ENABLED=False), sleep=MagicMock(), logger=MagicMock()
        )
        self.assertEqual(annotations.global_, {})
        self.assertEqual(annotations.nodes, {})
        mock_client_class.assert_not_called()

    @patch("pdc_enhancer.services.auxiliary.httpx.Client")
    def test_retries_exhausted(self, mock_client_class: MagicMock) -> None:
        instance = _mock_client(mock_client_class, [httpx.ConnectError("refused")] * 2)
        sleep = MagicMock()
        with self.assertRaises(AuxiliaryServiceError) as ctx:
            fetch_annotations(_settings(HTTP_RETRIES=2, RETRY_DELAY=0.5), sleep=sleep, logger=MagicMock())
        self.assertEqual(instance.request.call_count, 2)
        self.assertEqual(ctx.exception.attempts, 2)
        sleep.assert_called_once_with(0.5)

    @patch("pdc_enhancer.services.auxiliary.httpx.Client")
    def test_404_not_retried(self, mock_client_class: MagicMock) -> None:
        instance = _mock_client(mock_client_class, [_response(404)])
        with self.assertRaises(AuxiliaryServiceError) as ctx:
            fetch_annotations(_settings(HTTP_RETRIES=3), sleep=MagicMock(), logger=MagicMock())
        self.assertEqual(instance.request.call_count, 1)
        self.assertEqual(ctx.exception.status_code, 404)

    @patch("pdc_enhancer.services.auxiliary.httpx.Client")
    def test_unexpected_shape_raises(self, mock_client_class: MagicMock) -> None:
        _mock_client(mock_client_class, [_response(200, json=["not", "an", "object"])])
        with self.assertRaises(AuxiliaryServiceError):
            fetch_annotations(_settings(), sleep=MagicMock(), logger=MagicMock())

    @patch("pdc_enhancer.services.auxiliary.httpx.Client")
    def test_schema_mismatch_raises(self, mock_client_class: MagicMock) -> None:
        _mock_client(mock_client_class, [_response(200, json={"nodes": {"n1": "not-a-mapping"}})])
        with self.assertRaises(AuxiliaryServiceError):
            fetch_annotations(_settings(), sleep=MagicMock(), logger=MagicMock())


if __name__ == "__main__":
    unittest.main()
