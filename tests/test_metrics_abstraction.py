"""
Unit Tests for Metrics Abstraction Layer

Covers the MetricsClient interface, the Telegraf and NoOp backends, and
backend selection by name.
"""

import pytest
from unittest.mock import AsyncMock, Mock, patch

from social.graze.authgate.app.metrics import (
    MetricsClient,
    NoOpMetricsClient,
    TelegrafMetricsClient,
    create_metrics_client,
)


class TestMetricsClientInterface:
    """Test the abstract MetricsClient interface."""

    def test_interface_is_abstract(self):
        """MetricsClient should be abstract and not instantiable."""
        with pytest.raises(TypeError):
            MetricsClient()


class TestNoOpMetricsClient:
    @pytest.fixture
    def noop_client(self):
        return NoOpMetricsClient()

    def test_noop_calls(self, noop_client):
        """NoOp calls should not raise exceptions."""
        noop_client.increment("test.counter", 1, {"tag": "value"})
        noop_client.increment("test.counter")
        noop_client.gauge("test.gauge", 42.5, {"tag": "value"})
        noop_client.timer("test.timer", 0.001)

    @pytest.mark.asyncio
    async def test_noop_connect_and_close(self, noop_client):
        await noop_client.connect()
        await noop_client.close()


class TestTelegrafMetricsClient:
    """Test the TelegrafMetricsClient wrapper."""

    @pytest.fixture
    def mock_telegraf_client(self):
        """Create a mock TelegrafStatsdClient."""
        mock = Mock()
        mock.increment = Mock()
        mock.gauge = Mock()
        mock.timer = Mock()
        mock.connect = AsyncMock()
        mock.close = AsyncMock()
        return mock

    @pytest.fixture
    def telegraf_client(self, mock_telegraf_client):
        return TelegrafMetricsClient(mock_telegraf_client)

    def test_telegraf_increment(self, telegraf_client, mock_telegraf_client):
        telegraf_client.increment(
            "authgate.auth.outcome", 1, {"path": "cache", "outcome": "success"}
        )

        mock_telegraf_client.increment.assert_called_once_with(
            "authgate.auth.outcome",
            1,
            tag_dict={"path": "cache", "outcome": "success"},
        )

    def test_telegraf_increment_no_tags(self, telegraf_client, mock_telegraf_client):
        telegraf_client.increment("authgate.server.request.count")

        mock_telegraf_client.increment.assert_called_once_with(
            "authgate.server.request.count", 1, tag_dict={}
        )

    def test_telegraf_gauge(self, telegraf_client, mock_telegraf_client):
        telegraf_client.gauge("authgate.ratelimit.windows", 3)

        mock_telegraf_client.gauge.assert_called_once_with(
            "authgate.ratelimit.windows", 3, tag_dict={}
        )

    def test_telegraf_timer(self, telegraf_client, mock_telegraf_client):
        telegraf_client.timer("authgate.server.request.time", 0.25, {"path": "/auth"})

        mock_telegraf_client.timer.assert_called_once_with(
            "authgate.server.request.time", 0.25, tag_dict={"path": "/auth"}
        )

    @pytest.mark.asyncio
    async def test_telegraf_connect_and_close(
        self, telegraf_client, mock_telegraf_client
    ):
        await telegraf_client.connect()
        await telegraf_client.close()

        mock_telegraf_client.connect.assert_awaited_once()
        mock_telegraf_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_telegraf_close_error_is_logged(
        self, telegraf_client, mock_telegraf_client
    ):
        mock_telegraf_client.close.side_effect = OSError("socket closed")

        await telegraf_client.close()


class TestMetricsClientFactory:
    def test_factory_creates_noop_client(self):
        assert isinstance(create_metrics_client("none"), NoOpMetricsClient)

    @patch("social.graze.authgate.app.metrics.TelegrafStatsdClient")
    def test_factory_creates_telegraf_client(self, mock_telegraf_class):
        client = create_metrics_client(
            "telegraf", host="telegraf", port=8125, debug=True
        )

        assert isinstance(client, TelegrafMetricsClient)
        mock_telegraf_class.assert_called_once_with(
            host="telegraf", port=8125, debug=True
        )

    def test_factory_uses_preconfigured_telegraf_client(self):
        existing = Mock()

        client = create_metrics_client("telegraf", telegraf_client=existing)

        assert isinstance(client, TelegrafMetricsClient)
        assert client.client is existing

    def test_factory_handles_case_insensitive_backends(self):
        assert isinstance(create_metrics_client("NONE"), NoOpMetricsClient)

    def test_factory_handles_invalid_backend(self):
        with pytest.raises(ValueError):
            create_metrics_client("prometheus")
