"""Tests for the httpx secondary transport and its process-wide instance."""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from avatar_pipeline.config import AvatarFetchConfig
from avatar_pipeline.download import secondary
from avatar_pipeline.download.secondary import (
    SecondaryTransport,
    close_secondary_transport,
    get_secondary_transport,
)
from avatar_pipeline.security.host_policy import HostPolicy

GITHUB_URL = "https://avatars.githubusercontent.com/u/123"
PLAIN_URL = "https://example.com/avatar.png"


def _transport(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
    return SecondaryTransport(client=client, **kwargs)


class TestFetch:
    @pytest.mark.asyncio
    async def test_success(self, png_bytes):
        transport = _transport(lambda request: httpx.Response(200, content=png_bytes))

        assert await transport.fetch(PLAIN_URL) == png_bytes
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_applies_host_headers(self, png_bytes):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, content=png_bytes)

        transport = _transport(handler, trust_evaluator=lambda host, cert, std: True)

        await transport.fetch(GITHUB_URL)

        assert seen["referer"] == "https://github.com/"
        assert seen["accept"].startswith("image/avif")
        assert "Mozilla/5.0" in seen["user-agent"]
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_configured_user_agent(self, png_bytes):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, content=png_bytes)

        transport = _transport(handler, config=AvatarFetchConfig(user_agent="Agent/3"))

        await transport.fetch(PLAIN_URL)

        assert seen["user-agent"] == "Agent/3"
        await transport.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [403, 404, 500])
    async def test_error_status_returns_none(self, status):
        transport = _transport(lambda request: httpx.Response(status, content=b"nope"))

        assert await transport.fetch(PLAIN_URL) is None
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_connect_error_returns_none(self):
        def handler(request):
            raise httpx.ConnectError("Name or service not known", request=request)

        transport = _transport(handler)

        with patch("avatar_pipeline.download.secondary.log_with_context") as mock_log:
            assert await transport.fetch(PLAIN_URL) is None

        assert mock_log.call_args.kwargs["error_category"] == "transient"
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_timeout_returns_none(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        transport = _transport(handler)

        with patch("avatar_pipeline.download.secondary.log_with_context") as mock_log:
            assert await transport.fetch(PLAIN_URL) is None

        assert mock_log.call_args.kwargs["error_category"] == "permanent"
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_follows_redirects(self, png_bytes):
        def handler(request):
            if request.url.path == "/old.png":
                return httpx.Response(302, headers={"Location": "https://example.com/new.png"})
            return httpx.Response(200, content=png_bytes)

        transport = _transport(handler)

        assert await transport.fetch("https://example.com/old.png") == png_bytes
        await transport.aclose()


class TestTrustedHostCertificate:
    @pytest.mark.asyncio
    async def test_missing_certificate_rejected(self, png_bytes):
        """Trusted hosts need a certificate; mock responses carry none."""
        transport = _transport(lambda request: httpx.Response(200, content=png_bytes))

        assert await transport.fetch(GITHUB_URL) is None
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_evaluator_called_for_trusted_host(self, png_bytes):
        evaluator = MagicMock(return_value=True)
        transport = _transport(
            lambda request: httpx.Response(200, content=png_bytes),
            trust_evaluator=evaluator,
        )

        assert await transport.fetch(GITHUB_URL) == png_bytes
        evaluator.assert_called_once_with("avatars.githubusercontent.com", None, False)
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_default_evaluator_uses_transport_policy(self, png_bytes):
        """A custom policy's trusted suffixes reach the certificate check."""
        policy = HostPolicy(header_rules=(), trusted_host_suffixes=frozenset({"example.com"}))

        with patch(
            "avatar_pipeline.download.secondary.evaluate_trust", return_value=True
        ) as mock_evaluate:
            transport = _transport(
                lambda request: httpx.Response(200, content=png_bytes), policy=policy
            )
            assert await transport.fetch(PLAIN_URL) == png_bytes

        mock_evaluate.assert_called_once_with(
            "example.com", None, False, policy=transport.policy
        )
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_custom_policy_rejects_missing_certificate(self, png_bytes):
        policy = HostPolicy(header_rules=(), trusted_host_suffixes=frozenset({"example.com"}))
        transport = _transport(
            lambda request: httpx.Response(200, content=png_bytes), policy=policy
        )

        assert await transport.fetch(PLAIN_URL) is None
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_evaluator_not_called_for_untrusted_host(self, png_bytes):
        evaluator = MagicMock(return_value=False)
        transport = _transport(
            lambda request: httpx.Response(200, content=png_bytes),
            trust_evaluator=evaluator,
        )

        assert await transport.fetch(PLAIN_URL) == png_bytes
        evaluator.assert_not_called()
        await transport.aclose()


class TestSharedSecondaryTransport:
    @pytest.fixture(autouse=True)
    def reset_shared(self, monkeypatch):
        monkeypatch.setattr(secondary, "_secondary", None)
        monkeypatch.setattr(secondary, "_secondary_built", False)

    def test_built_once(self):
        with patch.object(secondary, "SecondaryTransport") as mock_cls:
            first = get_secondary_transport()
            second = get_secondary_transport()

        assert first is second
        assert mock_cls.call_count == 1

    def test_build_failure_reports_unavailable(self):
        with patch.object(
            secondary, "SecondaryTransport", side_effect=RuntimeError("no tls")
        ) as mock_cls:
            assert get_secondary_transport() is None
            assert get_secondary_transport() is None

        assert mock_cls.call_count == 1

    @pytest.mark.asyncio
    async def test_real_construction_and_close(self):
        transport = get_secondary_transport(AvatarFetchConfig(timeout_seconds=5))

        assert isinstance(transport, SecondaryTransport)
        assert transport.config.timeout_seconds == 5

        await close_secondary_transport()

        assert secondary._secondary is None
        assert secondary._secondary_built is False
