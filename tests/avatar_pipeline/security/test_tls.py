"""Tests for TLS context construction."""

import ssl

from avatar_pipeline.security.tls import create_ssl_context


class TestCreateSslContext:
    def test_minimum_tls_12(self):
        context = create_ssl_context()

        assert context.minimum_version == ssl.TLSVersion.TLSv1_2

    def test_verifying_context(self):
        context = create_ssl_context(verify=True)

        assert context.verify_mode == ssl.CERT_REQUIRED
        assert context.check_hostname is True

    def test_relaxed_context_for_trusted_hosts(self):
        context = create_ssl_context(verify=False)

        assert context.verify_mode == ssl.CERT_NONE
        assert context.check_hostname is False
        assert context.minimum_version == ssl.TLSVersion.TLSv1_2

    def test_tls13_enabled_when_supported(self):
        context = create_ssl_context()

        if ssl.HAS_TLSv1_3:
            assert context.maximum_version == ssl.TLSVersion.TLSv1_3
