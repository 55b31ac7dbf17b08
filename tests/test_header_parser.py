"""Tests for sending IP and domain extraction (mailbench/services/header_parser.py)."""

import pytest

from mailbench.services.header_parser import (
    extract_dkim_domain,
    extract_from_domain,
    extract_ip_address,
    extract_return_path_domain,
    extract_sending_domain,
    extract_sending_ip,
    is_internal_hop,
)


class TestExtractSendingIp:
    """Test suite for extract_sending_ip()."""

    def test_skips_google_hops(self):
        """Test the earliest non-Google hop wins."""
        received = [
            "by 2002:a05:6a10:1234 with SMTP id abc; Mon, 6 Jan 2025 10:00:02 -0800",
            "from mail-sor-f41.google.com (mail-sor-f41.google.com. [209.85.220.41]) "
            "by mx.google.com with SMTPS id x; Mon, 6 Jan 2025 10:00:01 -0800",
            "from mta-42.esp.example (mta-42.esp.example [198.51.100.42]) "
            "by relay.esp.example; Mon, 6 Jan 2025 10:00:00 -0800",
        ]

        assert extract_sending_ip(received) == "198.51.100.42"

    def test_oldest_external_hop_first(self):
        """Test headers are walked from the end (the first relay)."""
        received = [
            "from relay.esp.example (relay.esp.example [203.0.113.9]) by mx.google.com",
            "from origin.esp.example (origin.esp.example [203.0.113.1]) by relay.esp.example",
        ]

        assert extract_sending_ip(received) == "203.0.113.1"

    def test_hostname_is_ip(self):
        """Test a bare IP hostname is returned when the header has no bracketed IP."""
        received = ["from 192.0.2.55 by mx.google.com"]

        assert extract_sending_ip(received) == "192.0.2.55"

    def test_ipv6_address(self):
        received = [
            "from mx.sender.example (mx.sender.example "
            "[2001:0db8:85a3:0000:0000:8a2e:0370:7334]) by mx.google.com",
        ]

        assert extract_sending_ip(received) == "2001:0db8:85a3:0000:0000:8a2e:0370:7334"

    def test_fallback_to_any_ip(self):
        """Test only Google hops still yield an IP."""
        received = [
            "from mail-sor-f41.google.com (mail-sor-f41.google.com. [209.85.220.41]) by mx.google.com",
        ]

        assert extract_sending_ip(received) == "209.85.220.41"

    @pytest.mark.parametrize("received", [[], ["by mx.google.com with SMTP id abc"]])
    def test_no_ip(self, received):
        assert extract_sending_ip(received) is None

    def test_helpers(self):
        assert is_internal_hop("aspmx.l.google.com")
        assert not is_internal_hop("mta.esp.example")
        assert extract_ip_address("no address here") is None
        assert extract_ip_address("[10.0.0.300] [10.0.0.3]") == "10.0.0.3"


class TestExtractSendingDomain:
    """Test suite for extract_sending_domain()."""

    def test_dkim_domain_wins(self):
        domain = extract_sending_domain(
            dkim_signature="v=1; a=rsa-sha256; c=relaxed/relaxed; d=news.example.com; s=sel1; bh=abc",
            return_path="<bounce@bounces.esp.example>",
            from_="News <hello@example.com>",
        )

        assert domain == "news.example.com"

    def test_return_path_when_no_dkim(self):
        domain = extract_sending_domain(
            return_path="<bounce+123@bounces.esp.example>",
            from_="News <hello@example.com>",
        )

        assert domain == "bounces.esp.example"

    def test_from_as_last_resort(self):
        assert extract_sending_domain(from_="News <hello@example.com>") == "example.com"
        assert extract_sending_domain(from_="hello@example.org") == "example.org"

    def test_nothing_found(self):
        assert extract_sending_domain() is None
        assert extract_sending_domain(dkim_signature="v=1; s=sel", from_="Unknown") is None

    def test_dkim_tag_is_anchored(self):
        """Test ``d=`` inside another tag's value is not mistaken for the domain."""
        assert extract_dkim_domain("v=1; bh=abcd=; d=real.example; s=sel") == "real.example"
        assert extract_dkim_domain("d=first.example; s=sel") == "first.example"

    def test_return_path_requires_angle_brackets(self):
        assert extract_return_path_domain("bounce@esp.example") is None
        assert extract_return_path_domain("<bounce@esp.example>") == "esp.example"

    def test_from_domain_without_address(self):
        assert extract_from_domain("Undisclosed recipients") is None
