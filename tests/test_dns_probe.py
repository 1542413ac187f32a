# /tests/test_dns_probe.py
"""
Unit tests for the DNS resolution probe

Tests per-record-type isolation, failure handling and the TXT policy
using a mocked dnspython resolver.
"""

from types import SimpleNamespace
from unittest.mock import Mock

import dns.exception
import dns.resolver
import pytest

from services.dns_probe import Resolution, ResolutionProbe, is_live


def make_resolver(answers):
    """Resolver whose resolve() returns answers[rdtype] or raises it if it is an exception."""
    def resolve(domain, rdtype, lifetime=None):
        outcome = answers.get(rdtype, dns.resolver.NoAnswer())
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    resolver = Mock()
    resolver.resolve.side_effect = resolve
    return resolver


def txt(*chunks):
    return SimpleNamespace(strings=tuple(c.encode() for c in chunks))


class TestResolution:
    """Test cases for the resolution value"""

    def test_dead_by_default(self):
        """Test that an empty resolution is not live"""
        assert not Resolution().is_live

    @pytest.mark.parametrize("field", ["has_address", "has_mail_exchange", "has_text"])
    def test_any_record_is_live(self, field):
        """Test that any single record type makes a domain live"""
        assert Resolution(**{field: True}).is_live

    def test_dict_round_trip(self):
        """Test converting a resolution to and from its stored form"""
        resolution = Resolution(has_address=True, has_text=True)
        assert Resolution.from_dict(resolution.to_dict()) == resolution

    def test_is_live_accepts_dicts(self):
        """Test liveness of stored resolution dicts"""
        assert is_live({"has_address": False, "has_mail_exchange": True, "has_text": False})
        assert not is_live(None)
        assert not is_live({})


class TestResolutionProbe:
    """Test cases for probing a domain"""

    def test_nxdomain_is_all_false(self):
        """Test that a non-existent domain has no records"""
        probe = ResolutionProbe(resolver=make_resolver({
            "A": dns.resolver.NXDOMAIN(),
            "MX": dns.resolver.NXDOMAIN(),
            "TXT": dns.resolver.NXDOMAIN(),
        }))
        assert probe.probe("nonexistent.example") == Resolution()

    def test_all_records_present(self):
        """Test a domain with address, mail and text records"""
        probe = ResolutionProbe(resolver=make_resolver({
            "A": ["93.184.216.34"],
            "MX": ["10 mail.example.com."],
            "TXT": [txt("hello")],
        }))
        assert probe.probe("example.com") == Resolution(True, True, True)

    def test_record_types_are_isolated(self):
        """Test that one failing record type does not hide the others"""
        probe = ResolutionProbe(resolver=make_resolver({
            "A": dns.exception.Timeout(),
            "MX": ["10 mail.example.com."],
            "TXT": dns.resolver.NoNameservers(),
        }))
        result = probe.probe("example.com")
        assert result == Resolution(has_address=False, has_mail_exchange=True, has_text=False)
        assert result.is_live

    def test_unexpected_errors_do_not_escape(self):
        """Test that unexpected resolver errors count as absent"""
        probe = ResolutionProbe(resolver=make_resolver({
            "A": ValueError("garbled response"),
            "MX": dns.exception.DNSException("bad"),
            "TXT": ["v=spf1 -all"],
        }))
        result = probe.probe("example.com")
        assert not result.has_address
        assert not result.has_mail_exchange

    def test_empty_answer_is_absent(self):
        """Test that an empty answer counts as absent"""
        probe = ResolutionProbe(resolver=make_resolver({"A": [], "MX": [], "TXT": []}))
        assert probe.probe("example.com") == Resolution()

    def test_queries_each_type_once_with_timeout(self):
        """Test that each record type is queried once with the timeout"""
        resolver = make_resolver({})
        ResolutionProbe(timeout=2.5, resolver=resolver).probe("example.com")
        rdtypes = [c.args[1] for c in resolver.resolve.call_args_list]
        assert rdtypes == ["A", "MX", "TXT"]
        assert all(c.kwargs["lifetime"] == 2.5 for c in resolver.resolve.call_args_list)


class TestTxtPolicy:
    """Test cases for the TXT record policy"""

    def test_any_txt_counts_by_default(self):
        """Test that any text record counts by default"""
        probe = ResolutionProbe(resolver=make_resolver({"TXT": [txt("google-site-verification=abc")]}))
        assert probe.probe("example.com").has_text

    def test_strict_ignores_unrelated_txt(self):
        """Test that strict mode ignores unrelated text records"""
        probe = ResolutionProbe(strict_txt=True,
                                resolver=make_resolver({"TXT": [txt("google-site-verification=abc")]}))
        assert not probe.probe("example.com").has_text

    @pytest.mark.parametrize("record", [
        txt("v=spf1 include:_spf.example.net ~all"),
        txt("V=DMARC1; p=reject"),
        txt("v=spf1 ", "-all"),
    ])
    def test_strict_accepts_email_auth(self, record):
        """Test that strict mode accepts SPF and DMARC records"""
        probe = ResolutionProbe(strict_txt=True, resolver=make_resolver({"TXT": [record]}))
        assert probe.probe("example.com").has_text
