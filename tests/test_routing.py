"""Tests for sender/receiver extraction."""

import logging

import pytest

from fakes import PARTY_XML, SBD_XML
from oxalis_outbound.errors import MalformedDocumentError
from oxalis_outbound.routing import PartyStrategy, RoutingExtractor, RoutingIdentifiers, SbdhStrategy


class TestSbdhStrategy:
    def test_reads_header_identifiers(self):
        result = RoutingExtractor().extract(SBD_XML)

        assert result == RoutingIdentifiers(sender="0192:991825827", receiver="0192:810418052")

    def test_works_without_namespace(self):
        xml = (
            b"<StandardBusinessDocument><StandardBusinessDocumentHeader>"
            b"<Sender><Identifier> 9908:123 </Identifier></Sender>"
            b"<Receiver><Identifier>9908:456</Identifier></Receiver>"
            b"</StandardBusinessDocumentHeader></StandardBusinessDocument>"
        )

        assert RoutingExtractor().extract(xml) == RoutingIdentifiers("9908:123", "9908:456")

    def test_empty_receiver_is_malformed(self):
        xml = (
            b"<StandardBusinessDocument><StandardBusinessDocumentHeader>"
            b"<Sender><Identifier>9908:123</Identifier></Sender>"
            b"<Receiver><Identifier>  </Identifier></Receiver>"
            b"</StandardBusinessDocumentHeader></StandardBusinessDocument>"
        )

        with pytest.raises(MalformedDocumentError) as exc_info:
            RoutingExtractor().extract(xml)
        assert exc_info.value.reason == "nopartiesfound"

    def test_no_fallback_to_party_strategy_once_matched(self):
        """An SBD with an incomplete header is not re-read as a bare document."""
        xml = (
            b'<StandardBusinessDocument xmlns:resp="urn:r" xmlns:cac="urn:a" xmlns:cbc="urn:b">'
            b"<StandardBusinessDocumentHeader/>"
            b'<resp:PartyIdentification><resp:ID schemeID="1">s</resp:ID></resp:PartyIdentification>'
            b"<cac:ContractingParty><cac:Party><cac:PartyIdentification>"
            b'<cbc:ID schemeID="2">r</cbc:ID>'
            b"</cac:PartyIdentification></cac:Party></cac:ContractingParty>"
            b"</StandardBusinessDocument>"
        )

        with pytest.raises(MalformedDocumentError):
            RoutingExtractor().extract(xml)


class TestPartyStrategy:
    def test_reads_scheme_prefixed_identifiers(self):
        result = RoutingExtractor().extract(PARTY_XML)

        assert result.sender == "0192:991825827"
        assert result.receiver == "0192:810418052"

    def test_uses_document_prefixes(self):
        """Prefixes resolve against the document's own declarations, not fixed URIs."""
        xml = PARTY_XML.replace(b"urn:example:tender-response", b"urn:other:response")

        assert RoutingExtractor().extract(xml).sender == "0192:991825827"

    def test_first_contracting_party_wins(self):
        xml = PARTY_XML.replace(
            b"</resp:TenderResponse>",
            b"<cac:ContractingParty><cac:Party><cac:PartyIdentification>"
            b'<cbc:ID schemeID="0192">999999999</cbc:ID>'
            b"</cac:PartyIdentification></cac:Party></cac:ContractingParty></resp:TenderResponse>",
        )

        assert RoutingExtractor().extract(xml).receiver == "0192:810418052"

    def test_identifier_without_scheme(self):
        xml = PARTY_XML.replace(b'<resp:ID schemeID="0192">', b"<resp:ID>")

        assert RoutingExtractor().extract(xml).sender == "991825827"

    def test_undeclared_prefix_is_malformed(self):
        with pytest.raises(MalformedDocumentError) as exc_info:
            RoutingExtractor().extract(b"<Invoice><ID>1</ID></Invoice>")
        assert exc_info.value.reason == "nopartiesfound"

    def test_missing_sender_is_malformed(self):
        xml = PARTY_XML.replace(b"resp:PartyIdentification", b"resp:Other")

        with pytest.raises(MalformedDocumentError):
            RoutingExtractor().extract(xml)


class TestMalformedInput:
    @pytest.mark.parametrize(
        "data",
        [
            b"<broken",
            b"",
            b"not xml at all",
            b"<a><b></a>",
            b"<?xml version='1.0'?><unclosed>",
            b"<?xml version='1.0' encoding='bogus-enc'?><Invoice/>",
        ],
    )
    def test_not_well_formed(self, data):
        with pytest.raises(MalformedDocumentError) as exc_info:
            RoutingExtractor().extract(data)
        assert exc_info.value.reason == "notwellformed"

    def test_entity_expansion_is_rejected_as_malformed(self):
        xml = (
            b'<?xml version="1.0"?><!DOCTYPE x [<!ENTITY a "aaaa">]>'
            b"<StandardBusinessDocument>&a;</StandardBusinessDocument>"
        )

        with pytest.raises(MalformedDocumentError):
            RoutingExtractor().extract(xml)

    def test_failure_logs_offending_content(self, caplog):
        with caplog.at_level(logging.ERROR, logger="oxalis_outbound"):
            with pytest.raises(MalformedDocumentError):
                RoutingExtractor().extract(b"<broken")

        assert "notwellformed" in caplog.text
        assert "<broken" in caplog.text


class TestStrategySelection:
    def test_auto_tries_sbdh_first(self):
        extractor = RoutingExtractor.for_strategy("auto")

        assert [type(s) for s in extractor.strategies] == [SbdhStrategy, PartyStrategy]

    def test_pinned_party_strategy_reads_party_document(self):
        assert RoutingExtractor.for_strategy("party").extract(PARTY_XML).receiver == "0192:810418052"

    def test_pinned_sbdh_strategy_rejects_party_document(self):
        with pytest.raises(MalformedDocumentError):
            RoutingExtractor.for_strategy("sbdh").extract(PARTY_XML)
