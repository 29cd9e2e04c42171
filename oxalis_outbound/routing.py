"""Extract sender and receiver identifiers from outbound business documents."""
import io
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from xml.etree.ElementTree import Element, ParseError

import defusedxml.ElementTree as DefusedET
from defusedxml import DefusedXmlException

from oxalis_outbound.errors import MalformedDocumentError
from oxalis_outbound.logging_conf import logger


@dataclass(frozen=True)
class RoutingIdentifiers:
    """Participant identifiers handed to oxalis-standalone."""

    sender: str
    receiver: str


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(element: Optional[Element], name: str) -> Optional[Element]:
    """First direct child with the given local name, in any namespace."""
    if element is None:
        return None
    for child in element:
        if isinstance(child.tag, str) and _local_name(child.tag) == name:
            return child
    return None


def _text(element: Optional[Element]) -> str:
    if element is None or element.text is None:
        return ""
    return element.text.strip()


class SbdhStrategy:
    """Standard Business Document envelope with a fixed-path header."""

    name = "sbdh"

    def matches(self, root: Element) -> bool:
        return _child(root, "StandardBusinessDocumentHeader") is not None

    def extract(self, root: Element, namespaces: Dict[str, str]) -> Optional[RoutingIdentifiers]:
        header = _child(root, "StandardBusinessDocumentHeader")
        sender = _text(_child(_child(header, "Sender"), "Identifier"))
        receiver = _text(_child(_child(header, "Receiver"), "Identifier"))
        if not sender or not receiver:
            return None
        return RoutingIdentifiers(sender=sender, receiver=receiver)


class PartyStrategy:
    """
    Bare UBL-style document, parties located by namespaced path expressions.

    Prefixes are resolved against the document's own namespace declarations,
    and each identifier is rendered as ``schemeID:value``.
    """

    name = "party"
    receiver_path = ".//cac:ContractingParty[1]/cac:Party/cac:PartyIdentification/cbc:ID"
    sender_path = ".//resp:PartyIdentification[1]/resp:ID"

    def matches(self, root: Element) -> bool:
        return True

    def extract(self, root: Element, namespaces: Dict[str, str]) -> Optional[RoutingIdentifiers]:
        receiver = self._identifier(root, self.receiver_path, namespaces)
        sender = self._identifier(root, self.sender_path, namespaces)
        if not sender or not receiver:
            return None
        return RoutingIdentifiers(sender=sender, receiver=receiver)

    def _identifier(self, root: Element, path: str, namespaces: Dict[str, str]) -> str:
        try:
            found = root.findall(path, namespaces)
        except SyntaxError:
            # Prefix not declared by this document
            return ""
        if not found or not _text(found[0]):
            return ""
        scheme = (found[0].get("schemeID") or "").strip()
        value = _text(found[0])
        return f"{scheme}:{value}" if scheme else value


STRATEGIES = {
    "sbdh": SbdhStrategy,
    "party": PartyStrategy,
}


class RoutingExtractor:
    """Tries each strategy in order; the first whose shape matches decides."""

    def __init__(self, strategies: Optional[Sequence] = None):
        self.strategies = list(strategies) if strategies is not None else [SbdhStrategy(), PartyStrategy()]

    @classmethod
    def for_strategy(cls, name: str = "auto") -> "RoutingExtractor":
        if name == "auto":
            return cls()
        return cls([STRATEGIES[name]()])

    def extract(self, data: bytes) -> RoutingIdentifiers:
        root, namespaces, errors = self._parse(data)
        if root is None:
            e = MalformedDocumentError("Unable to parse XML: not well formed", reason="notwellformed")
            self._log_failure(e, errors, data)
            raise e

        for strategy in self.strategies:
            if not strategy.matches(root):
                continue
            identifiers = strategy.extract(root, namespaces)
            if identifiers is None:
                break
            logger.debug(
                f"Routing via {strategy.name}: sender={identifiers.sender} receiver={identifiers.receiver}"
            )
            return identifiers

        e = MalformedDocumentError("Unable to parse XML: unable to find parties", reason="nopartiesfound")
        self._log_failure(e, errors, data)
        raise e

    def _parse(self, data: bytes) -> Tuple[Optional[Element], Dict[str, str], List[str]]:
        """Parse once, collecting the prefix declarations seen along the way."""
        namespaces: Dict[str, str] = {}
        root = None
        try:
            for event, value in DefusedET.iterparse(io.BytesIO(data), events=("start-ns", "start")):
                if event == "start-ns":
                    prefix, uri = value
                    # First declaration of a prefix wins, as in document order lookups
                    if prefix:
                        namespaces.setdefault(prefix, uri)
                elif root is None:
                    root = value
        except (ParseError, DefusedXmlException, LookupError, ValueError) as e:
            # LookupError and ValueError: unknown or undecodable declared encoding
            return None, namespaces, [str(e)]
        return root, namespaces, []

    def _log_failure(self, e: MalformedDocumentError, errors: List[str], data: bytes) -> None:
        logger.error(
            f"Unable to parse XML ({e.reason}): {e}; errors={errors}; "
            f"xml={data.decode('utf-8', errors='replace')}"
        )
