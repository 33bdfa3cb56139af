"""
SOAP Permit Authority Client

Looks up the authoritative permit record for a gate transaction from the
legacy EmptyTrailer SOAP service and normalises it into an AuthorityRecord.

Contract:
- One fixed endpoint, one envelope template parameterised by permit number
- POST with SOAPAction header (default "EmptyTrailer")
- Bounded timeout on every call, no retries

Two response shapes are known in the wild. Each is handled by a
capability-tagged parser; both produce the same canonical record:
- empty_trailer_output: EmptyTrailerOutput/PermitDTLS, expiry timestamp
- permit_details_response: EmptyTrailerResponse/PermitDetails, validity flag
"""

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
from xml.sax.saxutils import escape

import httpx

from gate.errors import AuthorityError, AuthorityMalformedResponse, AuthorityUnavailable
from gate.models import AuthorityRecord

logger = logging.getLogger(__name__)


SOAP_ENVELOPE_TEMPLATE = """<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/"
                  xmlns:ns="http://www.concor.com/cil/EmptyTrailer/1.0/">
  <soapenv:Header/>
  <soapenv:Body>
    <ns:EmptyTrailer>
      <ns:PermitNumber>{permit_number}</ns:PermitNumber>
    </ns:EmptyTrailer>
  </soapenv:Body>
</soapenv:Envelope>"""

DEFAULT_SOAP_ACTION = "EmptyTrailer"
DEFAULT_TIMEOUT = 15.0

TIMESTAMP_FORMATS = (
    "%d-%m-%Y %H:%M:%S",
    "%d-%m-%Y %H:%M",
    "%d-%m-%Y",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
)

TRUE_FLAGS = {"Y", "YES", "TRUE", "1", "VALID"}
FALSE_FLAGS = {"N", "NO", "FALSE", "0", "INVALID", "EXPIRED"}


# ==================== XML HELPERS ====================

def local_name(tag: str) -> str:
    """Strip the {namespace} and any prefix from an element tag."""
    return tag.rsplit("}", 1)[-1].rsplit(":", 1)[-1]


def find_child(element: ET.Element, name: str) -> Optional[ET.Element]:
    for child in element:
        if local_name(child.tag) == name:
            return child
    return None


def find_descendant(element: ET.Element, name: str) -> Optional[ET.Element]:
    for child in element.iter():
        if child is not element and local_name(child.tag) == name:
            return child
    return None


def element_fields(element: ET.Element) -> Dict[str, str]:
    """Map child local names to their non-empty text."""
    fields = {}
    for child in element:
        text = (child.text or "").strip()
        if text:
            fields[local_name(child.tag)] = text
    return fields


def parse_authority_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an authority expiry timestamp.

    Accepts ISO-8601 plus DD-MM-YYYY and DD/MM/YYYY with optional time.
    Naive values are taken as UTC. Unparseable values are absent.
    """
    if not value:
        return None
    text = value.strip()
    parsed = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        logger.warning(f"Unparseable permit validity timestamp: {text!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_validity_flag(value: Optional[str]) -> Optional[bool]:
    if not value:
        return None
    flag = value.strip().upper()
    if flag in TRUE_FLAGS:
        return True
    if flag in FALSE_FLAGS:
        return False
    logger.warning(f"Unrecognised permit validity flag: {value!r}")
    return None


# ==================== RESPONSE SHAPE PARSERS ====================

class ResponseShapeParser:
    """
    Normaliser for one known authority response shape.

    A parser claims a response when the SOAP Body carries its output
    element; the permit-detail block inside it is then mandatory.
    """

    shape: str = ""
    output_element: str = ""
    detail_element: str = ""

    def can_parse(self, body: ET.Element) -> bool:
        return find_child(body, self.output_element) is not None

    def parse(self, body: ET.Element) -> AuthorityRecord:
        output = find_child(body, self.output_element)
        detail = find_descendant(output, self.detail_element) if output is not None else None
        if detail is None:
            raise AuthorityMalformedResponse(
                f"{self.output_element} response has no {self.detail_element} block"
            )
        return self.build_record(element_fields(detail))

    def build_record(self, fields: Dict[str, str]) -> AuthorityRecord:
        raise NotImplementedError


class EmptyTrailerOutputParser(ResponseShapeParser):
    """Original EmptyTrailer response with an explicit expiry timestamp."""

    shape = "empty_trailer_output"
    output_element = "EmptyTrailerOutput"
    detail_element = "PermitDTLS"

    def build_record(self, fields: Dict[str, str]) -> AuthorityRecord:
        return AuthorityRecord(
            permit_number=fields.get("PermitNumber"),
            container_number=fields.get("ContainerNumber"),
            container_size=fields.get("ContainerSize"),
            container_type=fields.get("ContainerType"),
            container_status=fields.get("ContainerStatus"),
            # The service spells it "Vechile"
            vehicle_number=fields.get("VechileNumber") or fields.get("VehicleNumber"),
            line_code=fields.get("SlineCode"),
            ldd_mt_flag=fields.get("LDD_MT_Flg"),
            valid_till=parse_authority_timestamp(
                fields.get("isPermitValidTill") or fields.get("PermitValidTill")
            ),
            response_shape=self.shape
        )


class PermitDetailsResponseParser(ResponseShapeParser):
    """Later EmptyTrailer response carrying a boolean validity flag."""

    shape = "permit_details_response"
    output_element = "EmptyTrailerResponse"
    detail_element = "PermitDetails"

    def build_record(self, fields: Dict[str, str]) -> AuthorityRecord:
        return AuthorityRecord(
            permit_number=fields.get("PermitNumber"),
            container_number=fields.get("ContainerNumber"),
            container_size=fields.get("ContainerSize"),
            container_type=fields.get("ContainerType"),
            container_status=fields.get("ContainerStatus"),
            vehicle_number=fields.get("VehicleNumber") or fields.get("VechileNumber"),
            line_code=fields.get("LineCode") or fields.get("SlineCode"),
            ldd_mt_flag=fields.get("LDD_MT_Flg"),
            valid_till=parse_authority_timestamp(fields.get("PermitValidTill")),
            valid=parse_validity_flag(fields.get("IsValid") or fields.get("PermitValid")),
            response_shape=self.shape
        )


DEFAULT_PARSERS = (EmptyTrailerOutputParser(), PermitDetailsResponseParser())


# ==================== CLIENT ====================

class SoapAuthorityClient:
    """
    Client for the legacy permit authority.

    Raises AuthorityUnavailable for transport failures, timeouts, HTTP
    error statuses and SOAP Faults, and AuthorityMalformedResponse when
    the response cannot be normalised.
    """

    def __init__(
        self,
        url: str,
        soap_action: str = DEFAULT_SOAP_ACTION,
        timeout: float = DEFAULT_TIMEOUT,
        parsers: Optional[Sequence[ResponseShapeParser]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.url = url
        self.soap_action = soap_action
        self.timeout = timeout
        self.parsers: List[ResponseShapeParser] = list(parsers or DEFAULT_PARSERS)
        self._transport = transport

        logger.info(f"SoapAuthorityClient initialized with URL: {self.url}")

    @classmethod
    def from_settings(cls, settings) -> "SoapAuthorityClient":
        return cls(
            url=settings.AUTHORITY_URL,
            soap_action=settings.AUTHORITY_SOAP_ACTION,
            timeout=settings.AUTHORITY_TIMEOUT_SECONDS
        )

    def build_envelope(self, permit_number: str) -> str:
        return SOAP_ENVELOPE_TEMPLATE.format(permit_number=escape(permit_number))

    async def lookup(self, permit_number: str) -> AuthorityRecord:
        """
        Fetch and normalise the authority record for a permit.

        POST <AUTHORITY_URL>
        Headers:
            Content-Type: text/xml; charset=utf-8
            SOAPAction: EmptyTrailer
        """
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": self.soap_action,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    content=self.build_envelope(permit_number).encode("utf-8"),
                    headers=headers
                )
        except httpx.TimeoutException:
            logger.error(f"Authority request timed out after {self.timeout}s")
            raise AuthorityUnavailable(
                f"Permit authority timed out after {self.timeout}s", permit_number
            )
        except httpx.RequestError as e:
            logger.error(f"Authority request error: {e}")
            raise AuthorityUnavailable(f"Permit authority unreachable: {e}", permit_number)

        if response.status_code >= 400:
            fault = self._extract_fault(response.text)
            logger.error(f"Authority returned {response.status_code}: {fault or response.text[:200]}")
            raise AuthorityUnavailable(
                f"Permit authority returned HTTP {response.status_code}: {fault or response.text[:200]}",
                permit_number
            )

        try:
            return self.parse_response(response.text)
        except AuthorityError as e:
            e.permit_number = permit_number
            raise

    def parse_response(self, xml_text: str) -> AuthorityRecord:
        """Normalise a SOAP response body into an AuthorityRecord."""
        try:
            root = ET.fromstring(xml_text)
        except ET.ParseError as e:
            raise AuthorityMalformedResponse(f"Authority response is not valid XML: {e}")

        if local_name(root.tag) != "Envelope":
            raise AuthorityMalformedResponse("Authority response has no SOAP Envelope")

        body = find_child(root, "Body")
        if body is None:
            raise AuthorityMalformedResponse("Authority response has no SOAP Body")

        fault = find_child(body, "Fault")
        if fault is not None:
            fault_fields = element_fields(fault)
            message = fault_fields.get("faultstring") or fault_fields.get("faultcode") or "unknown fault"
            raise AuthorityUnavailable(f"Permit authority returned SOAP Fault: {message}")

        for parser in self.parsers:
            if parser.can_parse(body):
                record = parser.parse(body)
                logger.debug(f"Authority response parsed as {parser.shape}")
                return record

        found = [local_name(child.tag) for child in body]
        raise AuthorityMalformedResponse(f"Unrecognised authority response shape: {found}")

    def _extract_fault(self, xml_text: str) -> Optional[str]:
        try:
            root = ET.fromstring(xml_text)
        except ET.ParseError:
            return None
        fault = find_descendant(root, "Fault")
        if fault is None:
            return None
        return element_fields(fault).get("faultstring")
