"""Shared fixtures for gaiax_sd tests.

HTTP never leaves the process: ontology and notary endpoints are served by
:class:`FakeSession`, keyed by URL.
"""

import base64
import json

import pytest
import requests

from gaiax_sd.composer import ShapeComposer
from gaiax_sd.config import RetryPolicy, Settings
from gaiax_sd.keys import generate_jwk_pair
from gaiax_sd.ontology import OntologyNormalizer
from gaiax_sd.versions import LOIRE, PROFILES, TAGUS

TEST_KID = "did:web:example.org#key-0"


# ---------------------------------------------------------------------------
# Fake HTTP
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=None):
        self.status_code = status_code
        self._json = json_data
        self._text = text

    @property
    def text(self):
        if self._text is not None:
            return self._text
        return json.dumps(self._json)

    def json(self):
        if self._json is None:
            raise ValueError("Response body is not JSON")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """Serves fixed responses per URL, then falls back to a queue.

    Queued items that are exceptions are raised instead of returned.
    """

    def __init__(self, routes=None, queue=None):
        self.routes = dict(routes or {})
        self.queue = list(queue or [])
        self.calls = []

    def _respond(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.routes[url] if url in self.routes else self.queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._respond("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._respond("POST", url, **kwargs)


# ---------------------------------------------------------------------------
# Ontology catalogs
# ---------------------------------------------------------------------------


def _prop(path, min_count=0, datatype=None, description=None):
    prop = {"sh:path": {"@id": path}}
    if min_count:
        prop["sh:minCount"] = min_count
    if datatype:
        prop["sh:datatype"] = {"@id": datatype}
    if description:
        prop["sh:description"] = description
    return prop


SHACL_GRAPH = {
    "gx-trustframework": {
        "@graph": [
            {
                "@id": "gx:LegalParticipantShape",
                "@type": "sh:NodeShape",
                "sh:targetClass": {"@id": "gx:LegalParticipant"},
                "sh:property": [
                    _prop("gx:legalRegistrationNumber", 1),
                    _prop("gx:headquarterAddress", 1),
                    _prop("gx:legalAddress", 1),
                    _prop("gx:parentOrganization", description="Parent organization"),
                ],
            },
            {
                "@id": "gx:ServiceOfferingShape",
                "@type": "sh:NodeShape",
                "sh:targetClass": {"@id": "gx:ServiceOffering"},
                "sh:property": [
                    _prop("gx:providedBy", 1),
                    _prop("gx:policy", 1),
                    _prop("gx:termsAndConditions", 1),
                    _prop("gx:dataAccountExport"),
                ],
            },
            {
                "@id": "gx:ServiceOfferingLabelShape",
                "@type": "sh:NodeShape",
                "sh:targetClass": {"@id": "gx:ServiceOfferingLabelLevel1"},
                "sh:property": [
                    _prop("gx:assignedTo", 1),
                    _prop("gx:criterion", description="Label criterion"),
                ],
            },
            {
                "@id": "gx:ServiceAccessPointShape",
                "@type": "sh:NodeShape",
                "sh:property": [
                    _prop("gx:host", 1),
                    _prop("gx:port", datatype="xsd:integer"),
                    _prop("gx:protocol"),
                ],
            },
            {
                "@id": "gx:InstantiatedVirtualResourceShape",
                "@type": "sh:NodeShape",
                "sh:property": [
                    _prop("gx:maintainedBy", 1),
                    _prop("gx:hostedOn", 1),
                    _prop("gx:serviceAccessPoint", 1),
                    _prop("gx:tenantOwnedBy"),
                ],
            },
            {
                "@id": "gx:DataResourceShape",
                "@type": "sh:NodeShape",
                "sh:property": [
                    _prop("gx:producedBy", 1),
                    _prop("gx:exposedThrough", 1),
                    _prop("gx:containsPII", datatype="xsd:boolean"),
                    {
                        "sh:path": {"@id": "gx:license"},
                        "sh:hasValue": "https://www.apache.org/licenses/LICENSE-2.0",
                    },
                ],
            },
            {
                "@id": "gx:PhysicalResourceShape",
                "@type": "sh:NodeShape",
                "sh:property": [_prop("gx:location", 1)],
            },
        ]
    }
}

IMPLEMENTED_SHAPES = [
    "LegalParticipant",
    "ServiceOffering",
    "ServiceOfferingLabelLevel1",
    "ServiceAccessPoint",
    "InstantiatedVirtualResource",
    "DataResource",
    "DataProduct",
]

LINKML_CATALOG = """\
id: https://w3id.org/gaia-x/development
name: gaia-x
default_prefix: gx
prefixes:
  gx: https://w3id.org/gaia-x/development#
classes:
  GaiaXEntity:
    abstract: true
    attributes:
      name:
        range: string
  LegalPerson:
    attributes:
      registrationNumber:
        range: string
        required: true
        description: Country's registration number
      headquartersAddress:
        range: string
        required: true
      legalAddress:
        range: string
        required: true
  ServiceOffering:
    attributes:
      providedBy:
        range: string
        required: true
      serviceOfferingTermsAndConditions:
        range: string
        required: true
      policy:
        range: string
  ServiceAccessPoint:
    attributes:
      host:
        range: string
      port:
        range: integer
  InstantiatedVirtualResource:
    attributes:
      maintainedBy:
        range: string
        required: true
      hostedOn:
        range: string
      serviceAccessPoint:
        range: string
        required: true
  DataResource:
    attributes:
      producedBy:
        range: string
      exposedThrough:
        range: string
        required: true
      containsPII:
        range: boolean
      licenseType:
        range: string
        equals_string: proprietary
"""


def ontology_routes():
    tagus = PROFILES[TAGUS]
    loire = PROFILES[LOIRE]
    return {
        tagus.ontology_url: FakeResponse(json_data=SHACL_GRAPH),
        tagus.implemented_shapes_url: FakeResponse(json_data=IMPLEMENTED_SHAPES),
        loire.ontology_url: FakeResponse(text=LINKML_CATALOG),
    }


@pytest.fixture()
def ontology_session():
    return FakeSession(ontology_routes())


@pytest.fixture()
def settings():
    return Settings(retry=RetryPolicy(max_attempts=3, delay=0.0))


@pytest.fixture()
def normalizer(settings, ontology_session):
    return OntologyNormalizer(settings, session=ontology_session)


@pytest.fixture()
def composer(normalizer, settings):
    return ShapeComposer(normalizer, settings)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def p256_keypair():
    """(public_jwk, private_jwk) for P-256."""
    return generate_jwk_pair("ES256", kid=TEST_KID)


@pytest.fixture(scope="session")
def p256_private_jwk(p256_keypair):
    return p256_keypair[1]


@pytest.fixture(scope="session")
def p256_public_jwk(p256_keypair):
    return p256_keypair[0]


@pytest.fixture(scope="session")
def ed25519_keypair():
    """(public_jwk, private_jwk) for Ed25519."""
    return generate_jwk_pair("EdDSA", kid=TEST_KID)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


@pytest.fixture()
def tagus_vc():
    return {
        "@context": list(PROFILES[TAGUS].credential_context),
        "id": "https://example.org/issuer/LegalParticipant.json",
        "type": ["VerifiableCredential", "gx:LegalParticipant"],
        "issuer": "did:web:example.org",
        "issuanceDate": "2024-05-01T10:00:00.000Z",
        "credentialSubject": {
            "id": "https://example.org/issuer/LegalParticipant.json",
            "type": "gx:LegalParticipant",
            "gx:legalName": "Example Org",
        },
    }


@pytest.fixture()
def loire_vc():
    return {
        "@context": list(PROFILES[LOIRE].credential_context),
        "id": "urn:uuid:6f1c7e2a-3b4d-4f5e-9a8b-1c2d3e4f5a6b",
        "type": ["VerifiableCredential", "gx:LegalPerson"],
        "issuer": "did:web:example.org",
        "validFrom": "2024-05-01T10:00:00.000Z",
        "credentialSubject": {
            "id": "urn:uuid:6f1c7e2a-3b4d-4f5e-9a8b-1c2d3e4f5a6b",
            "type": "gx:LegalPerson",
        },
    }


def decode_segment(token: str, index: int) -> dict:
    segment = token.split(".")[index]
    return json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))
