"""Tests for credential and presentation composition."""

import logging
import re
from datetime import datetime, timezone

import pytest
from conftest import decode_segment

from gaiax_sd.composer import (
    CompositionContext,
    ShapeComposer,
    credential_types,
    derive_document_id,
    drop_empty,
    iso_timestamp,
)
from gaiax_sd.config import Settings
from gaiax_sd.errors import FieldValidationError, MissingDependencyIdError, UnsupportedVersionError
from gaiax_sd.keys import generate_jwk_pair
from gaiax_sd.signer import ProofChainManager
from gaiax_sd.versions import LOIRE, PROFILES, TAGUS

BASE_URL = "https://example.org/issuer"

PARTICIPANT = {
    "gx:legalName": "Example Org",
    "gx:legalRegistrationNumber": "https://example.org/issuer/lrn.json",
    "gx:headquarterAddress": "LU-CA",
    "gx:legalAddress": "LU-CA",
    "gx-terms-and-conditions:gaiaxTermsAndConditions": "70c1d713215f95191a11d38fe2341faed27d19e083917bc8732ca4fea4976700",
}

URN_RE = re.compile(r"^urn:uuid:[0-9a-f-]{36}$")


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class TestCompose:
    def test_tagus_participant_with_base_url(self, composer):
        vc = composer.compose(
            "LegalParticipant", TAGUS, PARTICIPANT, context=CompositionContext(base_url=BASE_URL)
        )
        assert vc["id"] == "https://example.org/issuer/LegalParticipant.json"
        assert vc["@context"] == list(PROFILES[TAGUS].credential_context)
        assert len(vc["@context"]) == 2
        assert "issuanceDate" in vc
        assert "validFrom" not in vc
        assert vc["type"] == ["VerifiableCredential", "gx:LegalParticipant"]

    def test_subject_shaped_and_identified(self, composer):
        vc = composer.compose(
            "LegalParticipant", TAGUS, PARTICIPANT, context=CompositionContext(base_url=BASE_URL)
        )
        subject = vc["credentialSubject"]
        assert subject["id"] == vc["id"]
        assert subject["type"] == "gx:LegalParticipant"
        assert subject["gx:legalRegistrationNumber"] == {"id": "https://example.org/issuer/lrn.json"}
        assert subject["gx:headquarterAddress"] == {"gx:countrySubdivisionCode": "LU-CA"}

    def test_explicit_json_output_names_the_id(self, composer):
        context = CompositionContext(base_url=BASE_URL + "/", output="out/participant.json")
        vc = composer.compose("LegalParticipant", TAGUS, PARTICIPANT, context=context)
        assert vc["id"] == "https://example.org/issuer/participant.json"

    def test_deterministic_ids_repeat(self, composer):
        context = CompositionContext(base_url=BASE_URL)
        first = composer.compose("LegalParticipant", TAGUS, PARTICIPANT, context=context)
        second = composer.compose("LegalParticipant", TAGUS, PARTICIPANT, context=context)
        assert first["id"] == second["id"]

    def test_generated_ids_differ(self, composer):
        first = composer.compose("LegalParticipant", TAGUS, PARTICIPANT)
        second = composer.compose("LegalParticipant", TAGUS, PARTICIPANT)
        assert URN_RE.match(first["id"])
        assert first["id"] != second["id"]

    def test_non_addressable_type_ignores_base_url(self, composer):
        vc = composer.compose(
            "ServiceAccessPoint",
            TAGUS,
            {"gx:host": "api.example.org"},
            context=CompositionContext(base_url=BASE_URL),
        )
        assert URN_RE.match(vc["id"])

    def test_loire_envelope(self, composer):
        vc = composer.compose(
            "LegalPerson",
            LOIRE,
            {
                "gx:registrationNumber": "https://example.org/issuer/lrn.json",
                "gx:headquartersAddress": "DE-BE",
                "gx:legalAddress": "DE-BE",
            },
        )
        assert vc["@context"] == list(PROFILES[LOIRE].credential_context)
        assert "validFrom" in vc
        assert "issuanceDate" not in vc
        assert vc["credentialSubject"]["type"] == "gx:LegalPerson"

    def test_issuer_defaults_to_settings_did(self, composer):
        vc = composer.compose("LegalParticipant", TAGUS, PARTICIPANT)
        assert vc["issuer"] == "did:web:dataspace4health.local"

    def test_explicit_issuer_and_time(self, composer):
        context = CompositionContext(
            issuer="did:web:example.org",
            issued_at=datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc),
        )
        vc = composer.compose("LegalParticipant", TAGUS, PARTICIPANT, context=context)
        assert vc["issuer"] == "did:web:example.org"
        assert vc["issuanceDate"] == "2024-05-01T10:00:00.000Z"

    def test_unsupported_version(self, composer):
        with pytest.raises(UnsupportedVersionError):
            composer.compose("LegalParticipant", "21.09", PARTICIPANT)

    def test_invalid_value_rejected(self, composer):
        with pytest.raises(FieldValidationError, match="gx:headquarterAddress"):
            composer.compose(
                "LegalParticipant", TAGUS, {**PARTICIPANT, "gx:headquarterAddress": "Luxembourg"}
            )


class TestMerge:
    def test_empty_strings_dropped_except_policy(self, composer):
        vc = composer.compose(
            "ServiceOffering",
            TAGUS,
            {
                "gx:providedBy": "https://example.org/issuer/LegalParticipant.json",
                "gx:policy": "",
                "gx:dataAccountExport": "  ",
            },
        )
        subject = vc["credentialSubject"]
        assert subject["gx:policy"] == ""
        assert "gx:dataAccountExport" not in subject

    def test_preassigned_value_wins_over_collected(self, composer, caplog):
        with caplog.at_level(logging.WARNING, logger="gaiax_sd.composer"):
            vc = composer.compose(
                "DataResource",
                TAGUS,
                {"gx:producedBy": "did:web:example.org", "gx:license": "MIT"},
                preassigned={"gx:exposedThrough": "urn:uuid:0b6c9d8e-0f5a-4c1e-9b3a-2d4e6f8a0c1e"},
            )
        assert vc["credentialSubject"]["gx:license"] == "https://www.apache.org/licenses/LICENSE-2.0"
        assert "gx:license" in caplog.text

    def test_injected_identifier_fills_pending(self, composer):
        target = "urn:uuid:0b6c9d8e-0f5a-4c1e-9b3a-2d4e6f8a0c1e"
        vc = composer.compose(
            "ServiceOfferingLabelLevel1", TAGUS, {}, preassigned={"gx:assignedTo": target}
        )
        assert vc["credentialSubject"]["gx:assignedTo"] == target

    def test_pending_without_injection_raises(self, composer):
        with pytest.raises(MissingDependencyIdError, match="gx:assignedTo"):
            composer.compose("ServiceOfferingLabelLevel1", TAGUS, {"gx:criterion": "P1.1.1"})

    def test_missing_required_is_logged(self, composer, caplog):
        with caplog.at_level(logging.WARNING, logger="gaiax_sd.composer"):
            composer.compose("ServiceAccessPoint", TAGUS, {"gx:protocol": "https"})
        assert "gx:host" in caplog.text


# ---------------------------------------------------------------------------
# Presentations
# ---------------------------------------------------------------------------


class TestPresentation:
    def test_tagus_participant_first(self, composer, tagus_vc):
        offering = {**tagus_vc, "id": "urn:uuid:1", "type": ["VerifiableCredential", "gx:ServiceOffering"]}
        vp = composer.compose_presentation(TAGUS, [offering, tagus_vc])
        assert vp["type"] == ["VerifiablePresentation"]
        assert vp["@context"] == ["https://www.w3.org/2018/credentials/v1"]
        assert URN_RE.match(vp["id"])
        assert vp["verifiableCredential"][0] is tagus_vc

    def test_loire_envelopes_tokens(self, composer, loire_vc, p256_private_jwk):
        token = ProofChainManager().sign(loire_vc, LOIRE, p256_private_jwk, "did:web:example.org#key-0")
        vp = composer.compose_presentation(LOIRE, [token])
        enveloped = vp["verifiableCredential"][0]
        assert enveloped["type"] == ["EnvelopedVerifiableCredential"]
        assert enveloped["id"] == f"data:application/vc+ld+json+jwt;{token}"
        assert "id" not in vp

    def test_loire_rejects_unsigned_credentials(self, composer, loire_vc):
        with pytest.raises(TypeError):
            composer.compose_presentation(LOIRE, [loire_vc])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_iso_timestamp_millisecond_z():
    moment = datetime(2024, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)
    assert iso_timestamp(moment) == "2024-01-02T03:04:05.678Z"


def test_iso_timestamp_naive_is_utc():
    assert iso_timestamp(datetime(2024, 1, 2)) == "2024-01-02T00:00:00.000Z"


def test_derive_document_id_without_base_url():
    assert URN_RE.match(derive_document_id("LegalParticipant", CompositionContext()))


def test_drop_empty():
    assert drop_empty({"a": "", "b": None, "gx:policy": "", "c": 0}) == {"gx:policy": "", "c": 0}


def test_credential_types_from_token(loire_vc):
    _, private_jwk = generate_jwk_pair("EdDSA")
    token = ProofChainManager().sign(loire_vc, LOIRE, private_jwk, "did:web:example.org#key-0")
    assert decode_segment(token, 1) == loire_vc
    assert credential_types(token) == ["VerifiableCredential", "gx:LegalPerson"]
    assert credential_types("not-a-token") == []


def test_settings_issuer_override(normalizer):
    composer = ShapeComposer(normalizer, Settings(issuer="did:web:issuer.example.org"))
    vc = composer.compose("LegalParticipant", TAGUS, PARTICIPANT)
    assert vc["issuer"] == "did:web:issuer.example.org"
