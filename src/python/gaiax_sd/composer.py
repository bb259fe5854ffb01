"""Compose credential subjects and wrap them in versioned VC/VP envelopes.

The composer takes a normalized :class:`~gaiax_sd.ontology.ShapeSchema`,
the values collected for it and any identifiers injected by the pipeline,
and produces an unsigned JSON-LD credential. Context and date field come
from the version profile; the document id is deterministic for
network-addressable types when a base URL is given.
"""

from __future__ import annotations

import base64
import json
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any

from gaiax_sd.config import Settings
from gaiax_sd.errors import MissingDependencyIdError
from gaiax_sd.fields import prepare_value
from gaiax_sd.ontology import PENDING, OntologyNormalizer, ShapeSchema
from gaiax_sd.versions import get_profile

logger = logging.getLogger(__name__)

# Types hosted at a stable URL when the caller supplies a base URL
NETWORK_ADDRESSABLE_TYPES = frozenset({"LegalParticipant", "ServiceOffering"})

# An empty policy is a meaningful value, not a missing one
EMPTY_STRING_EXEMPT = frozenset({"gx:policy"})

LEGAL_PARTICIPANT_TYPE = "gx:LegalParticipant"


@dataclass(frozen=True)
class CompositionContext:
    """Per-request inputs that shape the envelope rather than the subject."""

    base_url: str | None = None
    output: str | None = None
    issuer: str | None = None
    issued_at: datetime | None = None


def new_urn() -> str:
    return f"urn:uuid:{uuid.uuid4()}"


def derive_document_id(type_name: str, context: CompositionContext) -> str:
    """Deterministic URL for addressable types under a base URL, else a urn:uuid."""
    if not context.base_url or type_name not in NETWORK_ADDRESSABLE_TYPES:
        return new_urn()
    base = context.base_url.rstrip("/")
    if context.output and context.output.lower().endswith(".json"):
        return f"{base}/{PurePosixPath(context.output).name}"
    return f"{base}/{type_name}.json"


def drop_empty(values: Mapping[str, Any] | None) -> dict[str, Any]:
    """Drop empty or whitespace-only strings, except for exempt properties."""
    kept = {}
    for name, value in (values or {}).items():
        if value is None:
            continue
        if isinstance(value, str) and not value.strip() and name not in EMPTY_STRING_EXEMPT:
            continue
        kept[name] = value
    return kept


def iso_timestamp(moment: datetime | None = None) -> str:
    """UTC timestamp with millisecond precision and a ``Z`` suffix."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


class ShapeComposer:
    """Build credential subjects and VC/VP documents."""

    def __init__(
        self,
        normalizer: OntologyNormalizer | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or Settings()
        self.normalizer = normalizer or OntologyNormalizer(self.settings)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def compose(
        self,
        type_name: str,
        version: str,
        collected: Mapping[str, Any] | None = None,
        preassigned: Mapping[str, Any] | None = None,
        context: CompositionContext | None = None,
        schema: ShapeSchema | None = None,
    ) -> dict:
        """Compose an unsigned credential for one subject type.

        Args:
            type_name: Subject type as named by the ontology (e.g. "LegalParticipant").
            version: Ontology version token.
            collected: Values gathered from the user.
            preassigned: Values injected by the pipeline (cross-shape identifiers).
            context: Base URL, output name, issuer and issuance time.
            schema: Already resolved schema; fetched from the ontology if omitted.

        Raises:
            UnsupportedVersionError, UnknownTypeError, OntologyFetchError,
            FieldValidationError, MissingDependencyIdError.
        """
        context = context or CompositionContext()
        get_profile(version)
        if schema is None:
            schema = self.normalizer.resolve(version, type_name)

        document_id = derive_document_id(type_name, context)
        subject = self.build_subject(schema, collected, preassigned, document_id)
        return self.envelope(type_name, version, subject, context, document_id)

    def build_subject(
        self,
        schema: ShapeSchema,
        collected: Mapping[str, Any] | None,
        injected: Mapping[str, Any] | None,
        subject_id: str,
    ) -> dict:
        properties = self.merge_properties(schema, collected, injected)
        return {"id": subject_id, "type": f"gx:{schema.type}", **properties}

    def merge_properties(
        self,
        schema: ShapeSchema,
        collected: Mapping[str, Any] | None,
        injected: Mapping[str, Any] | None,
    ) -> dict[str, Any]:
        """Merge ontology values, injected identifiers and collected values.

        Later sources win, except that collected values never replace a name
        the ontology itself pre-assigns.
        """
        merged: dict[str, Any] = dict(schema.preassigned)
        merged.update(drop_empty(injected))

        for name, value in drop_empty(collected).items():
            if name in schema.preassigned:
                logger.warning(
                    "Ignoring collected value for pre-assigned property %s on %s",
                    name,
                    schema.type,
                )
                continue
            constraint = schema.properties.get(name)
            range_ = constraint.range if constraint is not None else "string"
            merged[name] = prepare_value(name, value, range_)

        missing = [n for n in schema.required if n not in merged]
        if missing:
            logger.warning("%s is missing required properties: %s", schema.type, ", ".join(missing))

        pending = sorted(name for name in schema.pending if merged[name] is PENDING)
        if pending:
            raise MissingDependencyIdError(
                f"{schema.type}: no identifier was provided for {', '.join(pending)}"
            )
        return merged

    def envelope(
        self,
        type_name: str,
        version: str,
        credential_subject: dict | list[dict],
        context: CompositionContext | None = None,
        document_id: str | None = None,
    ) -> dict:
        """Wrap a subject (or subject list) in the version's VC envelope."""
        profile = get_profile(version)
        context = context or CompositionContext()
        return {
            "@context": list(profile.credential_context),
            "id": document_id or new_urn(),
            "type": ["VerifiableCredential", f"gx:{type_name}"],
            "issuer": context.issuer or self.settings.default_issuer,
            profile.date_field: iso_timestamp(context.issued_at),
            "credentialSubject": credential_subject,
        }

    # ------------------------------------------------------------------
    # Presentations
    # ------------------------------------------------------------------

    def compose_presentation(self, version: str, credentials: list[dict | str]) -> dict:
        """Bundle credentials into an unsigned Verifiable Presentation.

        The LegalParticipant credential, if present, is placed first. Loire
        presentations carry each credential as an enveloped compact token.
        """
        profile = get_profile(version)
        ordered = sorted(
            credentials, key=lambda c: LEGAL_PARTICIPANT_TYPE not in credential_types(c)
        )

        if profile.enveloped_media_type is None:
            return {
                "@context": list(profile.presentation_context),
                "id": new_urn(),
                "type": ["VerifiablePresentation"],
                "verifiableCredential": ordered,
            }

        enveloped = []
        for credential in ordered:
            if not isinstance(credential, str):
                raise TypeError(
                    f"{version} presentations embed signed compact credentials, "
                    f"got {type(credential).__name__}"
                )
            enveloped.append(
                {
                    "@context": [profile.credential_context[0]],
                    "type": ["EnvelopedVerifiableCredential"],
                    "id": f"data:{profile.enveloped_media_type};{credential}",
                }
            )
        return {
            "@context": list(profile.presentation_context),
            "type": ["VerifiablePresentation"],
            "verifiableCredential": enveloped,
        }


def credential_types(credential: dict | str) -> list[str]:
    """Return the ``type`` list of a credential dict or compact token (unverified)."""
    if isinstance(credential, str):
        try:
            segment = credential.split(".")[1]
            credential = json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))
        except (IndexError, ValueError):
            return []
    types = credential.get("type", []) if isinstance(credential, dict) else []
    return [types] if isinstance(types, str) else list(types)
