"""Service-offering bundles: several shapes composed into one credential.

A bundle is generated shape by shape in a fixed order. Shapes that point at
another shape (an instantiated resource at its access point, a label at its
offering) receive that shape's subject id through a static dependency table.
The ids generated so far are handed to each step as a read-only mapping, so
a shape can only depend on shapes generated before it.

After the last shape a terms-and-conditions subject is synthesized from the
URL/hash pair the offering itself references.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from gaiax_sd.composer import (
    CompositionContext,
    ShapeComposer,
    derive_document_id,
    new_urn,
)
from gaiax_sd.errors import (
    MissingDependencyIdError,
    TermsSynthesisWarning,
    UnknownTypeError,
)
from gaiax_sd.ontology import ShapeSchema
from gaiax_sd.versions import LOIRE, TAGUS, get_profile

logger = logging.getLogger(__name__)

_URL_KEYS = ("gx:URL", "gx:url", "URL", "url")
_HASH_KEYS = ("gx:hash", "hash")


@dataclass(frozen=True)
class DependencyLink:
    """``target_property`` of the dependent shape takes ``source_type``'s subject id."""

    target_property: str
    source_type: str


@dataclass(frozen=True)
class BundlePlan:
    bundle_type: str
    shapes: tuple[str, ...]
    links: Mapping[str, tuple[DependencyLink, ...]] = field(default_factory=dict)
    terms_property: str | None = None
    terms_type: str = "gx:SOTermsAndConditions"

    def resolve_links(self, shape: str, generated: Mapping[str, str]) -> dict[str, str]:
        """Identifiers to inject into ``shape`` from already generated shapes."""
        injected = {}
        for link in self.links.get(shape, ()):
            if link.source_type not in generated:
                raise MissingDependencyIdError(
                    f"{shape}.{link.target_property} needs the id of "
                    f"{link.source_type}, which has not been generated yet"
                )
            injected[link.target_property] = generated[link.source_type]
        return injected


_SHARED_LINKS = {
    "InstantiatedVirtualResource": (
        DependencyLink("gx:serviceAccessPoint", "ServiceAccessPoint"),
    ),
    "DataResource": (DependencyLink("gx:exposedThrough", "ServiceOffering"),),
}

BUNDLE_PLANS: dict[str, BundlePlan] = {
    TAGUS: BundlePlan(
        bundle_type="ServiceOffering",
        shapes=(
            "ServiceOffering",
            "ServiceOfferingLabelLevel1",
            "ServiceAccessPoint",
            "InstantiatedVirtualResource",
            "DataResource",
        ),
        links={
            **_SHARED_LINKS,
            "ServiceOfferingLabelLevel1": (
                DependencyLink("gx:assignedTo", "ServiceOffering"),
            ),
        },
        terms_property="gx:termsAndConditions",
        terms_type="gx:SOTermsAndConditions",
    ),
    LOIRE: BundlePlan(
        bundle_type="ServiceOffering",
        shapes=(
            "ServiceOffering",
            "ServiceAccessPoint",
            "InstantiatedVirtualResource",
            "DataResource",
        ),
        links=dict(_SHARED_LINKS),
        terms_property="gx:serviceOfferingTermsAndConditions",
        terms_type="gx:TermsAndConditions",
    ),
}


def extract_terms_reference(value: Any) -> tuple[str, str] | None:
    """Pull the (url, hash) pair out of an embedded terms reference."""
    if isinstance(value, list):
        value = value[0] if value else None
    if not isinstance(value, dict):
        return None
    url = next((value[k] for k in _URL_KEYS if value.get(k)), None)
    digest = next((value[k] for k in _HASH_KEYS if value.get(k)), None)
    if not url or not digest:
        return None
    return url, digest


class ServiceOfferingBundler:
    """Compose a service offering and its dependent shapes into one credential."""

    def __init__(self, composer: ShapeComposer | None = None):
        self.composer = composer or ShapeComposer()

    def compose_bundle(
        self,
        version: str,
        collected_by_type: Mapping[str, Mapping[str, Any]],
        context: CompositionContext | None = None,
        plan: BundlePlan | None = None,
        schemas: Mapping[str, ShapeSchema] | None = None,
    ) -> dict:
        """Compose every shape of the plan and wrap the subjects in one VC.

        Args:
            version: Ontology version token.
            collected_by_type: Collected values keyed by shape type.
            context: Base URL, output name, issuer and issuance time.
            plan: Shape order and dependency table; the version default if omitted.
            schemas: Pre-resolved schemas; fetched once from the ontology if omitted.

        Raises:
            MissingDependencyIdError: If a shape depends on one not generated yet.
        """
        get_profile(version)
        context = context or CompositionContext()
        plan = plan or BUNDLE_PLANS[version]
        if schemas is None:
            schemas = self.composer.normalizer.resolve_all(version)

        subjects = self.compose_subjects(version, plan, schemas, collected_by_type)
        document_id = derive_document_id(plan.bundle_type, context)
        return self.composer.envelope(
            plan.bundle_type, version, subjects, context, document_id
        )

    def compose_subjects(
        self,
        version: str,
        plan: BundlePlan,
        schemas: Mapping[str, ShapeSchema],
        collected_by_type: Mapping[str, Mapping[str, Any]],
    ) -> list[dict]:
        generated: Mapping[str, str] = MappingProxyType({})
        subjects = []
        for shape in plan.shapes:
            schema = schemas.get(shape)
            if schema is None:
                raise UnknownTypeError(shape, version)
            logger.info("Processing shape %s", shape)
            injected = plan.resolve_links(shape, generated)
            subject = self.composer.build_subject(
                schema, collected_by_type.get(shape), injected, new_urn()
            )
            generated = MappingProxyType({**generated, shape: subject["id"]})
            subjects.append(subject)

        terms = self.synthesize_terms(plan, subjects[0] if subjects else {})
        if terms is not None:
            subjects.append(terms)
        return subjects

    @staticmethod
    def synthesize_terms(plan: BundlePlan, first_subject: Mapping[str, Any]) -> dict | None:
        """Terms-and-conditions subject derived from the first shape's reference."""
        reference = None
        if plan.terms_property:
            reference = extract_terms_reference(first_subject.get(plan.terms_property))
        if reference is None:
            warnings.warn(
                f"{first_subject.get('type', plan.bundle_type)} has no "
                f"{plan.terms_property} URL/hash; terms and conditions not added",
                TermsSynthesisWarning,
                stacklevel=3,
            )
            return None
        url, digest = reference
        return {
            "id": new_urn(),
            "type": plan.terms_type,
            "gx:URL": url,
            "gx:hash": digest,
        }
