"""Normalize the Gaia-X ontologies into one property-constraint model.

Two remote schema dialects are supported:

- Tagus (22.10): a SHACL shape graph served as JSON-LD, plus a separate list
  of the shapes the registry actually implements.
- Loire (24.06): a LinkML schema (``types.yaml``) with one class per
  credential subject type.

Both are reduced to :class:`ShapeSchema` objects keyed by subject type. After
this step nothing downstream looks at the dialect again.

Usage:
    normalizer = OntologyNormalizer()
    schema = normalizer.resolve("22.10 (Tagus)", "LegalParticipant")
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

import requests
from linkml_runtime.linkml_model.meta import SchemaDefinition
from linkml_runtime.loaders import yaml_loader

from gaiax_sd.config import Settings
from gaiax_sd.errors import OntologyFetchError, UnknownTypeError
from gaiax_sd.versions import TAGUS, VersionProfile, get_profile

logger = logging.getLogger(__name__)

RANGES = ("string", "integer", "float", "boolean", "datetime")

_RANGE_ALIASES = {
    "string": "string",
    "str": "string",
    "integer": "integer",
    "int": "integer",
    "long": "integer",
    "short": "integer",
    "nonnegativeinteger": "integer",
    "positiveinteger": "integer",
    "float": "float",
    "double": "float",
    "decimal": "float",
    "number": "float",
    "boolean": "boolean",
    "bool": "boolean",
    "datetime": "datetime",
    "date": "datetime",
    "datetimestamp": "datetime",
}

# Subject identifiers that are always wired between shapes, never collected
NEVER_SURFACED = frozenset(
    {
        "gx:assignedTo",
        "gx:serviceAccessPoint",
        "gx:exposedThrough",
    }
)

# Shapes whose graph node is found by sh:targetClass instead of by @id
TARGET_CLASS_LOOKUPS = frozenset({"ServiceOfferingLabelLevel1"})

LINKML_PREFIX = "gx:"


class _Pending:
    """Sentinel for a pre-assigned slot the composer still has to fill."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "PENDING"

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __reduce__(self):
        return (_Pending, ())


PENDING = _Pending()


@dataclass(frozen=True)
class PropertyConstraint:
    name: str
    description: str
    range: str = "string"
    required: bool = False

    def __post_init__(self) -> None:
        if self.range not in RANGES:
            raise ValueError(f"Unknown range {self.range!r} for {self.name}")


@dataclass(frozen=True)
class ShapeSchema:
    """Properties to collect and values fixed for one credential subject type."""

    type: str
    properties: Mapping[str, PropertyConstraint]
    preassigned: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        type_name: str,
        properties: dict[str, PropertyConstraint],
        preassigned: dict[str, Any] | None = None,
    ) -> ShapeSchema:
        return cls(
            type=type_name,
            properties=MappingProxyType(dict(properties)),
            preassigned=MappingProxyType(dict(preassigned or {})),
        )

    @property
    def required(self) -> list[str]:
        return [name for name, c in self.properties.items() if c.required]

    @property
    def pending(self) -> list[str]:
        return [name for name, v in self.preassigned.items() if v is PENDING]


@dataclass(frozen=True)
class ShapeOverride:
    """Curated corrections applied on top of a raw SHACL shape."""

    extra: tuple[PropertyConstraint, ...] = ()
    descriptions: Mapping[str, str] = field(default_factory=dict)
    required: frozenset[str] = frozenset()


SHACL_OVERRIDES: dict[str, dict[str, ShapeOverride]] = {
    TAGUS: {
        "LegalParticipant": ShapeOverride(
            extra=(
                PropertyConstraint("gx:legalName", "Legal binding name"),
                PropertyConstraint(
                    "gx:description", "Textual description of this organization"
                ),
                PropertyConstraint(
                    "gx-terms-and-conditions:gaiaxTermsAndConditions",
                    "sha256 hash of the document",
                    required=True,
                ),
            ),
            descriptions={
                "gx:legalRegistrationNumber": "URL of the legal registration number credential",
                "gx:headquarterAddress": "ISO 3166-2 subdivision code of the headquarters (e.g. LU-CA)",
                "gx:legalAddress": "ISO 3166-2 subdivision code of the legal address (e.g. LU-CA)",
            },
            required=frozenset(
                {"gx:legalRegistrationNumber", "gx:headquarterAddress", "gx:legalAddress"}
            ),
        ),
        "ServiceOffering": ShapeOverride(
            descriptions={
                "gx:providedBy": "Identifier of the LegalParticipant providing the service",
                "gx:policy": "ODRL policy for the offering (may be left empty)",
                "gx:termsAndConditions": "Terms and conditions reference as {gx:URL, gx:hash}",
            },
            required=frozenset({"gx:providedBy", "gx:termsAndConditions"}),
        ),
    },
}


def normalize_range(raw: str | None) -> str:
    """Map an xsd/LinkML datatype name onto the five canonical ranges."""
    if not raw:
        return "string"
    key = _local_name(str(raw)).lower()
    return _RANGE_ALIASES.get(key, "string")


def mark_never_surfaced(
    properties: dict[str, PropertyConstraint], preassigned: dict[str, Any]
) -> None:
    """Move wired identifiers from the collectable set into PENDING slots."""
    for name in NEVER_SURFACED:
        if name in properties:
            del properties[name]
            preassigned.setdefault(name, PENDING)


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class OntologySource:
    """One remote ontology dialect, reduced to ShapeSchemas."""

    def __init__(
        self,
        profile: VersionProfile,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ):
        self.profile = profile
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch_and_normalize(self) -> dict[str, ShapeSchema]:
        raise NotImplementedError

    def _get(self, url: str) -> requests.Response:
        logger.debug("GET %s", url)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise OntologyFetchError(f"Failed to fetch {url}: {e}") from e
        return response

    def _get_json(self, url: str) -> Any:
        response = self._get(url)
        try:
            return response.json()
        except ValueError as e:
            raise OntologyFetchError(f"Invalid JSON from {url}: {e}") from e


class ShaclSource(OntologySource):
    """Tagus shape graph plus the implemented-shapes allow-list."""

    def fetch_and_normalize(self) -> dict[str, ShapeSchema]:
        graph = self._get_json(self.profile.ontology_url)
        implemented = self._get_json(self.profile.implemented_shapes_url)
        if not isinstance(implemented, list) or not all(isinstance(n, str) for n in implemented):
            raise OntologyFetchError("Implemented shape list is not a JSON array of names")

        nodes = _graph_nodes(graph)
        overrides = SHACL_OVERRIDES.get(self.profile.token, {})
        schemas: dict[str, ShapeSchema] = {}
        for name in sorted(implemented):
            try:
                node = find_shape_node(nodes, name)
                if node is None:
                    logger.debug("No shape node for implemented shape %s", name)
                    continue
                schemas[name] = self.normalize_shape(name, node, overrides.get(name))
            except (TypeError, ValueError, AttributeError) as e:
                raise OntologyFetchError(f"Malformed SHACL shape {name}: {e}") from e
        logger.info("Normalized %d SHACL shapes for %s", len(schemas), self.profile.token)
        return schemas

    @staticmethod
    def normalize_shape(
        name: str, node: dict, override: ShapeOverride | None = None
    ) -> ShapeSchema:
        properties: dict[str, PropertyConstraint] = {}
        preassigned: dict[str, Any] = {}

        for prop in _as_list(node.get("sh:property")):
            if not isinstance(prop, dict):
                logger.debug("Skipping unexpanded property reference %r in %s", prop, name)
                continue
            path = _node_id(prop.get("sh:path"))
            if not path:
                continue
            if "sh:hasValue" in prop:
                preassigned[path] = prop["sh:hasValue"]
                continue
            min_count = _literal(prop.get("sh:minCount")) or 0
            properties[path] = PropertyConstraint(
                name=path,
                description=_literal(prop.get("sh:description")) or path,
                range=normalize_range(_node_id(prop.get("sh:datatype"))),
                required=int(min_count) >= 1,
            )

        if override is not None:
            _apply_override(properties, override)
        mark_never_surfaced(properties, preassigned)
        return ShapeSchema.build(name, properties, preassigned)


class LinkMLSource(OntologySource):
    """Loire LinkML type catalog."""

    def fetch_and_normalize(self) -> dict[str, ShapeSchema]:
        text = self._get(self.profile.ontology_url).text
        try:
            schema = yaml_loader.loads(text, target_class=SchemaDefinition)
        except Exception as e:
            raise OntologyFetchError(f"Invalid LinkML catalog: {e}") from e

        classes = schema.classes or {}
        schemas: dict[str, ShapeSchema] = {}
        for class_name in sorted(str(n) for n in classes):
            definition = classes[class_name]
            if definition.abstract:
                continue
            schemas[class_name] = self.normalize_class(class_name, definition)
        logger.info(
            "Normalized %d LinkML classes for %s", len(schemas), self.profile.token
        )
        return schemas

    @staticmethod
    def normalize_class(class_name: str, definition) -> ShapeSchema:
        properties: dict[str, PropertyConstraint] = {}
        preassigned: dict[str, Any] = {}
        for attr_name, slot in (definition.attributes or {}).items():
            name = f"{LINKML_PREFIX}{attr_name}"
            if slot.equals_string is not None:
                preassigned[name] = slot.equals_string
                continue
            properties[name] = PropertyConstraint(
                name=name,
                description=slot.description or "",
                range=normalize_range(slot.range),
                required=bool(slot.required),
            )
        mark_never_surfaced(properties, preassigned)
        return ShapeSchema.build(class_name, properties, preassigned)


SOURCES: dict[str, type[OntologySource]] = {
    "shacl": ShaclSource,
    "linkml": LinkMLSource,
}


class OntologyNormalizer:
    """Fetch an ontology version and expose its shapes.

    Every call fetches afresh; schemas are never cached between requests.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        session: requests.Session | None = None,
    ):
        self.settings = settings or Settings()
        self.session = session or requests.Session()

    def source_for(self, version: str) -> OntologySource:
        profile = get_profile(version)
        return SOURCES[profile.dialect](
            profile, session=self.session, timeout=self.settings.request_timeout
        )

    def resolve_all(self, version: str) -> dict[str, ShapeSchema]:
        return self.source_for(version).fetch_and_normalize()

    def resolve(self, version: str, type_name: str) -> ShapeSchema:
        schemas = self.resolve_all(version)
        try:
            return schemas[type_name]
        except KeyError:
            raise UnknownTypeError(type_name, version) from None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _graph_nodes(data: Any) -> list[dict]:
    if not isinstance(data, dict):
        raise OntologyFetchError("Shape graph is not a JSON object")
    container = data.get("gx-trustframework")
    if isinstance(container, dict) and "@graph" in container:
        return [n for n in _as_list(container["@graph"]) if isinstance(n, dict)]
    return [n for n in _as_list(data.get("@graph")) if isinstance(n, dict)]


def find_shape_node(nodes: Iterable[dict], name: str) -> dict | None:
    """Locate the graph node describing shape ``name``."""
    if name in TARGET_CLASS_LOOKUPS:
        for node in nodes:
            if _local_name(_node_id(node.get("sh:targetClass"))) == name:
                return node
        return None
    candidates = (name, f"{name}Shape")
    for node in nodes:
        if _local_name(node.get("@id", "")) in candidates:
            return node
    return None


def _apply_override(
    properties: dict[str, PropertyConstraint], override: ShapeOverride
) -> None:
    for extra in override.extra:
        properties.setdefault(extra.name, extra)
    for name, description in override.descriptions.items():
        if name in properties:
            properties[name] = replace(properties[name], description=description)
    for name in override.required:
        if name in properties:
            properties[name] = replace(properties[name], required=True)


def _as_list(value: Any) -> list:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _node_id(value: Any) -> str | None:
    if isinstance(value, dict):
        return value.get("@id")
    if isinstance(value, list) and value:
        return _node_id(value[0])
    return value if isinstance(value, str) else None


def _literal(value: Any) -> str | None:
    if isinstance(value, dict):
        return value.get("@value")
    return value


def _local_name(identifier: str | None) -> str:
    if not identifier:
        return ""
    for sep in ("#", "/", ":"):
        identifier = identifier.rsplit(sep, 1)[-1]
    return identifier
