"""Legal registration number lookup through the Gaia-X notary.

The notary checks a registration number against its official register and
answers with a pre-signed assertion, which is passed through unchanged:

- Tagus: POST the number, retried on a fixed delay until the notary answers
  or the :class:`~gaiax_sd.config.RetryPolicy` / cancellation event stops it.
- Loire: a single GET returning a compact token; any failure is final.
"""

from __future__ import annotations

import logging
import threading
import time
from urllib.parse import quote, urlencode

import requests

from gaiax_sd.config import Settings
from gaiax_sd.errors import FieldValidationError, RegistrationLookupError
from gaiax_sd.fields import validate_registration_number
from gaiax_sd.versions import get_profile

logger = logging.getLogger(__name__)

TAGUS_REGISTRATION_CONTEXT = (
    "https://registry.lab.gaia-x.eu/development/api/trusted-shape-registry/v1/shapes/jsonld/participant"
)
LOIRE_ACCEPT = "application/vc+ld+jwt"

# Path segment used by the Loire notary for each registration type
REGISTRATION_TYPE_PATHS = {
    "leiCode": "lei-code",
    "vatID": "vat-id",
    "EORI": "eori",
    "taxID": "tax-id",
    "EUID": "euid",
}


def normalize_registration_type(registration_type: str) -> str:
    try:
        return REGISTRATION_TYPE_PATHS[registration_type]
    except KeyError:
        raise FieldValidationError(
            "registrationType",
            f"unknown registration type {registration_type!r}, expected one of "
            f"{', '.join(REGISTRATION_TYPE_PATHS)}",
        ) from None


class RegistrationResolver:
    """Fetch legal registration number credentials from the notary."""

    def __init__(
        self,
        settings: Settings | None = None,
        session: requests.Session | None = None,
        cancel: threading.Event | None = None,
    ):
        self.settings = settings or Settings()
        self.session = session or requests.Session()
        self.cancel = cancel or threading.Event()

    def resolve(
        self,
        version: str,
        vc_id: str,
        subject_id: str,
        registration_type: str,
        registration_number: str,
    ) -> dict | str:
        """Return the notary's assertion for ``registration_number``.

        Args:
            version: Ontology version token.
            vc_id: Id the notary gives the issued credential; also the Tagus body id.
            subject_id: Id of the credential subject (sent to the Loire notary).
            registration_type: One of leiCode, vatID, EORI, taxID, EUID.
            registration_number: The number itself.

        Returns:
            The signed credential as a dict (Tagus) or compact token (Loire).

        Raises:
            UnsupportedVersionError: For an unknown version token.
            FieldValidationError: For an unknown type or malformed number.
            RegistrationLookupError: When the notary gives no assertion.
        """
        profile = get_profile(version)
        validate_registration_number(registration_type, registration_number)

        if profile.dialect == "shacl":
            url = f"{profile.registration_url}VC?vcid={quote(vc_id, safe='')}"
            body = {
                "@context": [TAGUS_REGISTRATION_CONTEXT],
                "type": "gx:legalRegistrationNumber",
                "id": vc_id,
                f"gx:{registration_type}": registration_number,
            }
            return self._post_with_retry(url, body)

        path = normalize_registration_type(registration_type)
        query = urlencode({"vcId": vc_id, "subjectId": subject_id})
        url = (
            f"{profile.registration_url}/{path}/"
            f"{quote(registration_number, safe='')}?{query}"
        )
        return self._get_once(url)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _post_with_retry(self, url: str, body: dict) -> dict:
        policy = self.settings.retry
        started = time.monotonic()
        attempt = 0

        while True:
            if self.cancel.is_set():
                raise RegistrationLookupError("Registration lookup cancelled")
            attempt += 1
            logger.debug("POST %s (attempt %d)", url, attempt)
            try:
                response = self.session.post(
                    url, json=body, timeout=self.settings.request_timeout
                )
                response.raise_for_status()
                return response.json()
            except (requests.RequestException, ValueError) as e:
                logger.warning("Registration attempt %d failed: %s", attempt, e)
                last_error = e

            if policy.max_attempts and attempt >= policy.max_attempts:
                raise RegistrationLookupError(
                    f"Registration lookup failed after {attempt} attempts: {last_error}"
                ) from last_error
            elapsed = time.monotonic() - started
            if policy.deadline is not None and elapsed + policy.delay > policy.deadline:
                raise RegistrationLookupError(
                    f"Registration lookup deadline of {policy.deadline}s exceeded: {last_error}"
                ) from last_error

            logger.info("Retrying in %s seconds", policy.delay)
            if self.cancel.wait(policy.delay):
                raise RegistrationLookupError("Registration lookup cancelled")

    def _get_once(self, url: str) -> str:
        logger.debug("GET %s", url)
        try:
            response = self.session.get(
                url,
                headers={"Accept": LOIRE_ACCEPT},
                timeout=self.settings.request_timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise RegistrationLookupError(f"Registration lookup failed: {e}") from e
        return response.text.strip()
