"""Command-line interface for generating Gaia-X self-descriptions.

Examples:
    gaiax-sd types --version tagus
    gaiax-sd compose --version tagus --type LegalParticipant \\
        --property gx:legalName="Example Org" --base-url https://example.org/issuer --sign
    gaiax-sd bundle --version loire --properties offering.json --output out/
    gaiax-sd sign --version tagus --input participant.json --previous-proof urn:uuid:...
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from gaiax_sd.composer import CompositionContext, ShapeComposer, new_urn
from gaiax_sd.config import Settings
from gaiax_sd.errors import SelfDescriptionError
from gaiax_sd.keys import (
    did_key_for_jwk,
    did_key_verification_method,
    generate_jwk_pair,
    public_jwk,
)
from gaiax_sd.keystore import KeyStore, OutputSink, resolve_signing_key
from gaiax_sd.registration import RegistrationResolver
from gaiax_sd.service_offering import BUNDLE_PLANS, ServiceOfferingBundler
from gaiax_sd.signer import ProofChainManager
from gaiax_sd.versions import parse_version

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def parse_assignment(text: str) -> tuple[str, object]:
    """Split ``name=value``; values starting with ``{`` or ``[`` are JSON."""
    name, sep, value = text.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected name=value, got {text!r}")
    if value[:1] in ("{", "["):
        try:
            return name, json.loads(value)
        except ValueError as e:
            raise argparse.ArgumentTypeError(f"invalid JSON for {name}: {e}") from e
    return name, value


def _load_json_object(path: str) -> dict:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise SelfDescriptionError(f"{path} must contain a JSON object")
    return data


def _add_version(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--version",
        "-V",
        required=True,
        type=parse_version,
        help="Ontology version: tagus / 22.10 or loire / 24.06",
    )


def _add_signing(parser: argparse.ArgumentParser, switch: bool = True) -> None:
    if switch:
        parser.add_argument("--sign", action="store_true", help="Sign the result")
    parser.add_argument("--key", help="Private JWK file (default: key store)")
    parser.add_argument(
        "--verification-method",
        help="Verification method DID URL (default: GXSD_VERIFICATION_METHOD)",
    )


def _add_output(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        "-o",
        help="Output file or directory (default: stdout)",
    )


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _sign(args, settings: Settings, document, previous_proof=None):
    store = KeyStore(settings.key_dir)
    signing_key = resolve_signing_key(key_path=args.key, store=store)
    verification_method = args.verification_method or settings.default_verification_method
    return ProofChainManager().sign(
        document, args.version, signing_key, verification_method, previous_proof
    )


def _emit(args, document, default_file_name: str) -> None:
    if args.output:
        path = OutputSink().save(args.output, default_file_name, document)
        print(f"Written to {path}", file=sys.stderr)
    elif isinstance(document, str):
        print(document)
    else:
        print(json.dumps(document, indent=2, ensure_ascii=False))


def _file_name(stem: str, document) -> str:
    return f"{stem}.jwt" if isinstance(document, str) else f"{stem}.json"


def cmd_types(args, settings: Settings) -> None:
    composer = ShapeComposer(settings=settings)
    for name in composer.normalizer.resolve_all(args.version):
        print(name)


def cmd_compose(args, settings: Settings) -> None:
    collected = _load_json_object(args.properties) if args.properties else {}
    collected.update(dict(args.property or []))
    context = CompositionContext(
        base_url=args.base_url,
        output=args.output,
        issuer=args.issuer,
    )
    document = ShapeComposer(settings=settings).compose(
        args.type,
        args.version,
        collected=collected,
        preassigned=dict(args.link or []),
        context=context,
    )
    if args.sign:
        document = _sign(args, settings, document)
    _emit(args, document, _file_name(args.type, document))


def cmd_bundle(args, settings: Settings) -> None:
    collected_by_type = _load_json_object(args.properties)
    context = CompositionContext(
        base_url=args.base_url,
        output=args.output,
        issuer=args.issuer,
    )
    bundler = ServiceOfferingBundler(ShapeComposer(settings=settings))
    document = bundler.compose_bundle(args.version, collected_by_type, context)
    if args.sign:
        document = _sign(args, settings, document)
    stem = BUNDLE_PLANS[args.version].bundle_type
    _emit(args, document, _file_name(stem, document))


def cmd_sign(args, settings: Settings) -> None:
    document = OutputSink().load_credential(args.input)
    if not isinstance(document, dict):
        raise SelfDescriptionError(f"{args.input} is not a JSON credential")

    previous = args.previous_proof
    if previous and len(previous) == 1:
        previous = previous[0]

    if args.credential_id:
        credentials = document.get("verifiableCredential", [])
        if isinstance(credentials, dict):
            credentials = [credentials]
        index = next(
            (i for i, c in enumerate(credentials) if isinstance(c, dict) and c.get("id") == args.credential_id),
            None,
        )
        if index is None:
            raise SelfDescriptionError(
                f"No credential with id {args.credential_id} in {args.input}"
            )
        signed = dict(document)
        signed["verifiableCredential"] = list(credentials)
        signed["verifiableCredential"][index] = _sign(
            args, settings, credentials[index], previous
        )
    else:
        signed = _sign(args, settings, document, previous)
    _emit(args, signed, _file_name(Path(args.input).stem + "-signed", signed))


def cmd_present(args, settings: Settings) -> None:
    sink = OutputSink()
    credentials = [sink.load_credential(path) for path in args.input]
    presentation = ShapeComposer(settings=settings).compose_presentation(
        args.version, credentials
    )
    if args.sign:
        presentation = _sign(args, settings, presentation)
    _emit(args, presentation, _file_name("presentation", presentation))


def cmd_register(args, settings: Settings) -> None:
    resolver = RegistrationResolver(settings=settings)
    assertion = resolver.resolve(
        args.version,
        args.vc_id or new_urn(),
        args.subject_id or new_urn(),
        args.registration_type,
        args.number,
    )
    _emit(args, assertion, _file_name("legalRegistrationNumber", assertion))


def cmd_keys(args, settings: Settings) -> None:
    if args.keys_command == "generate":
        kid = args.kid or settings.default_verification_method
        public_key, private_key = generate_jwk_pair(args.algorithm, kid=kid)
        if args.key_dir:
            store = KeyStore(args.key_dir)
            store.save_keys(public_key, private_key)
            print(f"Keys written to {store.key_dir}", file=sys.stderr)
        else:
            print(json.dumps(public_key if args.public_only else private_key, indent=2))
    elif args.keys_command == "did-key":
        jwk = _load_json_object(args.input)
        if args.verification_method:
            print(did_key_verification_method(public_jwk(jwk)))
        else:
            print(did_key_for_jwk(public_jwk(jwk)))
    else:
        raise SelfDescriptionError("keys: choose 'generate' or 'did-key'")


COMMANDS = {
    "types": cmd_types,
    "compose": cmd_compose,
    "bundle": cmd_bundle,
    "sign": cmd_sign,
    "present": cmd_present,
    "register": cmd_register,
    "keys": cmd_keys,
}


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gaiax-sd",
        description="Gaia-X Self-Description Generator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  gaiax-sd types --version tagus
  gaiax-sd compose -V tagus --type LegalParticipant --properties participant.json --sign
  gaiax-sd bundle -V loire --properties offering.json --base-url https://example.org/sd
  gaiax-sd sign -V tagus --input vc.json --previous-proof urn:uuid:1234
  gaiax-sd register -V loire --registration-type vatID --number FR79537407926
  gaiax-sd keys generate --algorithm EdDSA --key-dir output/keys
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    types_parser = subparsers.add_parser("types", help="List subject types of a version")
    _add_version(types_parser)

    compose_parser = subparsers.add_parser(
        "compose",
        help="Compose a credential for one subject type",
        description="Compose (and optionally sign) a self-description credential.",
    )
    _add_version(compose_parser)
    compose_parser.add_argument("--type", "-t", required=True, help="Subject type")
    compose_parser.add_argument(
        "--property",
        "-p",
        action="append",
        type=parse_assignment,
        help="Collected value as name=value (repeatable)",
    )
    compose_parser.add_argument("--properties", help="JSON file of collected values")
    compose_parser.add_argument(
        "--link",
        action="append",
        type=parse_assignment,
        help="Identifier injected into a property as name=value (repeatable)",
    )
    compose_parser.add_argument("--base-url", help="Base URL for deterministic ids")
    compose_parser.add_argument("--issuer", help="Issuer DID")
    _add_output(compose_parser)
    _add_signing(compose_parser)

    bundle_parser = subparsers.add_parser(
        "bundle",
        help="Compose a service-offering bundle",
        description="Compose a service offering with its dependent shapes.",
    )
    _add_version(bundle_parser)
    bundle_parser.add_argument(
        "--properties",
        required=True,
        help="JSON file mapping subject type to its collected values",
    )
    bundle_parser.add_argument("--base-url", help="Base URL for deterministic ids")
    bundle_parser.add_argument("--issuer", help="Issuer DID")
    _add_output(bundle_parser)
    _add_signing(bundle_parser)

    sign_parser = subparsers.add_parser(
        "sign",
        help="Sign a credential or extend its proof chain",
    )
    _add_version(sign_parser)
    sign_parser.add_argument("--input", "-i", required=True, help="Credential file")
    sign_parser.add_argument(
        "--credential-id",
        help="Sign only the embedded credential with this id (presentation input)",
    )
    sign_parser.add_argument(
        "--previous-proof",
        action="append",
        help="Id of an existing proof the new proof covers (repeatable)",
    )
    _add_output(sign_parser)
    _add_signing(sign_parser, switch=False)

    present_parser = subparsers.add_parser("present", help="Build a presentation")
    _add_version(present_parser)
    present_parser.add_argument(
        "--input", "-i", required=True, nargs="+", help="Credential files"
    )
    _add_output(present_parser)
    _add_signing(present_parser)

    register_parser = subparsers.add_parser(
        "register", help="Look up a legal registration number at the notary"
    )
    _add_version(register_parser)
    register_parser.add_argument(
        "--registration-type",
        required=True,
        choices=["leiCode", "vatID", "EORI", "taxID", "EUID"],
    )
    register_parser.add_argument("--number", required=True, help="Registration number")
    register_parser.add_argument("--vc-id", help="Credential id (default: urn:uuid)")
    register_parser.add_argument("--subject-id", help="Subject id (default: urn:uuid)")
    _add_output(register_parser)

    keys_parser = subparsers.add_parser("keys", help="Key utilities")
    keys_sub = keys_parser.add_subparsers(dest="keys_command")
    gen_parser = keys_sub.add_parser("generate", help="Generate a signing key pair")
    gen_parser.add_argument(
        "--algorithm",
        "-a",
        choices=["ES256", "EdDSA"],
        default="ES256",
        help="Algorithm: ES256 (P-256) or EdDSA (Ed25519). Default: ES256",
    )
    gen_parser.add_argument("--kid", help="Key id (default: verification method)")
    gen_parser.add_argument("--key-dir", help="Write publicKey.json/privateKey.json here")
    gen_parser.add_argument("--public-only", action="store_true", help="Print only the public key")
    did_parser = keys_sub.add_parser("did-key", help="Print the did:key of a JWK")
    did_parser.add_argument("--input", "-i", required=True, help="JWK file")
    did_parser.add_argument(
        "--verification-method",
        action="store_true",
        help="Print the did:key verification method id (did:key:z...#z...)",
    )

    return parser


def main(argv=None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    settings = Settings.from_env()
    logger.debug("Running %s with %s", args.command, settings)
    try:
        COMMANDS[args.command](args, settings)
    except (SelfDescriptionError, OSError, TypeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
