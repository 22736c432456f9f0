# scripts/generate_token.py
import argparse
import json

from gadgetserver.core.config import settings
from gadgetserver.core.security import SecurityToken, SecurityTokenService, create_token_codec
from gadgetserver.engine.features.catalog import FeatureCatalog
from gadgetserver.engine.features.resolver import DependencyResolver


def issue(args):
    token = SecurityToken(
        owner_id=args.owner,
        viewer_id=args.viewer or args.owner,
        app_id=args.app_id,
        domain=args.domain,
        app_url=args.app_url,
        module_id=args.module_id,
        container=args.container,
    )
    service = SecurityTokenService(create_token_codec(settings))
    print(service.issue(token))


def decode(args):
    service = SecurityTokenService(create_token_codec(settings))
    print(json.dumps(service.extract(args.token).model_dump(), indent=2))


def resolve(args):
    catalog = FeatureCatalog.load(settings.FEATURES_PATH)
    resolved = DependencyResolver().resolve(args.features, catalog)
    print(":".join(resolved.names))


def main():
    parser = argparse.ArgumentParser(description="Developer helpers for the gadget server (uses the keys from .env).")
    subparsers = parser.add_subparsers(dest="command", required=True)

    issue_parser = subparsers.add_parser("issue", help="Wrap a security token for a gadget iframe.")
    issue_parser.add_argument("--owner", required=True)
    issue_parser.add_argument("--viewer", help="Defaults to the owner.")
    issue_parser.add_argument("--app-id", default="0")
    issue_parser.add_argument("--domain", default="localhost")
    issue_parser.add_argument("--app-url", required=True)
    issue_parser.add_argument("--module-id", default="0")
    issue_parser.add_argument("--container", default="default")
    issue_parser.set_defaults(func=issue)

    decode_parser = subparsers.add_parser("decode", help="Unwrap and verify a security token.")
    decode_parser.add_argument("token")
    decode_parser.set_defaults(func=decode)

    resolve_parser = subparsers.add_parser("resolve", help="Print the load order of some features.")
    resolve_parser.add_argument("features", nargs="+")
    resolve_parser.set_defaults(func=resolve)

    args = parser.parse_args()
    args.func(args)

if __name__ == "__main__":
    main()
