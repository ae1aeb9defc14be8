#!/usr/bin/env python3
"""
Copy a container image from one Docker registry to another.

ECR registries (<account>.dkr.ecr.<region>.amazonaws.com) are logged into with
a short-lived token obtained from the AWS credentials in the environment.
Other registries are used anonymously unless static credentials are given.

Usage examples:
  # Copy myapp:latest between two registries
  migrate-image --src-url registry.example.com --repo myapp \\
    --dest-url 123456789012.dkr.ecr.us-east-1.amazonaws.com

  # Rename the repository and retag on the way
  migrate-image --src-url registry.example.com --src-repo team/app --src-tag 1.4.2 \\
    --dest-url registry.internal:5000 --dest-repo app --dest-tag stable

  # Check which layers would be copied without transferring anything
  migrate-image --src-url registry.example.com --dest-url registry.internal:5000 --repo myapp --dry-run
"""

import argparse
import logging
import sys
from dataclasses import replace
from typing import List, Optional, Tuple

from registry_migrator.auth.providers import (
    get_credentials_from_env,
    get_credentials_from_k8s_secret,
    parse_credentials,
    parse_ecr_registry_url,
    with_static_credentials,
)
from registry_migrator.config_manager import ConfigManager, ConfigValidationError, config_manager
from registry_migrator.error_utils import ConfigError, MigrationError
from registry_migrator.image_migrator import ImageMigrator, MigrationOutcome, run_migration
from registry_migrator.logging_utils import get_logger, log_exception, setup_logging
from registry_migrator.models import RegistryEndpoint, RepositoryReference
from registry_migrator.report_utils import format_layer_table, save_json, sizeof_fmt

logger = get_logger(__name__)

EXIT_INTERRUPTED = 130


def _add_registry_arguments(parser: argparse.ArgumentParser, prefix: str, description: str) -> None:
    group = parser.add_argument_group(f"{description} registry")
    group.add_argument(f"--{prefix}-url", default="", help=f"URL of {description} registry")
    group.add_argument(f"--{prefix}-repo", default="", help=f"Name of the {description} repository")
    group.add_argument(f"--{prefix}-tag", default="", help=f"Name of the {description} tag")
    group.add_argument(
        f"--{prefix}-creds",
        help=f"Static credentials for the {description} registry in user:password format (ignored for ECR)",
    )
    group.add_argument(
        f"--{prefix}-auth-secret",
        help=f"Kubernetes dockerconfigjson secret holding credentials for the {description} registry",
    )


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Copy a container image (manifest and layers) from one registry to another",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    _add_registry_arguments(parser, "src", "source")
    _add_registry_arguments(parser, "dest", "destination")

    parser.add_argument(
        "--repo",
        default="",
        help="The repository in the source and the destination. "
        "Values provided by --src-repo or --dest-repo will override this value",
    )
    parser.add_argument(
        "--tag",
        default="",
        help="The tag name in the source and the destination (default: latest). "
        "Values provided by --src-tag or --dest-tag will override this value",
    )
    parser.add_argument("--namespace", help="Kubernetes namespace of the auth secrets (default: from config)")
    parser.add_argument("--staging-dir", help="Directory for temporary layer files (default: from config)")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report which layers would be copied; nothing is uploaded or published",
    )
    parser.add_argument("--output", help="Write a JSON migration report to this file")
    parser.add_argument("--config", help="Path to config.yaml (default: CONFIG_FILE env var or ./config.yaml)")
    parser.add_argument("--log-level", help="Logging level (default: from config)")

    return parser.parse_args(argv)


def build_references(
    args: argparse.Namespace, default_tag: str = "latest"
) -> Tuple[RepositoryReference, RepositoryReference]:
    """Apply the --repo/--tag fallbacks and validate both repository names.

    No credentials are looked up here, so a missing repository name is
    reported before anything touches the network.
    """
    tag = args.tag or default_tag
    src_ref = RepositoryReference(
        endpoint=RegistryEndpoint(args.src_url),
        repository_name=args.src_repo or args.repo,
        tag=args.src_tag or tag,
    )
    dest_ref = RepositoryReference(
        endpoint=RegistryEndpoint(args.dest_url),
        repository_name=args.dest_repo or args.repo,
        tag=args.dest_tag or tag,
    )
    src_ref.validate("source")
    dest_ref.validate("destination")
    return src_ref, dest_ref


def lookup_static_credentials(
    args: argparse.Namespace, prefix: str, registry_url: str, namespace: str
) -> Tuple[str, str]:
    """Static credentials for a non-ECR registry.

    Priority order:
    1. --<prefix>-creds
    2. <PREFIX>_REGISTRY_USERNAME / <PREFIX>_REGISTRY_PASSWORD
    3. --<prefix>-auth-secret Kubernetes secret
    """
    creds = getattr(args, f"{prefix}_creds")
    secret = getattr(args, f"{prefix}_auth_secret")

    if parse_ecr_registry_url(registry_url) is not None:
        if creds or secret:
            logger.warning(f"Ignoring static credentials for ECR registry {registry_url}; a token is requested instead")
        return "", ""

    if creds:
        return parse_credentials(creds)

    username, password = get_credentials_from_env(prefix)
    if username and password:
        return username, password

    if secret:
        try:
            username, password = get_credentials_from_k8s_secret(secret, namespace, registry_url)
        except Exception as e:
            raise ConfigError(
                f"Failed to read registry credentials from Kubernetes secret {secret}",
                cause=e,
                details={"secret": secret, "namespace": namespace},
            ) from e
        if username and password:
            return username, password

    return "", ""


def _with_credentials(ref: RepositoryReference, username: str, password: str) -> RepositoryReference:
    return replace(ref, endpoint=with_static_credentials(ref.endpoint, username, password))


def report_outcome(outcome: MigrationOutcome, output: Optional[str] = None) -> None:
    """Print one human-readable line for the outcome, plus the layer table on success."""
    if outcome.error is not None:
        logger.error(str(outcome.error))
        print(f"Migration failed: {outcome.error.summary()}")
        return

    result = outcome.result
    print(format_layer_table(result))
    if result.dry_run:
        print(
            f"Dry run of {result.source} -> {result.destination}: "
            f"{result.would_copy} layers would be copied, {result.skipped} already present"
        )
    else:
        print(
            f"Migrated {result.source} -> {result.destination}: "
            f"{result.copied} layers copied ({sizeof_fmt(result.bytes_copied)}), {result.skipped} already present"
        )

    if output:
        save_json(output, result.to_dict())
        logger.info(f"Report saved to: {output}")


def main(argv: Optional[List[str]] = None) -> int:
    """Run the command line tool and return the process exit status."""
    args = parse_arguments(argv)

    try:
        cm = ConfigManager(config_file=args.config, validate=False) if args.config else config_manager
        cm.validate_config()
    except ConfigValidationError as e:
        print(f"Migration failed: [configuration] {e}")
        return ConfigError.exit_code

    setup_logging(args.log_level or cm.get_log_level())
    if logger.isEnabledFor(logging.DEBUG):
        cm.print_config()

    try:
        src_ref, dest_ref = build_references(args, cm.get_default_tag())

        namespace = args.namespace or cm.get_kubernetes_namespace()
        src_ref = _with_credentials(
            src_ref, *lookup_static_credentials(args, "src", src_ref.endpoint.base_url, namespace)
        )
        dest_ref = _with_credentials(
            dest_ref, *lookup_static_credentials(args, "dest", dest_ref.endpoint.base_url, namespace)
        )

        logger.info("=" * 60)
        if args.dry_run:
            logger.info("   IMAGE MIGRATION - DRY RUN MODE")
        else:
            logger.info("   IMAGE MIGRATION")
        logger.info("=" * 60)
        logger.info(f"Source:      {src_ref}")
        logger.info(f"Destination: {dest_ref}")

        migrator = ImageMigrator(
            staging_dir=args.staging_dir or cm.get_staging_dir(),
            chunk_size=cm.get_chunk_size(),
            client_options=cm.get_client_options(),
        )
        outcome = run_migration(src_ref, dest_ref, migrator=migrator, dry_run=args.dry_run)
    except MigrationError as e:
        outcome = MigrationOutcome(error=e)
    except ConfigValidationError as e:
        outcome = MigrationOutcome(error=ConfigError("Invalid configuration", cause=e))
    except KeyboardInterrupt:
        logger.warning("Migration interrupted by user")
        print("Migration interrupted; re-run to continue, layers already copied are skipped")
        return EXIT_INTERRUPTED
    except Exception as e:
        log_exception(logger, "Unexpected error in migration", exc_info=e)
        print(f"Migration failed: unexpected error. {e}")
        return MigrationError.exit_code

    report_outcome(outcome, args.output)
    return outcome.exit_code


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
