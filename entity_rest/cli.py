import argparse
import logging
import sys

import yaml

from entity_rest.config import build_operation_config
from entity_rest.config_manager import load_config
from entity_rest.constants import OperationTypes
from entity_rest.exceptions import EntityRestError

from entity_rest.colored_logging import (
    setup_colored_logging,
    get_colored_logger,
    log_success,
    log_progress,
    log_highlight,
    log_section
)

# Note: Colored logging will be configured after parsing args
logger = None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="entity-rest",
        description="Validate entity-rest resource files and inspect merged operation configuration.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose DEBUG logging.",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output (useful for CI/CD environments).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check", help="Load a resource file and mount every declared operation.")
    check.add_argument("resources", help="Path to the YAML resource file.")

    show = subparsers.add_parser("show", help="Print the merged configuration of one operation as YAML.")
    show.add_argument("resources", help="Path to the YAML resource file.")
    show.add_argument("entity", help="Entity name.")
    show.add_argument("operation", choices=OperationTypes.ALL, help="Operation type.")
    show.add_argument("--context", dest="context_name", help="Named configuration context.")
    return parser


def run_check(args) -> int:
    log_progress(logger, f"Loading resources from {args.resources}...")
    resources = load_config(args.resources)
    log_success(logger, f"Loaded {len(resources.entities)} entities.")

    log_section(logger, "Operations")
    mounted = resources.mount()
    for (entity, operation), mounted_operation in mounted.items():
        logger.debug(f"{entity}.{operation}: {mounted_operation.config.to_dict()}")
        log_success(logger, f"{entity}.{operation} mounted")

    for descriptor in resources.entities:
        if descriptor.name not in resources.operations:
            log_highlight(logger, f"Skipping {descriptor.name}: no operations declared")

    if not mounted:
        logger.warning("The resource file declares no operations.")
    log_success(logger, "Resource file is valid.")
    return 0


def run_show(args) -> int:
    resources = load_config(args.resources)
    registry = resources.build_registry()
    descriptor = registry.get(args.entity)

    overrides = dict(resources.operations.get(descriptor.name, {}).get(args.operation) or {})
    if args.context_name:
        overrides["context_name"] = args.context_name
    config = build_operation_config(descriptor, args.operation, overrides)

    sys.stdout.write(yaml.safe_dump(config.to_dict(), sort_keys=True, default_flow_style=False))
    return 0


def main(argv=None) -> int:
    # --- Argument Parsing ---
    args = build_parser().parse_args(argv)

    # --- Logging Setup ---
    use_colors = not args.no_color
    log_level = logging.DEBUG if args.verbose else logging.INFO
    setup_colored_logging(level=log_level, use_colors=use_colors)

    global logger
    logger = get_colored_logger(__name__)

    if args.verbose:
        logger.debug("Verbose mode enabled. DEBUG level logging activated.")

    # --- Main Execution ---
    try:
        if args.command == "check":
            return run_check(args)
        return run_show(args)

    # --- Error Handling ---
    except EntityRestError as e:
        logger.error(f"Configuration Error: {e}", exc_info=args.verbose)
        return 1


if __name__ == "__main__":
    sys.exit(main())
