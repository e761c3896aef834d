#!/usr/bin/env python3
"""
Configuration validation CLI tool

Validates keeper YAML configuration files against the schema.
"""

import sys
import argparse
import json
from pathlib import Path
from typing import List, Dict, Any

import yaml
from pydantic import ValidationError

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from converter_keeper.config_schema import validate_config_file  # noqa: E402


def validate_single_config(config_path: Path, verbose: bool = False) -> Dict[str, Any]:
    """
    Validate a single configuration file

    Returns:
        Dictionary with validation results
    """
    result = {
        "file": str(config_path),
        "valid": False,
        "errors": [],
        "warnings": [],
        "config": None,
    }

    try:
        config = validate_config_file(config_path)
        result["valid"] = True
        result["config"] = config.model_dump() if verbose else None

        warnings = []

        if not config.execution.dry_run:
            warnings.append("execution.dry_run is false - transactions will be submitted")

        if not config.strategy.profitable_only and config.strategy.min_income_bp > 500:
            warnings.append(
                f"min_income_bp ({config.strategy.min_income_bp}) allows subsidies above 5% of the amount"
            )

        if config.negotiation.price_impact_threshold_pct > 10:
            warnings.append(
                "price_impact_threshold_pct is high (>10%) - conversions may execute at poor prices"
            )

        if config.addresses.swap_router is None:
            warnings.append("addresses.swap_router not set - operator router is not checked")

        result["warnings"] = warnings

    except FileNotFoundError as e:
        result["errors"].append(f"File not found: {e}")
    except yaml.YAMLError as e:
        result["errors"].append(f"YAML parsing error: {e}")
    except ValidationError as e:
        result["errors"].append(f"Validation error: {e}")
    except (TypeError, ValueError) as e:
        result["errors"].append(f"Invalid configuration: {e}")

    return result


def validate_multiple_configs(
    config_paths: List[Path], verbose: bool = False
) -> List[Dict[str, Any]]:
    """Validate multiple configuration files"""
    return [validate_single_config(path, verbose) for path in config_paths]


def find_config_files(directory: Path, pattern: str = "*.yaml") -> List[Path]:
    """Find configuration files in a directory"""
    if not directory.exists():
        return []

    config_files = [p for p in directory.rglob(pattern) if p.is_file()]

    # Also check for .yml extension
    if pattern == "*.yaml":
        config_files.extend(p for p in directory.rglob("*.yml") if p.is_file())

    return sorted(config_files)


def print_validation_results(
    results: List[Dict[str, Any]], verbose: bool = False, json_output: bool = False
):
    """Print validation results in human-readable or JSON format"""

    if json_output:
        print(json.dumps(results, indent=2, default=str))
        return

    total_files = len(results)
    valid_files = sum(1 for r in results if r["valid"])

    print("\n=== Configuration Validation Results ===")
    print(f"Total files: {total_files}")
    print(f"Valid files: {valid_files}")
    print(f"Invalid files: {total_files - valid_files}")
    print("=" * 45)

    for result in results:
        status = "✓ VALID" if result["valid"] else "✗ INVALID"
        print(f"\n{status}: {result['file']}")

        if result["errors"]:
            print("  Errors:")
            for error in result["errors"]:
                print(f"    - {error}")

        if result["warnings"]:
            print("  Warnings:")
            for warning in result["warnings"]:
                print(f"    - {warning}")

        if verbose and result["valid"] and result["config"]:
            config = result["config"]
            print("  Configuration summary:")
            print(f"    - Network: {config['network']}")
            print(f"    - Provider: {config['route_optimizer']['provider']}")
            print(f"    - Dry run: {config['execution']['dry_run']}")
            print(
                f"    - Trade size: ${config['strategy']['min_trade_usd']}"
                f" - ${config['strategy']['max_trade_usd']}"
            )
            print(
                f"    - Impact threshold: {config['negotiation']['price_impact_threshold_pct']}%"
            )


def main(argv=None):
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="Validate converter keeper configuration files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate a single configuration file
  python tools/validate_config.py configs/keeper_bscmainnet.yaml

  # Validate all configurations in a directory
  python tools/validate_config.py --directory configs/

  # Output results as JSON
  python tools/validate_config.py --json configs/keeper_bscmainnet.yaml

  # Exit with error code if any invalid
  python tools/validate_config.py --strict --directory configs/
        """,
    )

    parser.add_argument("config_files", nargs="*", help="Configuration file(s) to validate")
    parser.add_argument(
        "--directory", "-d", type=Path, help="Directory to search for configuration files"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show detailed configuration information"
    )
    parser.add_argument("--json", "-j", action="store_true", help="Output results in JSON format")
    parser.add_argument(
        "--strict",
        "-s",
        action="store_true",
        help="Exit with error code if any configuration is invalid",
    )
    parser.add_argument(
        "--pattern",
        "-p",
        default="*.yaml",
        help="File pattern to search for when using --directory (default: *.yaml)",
    )

    args = parser.parse_args(argv)

    if args.config_files and args.directory:
        print("Error: Cannot specify both config files and directory")
        return 1
    elif args.config_files:
        config_paths = [Path(f) for f in args.config_files]
    elif args.directory:
        config_paths = find_config_files(args.directory, args.pattern)
        if not config_paths:
            print(
                f"No configuration files found in {args.directory} matching pattern '{args.pattern}'"
            )
            return 1
    else:
        print("Error: Must specify either config files or directory")
        return 1

    results = validate_multiple_configs(config_paths, verbose=args.verbose)
    print_validation_results(results, verbose=args.verbose, json_output=args.json)

    if args.strict and not all(r["valid"] for r in results):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
