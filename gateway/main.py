#!/usr/bin/env python3
"""
Modbus Gateway - Entry Point

Usage:
    modbus-gateway                      # Start with ./config.yaml (or defaults)
    modbus-gateway --config my.yaml     # Use custom config file
    modbus-gateway --dry-run            # Validate config and device store, then exit
    modbus-gateway --verbose            # Enable debug logging
"""

import argparse
import asyncio
import sys
from pathlib import Path

import yaml

from gateway import __version__
from gateway.common.config import GatewayConfig, load_gateway_config
from gateway.common.exceptions import ConfigError, ValidationError
from gateway.common.logging_setup import configure_from_settings
from gateway.services.device.store import DeviceStore
from gateway.services.device.validator import DeviceValidator

# Default configuration path
DEFAULT_CONFIG_PATH = "config.yaml"


def load_config(config_path: str | None) -> GatewayConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to configuration file; None falls back to
            ./config.yaml when present, built-in defaults otherwise

    Raises:
        ConfigError: file missing (when given explicitly) or unreadable
    """
    if config_path is None:
        if not Path(DEFAULT_CONFIG_PATH).exists():
            return GatewayConfig()
        config_path = DEFAULT_CONFIG_PATH

    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Error loading {config_path}: {e}") from e

    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")

    try:
        return load_gateway_config(data)
    except (AttributeError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value in {config_path}: {e}") from e


def check_device_store(config: GatewayConfig) -> list[str]:
    """
    Validate every record in the device store.

    Returns:
        One line per invalid record (empty when all are valid)
    """
    validator = DeviceValidator()
    records = DeviceStore(config.store.path).load_records()
    problems = []
    for index, record in enumerate(records):
        errors = validator.validate_record(record)
        if errors:
            label = record.get("name", f"#{index}") if isinstance(record, dict) else f"#{index}"
            problems.append(f"{label}: {'; '.join(errors)}")
    print(f"Device store {config.store.path}: {len(records)} records")
    return problems


def print_startup_banner(config: GatewayConfig):
    """Print startup information."""
    print()
    print("=" * 60)
    print(f"  MODBUS GATEWAY v{__version__}")
    print("=" * 60)
    print()
    if config.opcua.enabled:
        print(f"  OPC UA:       {config.opcua.endpoint}")
    else:
        print("  OPC UA:       disabled")
    if config.api.enabled:
        print(f"  HTTP API:     http://{config.api.host}:{config.api.port}/api/devices")
        print(f"  Health:       http://{config.api.host}:{config.api.port}/health")
    else:
        print("  HTTP API:     disabled")
    print(f"  Device store: {config.store.path}")
    print(f"  Timeout:      {config.modbus.timeout_s}s")
    print()
    print("=" * 60)
    print()


async def main_async(config: GatewayConfig):
    """Run the gateway until a shutdown signal arrives."""
    from gateway.service import GatewayService

    service = GatewayService(config)
    await service.run()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Modbus TCP/RTU to OPC UA gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    modbus-gateway                      # Start with default config
    modbus-gateway --config my.yaml     # Use custom config file
    modbus-gateway --dry-run            # Validate config and exit
    modbus-gateway -v                   # Enable debug logging
        """
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH} if present)"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and device store, then exit"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Modbus Gateway v{__version__}"
    )

    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    # Plain text in verbose/debug mode
    if args.verbose:
        configure_from_settings("DEBUG", json_format=False, force=True)
    else:
        configure_from_settings(config.logging.level, config.logging.json_format)

    print_startup_banner(config)

    if args.dry_run:
        try:
            problems = check_device_store(config)
        except ConfigError as e:
            print(f"Error: {e}")
            sys.exit(1)
        if problems:
            print("Invalid device records (will be skipped at startup):")
            for problem in problems:
                print(f"  - {problem}")
        print("Dry run mode - configuration valid")
        sys.exit(0)

    print("Starting gateway...")
    print("Press Ctrl+C to stop")
    print()

    try:
        asyncio.run(main_async(config))
    except KeyboardInterrupt:
        print("\nStopped by user")
    except (ConfigError, ValidationError) as e:
        print(f"\nError: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"\nFatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
