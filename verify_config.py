#!/usr/bin/env python3
"""Verify config.example.yaml: section layout first, then full validation."""

import sys
from pathlib import Path

import yaml

from talentmatch.config.loader import validate_config_file

KNOWN_SECTIONS = {
    "matching": dict,
    "recommendations": dict,
    "queue": dict,
    "logging": dict,
}


def verify_config_structure(config_file: Path = Path("config.example.yaml")) -> bool:
    """Check that every top-level key is a known section of the right type."""
    if not config_file.exists():
        print(f"✗ {config_file} not found")
        return False

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        print(f"✗ Failed to parse {config_file}: {e}")
        return False

    errors = []
    if not isinstance(config, dict):
        errors.append("Top level must be a mapping of sections")
        config = {}

    for key, value in config.items():
        expected_type = KNOWN_SECTIONS.get(key)
        if expected_type is None:
            errors.append(f"Unknown section: {key}")
        elif not isinstance(value, expected_type):
            errors.append(f"'{key}' must be of type {expected_type.__name__}")

    if errors:
        print(f"✗ {config_file} validation failed:")
        for error in errors:
            print(f"  - {error}")
        return False

    print(f"✓ {config_file} structure is valid")
    print(f"  - Marketplace: {config.get('matching', {}).get('marketplace_type', 'institution')}")
    print(f"  - Worker interval: {config.get('queue', {}).get('worker_interval', '1m')}")
    print(f"  - Sweep interval: {config.get('queue', {}).get('sweep_interval', '1h')}")
    return validate_config_file(config_file)


if __name__ == "__main__":
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("config.example.yaml")
    sys.exit(0 if verify_config_structure(path) else 1)
