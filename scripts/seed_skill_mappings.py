#!/usr/bin/env python3
"""Load athletic skill mappings from a YAML file.

Each mapping is upserted by (sport, position, professional skill), and the
scores of every student playing an affected sport are marked stale and
queued for recomputation.

File format:
    mappings:
      - sport: Football
        position: Quarterback          # omit for all positions
        professional_skill: Decision Making
        transfer_strength: 0.9
        skill_category: Leadership
        description: Reading defenses under pressure

Usage:
    python scripts/seed_skill_mappings.py --file config/skill_mappings.yaml
"""

import argparse
import sys
from pathlib import Path
from typing import List

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from talentmatch.admin import AdminService
from talentmatch.config.environment import load_environment_config
from talentmatch.config.exceptions import ConfigurationError
from talentmatch.domain.models import AthleticSkillMapping
from talentmatch.logging.config import configure_logging
from talentmatch.persistence.database import close_database, get_session, init_database


def read_mappings(path: Path) -> List[AthleticSkillMapping]:
    """Parse and validate every mapping in ``path``.

    Raises:
        ConfigurationError: If the file is unreadable or any mapping is invalid
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read mapping file {path}: {e}") from e

    rows = data.get("mappings") if isinstance(data, dict) else None
    if not isinstance(rows, list):
        raise ConfigurationError(
            f"{path} must contain a top-level 'mappings' list",
            suggestions=["See the file format in this script's docstring"],
        )

    mappings: List[AthleticSkillMapping] = []
    errors: List[str] = []
    for index, row in enumerate(rows):
        try:
            mappings.append(AthleticSkillMapping.model_validate(row))
        except ValidationError as e:
            for error in e.errors():
                field = ".".join(str(loc) for loc in error["loc"])
                errors.append(f"mappings[{index}].{field}: {error['msg']}")

    if errors:
        raise ConfigurationError("Invalid skill mappings", errors=errors)
    return mappings


def main() -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Load athletic skill mappings from YAML")
    parser.add_argument("--file", type=Path, required=True, help="YAML file with mappings")
    parser.add_argument("--database", help="Database URL (overrides DATABASE_URL)")
    args = parser.parse_args()

    try:
        env_config = load_environment_config()
        mappings = read_mappings(args.file)
    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        return 1

    configure_logging(level=env_config.log_level or "INFO", environment=env_config.environment)
    init_database(args.database or env_config.database_url)

    try:
        with get_session() as session:
            admin = AdminService(session)
            for mapping in mappings:
                admin.upsert_skill_mapping(mapping)
        print(f"Loaded {len(mappings)} skill mappings from {args.file}")
        return 0
    finally:
        close_database()


if __name__ == "__main__":
    sys.exit(main())
