#!/usr/bin/env python3
"""
scripts/seed.py — Load dashboard records from a JSON file into PostgreSQL.

File format:
    {
      "donors":    [{"name": "…", "email": "…"}, …],
      "finances":  [{"date": "2024-03-15", "amount": 100, "type": "income"}, …],
      "inventory": [{"name": "Blankets", "quantity": 40}, …]
    }

Run once for local setup (the schema is created if missing):
    python scripts/seed.py path/to/seed.json

Every record goes through the same validation as the dashboard; invalid
records are logged and skipped.
"""
import asyncio
import json
import logging
import sys
from pathlib import Path

# Make the project root importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from app import database
from app.config import settings
from app.validation import Collection, PayloadValidationError, validate_payload

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")
logger = logging.getLogger(__name__)


def load_seed_file(seed_path: str) -> dict[Collection, list[dict]]:
    """
    Read the seed file and validate every record.
    Unknown collections and invalid records are skipped with a warning.
    """
    path = Path(seed_path)
    if not path.exists():
        raise FileNotFoundError(f"Seed file not found: {path}")

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Seed file must contain a JSON object, got {type(raw).__name__}")

    seeds: dict[Collection, list[dict]] = {}
    for name, records in raw.items():
        try:
            collection = Collection(name)
        except ValueError:
            logger.warning("Unknown collection '%s' (skipping).", name)
            continue

        if not isinstance(records, list):
            logger.warning("Collection '%s' is not a list of records (skipping).", name)
            continue

        valid = []
        for i, record in enumerate(records):
            try:
                valid.append(validate_payload(collection, record, partial=False))
            except PayloadValidationError as e:
                logger.warning("%s[%d] invalid (skipping): %s", name, i, e)
        logger.info("Loaded %d valid %s record(s).", len(valid), name)
        seeds[collection] = valid

    if not any(seeds.values()):
        raise ValueError(f"No valid records found in '{seed_path}'.")
    return seeds


async def write_seeds(seeds: dict[Collection, list[dict]]) -> int:
    await database.create_pool()
    if not database.is_db_available():
        raise RuntimeError("Database unavailable; check DATABASE_URL in .env.")
    written = 0
    try:
        await database.ensure_schema()
        for collection, records in seeds.items():
            for record in records:
                record["updatedBy"] = "seed"
                await database.add(collection.value, record)
                written += 1
    finally:
        await database.close_pool()
    return written


def main():
    if len(sys.argv) != 2:
        print("Usage: python scripts/seed.py <seed.json>")
        sys.exit(2)

    logger.info("=== Seeding started ===")
    logger.info("Database : %s", settings.database_url.split("@")[-1])

    seeds = load_seed_file(sys.argv[1])
    written = asyncio.run(write_seeds(seeds))

    logger.info("✅ %d record(s) written.", written)
    logger.info("=== Seeding complete ===")


if __name__ == "__main__":
    main()
