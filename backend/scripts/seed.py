"""Load the bundled university catalogue into the database.

Usage: python scripts/seed.py [--file seed/universities.json] [--keep-existing]

By default every existing university (and, through the cascades, its
programs, bookmarks and applications) is removed first so the catalogue
matches the seed file exactly.
"""
import sys
import argparse
import json
import logging
import pathlib
from collections import Counter
# Ensure `backend/` is on sys.path so `wingsed` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from wingsed import models, repositories, schemas
from wingsed.database import engine, create_db_and_tables

logger = logging.getLogger("wingsed.scripts.seed")
DEFAULT_FILE = ROOT / "seed" / "universities.json"


def load_catalogue(path: pathlib.Path) -> list:
    """Read and validate the seed file; raises on the first invalid entry."""
    items = json.loads(path.read_text(encoding="utf-8"))
    return [schemas.CreateUniversityIn.model_validate(item) for item in items]


def seed(session: Session, entries: list, clear: bool = True) -> int:
    repo = repositories.UniversityRepository(session)
    if clear:
        existing = repo.list_all()
        for university in existing:
            session.delete(university)
        session.commit()
        logger.info("cleared %d existing universities", len(existing))
    for entry in entries:
        session.add(models.University(**entry.model_dump()))
    session.commit()
    return len(entries)


def main(path: pathlib.Path = DEFAULT_FILE, clear: bool = True):
    create_db_and_tables()
    entries = load_catalogue(path)
    with Session(engine) as session:
        count = seed(session, entries, clear=clear)
    print(f"Seeded {count} universities")
    for country, n in Counter(e.country for e in entries).most_common():
        print(f"   {country}: {n}")


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser()
    parser.add_argument('--file', type=pathlib.Path, default=DEFAULT_FILE, help='JSON catalogue to load')
    parser.add_argument('--keep-existing', action='store_true', help='Do not delete existing universities first')
    args = parser.parse_args()
    main(path=args.file, clear=not args.keep_existing)
