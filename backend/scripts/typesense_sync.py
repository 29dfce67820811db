"""Rebuild the Typesense `universities` collection from the database.

Usage: python scripts/typesense_sync.py
"""
import sys
import logging
import pathlib
# Ensure `backend/` is on sys.path so `wingsed` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from wingsed.database import engine
from wingsed.search import TypesenseService


def main(service: TypesenseService = None) -> int:
    service = service or TypesenseService()
    service.create_collection()
    with Session(engine) as session:
        count = service.sync_universities(session)
    print(f'Synced {count} universities to Typesense')
    return count


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    main()
