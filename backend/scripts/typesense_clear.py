"""Drop the Typesense `universities` collection.

Usage: python scripts/typesense_clear.py
"""
import sys
import logging
import pathlib
# Ensure `backend/` is on sys.path so `wingsed` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from wingsed.search import TypesenseService


def main(service: TypesenseService = None):
    (service or TypesenseService()).clear_collection()
    print('Typesense collection cleared')


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    main()
