import argparse
import logging
import sys

import database.database as db
from config import MEDIA_DIR
from media.store import MediaStore
from transfer.exporter import export_deck
from transfer.importer import import_into_deck
from utils.errors import FlashFlowError


def _print_decks(category_id, indent, out):
    for deck in db.get_decks_with_stats(category_id):
        out.write(f"{'  ' * indent}- {deck['name']} ({deck['card_count']} cards) [{deck['deck_id']}]\n")


def _print_category(category, indent, out):
    total = db.get_total_card_count(category['category_id'])
    out.write(f"{'  ' * indent}+ {category['name']} ({total} cards) [{category['category_id']}]\n")
    for sub in db.get_sorted_subcategories(category['category_id']):
        _print_category(sub, indent + 1, out)
    _print_decks(category['category_id'], indent + 1, out)


def print_tree(out=None):
    out = out or sys.stdout
    for category in db.get_root_categories():
        _print_category(category, 0, out)
    _print_decks(None, 0, out)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog='flashflow', description='Flashcard library tools')
    sub = parser.add_subparsers(dest='cmd', required=True)

    sub.add_parser('init', help='Create the database and run migrations')
    sub.add_parser('tree', help='Print categories, decks and card counts')

    c = sub.add_parser('new-category', help='Create a category')
    c.add_argument('name')
    c.add_argument('--parent', help='Parent category id (default: root)')

    d = sub.add_parser('new-deck', help='Create a deck')
    d.add_argument('name')
    d.add_argument('--category', help='Category id (default: root)')

    e = sub.add_parser('export', help='Export a deck to JSON or CSV')
    e.add_argument('deck_id')
    e.add_argument('--format', choices=('json', 'csv'), default='json')
    e.add_argument('--dest', help='Output directory (default: system temp dir)')

    i = sub.add_parser('import', help='Import a JSON or CSV file into a deck')
    i.add_argument('deck_id')
    i.add_argument('path')

    args = parser.parse_args(argv)
    media = MediaStore(MEDIA_DIR)
    db.init_db(media)

    try:
        if args.cmd == 'init':
            logging.info("Database ready")
        elif args.cmd == 'tree':
            print_tree()
        elif args.cmd == 'new-category':
            print(db.create_category(args.name, parent_id=args.parent))
        elif args.cmd == 'new-deck':
            print(db.create_deck(args.name, category_id=args.category))
        elif args.cmd == 'export':
            print(export_deck(args.deck_id, media, fmt=args.format, dest_dir=args.dest))
        elif args.cmd == 'import':
            count = import_into_deck(args.path, args.deck_id, media)
            print(f"Imported {count} cards")
    except (FlashFlowError, LookupError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
