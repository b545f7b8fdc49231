import json
import logging
import re
import sqlite3
import time
import uuid
from contextlib import contextmanager

from database.schema import category_schema, deck_schema, card_schema, index_schemas
from database.migrations import migrate
from config import DB_PATH
from utils.constants import (
    BREADCRUMB_SEPARATOR, DEFAULT_CATEGORY_ICON, DEFAULT_COLOR_HEX, DEFAULT_DECK_ICON,
    MEDIA_FIELDS, NAME_MAX, REORDER_BASE_EPOCH,
)
from utils.errors import DuplicateNameError, InvalidMoveError
from utils.links import extract_link_ids


COLOR_HEX_PATTERN = re.compile(r'#?[0-9A-Fa-f]{6}')


# HELPERS ====================================================

def _new_id():
    return str(uuid.uuid4()).upper()


def _now():
    return time.time()


def _clean_name(name):
    trimmed = (name or '').strip()
    if not trimmed:
        raise ValueError("Name must not be empty")
    if len(trimmed) > NAME_MAX:
        raise ValueError(f"Name must be at most {NAME_MAX} characters")
    return trimmed


def _clean_color(color_hex):
    if not isinstance(color_hex, str) or not COLOR_HEX_PATTERN.fullmatch(color_hex.strip()):
        raise ValueError(f"Color must be six hex digits, got {color_hex!r}")
    return color_hex.strip()


def _clean_front(front_text):
    front = (front_text or '').strip()
    if not front:
        raise ValueError("Front text must not be empty")
    return front


def _card_from_row(row):
    card = dict(row)
    for field in MEDIA_FIELDS + ('linked_card_ids',):
        card[field] = json.loads(card[field] or '[]')
    for legacy in ('front_image_data', 'back_image_data', 'front_audio_path', 'back_audio_path'):
        card.pop(legacy, None)
    return card


def _media_refs(card):
    refs = []
    for field in MEDIA_FIELDS:
        refs.extend(card.get(field) or [])
    return refs


def _rows_media_refs(rows):
    refs = []
    for row in rows:
        card = _card_from_row(row)
        refs.extend(_media_refs(card))
        # un-migrated stores may still hold a bare audio path
        for legacy in ('front_audio_path', 'back_audio_path'):
            if row[legacy]:
                refs.append(row[legacy])
    return refs


def _cleanup_media(media, references):
    """Media removal never blocks the record deletion that triggered it."""
    for reference in references:
        try:
            media.delete(reference)
        except Exception as e:
            logging.warning(f"Media cleanup failed for {reference}: {e}")


def _placeholders(values):
    return ', '.join('?' for _ in values)


def _category_name(cursor, category_id):
    if category_id is None:
        return None
    cursor.execute('SELECT name FROM categories WHERE category_id = ?', (category_id,))
    row = cursor.fetchone()
    return row['name'] if row else None


def _has_duplicate_name(cursor, parent_id, name, exclude_category_id=None, exclude_deck_id=None):
    """Sibling categories and decks share one namespace, compared case-insensitively."""
    candidate = name.strip().lower()
    cursor.execute('SELECT category_id, name FROM categories WHERE parent_id IS ?', (parent_id,))
    for row in cursor.fetchall():
        if row['category_id'] != exclude_category_id and row['name'].lower() == candidate:
            return True
    cursor.execute('SELECT deck_id, name FROM decks WHERE category_id IS ?', (parent_id,))
    for row in cursor.fetchall():
        if row['deck_id'] != exclude_deck_id and row['name'].lower() == candidate:
            return True
    return False


def _check_name(cursor, parent_id, name, **exclude):
    if _has_duplicate_name(cursor, parent_id, name, **exclude):
        raise DuplicateNameError(name, _category_name(cursor, parent_id))


def _require_category(cursor, category_id):
    cursor.execute('SELECT * FROM categories WHERE category_id = ?', (category_id,))
    row = cursor.fetchone()
    if row is None:
        raise LookupError(f"Category {category_id} not found")
    return row


def _require_deck(cursor, deck_id):
    cursor.execute('SELECT * FROM decks WHERE deck_id = ?', (deck_id,))
    row = cursor.fetchone()
    if row is None:
        raise LookupError(f"Deck {deck_id} not found")
    return row


def _subtree_category_ids(cursor, category_id):
    """The category itself plus every nested subcategory."""
    cursor.execute('SELECT 1 FROM categories WHERE category_id = ?', (category_id,))
    if cursor.fetchone() is None:
        return []
    found = [category_id]
    frontier = [category_id]
    while frontier:
        cursor.execute(
            f'SELECT category_id FROM categories WHERE parent_id IN ({_placeholders(frontier)})',
            frontier
        )
        frontier = [row['category_id'] for row in cursor.fetchall()]
        found.extend(frontier)
    return found


def _is_descendant(cursor, potential_id, ancestor_id):
    """Walk up from potential_id; True if ancestor_id is on the way (or is potential_id)."""
    seen = set()
    current = potential_id
    while current is not None and current not in seen:
        if current == ancestor_id:
            return True
        seen.add(current)
        cursor.execute('SELECT parent_id FROM categories WHERE category_id = ?', (current,))
        row = cursor.fetchone()
        current = row['parent_id'] if row else None
    return False


def _reorder(table, id_column, ordered_ids):
    with get_db() as conn:
        cursor = conn.cursor()
        for index, item_id in enumerate(ordered_ids):
            cursor.execute(
                f'UPDATE {table} SET created_at = ? WHERE {id_column} = ?',
                (REORDER_BASE_EPOCH + index, item_id)
            )
    logging.info(f"Reordered {len(ordered_ids)} rows in {table}")


# CATEGORY COMMANDS ==========================================

def get_category(category_id):
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT * FROM categories WHERE category_id = ?', (category_id,))
        row = cursor.fetchone()
        return dict(row) if row else None


def get_root_categories():
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT * FROM categories WHERE parent_id IS NULL ORDER BY created_at, rowid')
        return [dict(row) for row in cursor.fetchall()]


def get_sorted_subcategories(category_id):
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            'SELECT * FROM categories WHERE parent_id = ? ORDER BY created_at, rowid',
            (category_id,)
        )
        return [dict(row) for row in cursor.fetchall()]


def create_category(name, icon=DEFAULT_CATEGORY_ICON, color_hex=DEFAULT_COLOR_HEX, parent_id=None):
    name = _clean_name(name)
    color_hex = _clean_color(color_hex)
    with get_db() as conn:
        cursor = conn.cursor()
        if parent_id is not None:
            _require_category(cursor, parent_id)
        _check_name(cursor, parent_id, name)
        category_id = _new_id()
        cursor.execute(
            'INSERT INTO categories (category_id, name, icon, color_hex, created_at, parent_id) '
            'VALUES (?, ?, ?, ?, ?, ?)',
            (category_id, name, icon, color_hex, _now(), parent_id)
        )
    logging.info(f"Created category {category_id} '{name}' under {parent_id or 'root'}")
    return category_id


def rename_category(category_id, new_name):
    new_name = _clean_name(new_name)
    with get_db() as conn:
        cursor = conn.cursor()
        row = _require_category(cursor, category_id)
        _check_name(cursor, row['parent_id'], new_name, exclude_category_id=category_id)
        cursor.execute('UPDATE categories SET name = ? WHERE category_id = ?', (new_name, category_id))
    logging.info(f"Renamed category {category_id} to '{new_name}'")


def move_category(category_id, target_parent_id):
    """Reparent a category. target_parent_id=None moves it to the root."""
    with get_db() as conn:
        cursor = conn.cursor()
        row = _require_category(cursor, category_id)
        if target_parent_id is not None:
            _require_category(cursor, target_parent_id)
            if _is_descendant(cursor, target_parent_id, category_id):
                raise InvalidMoveError()
        if row['parent_id'] == target_parent_id:
            return
        _check_name(cursor, target_parent_id, row['name'], exclude_category_id=category_id)
        cursor.execute(
            'UPDATE categories SET parent_id = ? WHERE category_id = ?',
            (target_parent_id, category_id)
        )
    logging.info(f"Moved category {category_id} to {target_parent_id or 'root'}")


def delete_category(category_id, media):
    """Delete a category with all nested subcategories, decks and cards."""
    with get_db() as conn:
        cursor = conn.cursor()
        category_ids = _subtree_category_ids(cursor, category_id)
        if not category_ids:
            return
        cursor.execute(
            f'SELECT deck_id FROM decks WHERE category_id IN ({_placeholders(category_ids)})',
            category_ids
        )
        deck_ids = [row['deck_id'] for row in cursor.fetchall()]
        references = []
        if deck_ids:
            cursor.execute(f'SELECT * FROM cards WHERE deck_id IN ({_placeholders(deck_ids)})', deck_ids)
            references = _rows_media_refs(cursor.fetchall())
            cursor.execute(f'DELETE FROM cards WHERE deck_id IN ({_placeholders(deck_ids)})', deck_ids)
            cursor.execute(f'DELETE FROM decks WHERE deck_id IN ({_placeholders(deck_ids)})', deck_ids)
        cursor.execute(
            f'DELETE FROM categories WHERE category_id IN ({_placeholders(category_ids)})',
            category_ids
        )
    _cleanup_media(media, references)
    logging.info(
        f"Deleted category {category_id}: {len(category_ids)} categories, "
        f"{len(deck_ids)} decks, {len(references)} media files"
    )


def reorder_categories(ordered_ids):
    _reorder('categories', 'category_id', ordered_ids)


def get_total_card_count(category_id):
    """Cards in this category's decks plus all nested subcategories."""
    with get_db() as conn:
        cursor = conn.cursor()
        category_ids = _subtree_category_ids(cursor, category_id)
        if not category_ids:
            return 0
        cursor.execute(
            f'''SELECT COUNT(c.card_id) AS total
                FROM cards c
                JOIN decks d ON d.deck_id = c.deck_id
                WHERE d.category_id IN ({_placeholders(category_ids)})
            ''',
            category_ids
        )
        return cursor.fetchone()['total']


def get_category_summary(category_id):
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT COUNT(*) AS n FROM decks WHERE category_id = ?', (category_id,))
        decks = cursor.fetchone()['n']
        cursor.execute('SELECT COUNT(*) AS n FROM categories WHERE parent_id = ?', (category_id,))
        subcategories = cursor.fetchone()['n']
    return {
        'decks': decks,
        'subcategories': subcategories,
        'cards': get_total_card_count(category_id),
    }


# DECK COMMANDS ==============================================

def get_deck(deck_id):
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT * FROM decks WHERE deck_id = ?', (deck_id,))
        row = cursor.fetchone()
        return dict(row) if row else None


def get_sorted_decks(category_id=None):
    """Decks directly inside a category; category_id=None lists root-level decks."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            'SELECT * FROM decks WHERE category_id IS ? ORDER BY created_at, rowid',
            (category_id,)
        )
        return [dict(row) for row in cursor.fetchall()]


def get_decks_with_stats(category_id=None):
    """Decks at one level with their card counts in a single query."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            """SELECT d.deck_id, d.name, d.icon, d.color_hex, d.created_at, d.category_id,
                      COUNT(c.card_id) AS card_count
               FROM decks d
               LEFT JOIN cards c ON c.deck_id = d.deck_id
               WHERE d.category_id IS ?
               GROUP BY d.deck_id
               ORDER BY d.created_at, d.rowid
            """,
            (category_id,)
        )
        return [dict(row) for row in cursor.fetchall()]


def create_deck(name, icon=DEFAULT_DECK_ICON, color_hex=DEFAULT_COLOR_HEX, category_id=None):
    name = _clean_name(name)
    color_hex = _clean_color(color_hex)
    with get_db() as conn:
        cursor = conn.cursor()
        if category_id is not None:
            _require_category(cursor, category_id)
        _check_name(cursor, category_id, name)
        deck_id = _new_id()
        cursor.execute(
            'INSERT INTO decks (deck_id, name, icon, color_hex, created_at, category_id) '
            'VALUES (?, ?, ?, ?, ?, ?)',
            (deck_id, name, icon, color_hex, _now(), category_id)
        )
    logging.info(f"Created deck {deck_id} '{name}' under {category_id or 'root'}")
    return deck_id


def rename_deck(deck_id, new_name):
    new_name = _clean_name(new_name)
    with get_db() as conn:
        cursor = conn.cursor()
        row = _require_deck(cursor, deck_id)
        _check_name(cursor, row['category_id'], new_name, exclude_deck_id=deck_id)
        cursor.execute('UPDATE decks SET name = ? WHERE deck_id = ?', (new_name, deck_id))
    logging.info(f"Renamed deck {deck_id} to '{new_name}'")


def move_deck(deck_id, target_category_id):
    with get_db() as conn:
        cursor = conn.cursor()
        row = _require_deck(cursor, deck_id)
        if target_category_id is not None:
            _require_category(cursor, target_category_id)
        if row['category_id'] == target_category_id:
            return
        _check_name(cursor, target_category_id, row['name'], exclude_deck_id=deck_id)
        cursor.execute(
            'UPDATE decks SET category_id = ? WHERE deck_id = ?',
            (target_category_id, deck_id)
        )
    logging.info(f"Moved deck {deck_id} to {target_category_id or 'root'}")


def delete_deck(deck_id, media):
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT 1 FROM decks WHERE deck_id = ?', (deck_id,))
        if cursor.fetchone() is None:
            return
        cursor.execute('SELECT * FROM cards WHERE deck_id = ?', (deck_id,))
        rows = cursor.fetchall()
        references = _rows_media_refs(rows)
        cursor.execute('DELETE FROM cards WHERE deck_id = ?', (deck_id,))
        cursor.execute('DELETE FROM decks WHERE deck_id = ?', (deck_id,))
    _cleanup_media(media, references)
    logging.info(f"Deleted deck {deck_id} with {len(rows)} cards")


def reorder_decks(ordered_ids):
    _reorder('decks', 'deck_id', ordered_ids)


def breadcrumb_path(deck_id, separator=BREADCRUMB_SEPARATOR):
    """'Languages › Spanish › Verbs' for deck Verbs inside Languages/Spanish."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT name, category_id FROM decks WHERE deck_id = ?', (deck_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        parts = [row['name']]
        current = row['category_id']
        seen = set()
        while current is not None and current not in seen:
            seen.add(current)
            cursor.execute('SELECT name, parent_id FROM categories WHERE category_id = ?', (current,))
            cat = cursor.fetchone()
            if cat is None:
                break
            parts.insert(0, cat['name'])
            current = cat['parent_id']
    return separator.join(parts)


# CARDS COMMANDS =============================================

def _card_values(deck_id, card):
    linked = card.get('linked_card_ids')
    if linked is None:
        linked = extract_link_ids(f"{card.get('front_text', '')}\n{card.get('back_text', '')}")
    return (
        card.get('card_id') or _new_id(),
        deck_id,
        card.get('front_text', ''),
        card.get('back_text', ''),
        card.get('front_rich_text'),
        card.get('back_rich_text'),
        json.dumps(list(card.get('front_images') or [])),
        json.dumps(list(card.get('back_images') or [])),
        json.dumps(list(card.get('front_audio') or [])),
        json.dumps(list(card.get('back_audio') or [])),
        json.dumps(list(linked)),
        card.get('created_at') or _now(),
    )


_INSERT_CARD = '''
    INSERT INTO cards (card_id, deck_id, front_text, back_text, front_rich_text, back_rich_text,
                       front_images, back_images, front_audio, back_audio,
                       linked_card_ids, created_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
'''


def get_card(card_id):
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT * FROM cards WHERE card_id = ?', (card_id,))
        row = cursor.fetchone()
        return _card_from_row(row) if row else None


def get_sorted_cards(deck_id):
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            'SELECT * FROM cards WHERE deck_id = ? ORDER BY created_at, rowid', (deck_id,)
        )
        return [_card_from_row(row) for row in cursor.fetchall()]


def get_all_cards():
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT * FROM cards ORDER BY created_at, rowid')
        return [_card_from_row(row) for row in cursor.fetchall()]


def create_card(deck_id, front_text, back_text='', **fields):
    """
    fields: front_rich_text, back_rich_text (bytes), front_images, back_images,
    front_audio, back_audio (lists of media references), linked_card_ids.
    When linked_card_ids is omitted it is derived from links in the texts.
    """
    card = dict(fields, front_text=_clean_front(front_text), back_text=(back_text or '').strip())
    with get_db() as conn:
        cursor = conn.cursor()
        _require_deck(cursor, deck_id)
        values = _card_values(deck_id, card)
        cursor.execute(_INSERT_CARD, values)
    logging.info(f"Created card {values[0]} in deck {deck_id}")
    return values[0]


def save_cards(deck_id, cards):
    """Insert prepared card dicts in one transaction. Returns the new ids."""
    with get_db() as conn:
        cursor = conn.cursor()
        _require_deck(cursor, deck_id)
        ids = []
        for card in cards:
            values = _card_values(deck_id, card)
            cursor.execute(_INSERT_CARD, values)
            ids.append(values[0])
    logging.info(f"Saved {len(ids)} cards into deck {deck_id}")
    return ids


_EDITABLE_CARD_FIELDS = {
    'front_text', 'back_text', 'front_rich_text', 'back_rich_text', 'linked_card_ids',
} | set(MEDIA_FIELDS)


def update_card(card_id, media, **fields):
    """Edit a card in place; media references dropped by the edit are deleted."""
    unknown = set(fields) - _EDITABLE_CARD_FIELDS
    if unknown:
        raise TypeError(f"Unknown card fields: {', '.join(sorted(unknown))}")
    if 'front_text' in fields:
        fields['front_text'] = _clean_front(fields['front_text'])
    if 'back_text' in fields:
        fields['back_text'] = (fields['back_text'] or '').strip()

    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT * FROM cards WHERE card_id = ?', (card_id,))
        row = cursor.fetchone()
        if row is None:
            raise LookupError(f"Card {card_id} not found")
        current = _card_from_row(row)
        updated = dict(current, **fields)

        if 'linked_card_ids' not in fields and ({'front_text', 'back_text'} & set(fields)):
            updated['linked_card_ids'] = None

        dropped = [ref for ref in _media_refs(current) if ref not in _media_refs(updated)]
        values = _card_values(current['deck_id'], updated)
        cursor.execute(
            '''UPDATE cards
               SET front_text = ?, back_text = ?, front_rich_text = ?, back_rich_text = ?,
                   front_images = ?, back_images = ?, front_audio = ?, back_audio = ?,
                   linked_card_ids = ?,
                   front_image_data = NULL, back_image_data = NULL,
                   front_audio_path = NULL, back_audio_path = NULL
               WHERE card_id = ?
            ''',
            values[2:11] + (card_id,)
        )
    _cleanup_media(media, dropped)
    logging.info(f"Updated card {card_id}, released {len(dropped)} media files")


def delete_card(card_id, media):
    """
    Delete a card and release its media files.

    The row is removed first; files are deleted once that commit has gone
    through, so a failed delete never leaves a card pointing at missing media.
    File removal is best-effort and a failure only leaves an orphan file.
    """
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT * FROM cards WHERE card_id = ?', (card_id,))
        rows = cursor.fetchall()
        if not rows:
            return
        references = _rows_media_refs(rows)
        cursor.execute('DELETE FROM cards WHERE card_id = ?', (card_id,))
    _cleanup_media(media, references)
    logging.info(f"Deleted card {card_id}")


def reorder_cards(ordered_ids):
    _reorder('cards', 'card_id', ordered_ids)


# DB CONNECTION ==============================================

@contextmanager
def get_db():
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(media=None):
    """Create the schema; with a media store, also run pending data migrations."""
    with get_db() as conn:
        conn.execute(category_schema)
        conn.execute(deck_schema)
        conn.execute(card_schema)
        for statement in index_schemas:
            conn.execute(statement)
        if media is not None:
            migrate(conn, media)
