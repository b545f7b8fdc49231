"""
Import cards from a JSON or CSV export into an existing deck.

Deduplication compares trimmed, lowercased front text against the cards
that were in the deck when the import started. Incoming records are not
deduplicated against each other.

Media for every incoming card is written to the media store first; card
rows are written afterwards in one transaction. If anything fails, or the
import is cancelled, the transaction rolls back and every file saved so
far is removed again.
"""

import base64
import binascii
import json
import logging
import os

import database.database as db
from media.store import AUDIO_EXTENSION, IMAGE_EXTENSION
from transfer.csv_rows import is_header_row, parse_csv
from utils.errors import (
    DecodeError, EmptyFileError, InvalidFormatError, MediaIOError, TransferCancelled,
)

logger = logging.getLogger(__name__)

MEDIA_KEYS = ('frontImages', 'backImages', 'frontAudios', 'backAudios')


def _check_cancelled(cancel_event):
    if cancel_event is not None and cancel_event.is_set():
        raise TransferCancelled()


def _front_key(text):
    return (text or '').strip().lower()


def _existing_fronts(deck_id):
    return {_front_key(card['front_text']) for card in db.get_sorted_cards(deck_id)}


def _decode_b64(value):
    if not isinstance(value, str):
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


def _save_attachments(values, media, extension, saved):
    references = []
    for value in values or []:
        data = _decode_b64(value)
        if data is None:
            logger.warning("Skipping attachment that is not valid base64")
            continue
        try:
            reference = media.save(data, extension)
        except MediaIOError as e:
            logger.warning(f"Skipping attachment that could not be saved: {e}")
            continue
        saved.append(reference)
        references.append(reference)
    return references


def _import_record(record, media, saved):
    card = {
        'front_text': record['frontText'],
        'back_text': record['backText'],
        'front_images': _save_attachments(record.get('frontImages'), media, IMAGE_EXTENSION, saved),
        'back_images': _save_attachments(record.get('backImages'), media, IMAGE_EXTENSION, saved),
        'front_audio': _save_attachments(record.get('frontAudios'), media, AUDIO_EXTENSION, saved),
        'back_audio': _save_attachments(record.get('backAudios'), media, AUDIO_EXTENSION, saved),
    }
    for key, field in (('frontRTFBase64', 'front_rich_text'), ('backRTFBase64', 'back_rich_text')):
        if record.get(key) is not None:
            card[field] = _decode_b64(record[key])
            if card[field] is None:
                logger.warning(f"Dropping {key}: not valid base64")
    return card


def _load_document(data):
    try:
        document = json.loads(data.decode('utf-8-sig'))
    except (UnicodeDecodeError, ValueError) as e:
        raise DecodeError(f"The file could not be decoded: {e}") from e

    if not isinstance(document, dict) or not isinstance(document.get('cards'), list):
        raise DecodeError("The file could not be decoded: missing 'cards' list.")
    for record in document['cards']:
        if not isinstance(record, dict) \
                or not isinstance(record.get('frontText'), str) \
                or not isinstance(record.get('backText'), str):
            raise DecodeError("The file could not be decoded: malformed card record.")
        for key in MEDIA_KEYS:
            if record.get(key) is not None and not isinstance(record[key], list):
                raise DecodeError(f"The file could not be decoded: '{key}' must be a list.")
    return document


def import_json(data: bytes, deck_id, media, cancel_event=None) -> int:
    document = _load_document(data)
    existing = _existing_fronts(deck_id)

    saved = []
    try:
        cards = []
        for record in document['cards']:
            _check_cancelled(cancel_event)
            if _front_key(record['frontText']) in existing:
                continue
            cards.append(_import_record(record, media, saved))
        _check_cancelled(cancel_event)
        db.save_cards(deck_id, cards)
    except Exception:
        media.delete_all(saved)
        raise

    logger.info(f"Imported {len(cards)} of {len(document['cards'])} JSON cards into deck {deck_id}")
    return len(cards)


def import_csv(data: bytes, deck_id, media=None, cancel_event=None) -> int:
    try:
        content = data.decode('utf-8-sig')
    except UnicodeDecodeError as e:
        raise InvalidFormatError() from e

    rows = parse_csv(content)
    if rows and is_header_row(rows[0]):
        rows = rows[1:]
    if not rows:
        raise EmptyFileError()

    existing = _existing_fronts(deck_id)
    cards = []
    for row in rows:
        _check_cancelled(cancel_event)
        if len(row) < 2:
            continue
        front = row[0].strip()
        back = row[1].strip()
        if not front or front.lower() in existing:
            continue
        cards.append({'front_text': front, 'back_text': back})

    _check_cancelled(cancel_event)
    db.save_cards(deck_id, cards)
    logger.info(f"Imported {len(cards)} of {len(rows)} CSV rows into deck {deck_id}")
    return len(cards)


def detect_format(name: str) -> str:
    return 'csv' if os.path.splitext(name or '')[1].lower() == '.csv' else 'json'


def import_into_deck(source, deck_id, media, fmt: str | None = None, cancel_event=None) -> int:
    """
    source: a path or a binary file object. The format comes from the file
    extension unless fmt is given. Returns the number of cards imported.
    """
    if db.get_deck(deck_id) is None:
        raise LookupError(f"Deck {deck_id} not found")

    if hasattr(source, 'read'):
        data = source.read()
        name = getattr(source, 'name', '')
    else:
        name = os.fspath(source)
        with open(name, 'rb') as f:
            data = f.read()
    if isinstance(data, str):
        data = data.encode('utf-8')

    fmt = fmt or detect_format(name if isinstance(name, str) else '')
    if fmt == 'csv':
        return import_csv(data, deck_id, media, cancel_event)
    return import_json(data, deck_id, media, cancel_event)
