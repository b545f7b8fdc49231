"""
Deck export to the portable JSON document and to the two-column CSV table.

JSON carries everything needed to rebuild the cards elsewhere: plain text,
the opaque rich-text payload, and every image and audio clip as base64.
Images are re-encoded to JPEG so the document stays a predictable size.
CSV carries only front and back text.
"""

import base64
import io
import json
import logging
import os
import tempfile
from datetime import datetime, timezone

from PIL import Image

import database.database as db
from config import IMAGE_QUALITY
from transfer.csv_rows import render_csv
from utils.constants import EXPORT_VERSION
from utils.errors import TransferCancelled, MediaIOError

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ('json', 'csv')


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')


def encode_image(media, reference: str, quality: int = IMAGE_QUALITY) -> str:
    data = media.load(reference)
    if data is None:
        raise MediaIOError(reference, 'file not found')
    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.mode not in ('RGB', 'L'):
                img = img.convert('RGB')
            out = io.BytesIO()
            img.save(out, format='JPEG', quality=quality)
    except (OSError, ValueError) as e:
        raise MediaIOError(reference, str(e)) from e
    return _b64(out.getvalue())


def encode_audio(media, reference: str) -> str:
    data = media.load(reference)
    if data is None:
        raise MediaIOError(reference, 'file not found')
    return _b64(data)


def _encode_all(encoder, media, references, *args):
    encoded = []
    for reference in references:
        try:
            encoded.append(encoder(media, reference, *args))
        except MediaIOError as e:
            logger.warning(f"Skipping attachment during export: {e}")
    return encoded


def export_card(card: dict, media, quality: int = IMAGE_QUALITY) -> dict:
    record = {
        'frontText': card['front_text'],
        'backText': card['back_text'],
    }
    if card.get('front_rich_text') is not None:
        record['frontRTFBase64'] = _b64(card['front_rich_text'])
    if card.get('back_rich_text') is not None:
        record['backRTFBase64'] = _b64(card['back_rich_text'])
    record['frontImages'] = _encode_all(encode_image, media, card['front_images'], quality)
    record['backImages'] = _encode_all(encode_image, media, card['back_images'], quality)
    record['frontAudios'] = _encode_all(encode_audio, media, card['front_audio'])
    record['backAudios'] = _encode_all(encode_audio, media, card['back_audio'])
    return record


def build_export_document(deck_id, media, quality: int = IMAGE_QUALITY, cancel_event=None) -> dict:
    deck = db.get_deck(deck_id)
    if deck is None:
        raise LookupError(f"Deck {deck_id} not found")

    records = []
    for card in db.get_sorted_cards(deck_id):
        if cancel_event is not None and cancel_event.is_set():
            raise TransferCancelled("The export was cancelled.")
        records.append(export_card(card, media, quality))

    return {
        'version': EXPORT_VERSION,
        'exportDate': datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ'),
        'name': deck['name'],
        'icon': deck['icon'],
        'colorHex': deck['color_hex'],
        'cards': records,
    }


def render_json(document: dict) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False)


def export_filename(deck_name: str, fmt: str) -> str:
    safe_name = deck_name.replace(' ', '_').replace(os.sep, '_')
    return f"{safe_name}.{fmt}"


def export_deck(deck_id, media, fmt: str = 'json', dest_dir: str | None = None, cancel_event=None) -> str:
    """Write the deck to <dest_dir>/<Deck_Name>.<fmt> and return the path."""
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {fmt}")

    if fmt == 'json':
        document = build_export_document(deck_id, media, cancel_event=cancel_event)
        name = document['name']
        content = render_json(document)
    else:
        deck = db.get_deck(deck_id)
        if deck is None:
            raise LookupError(f"Deck {deck_id} not found")
        name = deck['name']
        content = render_csv(db.get_sorted_cards(deck_id))

    path = os.path.join(dest_dir or tempfile.gettempdir(), export_filename(name, fmt))
    with open(path, 'w', encoding='utf-8', newline='') as f:
        f.write(content)
    logger.info(f"Exported deck {deck_id} as {fmt} to {path}")
    return path
