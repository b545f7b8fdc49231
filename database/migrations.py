"""
Versioned data migrations, tracked with PRAGMA user_version.

Version 1 moves card media out of the legacy single-item columns:
  - an inline image blob becomes a file in the media store, and the card's
    image list becomes [filename]
  - a single audio path becomes a one-element audio list
  - an absolute path from an older storage root whose file is gone is
    rewritten to its bare filename
"""

import json
import logging
import os

from media.store import IMAGE_EXTENSION

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def _normalize_reference(reference):
    if '/' in reference and not os.path.exists(reference):
        return os.path.basename(reference)
    return reference


def _migrate_card(cursor, row, media, saved):
    updates = {}

    for side in ('front', 'back'):
        images = json.loads(row[f'{side}_images'] or '[]')
        blob = row[f'{side}_image_data']
        if not images and blob:
            filename = media.save(bytes(blob), IMAGE_EXTENSION)
            saved.append(filename)
            images = [filename]
        updates[f'{side}_images'] = [_normalize_reference(ref) for ref in images]

        audio = json.loads(row[f'{side}_audio'] or '[]')
        path = row[f'{side}_audio_path']
        if not audio and path:
            audio = [path]
        updates[f'{side}_audio'] = [_normalize_reference(ref) for ref in audio]

    cursor.execute(
        '''UPDATE cards
           SET front_images = ?, back_images = ?, front_audio = ?, back_audio = ?,
               front_image_data = NULL, back_image_data = NULL,
               front_audio_path = NULL, back_audio_path = NULL
           WHERE card_id = ?
        ''',
        (
            json.dumps(updates['front_images']), json.dumps(updates['back_images']),
            json.dumps(updates['front_audio']), json.dumps(updates['back_audio']),
            row['card_id'],
        )
    )


def _migrate_v1(cursor, media):
    cursor.execute('SELECT * FROM cards')
    rows = cursor.fetchall()
    saved = []
    try:
        for row in rows:
            _migrate_card(cursor, row, media, saved)
    except Exception:
        # the surrounding transaction rolls back; don't leave the new files behind
        media.delete_all(saved)
        raise
    logger.info(f"Migrated legacy media for {len(rows)} cards ({len(saved)} blobs written)")


MIGRATIONS = {
    1: _migrate_v1,
}


def migrate(conn, media):
    """Apply every migration newer than the store's user_version."""
    cursor = conn.cursor()
    cursor.execute('PRAGMA user_version')
    current = cursor.fetchone()[0]
    for version in sorted(MIGRATIONS):
        if version <= current:
            continue
        MIGRATIONS[version](cursor, media)
        cursor.execute(f'PRAGMA user_version = {version}')
        logger.info(f"Database migrated to version {version}")
