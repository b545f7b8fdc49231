"""
Tests for transfer/ — JSON and CSV export, import and deduplication.
"""
import base64
import io
import json
import os

import pytest
from PIL import Image

import database.database as db
import transfer.importer as importer
from media.store import MediaStore
from transfer.csv_rows import escape_field, parse_csv, render_csv
from transfer.exporter import build_export_document, export_deck, render_json
from transfer.importer import import_csv, import_into_deck, import_json
from utils.errors import (
    DecodeError, EmptyFileError, InvalidFormatError, TransferCancelled,
)


# ── Fixtures ──────────────────────────────────────────────────

@pytest.fixture()
def media(tmp_path):
    return MediaStore(str(tmp_path / "media"))


@pytest.fixture()
def target_media(tmp_path):
    """A second store, so files minted by an import can be counted on their own."""
    return MediaStore(str(tmp_path / "imported"))


@pytest.fixture()
def tdb(tmp_path, monkeypatch, media):
    monkeypatch.setattr(db, 'DB_PATH', str(tmp_path / "test.db"))
    db.init_db(media)


def _png_bytes(color=(255, 0, 0, 128)):
    out = io.BytesIO()
    Image.new('RGBA', (4, 4), color).save(out, format='PNG')
    return out.getvalue()


def _fronts(deck_id):
    return [c['front_text'] for c in db.get_sorted_cards(deck_id)]


class CancelAfter:
    """Event stand-in that reports set after n checks."""

    def __init__(self, n):
        self.remaining = n

    def is_set(self):
        self.remaining -= 1
        return self.remaining < 0


@pytest.fixture()
def rich_deck(tdb, media):
    deck = db.create_deck('Spanish Verbs', icon='book', color_hex='#10B981')
    image = media.save(_png_bytes(), '.png')
    audio = media.save(b'ID3-fake-audio', '.m4a')
    db.create_card(
        deck, 'hablar', 'to speak',
        front_rich_text=b'{\\rtf1 hablar}',
        front_images=[image],
        back_audio=[audio],
    )
    db.create_card(deck, 'comer', 'to eat')
    return deck


# ── JSON export ───────────────────────────────────────────────

class TestJsonExport:
    def test_document_shape(self, rich_deck, media):
        doc = build_export_document(rich_deck, media)
        assert doc['version'] == 1
        assert doc['name'] == 'Spanish Verbs'
        assert doc['icon'] == 'book'
        assert doc['colorHex'] == '#10B981'
        assert doc['exportDate'].endswith('Z')
        assert [c['frontText'] for c in doc['cards']] == ['hablar', 'comer']

    def test_card_record(self, rich_deck, media):
        first, second = build_export_document(rich_deck, media)['cards']
        assert base64.b64decode(first['frontRTFBase64']) == b'{\\rtf1 hablar}'
        assert 'backRTFBase64' not in first
        assert len(first['frontImages']) == 1
        assert first['backImages'] == []
        assert base64.b64decode(first['backAudios'][0]) == b'ID3-fake-audio'
        assert second['frontImages'] == [] and second['frontAudios'] == []

    def test_images_reencoded_as_jpeg(self, rich_deck, media):
        record = build_export_document(rich_deck, media)['cards'][0]
        data = base64.b64decode(record['frontImages'][0])
        with Image.open(io.BytesIO(data)) as img:
            assert img.format == 'JPEG'

    def test_missing_and_corrupt_media_skipped(self, tdb, media):
        deck = db.create_deck('D')
        broken = media.save(b'not an image', '.jpg')
        db.create_card(deck, 'q', 'a', front_images=['gone.jpg', broken], front_audio=['gone.m4a'])
        record = build_export_document(deck, media)['cards'][0]
        assert record['frontImages'] == []
        assert record['frontAudios'] == []

    def test_export_deck_writes_file(self, rich_deck, media, tmp_path):
        path = export_deck(rich_deck, media, fmt='json', dest_dir=str(tmp_path))
        assert os.path.basename(path) == 'Spanish_Verbs.json'
        with open(path, encoding='utf-8') as f:
            content = f.read()
        assert content.startswith('{\n')
        assert json.loads(content)['name'] == 'Spanish Verbs'

    def test_export_missing_deck(self, tdb, media):
        with pytest.raises(LookupError):
            build_export_document('nope', media)

    def test_export_can_be_cancelled(self, rich_deck, media):
        with pytest.raises(TransferCancelled):
            build_export_document(rich_deck, media, cancel_event=CancelAfter(1))


# ── JSON import ───────────────────────────────────────────────

class TestJsonImport:
    def test_round_trip_into_empty_deck(self, rich_deck, media, target_media):
        data = render_json(build_export_document(rich_deck, media)).encode('utf-8')
        target = db.create_deck('Copy')

        assert import_json(data, target, target_media) == 2

        original = db.get_sorted_cards(rich_deck)
        copied = db.get_sorted_cards(target)
        assert [(c['front_text'], c['back_text']) for c in copied] == \
               [(c['front_text'], c['back_text']) for c in original]

    def test_round_trip_media_gets_fresh_files(self, rich_deck, media, target_media):
        data = render_json(build_export_document(rich_deck, media)).encode('utf-8')
        target = db.create_deck('Copy')
        import_json(data, target, target_media)

        source_card = db.get_sorted_cards(rich_deck)[0]
        card = db.get_sorted_cards(target)[0]
        assert card['front_rich_text'] == b'{\\rtf1 hablar}'
        assert len(card['front_images']) == 1
        assert card['front_images'][0] != source_card['front_images'][0]
        assert card['front_images'][0].endswith('.jpg')
        assert target_media.exists(card['front_images'][0])
        assert target_media.load(card['back_audio'][0]) == b'ID3-fake-audio'
        assert card['back_audio'][0].endswith('.m4a')

    def test_reimport_is_deduplicated(self, rich_deck, media, target_media):
        data = render_json(build_export_document(rich_deck, media)).encode('utf-8')
        target = db.create_deck('Copy')
        assert import_json(data, target, target_media) == 2
        assert import_json(data, target, target_media) == 0
        assert len(db.get_sorted_cards(target)) == 2

    def test_dedup_is_trimmed_and_case_insensitive(self, tdb, target_media):
        deck = db.create_deck('D')
        db.create_card(deck, 'Hola', 'hi')
        data = json.dumps({'cards': [
            {'frontText': '  HOLA ', 'backText': 'x'},
            {'frontText': 'Adios', 'backText': 'bye'},
        ]}).encode()
        assert import_json(data, deck, target_media) == 1
        assert _fronts(deck) == ['Hola', 'Adios']

    def test_batch_duplicates_are_not_deduplicated(self, tdb, target_media):
        deck = db.create_deck('D')
        data = json.dumps({'cards': [
            {'frontText': 'same', 'backText': '1'},
            {'frontText': 'same', 'backText': '2'},
        ]}).encode()
        assert import_json(data, deck, target_media) == 2

    def test_bad_attachment_skipped_card_kept(self, tdb, target_media):
        deck = db.create_deck('D')
        data = json.dumps({'cards': [{
            'frontText': 'q', 'backText': 'a',
            'frontImages': ['***not base64***', base64.b64encode(b'img').decode()],
            'backImages': [], 'frontAudios': [], 'backAudios': [],
        }]}).encode()
        assert import_json(data, deck, target_media) == 1
        card = db.get_sorted_cards(deck)[0]
        assert len(card['front_images']) == 1
        assert target_media.load(card['front_images'][0]) == b'img'

    def test_malformed_json(self, tdb, target_media):
        deck = db.create_deck('D')
        with pytest.raises(DecodeError):
            import_json(b'{not json', deck, target_media)

    def test_wrong_shape(self, tdb, target_media):
        deck = db.create_deck('D')
        with pytest.raises(DecodeError):
            import_json(b'{"cards": [{"frontText": 1}]}', deck, target_media)
        with pytest.raises(DecodeError):
            import_json(b'[]', deck, target_media)

    def test_media_field_must_be_list(self, tdb, target_media):
        deck = db.create_deck('D')
        image = base64.b64encode(_png_bytes()).decode('ascii')
        document = {'cards': [
            {'frontText': 'ok', 'backText': 'a', 'frontImages': [image]},
            {'frontText': 'q', 'backText': 'a', 'frontImages': 5},
        ]}
        with pytest.raises(DecodeError):
            import_json(json.dumps(document).encode('utf-8'), deck, target_media)
        assert db.get_sorted_cards(deck) == []
        root = target_media.root
        assert not os.path.isdir(root) or os.listdir(root) == []

    def test_null_media_field_is_empty(self, tdb, target_media):
        deck = db.create_deck('D')
        data = b'{"cards": [{"frontText": "q", "backText": "a", "backAudios": null}]}'
        assert import_json(data, deck, target_media) == 1
        assert db.get_sorted_cards(deck)[0]['back_audio'] == []

    def test_cancel_rolls_back_media(self, rich_deck, media, target_media):
        data = render_json(build_export_document(rich_deck, media)).encode('utf-8')
        target = db.create_deck('Copy')
        # two record checks pass, the final check before writing rows trips
        with pytest.raises(TransferCancelled):
            import_json(data, target, target_media, cancel_event=CancelAfter(2))
        assert db.get_sorted_cards(target) == []
        assert os.listdir(target_media.root) == []

    def test_write_failure_rolls_back_media(self, rich_deck, media, target_media, monkeypatch):
        data = render_json(build_export_document(rich_deck, media)).encode('utf-8')
        target = db.create_deck('Copy')

        def boom(deck_id, cards):
            raise RuntimeError('write failed')

        monkeypatch.setattr(importer.db, 'save_cards', boom)
        with pytest.raises(RuntimeError):
            import_json(data, target, target_media)
        assert os.listdir(target_media.root) == []


# ── CSV ───────────────────────────────────────────────────────

class TestCsvExport:
    def test_escape_field(self):
        assert escape_field('Say "hi"\nnow\r') == '"Say ""hi"" now"'

    def test_render(self):
        content = render_csv([
            {'front_text': 'Cat', 'back_text': 'Animal'},
            {'front_text': 'a,b', 'back_text': ''},
        ])
        assert content == 'front,back\n"Cat","Animal"\n"a,b",""\n'

    def test_export_deck_csv(self, tdb, media, tmp_path):
        deck = db.create_deck('My Deck')
        db.create_card(deck, 'Cat', 'Animal', front_images=['x.jpg'])
        path = export_deck(deck, media, fmt='csv', dest_dir=str(tmp_path))
        assert os.path.basename(path) == 'My_Deck.csv'
        with open(path, encoding='utf-8') as f:
            assert f.read() == 'front,back\n"Cat","Animal"\n'

    def test_unknown_format(self, tdb, media):
        deck = db.create_deck('D')
        with pytest.raises(ValueError):
            export_deck(deck, media, fmt='xml')


class TestCsvImport:
    def test_header_skipped(self, tdb):
        deck = db.create_deck('D')
        assert import_csv(b'front,back\nCat,Animal\nDog,Animal\n', deck) == 2
        cards = db.get_sorted_cards(deck)
        assert [c['front_text'] for c in cards] == ['Cat', 'Dog']
        assert [c['back_text'] for c in cards] == ['Animal', 'Animal']

    def test_headerless_single_row(self, tdb):
        deck = db.create_deck('D')
        assert import_csv(b'Q1,A1\n', deck) == 1
        assert _fronts(deck) == ['Q1']

    @pytest.mark.parametrize('header', [b'Question,Answer', b'term,definition', b'FRONT,BACK'])
    def test_header_keywords(self, tdb, header):
        deck = db.create_deck('D')
        assert import_csv(header + b'\nq,a\n', deck) == 1

    def test_quoted_fields(self, tdb):
        deck = db.create_deck('D')
        import_csv(b'"a, b","say ""hi"""\n', deck)
        card = db.get_sorted_cards(deck)[0]
        assert card['front_text'] == 'a, b'
        assert card['back_text'] == 'say "hi"'

    def test_short_and_blank_rows_skipped(self, tdb):
        deck = db.create_deck('D')
        assert import_csv(b'solo\n\n,\n  ,x\nq,a\n', deck) == 1
        assert _fronts(deck) == ['q']

    def test_fields_trimmed(self, tdb):
        deck = db.create_deck('D')
        import_csv(b'  q  ,  a  \r\n', deck)
        card = db.get_sorted_cards(deck)[0]
        assert (card['front_text'], card['back_text']) == ('q', 'a')

    def test_dedup_only_against_existing(self, tdb):
        deck = db.create_deck('D')
        db.create_card(deck, 'Cat', 'x')
        assert import_csv(b'cat,y\nDog,1\nDog,2\n', deck) == 2
        assert _fronts(deck) == ['Cat', 'Dog', 'Dog']

    def test_empty_file(self, tdb):
        deck = db.create_deck('D')
        with pytest.raises(EmptyFileError):
            import_csv(b'', deck)

    def test_header_only(self, tdb):
        deck = db.create_deck('D')
        with pytest.raises(EmptyFileError):
            import_csv(b'front,back\n', deck)

    def test_not_utf8(self, tdb):
        deck = db.create_deck('D')
        with pytest.raises(InvalidFormatError):
            import_csv(b'\xff\xfe\xfa,\xc3\n', deck)

    def test_parse_drops_blank_rows(self):
        assert parse_csv('a,b\r\n\r\n,,\nc,d') == [['a', 'b'], ['c', 'd']]


# ── Dispatch by file ──────────────────────────────────────────

class TestImportIntoDeck:
    def test_csv_by_extension(self, tdb, media, tmp_path):
        deck = db.create_deck('D')
        path = tmp_path / "cards.CSV"
        path.write_bytes(b'front,back\nCat,Animal\n')
        assert import_into_deck(str(path), deck, media) == 1

    def test_json_by_extension(self, rich_deck, media, target_media, tmp_path):
        path = export_deck(rich_deck, media, dest_dir=str(tmp_path))
        target = db.create_deck('Copy')
        assert import_into_deck(path, target, target_media) == 2

    def test_file_object(self, tdb, media):
        deck = db.create_deck('D')
        source = io.BytesIO(b'Q1,A1\n')
        source.name = 'upload.csv'
        assert import_into_deck(source, deck, media) == 1

    def test_missing_deck(self, tdb, media, tmp_path):
        path = tmp_path / "cards.csv"
        path.write_bytes(b'q,a\n')
        with pytest.raises(LookupError):
            import_into_deck(str(path), 'nope', media)
