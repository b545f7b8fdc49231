"""
Card-to-card links embedded in card text.

A link is written into the text as

    [🔗 <preview of target front>](card://<card_id>)

and is looked up by id across every deck. Links are not owned: a link
whose target was deleted simply resolves to None.
"""

import re

from utils.constants import EMPTY_PREVIEW, LINK_MARKER, LINK_PREVIEW_MAX, LINK_SCHEME

LINK_PATTERN = re.compile(
    r'\[' + LINK_MARKER + r' ?([^\]]*)\]\(' + re.escape(LINK_SCHEME) + r'([^)\s]+)\)'
)


def parse_link_reference(reference: str | None) -> str | None:
    """'card://ABC' -> 'ABC'; a bare id is returned unchanged."""
    if not reference:
        return None
    reference = reference.strip()
    if reference.startswith(LINK_SCHEME):
        reference = reference[len(LINK_SCHEME):]
    return reference.strip('/') or None


def extract_link_ids(text: str | None) -> list[str]:
    ids: list[str] = []
    for match in LINK_PATTERN.finditer(text or ''):
        card_id = match.group(2)
        if card_id not in ids:
            ids.append(card_id)
    return ids


def plain_text_preview(card: dict, max_length: int | None = None) -> str:
    """Front text without link spans or link markers, for labels and speech."""
    text = card.get('front_text') or ''
    if not text.strip():
        return EMPTY_PREVIEW
    text = LINK_PATTERN.sub('', text).replace(LINK_MARKER, '')
    text = re.sub(r'[ \t]{2,}', ' ', text).strip()
    if not text:
        return EMPTY_PREVIEW
    if max_length is not None:
        text = text[:max_length]
    return text


def insert_link(text: str, target_card: dict) -> str:
    preview = plain_text_preview(target_card, LINK_PREVIEW_MAX)
    preview = preview.replace('[', '(').replace(']', ')')
    link = f"[{LINK_MARKER} {preview}]({LINK_SCHEME}{target_card['card_id']})"
    return f"{text or ''} {link} "


def resolve_link(reference: str | None, lookup=None) -> dict | None:
    """
    Find the card a link points at, in any deck.
    Returns None for malformed references and for deleted targets.
    """
    card_id = parse_link_reference(reference)
    if card_id is None:
        return None
    if lookup is None:
        from database.database import get_card as lookup
    return lookup(card_id)


def search_cards(query: str, exclude_card_id: str | None = None, cards=None) -> list[dict]:
    """Case-insensitive match on the front preview or back text of every card."""
    if cards is None:
        from database.database import get_all_cards
        cards = get_all_cards()
    needle = (query or '').strip().lower()
    results = []
    for card in cards:
        if exclude_card_id is not None and card['card_id'] == exclude_card_id:
            continue
        front = plain_text_preview(card).lower()
        back = (card.get('back_text') or '').lower()
        if needle in front or needle in back:
            results.append(card)
    return results
