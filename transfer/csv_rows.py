import csv
import io

from utils.constants import CSV_HEADER_WORDS
from utils.errors import InvalidFormatError

CSV_HEADER = 'front,back'


def escape_field(text: str) -> str:
    """Always quoted, quotes doubled; line breaks would split the row, so they go."""
    escaped = (text or '').replace('"', '""').replace('\n', ' ').replace('\r', '')
    return f'"{escaped}"'


def render_csv(cards) -> str:
    lines = [CSV_HEADER]
    for card in cards:
        lines.append(f"{escape_field(card['front_text'])},{escape_field(card['back_text'])}")
    return '\n'.join(lines) + '\n'


def parse_csv(content: str) -> list[list[str]]:
    """Rows of cells; rows whose cells are all empty are dropped."""
    try:
        rows = list(csv.reader(io.StringIO(content, newline='')))
    except csv.Error as e:
        raise InvalidFormatError(f"The file format is not recognized: {e}") from e
    return [row for row in rows if any(cell for cell in row)]


def is_header_row(row: list[str]) -> bool:
    return any(cell.strip().lower() in CSV_HEADER_WORDS for cell in row)
