NAME_MAX = 50

DEFAULT_CATEGORY_ICON = 'folder'
DEFAULT_DECK_ICON = 'rectangle.stack'
DEFAULT_COLOR_HEX = '#6366F1'

BREADCRUMB_SEPARATOR = ' › '

# Manual reordering rewrites created_at to REORDER_BASE_EPOCH + position
REORDER_BASE_EPOCH = 0.0

MEDIA_FIELDS = ('front_images', 'back_images', 'front_audio', 'back_audio')

# Card links
LINK_SCHEME = 'card://'
LINK_MARKER = '\U0001f517'
LINK_PREVIEW_MAX = 30
EMPTY_PREVIEW = '(Empty)'

# Import / export
EXPORT_VERSION = 1
CSV_HEADER_WORDS = ('front', 'question', 'term')
