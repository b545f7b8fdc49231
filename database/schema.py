# ===================== CATEGORIES =======================

category_schema = '''
    CREATE TABLE IF NOT EXISTS categories (
        category_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        icon TEXT NOT NULL DEFAULT 'folder',
        color_hex TEXT NOT NULL DEFAULT '#6366F1',
        created_at REAL NOT NULL,
        parent_id TEXT,

        FOREIGN KEY (parent_id) REFERENCES categories(category_id) ON DELETE CASCADE
    )
'''

# ======================= DECKS ==========================

deck_schema = '''
    CREATE TABLE IF NOT EXISTS decks (
        deck_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        icon TEXT NOT NULL DEFAULT 'rectangle.stack',
        color_hex TEXT NOT NULL DEFAULT '#6366F1',
        created_at REAL NOT NULL,
        category_id TEXT,

        FOREIGN KEY (category_id) REFERENCES categories(category_id) ON DELETE CASCADE
    )
'''

# ======================= CARDS ==========================

card_schema = '''
    CREATE TABLE IF NOT EXISTS cards (
        card_id TEXT PRIMARY KEY,
        deck_id TEXT NOT NULL,

        -- Card content
        front_text TEXT NOT NULL DEFAULT '',
        back_text TEXT NOT NULL DEFAULT '',
        front_rich_text BLOB,
        back_rich_text BLOB,

        -- Media references (JSON arrays of filenames)
        front_images TEXT NOT NULL DEFAULT '[]',
        back_images TEXT NOT NULL DEFAULT '[]',
        front_audio TEXT NOT NULL DEFAULT '[]',
        back_audio TEXT NOT NULL DEFAULT '[]',

        -- Legacy single-item media, cleared by migrations
        front_image_data BLOB,
        back_image_data BLOB,
        front_audio_path TEXT,
        back_audio_path TEXT,

        linked_card_ids TEXT NOT NULL DEFAULT '[]',
        created_at REAL NOT NULL,

        FOREIGN KEY (deck_id) REFERENCES decks(deck_id) ON DELETE CASCADE
    )
'''

index_schemas = [
    'CREATE INDEX IF NOT EXISTS idx_categories_parent ON categories(parent_id)',
    'CREATE INDEX IF NOT EXISTS idx_decks_category ON decks(category_id)',
    'CREATE INDEX IF NOT EXISTS idx_cards_deck ON cards(deck_id)',
]
