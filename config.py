import logging
import os
from dotenv import load_dotenv

load_dotenv()

PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))

DB_PATH = os.getenv('FLASHFLOW_DB_PATH', os.path.join(PROJECT_ROOT, 'flashflow.db'))
MEDIA_DIR = os.getenv('FLASHFLOW_MEDIA_DIR', os.path.join(PROJECT_ROOT, 'media_files'))
IMAGE_QUALITY = int(os.getenv('FLASHFLOW_IMAGE_QUALITY', '80'))
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL, logging.INFO)
)
