import logging
import os
import sys
from pathlib import Path

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR")

handlers = [logging.StreamHandler(sys.stdout)]

# File logging is opt-in
if LOG_DIR:
    logs_dir = Path(LOG_DIR)
    logs_dir.mkdir(parents=True, exist_ok=True)
    handlers.append(logging.FileHandler(logs_dir / "document_service.log"))

logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=handlers
)

logger = logging.getLogger("document_service")

# Function to get logger for specific modules
def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
