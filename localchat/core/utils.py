# LocalChat — Local Assistant Engine
# Copyright (C) 2026 Pankaj Varma
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Utility Functions for LocalChat
Common utilities including logging, id generation and text processing.
"""

import re
import random
import string
import logging
import uuid
from typing import List, Optional
from datetime import datetime

# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Configure logging for the application"""
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Silence noisy third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("trafilatura").setLevel(logging.ERROR)
    logging.getLogger("duckduckgo_search").setLevel(logging.WARNING)

    return logging.getLogger('LocalChat')


logger = setup_logging()


# =============================================================================
# IDENTIFIERS
# =============================================================================

_BASE36 = string.digits + string.ascii_lowercase


def generate_id() -> str:
    """Short random identifier for chats and messages."""
    return uuid.uuid4().hex[:12]


def random_suffix(length: int = 9) -> str:
    """Random base36 suffix. Best-effort uniqueness only."""
    return ''.join(random.choice(_BASE36) for _ in range(length))


def now_ms() -> int:
    return int(datetime.now().timestamp() * 1000)


# =============================================================================
# TEXT PROCESSING UTILITIES
# =============================================================================

_NON_WORD = re.compile(r'[^\w\s]')


def tokenize_keywords(text: str, min_length: int) -> List[str]:
    """
    Lower-case, replace non-word characters with spaces and keep tokens
    strictly longer than `min_length`.
    """
    words = _NON_WORD.sub(' ', text.lower()).split()
    return [w for w in words if len(w) > min_length]


def truncate_text(text: str, max_length: int = 500, suffix: str = "...") -> str:
    """Truncate text to max length with suffix"""
    if len(text) <= max_length:
        return text
    return text[:max_length] + suffix


def format_size_kb(size_bytes: int) -> str:
    return f"{size_bytes / 1024:.2f} KB"


# =============================================================================
# FILE TYPE UTILITIES
# =============================================================================

IMAGE_EXTENSIONS = ('jpg', 'jpeg', 'png', 'gif', 'webp', 'svg')

TEXT_EXTENSIONS = (
    'md', 'txt', 'js', 'ts', 'jsx', 'tsx', 'py', 'html', 'css', 'xml',
    'yaml', 'yml', 'csv', 'log', 'sql', 'sh', 'bat', 'env', 'gitignore',
    'dockerfile', 'json'
)


def get_extension(file_name: str) -> str:
    return file_name.rsplit('.', 1)[-1].lower() if '.' in file_name else ''


def is_image_file(file_name: str) -> bool:
    """True when the source name carries a known image extension."""
    return get_extension(file_name) in IMAGE_EXTENSIONS


def get_file_category(file_name: str, media_type: Optional[str]) -> str:
    """
    Map an upload to one of: 'text', 'pdf', 'image', 'binary', 'unknown'.
    """
    media_type = (media_type or '').lower()
    ext = get_extension(file_name)

    if (media_type.startswith('text/') or media_type == 'application/json'
            or ext in TEXT_EXTENSIONS or 'readme' in file_name.lower()):
        return 'text'
    if media_type == 'application/pdf' or ext == 'pdf':
        return 'pdf'
    if media_type.startswith('image/') or ext in IMAGE_EXTENSIONS:
        return 'image'
    if (media_type.startswith('audio/') or media_type.startswith('video/')
            or media_type == 'application/octet-stream'):
        return 'binary'
    return 'unknown'


FILE_ICONS = {
    'text': '📄',
    'pdf': '📕',
    'image': '🖼️',
    'binary': '📦',
    'unknown': '📎',
}


# =============================================================================
# TIMING UTILITIES
# =============================================================================

class Timer:
    """Context manager for timing operations"""

    def __init__(self, name: str = "Operation"):
        self.name = name
        self.start_time: Optional[datetime] = None
        self.elapsed_ms: float = 0.0

    def __enter__(self):
        self.start_time = datetime.now()
        return self

    def __exit__(self, *args):
        elapsed = datetime.now() - self.start_time
        self.elapsed_ms = elapsed.total_seconds() * 1000
        logger.debug(f"{self.name} completed in {self.elapsed_ms:.2f}ms")
