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
Fast-path intent detection for LocalChat (phrase matching, no LLM call).
"""

from ..core.utils import logger

# Kept literal: queries that merely mean the same thing are not matched.
DESCRIBE_ALL_IMAGES_PHRASES = (
    "describe all images",
    "describe all the images",
    "describe all uploaded images",
    "describe every image",
)


def is_describe_all_images_query(query: str) -> bool:
    """
    True when the query asks for every image uploaded in the session, which
    routes retrieval to the global image registry instead of the prompt's own
    attachments.
    """
    q = query.lower()
    if any(phrase in q for phrase in DESCRIBE_ALL_IMAGES_PHRASES):
        matched = True
    else:
        matched = "describe" in q and "image" in q and ("all" in q or "every" in q)

    if matched:
        logger.info("Intent: Fast-path DESCRIBE_ALL_IMAGES detected")
    return matched
