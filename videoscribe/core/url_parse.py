"""
Video identifier parsing and validation.
Callers may hand us either a bare 11-character id or any common URL form.
"""

import re
from urllib.parse import urlparse, parse_qs

from videoscribe.core.constants import VIDEO_ID_RE, YOUTUBE_URL_PATTERNS, WATCH_URL_TEMPLATE
from videoscribe.core.error_codes import InvalidVideoIdError


def extract_video_id(value: str) -> str | None:
    """
    Extract the 11-character video_id from a bare id or a YouTube URL.
    Returns None if nothing usable is found.
    """
    value = (value or '').strip()
    if not value:
        return None

    if re.match(VIDEO_ID_RE, value):
        return value

    for pattern in YOUTUBE_URL_PATTERNS:
        m = re.search(pattern, value)
        if m:
            return m.group(1)

    # Fallback: parse query string for 'v' parameter
    parsed = urlparse(value)
    if 'youtube.com' in parsed.netloc or 'youtu.be' in parsed.netloc:
        v = parse_qs(parsed.query).get('v', [None])[0]
        if v and re.match(VIDEO_ID_RE, v):
            return v

    return None


def validate_video_id(value: str) -> str:
    """
    Validate a video id/URL and return the video_id.
    Raises InvalidVideoIdError if invalid.
    """
    video_id = extract_video_id(value)
    if not video_id:
        raise InvalidVideoIdError(value)
    return video_id


def watch_url(video_id: str) -> str:
    return WATCH_URL_TEMPLATE.format(video_id=video_id)


def parse_input_lines(text: str) -> list[str]:
    """
    Parse pasted text into a list of video ids.
    - Trims whitespace
    - Ignores empty lines and '#' comments
    - Silently skips lines without a usable id
    """
    ids = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        video_id = extract_video_id(line)
        if video_id:
            ids.append(video_id)
    return ids
