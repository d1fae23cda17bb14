"""
Hilfsfunktionen für Verweise zwischen Living-Apps-Datensätzen.

Ein Verweis ist eine absolute URL der Form
``.../apps/{app_id}/records/{record_id}``. Die Record-ID steht immer als
24-stelliger Hex-Wert am Ende.
"""

import re

DEFAULT_BASE_URL = 'https://my.living-apps.de/rest'

RECORD_ID_PATTERN = re.compile(r'([a-f0-9]{24})$', re.IGNORECASE)


def extract_record_id(url):
    """Extrahiert die Record-ID aus einer Verweis-URL (oder None)."""
    if not url:
        return None
    match = RECORD_ID_PATTERN.search(url)
    return match.group(1) if match else None


def create_record_url(app_id, record_id, base_url=DEFAULT_BASE_URL):
    """Baut die Verweis-URL auf einen Datensatz einer App."""
    return f"{base_url.rstrip('/')}/apps/{app_id}/records/{record_id}"
