"""
Living-Apps REST-Client

Bildet Kostengruppen, Belegbuchungen und Steuerberater-Übergaben auf die
CRUD-Endpunkte des gehosteten Datensatz-Dienstes ab.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .references import DEFAULT_BASE_URL, create_record_url

logger = logging.getLogger(__name__)

VALID_RECORD_ID = re.compile(r'^[A-Za-z0-9]+$')


@dataclass
class AppIds:
    """Die drei festen App-IDs der Datensatz-Sammlungen."""

    kostengruppen: str = '698db1e550eb37f16846d889'
    belege: str = '698db1eaa3041ca34d1f38c4'
    uebergaben: str = '698db1ead8a6024900573129'


@dataclass
class GatewayConfig:
    """Verbindungsdaten für den Living-Apps-Dienst."""

    base_url: str = DEFAULT_BASE_URL
    app_ids: AppIds = field(default_factory=AppIds)
    cookies: Optional[Dict[str, str]] = None
    headers: Optional[Dict[str, str]] = None
    timeout: Optional[float] = None


class GatewayError(Exception):
    """Fehlerhafte Antwort des Dienstes. Die Nachricht ist der rohe Antworttext."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def validate_record_id(record_id):
    """Prüft eine Record-ID, bevor sie in einen Pfad eingesetzt wird."""
    if not record_id or not VALID_RECORD_ID.match(str(record_id)):
        raise ValueError(f"Ungültige Record-ID: {record_id!r}")
    return str(record_id)


def normalize_record_map(data) -> List[Dict[str, Any]]:
    """
    Wandelt die Listen-Antwort {record_id: record} in eine Liste um.
    Der Schlüssel landet als 'record_id' im jeweiligen Datensatz.
    """
    if not data:
        return []
    if not isinstance(data, dict):
        raise GatewayError(f"Unerwartete Listen-Antwort: {data!r}")
    return [{'record_id': record_id, **record} for record_id, record in data.items()]


def normalize_single_record(data) -> Dict[str, Any]:
    """Einzelabruf: 'id' wird zu 'record_id'."""
    record = dict(data)
    record['record_id'] = record.pop('id', None)
    return record


class RecordCollection:
    """CRUD-Zugriff auf die Datensätze einer einzelnen App."""

    def __init__(self, gateway, app_id, parse=None):
        self.gateway = gateway
        self.app_id = app_id
        self.parse = parse or (lambda record: record)

    @property
    def path(self):
        return f'/apps/{self.app_id}/records'

    def record_url(self, record_id):
        """Verweis-URL auf einen Datensatz dieser Sammlung."""
        return create_record_url(self.app_id, record_id, self.gateway.config.base_url)

    async def list(self):
        """Lädt die komplette Sammlung in einem Aufruf."""
        data = await self.gateway.request('GET', self.path)
        return [self.parse(record) for record in normalize_record_map(data)]

    async def get(self, record_id):
        record_id = validate_record_id(record_id)
        data = await self.gateway.request('GET', f'{self.path}/{record_id}')
        return self.parse(normalize_single_record(data))

    async def create(self, fields):
        return await self.gateway.request('POST', self.path, {'fields': fields})

    async def update(self, record_id, fields):
        """Teil-Update: nicht übergebene Felder bleiben serverseitig unverändert."""
        record_id = validate_record_id(record_id)
        return await self.gateway.request('PATCH', f'{self.path}/{record_id}', {'fields': fields})

    async def delete(self, record_id):
        record_id = validate_record_id(record_id)
        return await self.gateway.request('DELETE', f'{self.path}/{record_id}')


class LivingAppsGateway:
    """
    Zustandsloser Client für den Living-Apps-Dienst.

    Jeder Aufruf öffnet einen eigenen httpx.AsyncClient, damit der Client
    an keinen Event-Loop gebunden ist. Über ``transport`` lässt sich ein
    httpx.MockTransport für Tests einsetzen.
    """

    def __init__(self, config=None, transport=None, parsers=None):
        self.config = config or GatewayConfig()
        self.transport = transport
        parsers = parsers or {}
        app_ids = self.config.app_ids
        self.kostengruppen = RecordCollection(self, app_ids.kostengruppen, parsers.get('kostengruppen'))
        self.belege = RecordCollection(self, app_ids.belege, parsers.get('belege'))
        self.uebergaben = RecordCollection(self, app_ids.uebergaben, parsers.get('uebergaben'))

    def collection(self, name):
        """Sammlung nach Namen ('kostengruppen', 'belege', 'uebergaben')."""
        if name not in ('kostengruppen', 'belege', 'uebergaben'):
            raise KeyError(name)
        return getattr(self, name)

    def _client(self):
        return httpx.AsyncClient(
            base_url=self.config.base_url.rstrip('/'),
            headers={'Content-Type': 'application/json', **(self.config.headers or {})},
            cookies=self.config.cookies,
            timeout=self.config.timeout,
            transport=self.transport,
        )

    async def request(self, method, path, data=None):
        """
        Führt einen Aufruf aus.

        Nicht-2xx-Antworten werfen GatewayError mit dem rohen Antworttext.
        DELETE gilt bei jedem Erfolgsstatus als erfolgreich, der Body wird
        ignoriert. Liefert ein GET keinen JSON-Body, gibt es GatewayError;
        bei POST/PATCH entscheidet allein der Status, das Ergebnis ist dann None.
        """
        logger.debug(f"{method} {path}")
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=data)
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} fehlgeschlagen: {e}")
            raise GatewayError(str(e) or e.__class__.__name__) from e

        if not response.is_success:
            logger.warning(f"{method} {path} -> HTTP {response.status_code}")
            raise GatewayError(response.text, status_code=response.status_code)

        if method == 'DELETE':
            return True
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            if method == 'GET':
                logger.warning(f"{method} {path} -> keine JSON-Antwort")
                raise GatewayError(response.text, status_code=response.status_code) from e
            logger.warning(f"{method} {path} -> Antwort ohne JSON ignoriert")
            return None
