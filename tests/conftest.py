"""
pytest configuration and fixtures for Buchhaltungs-Manager tests.
"""

import json
import os
import secrets
import sys
from datetime import datetime

import httpx
import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import app as flask_app
from gateway import AppIds, GatewayConfig, LivingAppsGateway
from models import PARSERS

APP_IDS = AppIds()


class FakeLivingApps:
    """In-memory stand-in for the Living-Apps REST service."""

    def __init__(self):
        self.apps = {}
        self.requests = []
        self.fail_with = None
        self.fail_on = None

    def add(self, app_id, fields, createdat='2026-01-01T10:00:00'):
        """Insert a record directly and return its id."""
        record_id = secrets.token_hex(12)
        self.apps.setdefault(app_id, {})[record_id] = {
            'fields': dict(fields),
            'createdat': createdat,
            'updatedat': None,
        }
        return record_id

    def fields(self, app_id, record_id):
        return self.apps[app_id][record_id]['fields']

    def handler(self, request):
        self.requests.append(request)
        if self.fail_with and (self.fail_on is None or request.method in self.fail_on):
            status, body = self.fail_with
            return httpx.Response(status, text=body)

        segments = request.url.path.strip('/').split('/')
        idx = segments.index('apps')
        app_id = segments[idx + 1]
        record_id = segments[idx + 3] if len(segments) > idx + 3 else None
        records = self.apps.setdefault(app_id, {})

        if request.method == 'GET' and record_id is None:
            return httpx.Response(200, json=records)

        if request.method == 'POST':
            body = json.loads(request.content)
            new_id = self.add(app_id, body['fields'], createdat=datetime.now().isoformat())
            return httpx.Response(200, json={'id': new_id, **records[new_id]})

        if record_id not in records:
            return httpx.Response(404, text='Record not found')

        if request.method == 'GET':
            return httpx.Response(200, json={'id': record_id, **records[record_id]})

        if request.method == 'PATCH':
            body = json.loads(request.content)
            records[record_id]['fields'].update(body['fields'])
            records[record_id]['updatedat'] = datetime.now().isoformat()
            return httpx.Response(200, json={'id': record_id, **records[record_id]})

        if request.method == 'DELETE':
            del records[record_id]
            return httpx.Response(200, text='OK')

        return httpx.Response(405, text='Method not allowed')


@pytest.fixture
def livingapps():
    """Fake Living-Apps service."""
    return FakeLivingApps()


@pytest.fixture
def gateway(livingapps):
    """Gateway wired to the fake service."""
    return LivingAppsGateway(
        GatewayConfig(),
        transport=httpx.MockTransport(livingapps.handler),
        parsers=PARSERS,
    )


@pytest.fixture
def app(livingapps):
    """Create application for testing."""
    import app as app_module

    flask_app.config.update({
        'TESTING': True,
    })

    # Override global variables
    app_module.GATEWAY_CONFIG = GatewayConfig()
    app_module.TRANSPORT = httpx.MockTransport(livingapps.handler)

    yield flask_app

    app_module.TRANSPORT = None


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def sample_kostengruppe(livingapps):
    """Create a sample cost group."""
    return livingapps.add(APP_IDS.kostengruppen, {
        'kostengruppenname': 'Büro',
        'kostengruppennummer': '4930',
    })


@pytest.fixture
def sample_beleg(livingapps, sample_kostengruppe):
    """Create a sample receipt linked to the sample cost group."""
    return livingapps.add(APP_IDS.belege, {
        'belegdatum': '2026-01-15',
        'belegnummer': 'RE-2026-001',
        'belegbeschreibung': 'Druckerpapier',
        'betrag': 99.99,
        'belegart': 'eingangsrechnung',
        'kostengruppe': f'https://my.living-apps.de/rest/apps/{APP_IDS.kostengruppen}/records/{sample_kostengruppe}',
        'notizen': 'Bar bezahlt',
    })


@pytest.fixture
def sample_uebergabe(livingapps):
    """Create a sample accountant handover."""
    return livingapps.add(APP_IDS.uebergaben, {
        'stichtag': '2026-01-31',
        'periode_von': '2026-01-01',
        'periode_bis': '2026-01-31',
        'bemerkungen': 'Januar komplett',
    })
