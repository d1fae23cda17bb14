"""
API endpoint tests for Buchhaltungs-Manager.
"""

import json
import logging
import pytest

from conftest import APP_IDS


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_returns_ok(self, client):
        """Health endpoint returns healthy status."""
        response = client.get('/health')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['livingapps'] == 'connected'

    def test_health_reports_service_error(self, client, livingapps):
        """Health endpoint reports an unreachable service."""
        livingapps.fail_with = (503, 'down')
        response = client.get('/health')
        data = json.loads(response.data)
        assert data['livingapps'] == 'error'


class TestKostengruppenAPI:
    """Tests for /api/kostengruppen endpoints."""

    def test_get_kostengruppen_empty(self, client):
        """Get kostengruppen returns empty list initially."""
        response = client.get('/api/kostengruppen')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data == []

    def test_create_kostengruppe(self, client, livingapps):
        """Create a new cost group."""
        response = client.post('/api/kostengruppen',
            data=json.dumps({
                'kostengruppenname': 'Reisekosten',
                'kostengruppennummer': '4660',
                'beschreibung': ''
            }),
            content_type='application/json'
        )
        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['success'] is True

        stored = list(livingapps.apps[APP_IDS.kostengruppen].values())[0]['fields']
        assert stored == {'kostengruppenname': 'Reisekosten', 'kostengruppennummer': '4660'}

    def test_get_kostengruppen_after_create(self, client):
        """Get kostengruppen returns created group."""
        client.post('/api/kostengruppen',
            data=json.dumps({'fields': {'kostengruppenname': 'Miete'}}),
            content_type='application/json'
        )

        response = client.get('/api/kostengruppen')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert len(data) == 1
        assert data[0]['kostengruppenname'] == 'Miete'
        assert len(data[0]['record_id']) == 24

    def test_get_single_kostengruppe(self, client, sample_kostengruppe):
        response = client.get(f'/api/kostengruppen/{sample_kostengruppe}')
        assert response.status_code == 200
        assert json.loads(response.data)['kostengruppenname'] == 'Büro'

    def test_delete_kostengruppe(self, client, livingapps, sample_kostengruppe):
        response = client.delete(f'/api/kostengruppen/{sample_kostengruppe}')
        assert response.status_code == 200
        assert json.loads(response.data)['success'] is True
        assert livingapps.apps[APP_IDS.kostengruppen] == {}


class TestBelegeAPI:
    """Tests for /api/belege endpoints."""

    def test_get_belege(self, client, sample_beleg):
        response = client.get('/api/belege')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert len(data) == 1
        assert data[0]['record_id'] == sample_beleg
        assert data[0]['belegart'] == 'eingangsrechnung'
        assert data[0]['betrag'] == 99.99

    def test_get_belege_filtered_and_sorted(self, client, livingapps):
        livingapps.add(APP_IDS.belege, {'belegdatum': '2026-01-01', 'belegart': 'quittung'})
        livingapps.add(APP_IDS.belege, {'belegdatum': '2026-03-01', 'belegart': 'quittung'})
        livingapps.add(APP_IDS.belege, {'belegdatum': '2026-02-01', 'belegart': 'gutschrift'})

        data = json.loads(client.get('/api/belege?belegart=quittung').data)
        assert [b['belegdatum'] for b in data] == ['2026-03-01', '2026-01-01']

        data = json.loads(client.get('/api/belege').data)
        assert [b['belegdatum'] for b in data] == ['2026-03-01', '2026-02-01', '2026-01-01']

    def test_create_beleg_with_cost_group(self, client, livingapps, sample_kostengruppe):
        response = client.post('/api/belege',
            data=json.dumps({
                'belegdatum': '2026-02-01',
                'belegnummer': 'RE-5',
                'betrag': 42.0,
                'kostengruppe': sample_kostengruppe
            }),
            content_type='application/json'
        )
        assert response.status_code == 201
        stored = list(livingapps.apps[APP_IDS.belege].values())[0]['fields']
        assert stored['kostengruppe'].endswith(f'/apps/{APP_IDS.kostengruppen}/records/{sample_kostengruppe}')

    def test_create_beleg_invalid_amount(self, client):
        response = client.post('/api/belege',
            data=json.dumps({'betrag': 'viel'}),
            content_type='application/json'
        )
        assert response.status_code == 400
        assert 'error' in json.loads(response.data)

    def test_update_beleg_partial(self, client, livingapps, sample_beleg):
        """Empty strings in an update leave stored values untouched."""
        response = client.patch(f'/api/belege/{sample_beleg}',
            data=json.dumps({'notizen': '', 'betrag': '120,00'}),
            content_type='application/json'
        )
        assert response.status_code == 200
        fields = livingapps.fields(APP_IDS.belege, sample_beleg)
        assert fields['notizen'] == 'Bar bezahlt'
        assert fields['betrag'] == 120.0

    def test_get_beleg_not_found(self, client):
        """Get non-existent beleg returns 404."""
        response = client.get('/api/belege/65a1b2c3d4e5f60718293a4b')
        assert response.status_code == 404

    def test_service_error_returns_502(self, client, livingapps):
        livingapps.fail_with = (500, 'Datenbank nicht erreichbar')
        response = client.get('/api/belege')
        assert response.status_code == 502
        assert json.loads(response.data)['error'] == 'Datenbank nicht erreichbar'

    def test_non_json_reply_returns_502(self, client, livingapps):
        """A 2xx HTML reply from the service is reported, not a crash."""
        livingapps.fail_with = (200, '<html>Login</html>')
        response = client.get('/api/belege')
        assert response.status_code == 502
        assert json.loads(response.data)['error'] == '<html>Login</html>'


class TestUebergabenAPI:
    """Tests for /api/uebergaben endpoints."""

    def test_get_uebergaben_sorted(self, client, livingapps, sample_uebergabe):
        livingapps.add(APP_IDS.uebergaben, {'stichtag': '2026-02-28'})
        data = json.loads(client.get('/api/uebergaben').data)
        assert [u['stichtag'] for u in data] == ['2026-02-28', '2026-01-31']

    def test_create_and_update_uebergabe(self, client, livingapps):
        client.post('/api/uebergaben',
            data=json.dumps({'stichtag': '2026-03-31', 'periode_von': '2026-03-01', 'periode_bis': '2026-03-31'}),
            content_type='application/json'
        )
        record_id = list(livingapps.apps[APP_IDS.uebergaben])[0]
        response = client.patch(f'/api/uebergaben/{record_id}',
            data=json.dumps({'bemerkungen': 'Nachreichung'}),
            content_type='application/json'
        )
        assert response.status_code == 200
        fields = livingapps.fields(APP_IDS.uebergaben, record_id)
        assert fields['bemerkungen'] == 'Nachreichung'
        assert fields['stichtag'] == '2026-03-31'


class TestStatistikenAPI:
    """Tests for /api/statistiken."""

    def test_get_statistiken(self, client, sample_beleg, livingapps):
        livingapps.add(APP_IDS.belege, {'belegdatum': '2026-02-10', 'betrag': 100, 'belegart': 'ausgangsrechnung'})
        response = client.get('/api/statistiken')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['gesamtbetrag'] == pytest.approx(199.99)
        assert data['einnahmen'] == 100
        assert data['ausgaben'] == pytest.approx(99.99)
        assert data['anzahl'] == 2
        assert [g['name'] for g in data['kostengruppen']] == ['Büro', 'Nicht zugeordnet']
        assert [m['monat'] for m in data['monatlich']] == ['2026-01', '2026-02']

    def test_statistiken_service_error(self, client, livingapps):
        livingapps.fail_with = (500, 'kaputt')
        response = client.get('/api/statistiken')
        assert response.status_code == 502


class TestBelegartenAPI:
    """Tests for /api/belegarten."""

    def test_get_belegarten(self, client):
        response = client.get('/api/belegarten')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert len(data) == 7
        assert {'wert': 'gutschrift', 'label': 'Gutschrift'} in data


class TestDashboard:
    """Tests for the HTML dashboard."""

    def test_index(self, client, sample_beleg, sample_uebergabe):
        response = client.get('/')
        assert response.status_code == 200
        html = response.data.decode()
        assert 'Buchhaltungs-Manager' in html
        assert 'RE-2026-001' in html
        assert '99,99 €' in html
        assert 'Eingangsrechnung' in html
        assert 'Büro' in html
        assert '31.01.2026' in html

    def test_index_load_failure_offers_retry(self, client, livingapps):
        livingapps.fail_with = (500, 'Dienst nicht verfügbar')
        response = client.get('/')
        assert response.status_code == 502
        html = response.data.decode()
        assert 'Dienst nicht verfügbar' in html
        assert 'Erneut versuchen' in html

    def test_index_non_json_reply_offers_retry(self, client, livingapps):
        """A 200 login page instead of JSON ends on the retry page."""
        livingapps.fail_with = (200, '<html>Login</html>')
        response = client.get('/')
        assert response.status_code == 502
        assert 'Erneut versuchen' in response.data.decode()

    def test_save_with_plain_text_reply(self, client, livingapps, sample_kostengruppe):
        """An edit acknowledged with a plain 'OK' body counts as saved."""
        livingapps.fail_with = (200, 'OK')
        livingapps.fail_on = {'PATCH'}
        response = client.post(f'/kostengruppe/{sample_kostengruppe}/speichern', data={
            'kostengruppenname': 'Neu'
        }, follow_redirects=True)
        assert response.status_code == 200
        assert 'Kostengruppe aktualisiert' in response.data.decode()

    def test_save_does_not_refetch_before_redirect(self, client, livingapps, sample_kostengruppe):
        """The redirect reloads the page, the handler itself only writes."""
        response = client.post(f'/kostengruppe/{sample_kostengruppe}/speichern', data={
            'kostengruppenname': 'Neu'
        })
        assert response.status_code == 302
        assert sorted(r.method for r in livingapps.requests) == ['GET', 'GET', 'GET', 'PATCH']
        assert livingapps.requests[-1].method == 'PATCH'

    def test_delete_does_not_refetch_before_redirect(self, client, livingapps, sample_uebergabe):
        response = client.post(f'/uebergabe/{sample_uebergabe}/loeschen')
        assert response.status_code == 302
        assert [r.method for r in livingapps.requests].count('GET') == 3
        assert livingapps.requests[-1].method == 'DELETE'

    def test_open_create_dialog(self, client):
        html = client.get('/?dialog=beleg').data.decode()
        assert 'id="beleg-dialog"' in html
        assert 'Neuen Beleg erfassen' in html

    def test_open_edit_dialog(self, client, sample_kostengruppe):
        html = client.get(f'/?dialog=kostengruppe&id={sample_kostengruppe}').data.decode()
        assert 'Kostengruppe bearbeiten' in html
        assert f'/kostengruppe/{sample_kostengruppe}/speichern' in html

    def test_open_delete_confirmation(self, client, sample_beleg):
        html = client.get(f'/?loeschen=beleg&id={sample_beleg}').data.decode()
        assert 'Beleg &#34;RE-2026-001&#34; wirklich löschen?' in html or 'Beleg "RE-2026-001" wirklich löschen?' in html

    def test_create_beleg_form(self, client, livingapps):
        response = client.post('/beleg/speichern', data={
            'belegdatum': '2026-04-01',
            'belegnummer': 'Q-1',
            'betrag': '8,40',
            'belegart': 'quittung',
            'kostengruppe': '',
        }, follow_redirects=True)
        assert response.status_code == 200
        assert 'Beleg erstellt' in response.data.decode()
        stored = list(livingapps.apps[APP_IDS.belege].values())[0]['fields']
        assert stored['betrag'] == 8.4
        assert 'kostengruppe' not in stored

    def test_save_failure_keeps_dialog(self, client, livingapps, sample_kostengruppe):
        """A rejected save re-renders the open dialog with the error."""
        livingapps.fail_with = (422, 'Name ungültig')
        livingapps.fail_on = {'PATCH'}

        response = client.post(f'/kostengruppe/{sample_kostengruppe}/speichern', data={
            'kostengruppenname': 'Neu'
        })
        assert response.status_code == 200
        html = response.data.decode()
        assert 'Fehler beim Speichern: Name ungültig' in html
        assert 'id="kostengruppe-dialog"' in html
        assert 'value="Neu"' in html

    def test_delete_form(self, client, livingapps, sample_uebergabe):
        response = client.post(f'/uebergabe/{sample_uebergabe}/loeschen', follow_redirects=True)
        assert response.status_code == 200
        assert 'Übergabe gelöscht' in response.data.decode()
        assert livingapps.apps[APP_IDS.uebergaben] == {}

    def test_unknown_entity_returns_404(self, client):
        response = client.post('/konto/speichern', data={})
        assert response.status_code == 404


class TestConfig:
    """Tests for environment configuration."""

    def test_missing_secret_key_logs_warning(self, monkeypatch, caplog):
        import app as app_module

        monkeypatch.delenv('SECRET_KEY', raising=False)
        with caplog.at_level(logging.WARNING):
            key = app_module.load_secret_key()
        assert key == app_module.DEV_SECRET_KEY
        assert 'SECRET_KEY nicht gesetzt' in caplog.text

    def test_secret_key_from_env(self, monkeypatch, caplog):
        import app as app_module

        monkeypatch.setenv('SECRET_KEY', 'produktiv-geheim')
        with caplog.at_level(logging.WARNING):
            assert app_module.load_secret_key() == 'produktiv-geheim'
        assert 'SECRET_KEY' not in caplog.text
