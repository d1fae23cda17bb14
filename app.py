"""
Buchhaltungs-Manager - Flask Backend
"""

from flask import Flask, render_template, request, jsonify, redirect, url_for, flash, abort, current_app
from flask_restx import Api, Namespace, Resource, fields
from datetime import datetime
from dotenv import load_dotenv
import os

import auswertung
from dashboard import DashboardController, ENTITAETEN, LadeStatus, normalize_formular
from gateway import AppIds, GatewayConfig, GatewayError, LivingAppsGateway
from models import BELEGART_LABELS, PARSERS, belegart_label

load_dotenv()

app = Flask(__name__)

DEV_SECRET_KEY = 'dev-secret-change-me'


def load_secret_key():
    """SECRET_KEY aus der Umgebung, sonst Entwicklungs-Schlüssel mit Warnung."""
    key = os.environ.get('SECRET_KEY')
    if not key:
        app.logger.warning("SECRET_KEY nicht gesetzt, verwende unsicheren Entwicklungs-Schlüssel")
        return DEV_SECRET_KEY
    return key


app.secret_key = load_secret_key()

# Flask-RESTX API Setup (nur für /api/docs und /api/statistiken)
api = Api(app,
    version='1.0',
    title='Buchhaltungs-Manager API',
    description='API für Belegbuchungen, Kostengruppen und Steuerberater-Übergaben',
    doc='/api/docs',
    prefix='/api'  # Wichtig: API nur unter /api/* registrieren
)

# API Namespaces
statistiken_ns = Namespace('statistiken', description='Dashboard-Statistiken')
api.add_namespace(statistiken_ns, path='/statistiken')  # wird zu /api/statistiken durch prefix


# =============================================================================
# Konfiguration
# =============================================================================

def load_gateway_config():
    """Liest die Living-Apps-Verbindung aus der Umgebung (.env)."""
    cookies = None
    headers = None
    if os.environ.get('LIVINGAPPS_SESSION_COOKIE'):
        cookies = {'session': os.environ['LIVINGAPPS_SESSION_COOKIE']}
    if os.environ.get('LIVINGAPPS_API_KEY'):
        headers = {'X-API-Key': os.environ['LIVINGAPPS_API_KEY']}

    timeout = os.environ.get('LIVINGAPPS_TIMEOUT')

    return GatewayConfig(
        base_url=os.environ.get('LIVINGAPPS_BASE_URL', GatewayConfig.base_url),
        app_ids=AppIds(
            kostengruppen=os.environ.get('LIVINGAPPS_APP_KOSTENGRUPPEN', AppIds.kostengruppen),
            belege=os.environ.get('LIVINGAPPS_APP_BELEGE', AppIds.belege),
            uebergaben=os.environ.get('LIVINGAPPS_APP_UEBERGABEN', AppIds.uebergaben),
        ),
        cookies=cookies,
        headers=headers,
        timeout=float(timeout) if timeout else None,
    )


GATEWAY_CONFIG = load_gateway_config()

# Wird in Tests durch einen httpx.MockTransport ersetzt
TRANSPORT = None


def get_gateway():
    """Gateway mit aktueller Konfiguration."""
    return LivingAppsGateway(GATEWAY_CONFIG, transport=TRANSPORT, parsers=PARSERS)


app.add_template_filter(auswertung.format_currency, 'currency')
app.add_template_filter(auswertung.format_datum, 'datum')
app.add_template_filter(belegart_label, 'belegart')
app.add_template_global(auswertung.kostengruppe_name, 'kostengruppe_name')


# =============================================================================
# Dashboard (HTML)
# =============================================================================

def flash_benachrichtigungen(controller):
    for meldung in controller.pop_benachrichtigungen():
        flash(meldung.text, meldung.typ)


def apply_view_args(controller, args):
    """Überträgt Query-Parameter (Filter, Dialoge) auf den Controller."""
    controller.set_filter(args.get('belegart'))
    if args.get('alle') == '1':
        controller.toggle_alle_belege()

    record_id = args.get('id')

    entitaet = args.get('dialog')
    if entitaet in ENTITAETEN:
        datensatz = controller.find(entitaet, record_id) if record_id else None
        if record_id and datensatz is None:
            controller.notify('error', 'Datensatz nicht gefunden')
        else:
            controller.open_dialog(entitaet, datensatz)

    entitaet = args.get('loeschen')
    if entitaet in ENTITAETEN and record_id:
        datensatz = controller.find(entitaet, record_id)
        if datensatz is None:
            controller.notify('error', 'Datensatz nicht gefunden')
        else:
            controller.request_delete(entitaet, datensatz)


def render_dashboard(controller):
    flash_benachrichtigungen(controller)
    if controller.status == LadeStatus.FAILED:
        app.logger.error(f"Dashboard konnte nicht geladen werden: {controller.fehler}")
        return render_template('fehler.html', fehler=controller.fehler), 502

    return render_template(
        'index.html',
        c=controller,
        stats=controller.statistiken,
        belegarten=BELEGART_LABELS,
    )


@app.route('/')
async def index():
    """Serve main page."""
    controller = DashboardController(get_gateway())
    await controller.load_all()
    if controller.status == LadeStatus.LOADED:
        apply_view_args(controller, request.args)
    return render_dashboard(controller)


@app.route('/<entitaet>/speichern', methods=['POST'])
@app.route('/<entitaet>/<record_id>/speichern', methods=['POST'])
async def speichern(entitaet, record_id=None):
    """Formular eines Dialogs absenden (Neuanlage oder Bearbeitung)."""
    if entitaet not in ENTITAETEN:
        abort(404)

    controller = DashboardController(get_gateway())
    if not await controller.load_all():
        return render_dashboard(controller)

    datensatz = None
    if record_id:
        datensatz = controller.find(entitaet, record_id)
        if datensatz is None:
            flash('Datensatz nicht gefunden', 'error')
            return redirect(url_for('index'))

    controller.open_dialog(entitaet, datensatz)
    if await controller.submit_dialog(entitaet, request.form.to_dict(), neu_laden=False):
        app.logger.info(f"{ENTITAETEN[entitaet]['titel']} gespeichert")
        flash_benachrichtigungen(controller)
        return redirect(url_for('index'))

    return render_dashboard(controller)


@app.route('/<entitaet>/<record_id>/loeschen', methods=['POST'])
async def loeschen(entitaet, record_id):
    """Bestätigtes Löschen eines Datensatzes."""
    if entitaet not in ENTITAETEN:
        abort(404)

    controller = DashboardController(get_gateway())
    if not await controller.load_all():
        return render_dashboard(controller)

    datensatz = controller.find(entitaet, record_id)
    if datensatz is None:
        flash('Datensatz nicht gefunden', 'error')
        return redirect(url_for('index'))

    controller.request_delete(entitaet, datensatz)
    if await controller.confirm_delete(entitaet, neu_laden=False):
        app.logger.info(f"{ENTITAETEN[entitaet]['titel']} {record_id} gelöscht")
        flash_benachrichtigungen(controller)
        return redirect(url_for('index'))

    return render_dashboard(controller)


@app.route('/health')
async def health():
    """Health check endpoint."""
    try:
        await get_gateway().kostengruppen.list()
        livingapps_status = 'connected'
    except GatewayError:
        livingapps_status = 'error'

    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.now().isoformat(),
        'livingapps': livingapps_status
    })


# =============================================================================
# JSON API
# =============================================================================

def error_response(e):
    if isinstance(e, GatewayError):
        app.logger.error(f"Living-Apps-Fehler: {e.message}")
        return jsonify({'error': e.message}), 404 if e.status_code == 404 else 502
    return jsonify({'error': str(e)}), 400


def request_fields():
    """JSON-Body als Feld-Dict, akzeptiert auch {"fields": {...}}."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return {}
    if isinstance(data.get('fields'), dict):
        return data['fields']
    return data


async def list_records(sammlung, belegart=None):
    try:
        records = await get_gateway().collection(sammlung).list()
    except GatewayError as e:
        return error_response(e)
    if sammlung == 'belege':
        records = auswertung.filter_belege(records, belegart)
    elif sammlung == 'uebergaben':
        records = auswertung.sortiere_uebergaben(records)
    return jsonify([r.to_dict() for r in records])


async def get_record(sammlung, record_id):
    try:
        record = await get_gateway().collection(sammlung).get(record_id)
    except (GatewayError, ValueError) as e:
        return error_response(e)
    return jsonify(record.to_dict())


async def create_record(entitaet):
    data = request_fields()
    gateway = get_gateway()
    try:
        result = await gateway.collection(ENTITAETEN[entitaet]['sammlung']).create(
            normalize_formular(entitaet, data, gateway))
    except (GatewayError, ValueError) as e:
        return error_response(e)
    app.logger.info(f"{ENTITAETEN[entitaet]['titel']} erstellt")
    return jsonify({'success': True, 'result': result}), 201


async def update_record(entitaet, record_id):
    data = request_fields()
    gateway = get_gateway()
    try:
        result = await gateway.collection(ENTITAETEN[entitaet]['sammlung']).update(
            record_id, normalize_formular(entitaet, data, gateway))
    except (GatewayError, ValueError) as e:
        return error_response(e)
    return jsonify({'success': True, 'result': result})


async def delete_record(sammlung, record_id):
    try:
        await get_gateway().collection(sammlung).delete(record_id)
    except (GatewayError, ValueError) as e:
        return error_response(e)
    return jsonify({'success': True})


# --- Kostengruppen ---

@app.route('/api/kostengruppen', methods=['GET'])
async def get_kostengruppen():
    """Get all cost groups."""
    return await list_records('kostengruppen')


@app.route('/api/kostengruppen', methods=['POST'])
async def create_kostengruppe():
    return await create_record('kostengruppe')


@app.route('/api/kostengruppen/<record_id>', methods=['GET'])
async def get_kostengruppe(record_id):
    return await get_record('kostengruppen', record_id)


@app.route('/api/kostengruppen/<record_id>', methods=['PATCH'])
async def update_kostengruppe(record_id):
    return await update_record('kostengruppe', record_id)


@app.route('/api/kostengruppen/<record_id>', methods=['DELETE'])
async def delete_kostengruppe(record_id):
    return await delete_record('kostengruppen', record_id)


# --- Belege ---

@app.route('/api/belege', methods=['GET'])
async def get_belege():
    """Get all receipts, optionally filtered by belegart, newest first."""
    return await list_records('belege', request.args.get('belegart'))


@app.route('/api/belege', methods=['POST'])
async def create_beleg():
    return await create_record('beleg')


@app.route('/api/belege/<record_id>', methods=['GET'])
async def get_beleg(record_id):
    return await get_record('belege', record_id)


@app.route('/api/belege/<record_id>', methods=['PATCH'])
async def update_beleg(record_id):
    return await update_record('beleg', record_id)


@app.route('/api/belege/<record_id>', methods=['DELETE'])
async def delete_beleg(record_id):
    return await delete_record('belege', record_id)


# --- Übergaben ---

@app.route('/api/uebergaben', methods=['GET'])
async def get_uebergaben():
    """Get all accountant handovers, latest Stichtag first."""
    return await list_records('uebergaben')


@app.route('/api/uebergaben', methods=['POST'])
async def create_uebergabe():
    return await create_record('uebergabe')


@app.route('/api/uebergaben/<record_id>', methods=['GET'])
async def get_uebergabe(record_id):
    return await get_record('uebergaben', record_id)


@app.route('/api/uebergaben/<record_id>', methods=['PATCH'])
async def update_uebergabe(record_id):
    return await update_record('uebergabe', record_id)


@app.route('/api/uebergaben/<record_id>', methods=['DELETE'])
async def delete_uebergabe(record_id):
    return await delete_record('uebergaben', record_id)


@app.route('/api/belegarten', methods=['GET'])
def get_belegarten():
    """Get all known receipt kinds with labels."""
    return jsonify([{'wert': art.value, 'label': label} for art, label in BELEGART_LABELS.items()])


# =============================================================================
# Flask-RESTX API Endpoints
# =============================================================================

# API Models für Swagger-Dokumentation
kostengruppe_stat_model = api.model('KostengruppeStat', {
    'record_id': fields.String(description='Record-ID der Kostengruppe (leer = nicht zugeordnet)'),
    'name': fields.String(description='Anzeigename'),
    'summe': fields.Float(description='Gesamtbetrag'),
    'anzahl': fields.Integer(description='Anzahl Belege')
})

monat_stat_model = api.model('MonatStat', {
    'monat': fields.String(description='Monat im Format YYYY-MM'),
    'label': fields.String(description='Anzeigename, z.B. Januar 2026'),
    'summe': fields.Float(description='Gesamtbetrag')
})

tag_stat_model = api.model('TagStat', {
    'datum': fields.String(description='Datum im Format YYYY-MM-DD'),
    'label': fields.String(description='Anzeigename, z.B. 15.01'),
    'summe': fields.Float(description='Gesamtbetrag')
})

statistiken_model = api.model('Statistiken', {
    'gesamtbetrag': fields.Float(description='Summe aller Belege'),
    'einnahmen': fields.Float(description='Summe der Ausgangsrechnungen und Gutschriften'),
    'ausgaben': fields.Float(description='Summe aller übrigen bekannten Belegarten'),
    'anzahl': fields.Integer(description='Anzahl Belege'),
    'diese_woche': fields.Integer(description='Belege der aktuellen Woche'),
    'kostengruppen': fields.List(fields.Nested(kostengruppe_stat_model)),
    'monatlich': fields.List(fields.Nested(monat_stat_model)),
    'tagesverlauf': fields.List(fields.Nested(tag_stat_model))
})


@statistiken_ns.route('')
class StatistikenResource(Resource):
    @statistiken_ns.doc('get_statistiken')
    @statistiken_ns.marshal_with(statistiken_model)
    def get(self):
        """Liefert aggregierte Statistiken für das Dashboard"""
        controller = DashboardController(get_gateway())
        if not current_app.ensure_sync(controller.load_all)():
            statistiken_ns.abort(502, controller.fehler)
        return controller.statistiken


# =============================================================================
# Main
# =============================================================================

if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=5000)
