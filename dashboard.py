"""
Dashboard-Steuerung

Hält die geladenen Datensätze, den Ladezustand und den Zustand der
Dialoge. Nach jeder erfolgreichen Änderung wird die betroffene Sammlung
komplett neu geladen.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

import auswertung
from gateway import GatewayError, extract_record_id
from models import wire_value

logger = logging.getLogger(__name__)

# Anzahl Belege in der Kurzansicht ("Mehr anzeigen")
BELEGE_LIMIT = 5

TAUSENDER_PATTERN = re.compile(r'^[+-]?\d{1,3}(\.\d{3})+$')

ENTITAETEN = {
    'beleg': {
        'sammlung': 'belege',
        'titel': 'Beleg',
        'optional': ('belegdatum', 'belegnummer', 'belegbeschreibung', 'betrag',
                     'belegart', 'kostengruppe', 'notizen'),
    },
    'kostengruppe': {
        'sammlung': 'kostengruppen',
        'titel': 'Kostengruppe',
        'optional': ('kostengruppenname', 'kostengruppennummer', 'beschreibung'),
    },
    'uebergabe': {
        'sammlung': 'uebergaben',
        'titel': 'Übergabe',
        'optional': ('stichtag', 'periode_von', 'periode_bis', 'bemerkungen'),
    },
}


class LadeStatus(Enum):
    IDLE = 'idle'
    LOADING = 'loading'
    LOADED = 'loaded'
    FAILED = 'failed'


@dataclass
class DialogState:
    offen: bool = False
    datensatz: Any = None
    formular: Dict[str, str] = field(default_factory=dict)
    sendet: bool = False

    @property
    def bearbeiten(self):
        return self.datensatz is not None


@dataclass
class LoeschDialog:
    datensatz: Any = None
    beschreibung: str = ''
    loescht: bool = False

    @property
    def offen(self):
        return self.datensatz is not None


@dataclass
class Benachrichtigung:
    typ: str  # 'success' | 'error'
    text: str


def _datum_teil(value):
    return value.split('T')[0] if value else ''


def _text(value):
    return '' if value is None else str(value)


def seed_formular(entitaet, datensatz=None, heute=None):
    """Formularwerte beim Öffnen eines Dialogs, Vorgaben für neue Datensätze."""
    heute = heute or date.today()
    heute_str = heute.isoformat()

    if entitaet == 'beleg':
        b = datensatz
        betrag = ''
        if b is not None and b.betrag is not None:
            betrag = f"{b.betrag:.2f}"
        return {
            'belegdatum': _datum_teil(b.belegdatum) if b and b.belegdatum else heute_str,
            'belegnummer': _text(b.belegnummer) if b else '',
            'belegbeschreibung': _text(b.belegbeschreibung) if b else '',
            'betrag': betrag,
            'belegart': _text(wire_value(b.belegart)) if b else '',
            'kostengruppe': (extract_record_id(b.kostengruppe) or '') if b else '',
            'notizen': _text(b.notizen) if b else '',
        }

    if entitaet == 'kostengruppe':
        kg = datensatz
        return {
            'kostengruppenname': _text(kg.kostengruppenname) if kg else '',
            'kostengruppennummer': _text(kg.kostengruppennummer) if kg else '',
            'beschreibung': _text(kg.beschreibung) if kg else '',
        }

    if entitaet == 'uebergabe':
        u = datensatz
        monatsanfang = heute.replace(day=1).isoformat()
        return {
            'stichtag': _datum_teil(u.stichtag) if u and u.stichtag else heute_str,
            'periode_von': _datum_teil(u.periode_von) if u and u.periode_von else monatsanfang,
            'periode_bis': _datum_teil(u.periode_bis) if u and u.periode_bis else heute_str,
            'bemerkungen': _text(u.bemerkungen) if u else '',
        }

    raise KeyError(entitaet)


def parse_betrag_eingabe(value):
    """
    Betrag aus einem Formularfeld, akzeptiert '12,50', '1.234,56' und '12.50'.

    Ohne Komma gilt ein Punkt als Dezimalpunkt, außer er trennt
    Dreiergruppen wie in '1.234' oder '1.234.567' (Tausenderpunkte).
    """
    text = value.strip().replace(' ', '')
    if ',' in text or TAUSENDER_PATTERN.match(text):
        text = text.replace('.', '').replace(',', '.')
    try:
        return float(text)
    except ValueError:
        raise ValueError(f"Ungültiger Betrag: {value}")


def normalize_formular(entitaet, formular, gateway):
    """
    Bereitet Formularwerte für den Versand vor.

    Leere Strings werden weggelassen, damit ein Teil-Update bestehende
    Werte nicht mit '' überschreibt.
    """
    fields = {}
    for key in ENTITAETEN[entitaet]['optional']:
        value = formular.get(key)
        if isinstance(value, str):
            value = value.strip()
        if value is None or value == '':
            continue

        if key == 'betrag' and isinstance(value, str):
            value = parse_betrag_eingabe(value)
        elif key == 'kostengruppe':
            value = gateway.kostengruppen.record_url(extract_record_id(value) or value)
        fields[key] = value
    return fields


def loesch_beschreibung(entitaet, datensatz):
    """Text für den Bestätigungsdialog."""
    if entitaet == 'beleg':
        return f'Beleg "{datensatz.belegnummer or "-"}" wirklich löschen?'
    if entitaet == 'kostengruppe':
        return f'Kostengruppe "{datensatz.name}" wirklich löschen?'
    return f'Übergabe vom {auswertung.format_datum(datensatz.stichtag)} wirklich löschen?'


class DashboardController:
    """Zustand und Abläufe des Buchhaltungs-Dashboards."""

    def __init__(self, gateway, heute=None):
        self.gateway = gateway
        self.heute = heute

        self.belege: List = []
        self.kostengruppen: List = []
        self.uebergaben: List = []
        self.status = LadeStatus.IDLE
        self.fehler: Optional[str] = None

        self.dialoge = {name: DialogState() for name in ENTITAETEN}
        self.loesch_dialoge = {name: LoeschDialog() for name in ENTITAETEN}

        self.belegart_filter: Optional[str] = None
        self.alle_belege_anzeigen = False
        self.benachrichtigungen: List[Benachrichtigung] = []

    # --- Laden ---

    async def load_all(self):
        """Lädt alle drei Sammlungen parallel. Ein Fehler lässt den ganzen Ladevorgang scheitern."""
        self.status = LadeStatus.LOADING
        self.fehler = None
        ergebnisse = await asyncio.gather(
            self.gateway.belege.list(),
            self.gateway.kostengruppen.list(),
            self.gateway.uebergaben.list(),
            return_exceptions=True,
        )
        try:
            for ergebnis in ergebnisse:
                if isinstance(ergebnis, BaseException):
                    raise ergebnis
        except GatewayError as e:
            logger.error(f"Laden fehlgeschlagen: {e.message}")
            self.status = LadeStatus.FAILED
            self.fehler = e.message or 'Fehler beim Laden'
            return False

        self.belege, self.kostengruppen, self.uebergaben = ergebnisse
        self.status = LadeStatus.LOADED
        return True

    async def reload(self, entitaet):
        """Lädt die Sammlung einer Entität komplett neu."""
        sammlung = ENTITAETEN[entitaet]['sammlung']
        records = await self.gateway.collection(sammlung).list()
        setattr(self, sammlung, records)

    # --- Benachrichtigungen ---

    def notify(self, typ, text):
        self.benachrichtigungen.append(Benachrichtigung(typ, text))

    def pop_benachrichtigungen(self):
        meldungen, self.benachrichtigungen = self.benachrichtigungen, []
        return meldungen

    # --- Bearbeiten / Anlegen ---

    def open_dialog(self, entitaet, datensatz=None):
        """Öffnet den Formular-Dialog. datensatz=None bedeutet Neuanlage."""
        self.dialoge[entitaet] = DialogState(
            offen=True,
            datensatz=datensatz,
            formular=seed_formular(entitaet, datensatz, self.heute),
        )

    def close_dialog(self, entitaet):
        self.dialoge[entitaet] = DialogState()

    async def submit_dialog(self, entitaet, formular, neu_laden=True):
        """
        Sendet das Formular. Bei Erfolg schließt der Dialog und die
        Sammlung wird neu geladen, bei Fehler bleibt er mit den Eingaben offen.
        neu_laden=False überspringt das Neuladen (Redirect lädt ohnehin neu).
        """
        dialog = self.dialoge[entitaet]
        if not dialog.offen:
            self.open_dialog(entitaet)
            dialog = self.dialoge[entitaet]
        dialog.formular = {**dialog.formular, **formular}
        titel = ENTITAETEN[entitaet]['titel']
        aktion = 'Speichern' if dialog.bearbeiten else 'Erstellen'

        try:
            fields = normalize_formular(entitaet, dialog.formular, self.gateway)
        except ValueError as e:
            self.notify('error', f"Fehler beim {aktion}: {e}")
            return False

        sammlung = self.gateway.collection(ENTITAETEN[entitaet]['sammlung'])
        dialog.sendet = True
        try:
            if dialog.bearbeiten:
                await sammlung.update(dialog.datensatz.record_id, fields)
            else:
                await sammlung.create(fields)
        except GatewayError as e:
            self.notify('error', f"Fehler beim {aktion}: {e.message}")
            return False
        finally:
            dialog.sendet = False

        self.notify('success', f"{titel} {'aktualisiert' if dialog.bearbeiten else 'erstellt'}")
        self.close_dialog(entitaet)
        if neu_laden:
            await self._reload_after_write(entitaet)
        return True

    # --- Löschen ---

    def request_delete(self, entitaet, datensatz):
        self.loesch_dialoge[entitaet] = LoeschDialog(
            datensatz=datensatz,
            beschreibung=loesch_beschreibung(entitaet, datensatz),
        )

    def cancel_delete(self, entitaet):
        self.loesch_dialoge[entitaet] = LoeschDialog()

    async def confirm_delete(self, entitaet, neu_laden=True):
        """Löscht den vorgemerkten Datensatz. Bei Fehler bleibt der Dialog offen."""
        dialog = self.loesch_dialoge[entitaet]
        if not dialog.offen:
            return False

        titel = ENTITAETEN[entitaet]['titel']
        sammlung = self.gateway.collection(ENTITAETEN[entitaet]['sammlung'])
        dialog.loescht = True
        try:
            await sammlung.delete(dialog.datensatz.record_id)
        except GatewayError as e:
            self.notify('error', f"Fehler beim Löschen: {e.message}")
            return False
        finally:
            dialog.loescht = False

        self.notify('success', f"{titel} gelöscht")
        self.cancel_delete(entitaet)
        if neu_laden:
            await self._reload_after_write(entitaet)
        return True

    async def _reload_after_write(self, entitaet):
        try:
            await self.reload(entitaet)
        except GatewayError as e:
            logger.warning(f"Neuladen von {entitaet} fehlgeschlagen: {e.message}")
            self.notify('error', f"Fehler beim Laden: {e.message}")

    # --- Filter / Ansicht ---

    def set_filter(self, belegart=None):
        self.belegart_filter = None if not belegart or belegart == auswertung.ALLE else belegart

    def toggle_alle_belege(self):
        self.alle_belege_anzeigen = not self.alle_belege_anzeigen

    def find(self, entitaet, record_id):
        """Datensatz aus der geladenen Sammlung, None wenn nicht vorhanden."""
        for record in getattr(self, ENTITAETEN[entitaet]['sammlung']):
            if record.record_id == record_id:
                return record
        return None

    # --- Abgeleitete Ansichten ---

    @property
    def gefilterte_belege(self):
        return auswertung.filter_belege(self.belege, self.belegart_filter)

    @property
    def sichtbare_belege(self):
        belege = self.gefilterte_belege
        return belege if self.alle_belege_anzeigen else belege[:BELEGE_LIMIT]

    @property
    def sortierte_uebergaben(self):
        return auswertung.sortiere_uebergaben(self.uebergaben)

    @property
    def kostengruppen_map(self):
        return auswertung.kostengruppen_map(self.kostengruppen)

    @property
    def buchungen_pro_kostengruppe(self):
        return auswertung.buchungen_pro_kostengruppe(self.belege)

    @property
    def statistiken(self):
        return auswertung.statistiken(self.belege, self.kostengruppen, self.heute)
