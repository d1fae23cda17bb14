"""
Auswertungen für das Buchhaltungs-Dashboard

Reine Funktionen über die geladenen Belege, Kostengruppen und Übergaben.
"""

from datetime import date, datetime, timedelta

from gateway import extract_record_id
from models import Belegart, UNBENANNT, parse_belegart

# Deutsche Monatsnamen
MONAT_NAMEN = {
    1: 'Januar', 2: 'Februar', 3: 'März', 4: 'April',
    5: 'Mai', 6: 'Juni', 7: 'Juli', 8: 'August',
    9: 'September', 10: 'Oktober', 11: 'November', 12: 'Dezember'
}

EINNAHME_ARTEN = frozenset({Belegart.AUSGANGSRECHNUNG, Belegart.GUTSCHRIFT})
AUSGABE_ARTEN = frozenset(set(Belegart) - EINNAHME_ARTEN)

NICHT_ZUGEORDNET = 'Nicht zugeordnet'

ALLE = 'alle'


def parse_datum(value):
    """Parst ein ISO-Datum oder einen ISO-Zeitstempel, nur der Kalendertag zählt."""
    if not value:
        return None

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def _betrag(beleg):
    return beleg.betrag or 0


def gesamtbetrag(belege):
    """Summe aller Beträge, fehlende Beträge zählen als 0."""
    return sum(_betrag(b) for b in belege)


def einnahmen(belege):
    return sum(_betrag(b) for b in belege if parse_belegart(b.belegart) in EINNAHME_ARTEN)


def ausgaben(belege):
    return sum(_betrag(b) for b in belege if parse_belegart(b.belegart) in AUSGABE_ARTEN)


def belege_diese_woche(belege, heute=None):
    """Anzahl Belege mit Belegdatum in der aktuellen Woche (Montag bis Sonntag)."""
    heute = heute or date.today()
    wochenstart = heute - timedelta(days=heute.weekday())
    wochenende = wochenstart + timedelta(days=6)

    anzahl = 0
    for beleg in belege:
        datum = parse_datum(beleg.belegdatum)
        if datum and wochenstart <= datum <= wochenende:
            anzahl += 1
    return anzahl


def kostengruppen_map(kostengruppen):
    return {kg.record_id: kg for kg in kostengruppen}


def kostengruppe_name(beleg, kg_map):
    """Name der verknüpften Kostengruppe oder None, wenn der Verweis ins Leere zeigt."""
    kg_id = extract_record_id(beleg.kostengruppe)
    kg = kg_map.get(kg_id) if kg_id else None
    return kg.name if kg else None


def buchungen_pro_kostengruppe(belege):
    """Anzahl Belege je referenzierter Kostengruppen-ID."""
    counts = {}
    for beleg in belege:
        kg_id = extract_record_id(beleg.kostengruppe)
        if kg_id:
            counts[kg_id] = counts.get(kg_id, 0) + 1
    return counts


def kostengruppen_auswertung(belege, kostengruppen):
    """
    Summiert die Beträge je Kostengruppe.

    Belege ohne auflösbaren Verweis landen im Topf "Nicht zugeordnet",
    der nur bei einer Summe ungleich 0 am Ende angehängt wird.
    """
    kg_map = kostengruppen_map(kostengruppen)
    gruppen = {}
    offen = {'record_id': None, 'name': NICHT_ZUGEORDNET, 'summe': 0, 'anzahl': 0}

    for beleg in belege:
        kg_id = extract_record_id(beleg.kostengruppe)
        kg = kg_map.get(kg_id) if kg_id else None
        if kg is None:
            eintrag = offen
        else:
            eintrag = gruppen.setdefault(kg.record_id, {
                'record_id': kg.record_id,
                'name': kg.kostengruppenname or UNBENANNT,
                'summe': 0,
                'anzahl': 0
            })
        eintrag['summe'] += _betrag(beleg)
        eintrag['anzahl'] += 1

    ergebnis = sorted(gruppen.values(), key=lambda g: g['summe'], reverse=True)
    if offen['summe'] != 0:
        ergebnis.append(offen)
    return ergebnis


def monat_label(monat):
    """'2026-01' -> 'Januar 2026'"""
    jahr, nr = monat.split('-')
    return f"{MONAT_NAMEN[int(nr)]} {jahr}"


def monatsverlauf(belege):
    """Monatssummen (YYYY-MM) aufsteigend, Belege ohne Datum fallen heraus."""
    summen = {}
    for beleg in belege:
        datum = parse_datum(beleg.belegdatum)
        if not datum:
            continue
        monat = datum.strftime('%Y-%m')
        summen[monat] = summen.get(monat, 0) + _betrag(beleg)

    return [{
        'monat': monat,
        'label': monat_label(monat),
        'summe': round(summe, 2)
    } for monat, summe in sorted(summen.items())]


def tagesverlauf(belege, tage=30):
    """Tagessummen der letzten `tage` Buchungstage, Fallback auf das Anlagedatum."""
    summen = {}
    for beleg in belege:
        datum = parse_datum(beleg.belegdatum or beleg.createdat)
        if not datum:
            continue
        summen[datum] = summen.get(datum, 0) + _betrag(beleg)

    return [{
        'datum': datum.isoformat(),
        'label': datum.strftime('%d.%m'),
        'summe': round(summe, 2)
    } for datum, summe in sorted(summen.items())[-tage:]]


def filter_belege(belege, belegart=None):
    """
    Filtert nach Belegart (None oder 'alle' zeigt alles) und sortiert
    absteigend nach Belegdatum. Belege ohne Datum stehen am Ende.
    """
    if belegart and belegart != ALLE:
        gesucht = parse_belegart(belegart)
        belege = [b for b in belege if parse_belegart(b.belegart) == gesucht]
    return sorted(belege, key=lambda b: b.belegdatum or '', reverse=True)


def sortiere_uebergaben(uebergaben):
    return sorted(uebergaben, key=lambda u: u.stichtag or '', reverse=True)


def statistiken(belege, kostengruppen, heute=None):
    """Alle Kennzahlen des Dashboards in einem Dict."""
    return {
        'gesamtbetrag': round(gesamtbetrag(belege), 2),
        'einnahmen': round(einnahmen(belege), 2),
        'ausgaben': round(ausgaben(belege), 2),
        'anzahl': len(belege),
        'diese_woche': belege_diese_woche(belege, heute),
        'kostengruppen': [
            {**g, 'summe': round(g['summe'], 2)}
            for g in kostengruppen_auswertung(belege, kostengruppen)
        ],
        'monatlich': monatsverlauf(belege),
        'tagesverlauf': tagesverlauf(belege),
    }


# =============================================================================
# Formatierung
# =============================================================================

def format_currency(value):
    """Betrag im deutschen Format, z.B. 1.234,56 €"""
    if value is None:
        return '-'
    text = f"{value:,.2f}".replace(',', 'X').replace('.', ',').replace('X', '.')
    return f"{text} €"


def format_datum(value):
    """ISO-Datum als TT.MM.JJJJ, Rohwert wenn nicht parsebar."""
    if not value:
        return '-'
    datum = parse_datum(value)
    return datum.strftime('%d.%m.%Y') if datum else value
