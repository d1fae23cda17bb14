"""
Datenmodelle für Kostengruppen, Belegbuchungen und Steuerberater-Übergaben.

Die Feldnamen entsprechen den Feldern der Living-Apps-Datensätze.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional, Union


class Belegart(str, Enum):
    AUSGANGSRECHNUNG = 'ausgangsrechnung'
    QUITTUNG = 'quittung'
    KASSENBELEG = 'kassenbeleg'
    BANKBELEG = 'bankbeleg'
    GUTSCHRIFT = 'gutschrift'
    EINGANGSRECHNUNG = 'eingangsrechnung'
    SONSTIGER_BELEG = 'sonstiger_beleg'


BELEGART_LABELS = {
    Belegart.AUSGANGSRECHNUNG: 'Ausgangsrechnung',
    Belegart.QUITTUNG: 'Quittung',
    Belegart.KASSENBELEG: 'Kassenbeleg',
    Belegart.BANKBELEG: 'Bankbeleg',
    Belegart.GUTSCHRIFT: 'Gutschrift',
    Belegart.EINGANGSRECHNUNG: 'Eingangsrechnung',
    Belegart.SONSTIGER_BELEG: 'Sonstiger Beleg',
}

# Unbekannte Werte bleiben als roher String erhalten
BelegartWert = Union[Belegart, str]

UNBENANNT = 'Unbenannt'


def parse_belegart(value) -> Optional[BelegartWert]:
    """Bekannte Belegart oder der rohe Wert, None wenn leer."""
    if not value:
        return None
    try:
        return Belegart(value)
    except ValueError:
        return value


def belegart_label(value):
    """Anzeigename einer Belegart, Fallback auf den rohen Wert."""
    art = parse_belegart(value)
    if art is None:
        return ''
    if isinstance(art, Belegart):
        return BELEGART_LABELS[art]
    return art


def _parse_betrag(value):
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def wire_value(value):
    return value.value if isinstance(value, Belegart) else value


@dataclass
class Kostengruppe:
    record_id: str
    createdat: Optional[str] = None
    updatedat: Optional[str] = None
    kostengruppenname: Optional[str] = None
    kostengruppennummer: Optional[str] = None
    beschreibung: Optional[str] = None
    kostengruppenbild: Optional[str] = None

    @property
    def name(self):
        return self.kostengruppenname or UNBENANNT

    @classmethod
    def from_record(cls, record):
        fields = record.get('fields') or {}
        return cls(
            record_id=record.get('record_id'),
            createdat=record.get('createdat'),
            updatedat=record.get('updatedat'),
            kostengruppenname=fields.get('kostengruppenname'),
            kostengruppennummer=fields.get('kostengruppennummer'),
            beschreibung=fields.get('beschreibung'),
            kostengruppenbild=fields.get('kostengruppenbild'),
        )

    def to_dict(self):
        return asdict(self)


@dataclass
class Beleg:
    record_id: str
    createdat: Optional[str] = None
    updatedat: Optional[str] = None
    belegdatum: Optional[str] = None
    belegnummer: Optional[str] = None
    belegbeschreibung: Optional[str] = None
    betrag: Optional[float] = None
    belegart: Optional[BelegartWert] = None
    kostengruppe: Optional[str] = None
    belegdatei: Optional[str] = None
    notizen: Optional[str] = None

    @property
    def belegart_label(self):
        return belegart_label(self.belegart)

    @classmethod
    def from_record(cls, record):
        fields = record.get('fields') or {}
        return cls(
            record_id=record.get('record_id'),
            createdat=record.get('createdat'),
            updatedat=record.get('updatedat'),
            belegdatum=fields.get('belegdatum'),
            belegnummer=fields.get('belegnummer'),
            belegbeschreibung=fields.get('belegbeschreibung'),
            betrag=_parse_betrag(fields.get('betrag')),
            belegart=parse_belegart(fields.get('belegart')),
            kostengruppe=fields.get('kostengruppe'),
            belegdatei=fields.get('belegdatei'),
            notizen=fields.get('notizen'),
        )

    def to_dict(self):
        data = asdict(self)
        data['belegart'] = wire_value(self.belegart)
        return data


@dataclass
class Uebergabe:
    record_id: str
    createdat: Optional[str] = None
    updatedat: Optional[str] = None
    stichtag: Optional[str] = None
    periode_von: Optional[str] = None
    periode_bis: Optional[str] = None
    # Einzelner Verweis auf Belegbuchungen, wird nur durchgereicht
    uebergebene_buchungen: Optional[str] = None
    bemerkungen: Optional[str] = None

    @classmethod
    def from_record(cls, record):
        fields = record.get('fields') or {}
        return cls(
            record_id=record.get('record_id'),
            createdat=record.get('createdat'),
            updatedat=record.get('updatedat'),
            stichtag=fields.get('stichtag'),
            periode_von=fields.get('periode_von'),
            periode_bis=fields.get('periode_bis'),
            uebergebene_buchungen=fields.get('uebergebene_buchungen'),
            bemerkungen=fields.get('bemerkungen'),
        )

    def to_dict(self):
        return asdict(self)


PARSERS = {
    'kostengruppen': Kostengruppe.from_record,
    'belege': Beleg.from_record,
    'uebergaben': Uebergabe.from_record,
}
