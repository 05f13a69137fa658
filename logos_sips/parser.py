import enum
import logging
import re
from datetime import date
from typing import Dict, List, Optional, Tuple, Union

from bs4 import BeautifulSoup
from dateutil.relativedelta import relativedelta

logger = logging.getLogger("logos-sips.parser")

Number = Union[int, float]

PERIODS = ("P1", "P2", "P3", "P4", "P5", "P6")
TOTAL_KEY = "Total"

HEADING_SUPPLY = "Datos suministro"
HEADING_CONSUMPTION = "Consumo (kWh)"
HEADING_ACTIVE = "Lecturas de activa (últimas 20)"
HEADING_REACTIVE = "Lecturas de reactiva (últimas 20)"
HEADING_MAXIMETER = "Lecturas de maxímetro (últimas 20)"

_PLAIN_NUMBER_RE = re.compile(r"^[-+]?(?:\d+(?:\.\d*)?|\.\d+)$")
_LEADING_NUMBER_RE = re.compile(r"^\s*([-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?)")
_ECHOED_CUPS_RE = re.compile(r'name="Q_CUPS"[^>]*value="([^"]+)"')
_LOGIN_MARKERS = ('name="userLogin"', "cmd=login", "Iniciar sesión")

# ---------- primitive parsers ----------


def _as_number(value: float) -> Number:
    return int(value) if value.is_integer() else value


def _to_number(cleaned: str, original: str) -> Optional[Number]:
    if not _PLAIN_NUMBER_RE.match(cleaned):
        logger.debug("Failed to parse number from %r", original)
        return None
    return _as_number(float(cleaned))


def parse_thousands_locale(text: Optional[str]) -> Optional[Number]:
    """Spanish convention: '.' groups thousands, ',' marks decimals.

    '1.162' -> 1162, '1.162,50' -> 1162.5, '' -> 0.
    """

    value = (text or "").strip()
    if not value:
        return 0
    return _to_number(value.replace(".", "").replace(",", ".", 1), text)


def parse_decimals_locale(text: Optional[str]) -> Optional[Number]:
    """'.' is the decimal point and any ',' is a thousands separator.

    '4.844' -> 4.844, '140' -> 140, '' -> 0.
    """

    value = (text or "").strip()
    if not value:
        return 0
    return _to_number(value.replace(",", ""), text)


def parse_leading_decimal(text: Optional[str]) -> Optional[Number]:
    """Read the number at the start of *text*, ignoring whatever trails it.

    Used for contracted power values such as '4.6' or '4.6 kW'.
    """

    match = _LEADING_NUMBER_RE.match(text or "")
    if not match:
        logger.debug("No leading number in %r", text)
        return None
    return _as_number(float(match.group(1)))


def _parse_dmy(text: str) -> Optional[date]:
    parts = (text or "").strip().split("/")
    if len(parts) != 3:
        return None
    try:
        day, month, year = (int(p) for p in parts)
    except ValueError:
        return None
    if year < 100:
        year += 2000
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _cell_text(cell) -> str:
    return cell.get_text().strip()


# ---------- table location ----------


class TableScan(enum.Enum):
    FOUND = "found"
    HEADING_MISSING = "heading_missing"
    TABLE_MISSING = "table_missing"
    TABLE_UNTERMINATED = "table_unterminated"


def scan_named_table(html: str, heading: str) -> Tuple[TableScan, Optional[str]]:
    """Find the ``<table>...</table>`` that follows a ``<div>heading</div>``.

    This is a plain substring scan tied to the SIPS page layout, where each
    panel heading is a div followed by its table. It is not a general HTML
    parser.
    """

    html = html or ""
    heading_at = html.find(f">{heading}</div>")
    if heading_at == -1:
        return TableScan.HEADING_MISSING, None
    table_start = html.find("<table", heading_at)
    if table_start == -1:
        return TableScan.TABLE_MISSING, None
    table_end = html.find("</table>", table_start)
    if table_end == -1:
        return TableScan.TABLE_UNTERMINATED, None
    return TableScan.FOUND, html[table_start : table_end + len("</table>")]


def locate_named_table(html: str, heading: str) -> Optional[str]:
    status, fragment = scan_named_table(html, heading)
    if status is TableScan.HEADING_MISSING:
        logger.debug("Heading %r not present in page", heading)
    elif status is not TableScan.FOUND:
        logger.warning("Heading %r found but its table is unusable (%s)", heading, status.value)
    return fragment


# ---------- HTML table parsing ----------


def parse_key_value_table(table_html: Optional[str]) -> Dict[str, str]:
    """Two-column label/value table -> flat dict (later labels win)."""

    out: Dict[str, str] = {}
    if not table_html:
        return out

    soup = BeautifulSoup(table_html, "html.parser")
    for tr in soup.find_all("tr"):
        tds = tr.find_all("td", recursive=False)
        if len(tds) < 2:
            continue
        label = _cell_text(tds[0])
        if label:
            out[label] = _cell_text(tds[1])

    logger.info("Parsed %s supply fields", len(out))
    return out


def parse_annual_consumption_table(table_html: Optional[str]) -> Dict[str, Optional[Number]]:
    """Period -> kWh. The 'Total' row is kept under its own key."""

    consumption: Dict[str, Optional[Number]] = {}
    if not table_html:
        return consumption

    soup = BeautifulSoup(table_html, "html.parser")
    for tr in soup.find_all("tr"):
        cells = tr.find_all(["th", "td"], recursive=False)
        if len(cells) != 2:
            continue
        period = _cell_text(cells[0])
        if not period:
            continue
        consumption[period] = parse_thousands_locale(_cell_text(cells[1]))

    logger.info("Parsed %s annual consumption rows", len(consumption))
    return consumption


def _parse_readings_table(table_html: Optional[str], parse_number) -> List[dict]:
    readings: List[dict] = []
    if not table_html:
        return readings

    soup = BeautifulSoup(table_html, "html.parser")
    body = soup.find("tbody")
    if body is None:
        logger.debug("Readings table has no tbody")
        return readings

    for tr in body.find_all("tr"):
        tds = tr.find_all("td", recursive=False)
        if len(tds) < 2:
            continue
        values = [parse_number(_cell_text(td)) for td in tds[2:]]
        row = {"date": _cell_text(tds[0]), "kind": _cell_text(tds[1])}
        for i, period in enumerate(PERIODS):
            row[period] = values[i] if i < len(values) else None
        readings.append(row)

    return readings


def parse_readings_thousands(table_html: Optional[str]) -> List[dict]:
    """Readings where '.' groups thousands (Activa, Reactiva)."""
    return _parse_readings_table(table_html, parse_thousands_locale)


def parse_readings_decimals(table_html: Optional[str]) -> List[dict]:
    """Readings where '.' is the decimal point (Maxímetro)."""
    return _parse_readings_table(table_html, parse_decimals_locale)


# ---------- aggregation ----------


def month_key(day: date) -> str:
    return f"{day.month:02d}/{day.year % 100:02d}"


def aggregate_monthly(readings: List[dict]) -> Dict[str, Dict[str, Number]]:
    """Sum readings per 'MM/YY' over the 12 calendar months ending at the newest one.

    Months without readings are left out rather than zero-filled.
    """

    if not readings:
        return {}

    dated = []
    for row in readings:
        parsed = _parse_dmy(row.get("date", ""))
        if parsed is None:
            logger.debug("Skipping reading with unparseable date %r", row.get("date"))
            continue
        dated.append((parsed, row))
    if not dated:
        return {}

    dated.sort(key=lambda item: item[0], reverse=True)
    newest = dated[0][0]
    cutoff = date(newest.year, newest.month, 1) - relativedelta(months=11)

    aggregation: Dict[str, Dict[str, Number]] = {}
    for day, row in dated:
        # sorted newest first, so everything after this is older too
        if day < cutoff:
            break
        bucket = aggregation.setdefault(month_key(day), {p: 0 for p in PERIODS})
        for period in PERIODS:
            value = row.get(period)
            if value:
                bucket[period] += value

    logger.debug(
        "Aggregated %s readings into %s months (cutoff %s)",
        len(dated),
        len(aggregation),
        cutoff.isoformat(),
    )
    return aggregation


# ---------- page level ----------


def extract_echoed_cups(html: str) -> Optional[str]:
    match = _ECHOED_CUPS_RE.search(html or "")
    return match.group(1) if match else None


def looks_like_login_page(html: str) -> bool:
    return any(marker in (html or "") for marker in _LOGIN_MARKERS)


def parse_sips_page(html: str) -> dict:
    """Split the SIPS result page into its tables and parse each one."""

    supply = parse_key_value_table(locate_named_table(html, HEADING_SUPPLY))
    consumption = parse_annual_consumption_table(locate_named_table(html, HEADING_CONSUMPTION))
    active = parse_readings_thousands(locate_named_table(html, HEADING_ACTIVE))
    reactive = parse_readings_thousands(locate_named_table(html, HEADING_REACTIVE))
    maximeter = parse_readings_decimals(locate_named_table(html, HEADING_MAXIMETER))

    logger.info(
        "Parsed readings: activa=%s reactiva=%s maximetro=%s",
        len(active),
        len(reactive),
        len(maximeter),
    )
    return {
        "supply": supply,
        "consumption": consumption,
        "active": active,
        "reactive": reactive,
        "maximeter": maximeter,
        "echoed_cups": extract_echoed_cups(html),
    }


# ---------- data shaping ----------


def build_final_result(
    supply: Dict[str, str],
    consumption: Dict[str, Optional[Number]],
    monthly_consumption: Dict[str, Dict[str, Number]],
    consumed_power: Dict[str, Dict[str, Number]],
    requested_cups: str,
    echoed_cups: Optional[str] = None,
) -> Optional[dict]:
    """Assemble the record returned to callers, or None when there is no supply data."""

    if not supply:
        return None

    contracted_power = {}
    for period in PERIODS:
        raw = supply.get(f"Pot Cont {period}")
        contracted_power[period] = parse_leading_decimal(raw) if raw else 0

    annual = {k: v for k, v in consumption.items() if k != TOTAL_KEY}

    return {
        "CUPS": echoed_cups or supply.get("CUPS") or requested_cups,
        "Tarifa": supply.get("Tarifa"),
        "PotContratada": contracted_power,
        "ConsumoAnual": annual,
        "ConsumoMensual": monthly_consumption,
        "PotenciaConsumida": consumed_power,
    }
