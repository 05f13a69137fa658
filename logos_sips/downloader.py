import logging
from urllib.parse import quote

from .login import AuthenticatedSession

SIPS_PATH = "/custom/logosenergia/sips/index.php"
SIPS_REFERER_PATH = "/custom/logosenergia/sips/?cmd=t&"

logger = logging.getLogger("logos-sips.downloader")


def build_sips_url(session: AuthenticatedSession, cups: str) -> str:
    settings = session.client.settings
    return (
        settings.url(SIPS_PATH)
        + f"?cmd=search&Q_SUPPLY=Electricidad&Q_CUPS={quote(cups, safe='')}"
        + f"&LECTURAS_MEDIDAS=1&{session.tokens.query_string}"
    )


def fetch_sips_page(session: AuthenticatedSession, cups: str) -> str:
    """Run the SIPS search for one CUPS and return the raw HTML."""

    url = build_sips_url(session, cups)
    referer = session.client.settings.url(SIPS_REFERER_PATH) + session.tokens.query_string
    logger.info("Querying SIPS for CUPS %s", cups)
    response = session.client.get("sips query", url, headers={"Referer": referer})
    html = response.text
    logger.debug("SIPS page length=%s", len(html))
    return html
