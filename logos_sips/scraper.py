import json
import logging
from dataclasses import dataclass, field
from typing import Optional

import requests

from .config import Settings, load_settings
from .downloader import fetch_sips_page
from .login import create_authenticated_session
from .parser import aggregate_monthly, build_final_result, looks_like_login_page, parse_sips_page

NOT_FOUND_REASON = "No se han encontrado datos para ese CUPS, o la sesión de login ha fallado."

logger = logging.getLogger("logos-sips.scraper")


@dataclass
class SipsLookup:
    """Outcome of one CUPS lookup: a result record, or the reason there is none."""

    result: Optional[dict] = None
    reason: Optional[str] = None
    debug: dict = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.result is not None


def collect_sips_data(
    cups: str,
    settings: Optional[Settings] = None,
    session: Optional[requests.Session] = None,
) -> SipsLookup:
    """Log into the CRM, run the SIPS search for *cups* and shape the answer.

    Raises ConfigurationError before any request when credentials are
    missing, and UpstreamTransportError for network or HTTP failures. An
    empty "Datos suministro" table is a normal not-found outcome.
    """

    settings = settings or load_settings()
    logger.info("collect_sips_data: starting lookup for CUPS %s", cups)

    authenticated = create_authenticated_session(settings, session=session)
    try:
        html = fetch_sips_page(authenticated, cups)
    finally:
        authenticated.client.close()

    parsed = parse_sips_page(html)
    result = build_final_result(
        supply=parsed["supply"],
        consumption=parsed["consumption"],
        monthly_consumption=aggregate_monthly(parsed["active"]),
        consumed_power=aggregate_monthly(parsed["maximeter"]),
        requested_cups=cups,
        echoed_cups=parsed["echoed_cups"],
    )

    if result is None:
        login_page = looks_like_login_page(html)
        if login_page:
            logger.warning("SIPS answered with the login page; the portal login likely failed")
        else:
            logger.info("No supply data for CUPS %s", cups)
        return SipsLookup(
            reason=NOT_FOUND_REASON,
            debug={
                "cups": cups,
                "login_page": login_page,
                "csrf_complete": authenticated.tokens.complete,
                "html_length": len(html),
            },
        )

    logger.info(
        "collect_sips_data: done. months consumo=%s potencia=%s",
        len(result["ConsumoMensual"]),
        len(result["PotenciaConsumida"]),
    )
    return SipsLookup(result=result)


if __name__ == "__main__":
    import sys

    from .config import configure_logging

    if len(sys.argv) != 2:
        raise SystemExit("usage: python -m logos_sips.scraper <CUPS>")

    cli_settings = load_settings()
    configure_logging(cli_settings)
    lookup = collect_sips_data(sys.argv[1], cli_settings)
    if lookup.found:
        print(json.dumps([lookup.result], ensure_ascii=False, indent=2))
    else:
        print(json.dumps({"ok": False, "reason": lookup.reason, "debug": lookup.debug}, ensure_ascii=False, indent=2))
        raise SystemExit(1)
