"""Shared portal fixtures for the SIPS tests."""

from typing import Dict, Optional

import requests
from requests.structures import CaseInsensitiveDict

from logos_sips.config import Settings

BASE_URL = "https://crm.example"
CUPS = "ES0021000000000001AB"

SETTINGS = Settings(base_url=BASE_URL, username="agent@logos", password="s3cr&t")

PRE_LOGIN_JS = """
var config = {
    CSRFTokenKey: "csrf_key",
    CSRFToken: "pre123",
    CSRFTokenString: "csrf_key=pre123",
};
"""

POST_LOGIN_JS = """
var config = {
    CSRFTokenKey: "csrf_key",
    CSRFToken: "post456",
    CSRFTokenString: "csrf_key=post456",
};
"""

SIPS_HTML = """
<html><body>
<form><input type="text" name="Q_CUPS" class="form-control" value="ES0021000000000001AB"></form>
<div class="panel-heading">Datos suministro</div>
<div class="panel-body">
<table class="table">
<tr><td>CUPS</td><td>ES0021000000000001AB</td></tr>
<tr><td>Tarifa</td><td> 3.0TD </td></tr>
<tr><td>Pot Cont P1</td><td>15.5</td></tr>
<tr><td>Pot Cont P2</td><td>15.5</td></tr>
<tr><td>Pot Cont P3</td><td>15.5</td></tr>
<tr><td>Pot Cont P4</td><td>15.5</td></tr>
<tr><td>Pot Cont P5</td><td>15.5</td></tr>
<tr><td>Pot Cont P6</td><td>20</td></tr>
</table>
</div>
<div class="panel-heading">Consumo (kWh)</div>
<table class="table">
<tr><th>P1</th><td>1.162</td></tr>
<tr><th>P2</th><td>2.340,50</td></tr>
<tr><th>Total</th><td>3.502,50</td></tr>
</table>
<div class="panel-heading">Lecturas de activa (últimas 20)</div>
<table class="table">
<thead><tr><th>Fecha</th><th>Tipo</th><th>P1</th><th>P2</th><th>P3</th><th>P4</th><th>P5</th><th>P6</th></tr></thead>
<tbody>
<tr><td>20/06/2024</td><td>Activa</td><td>999</td><td>999</td><td></td><td></td><td></td><td></td></tr>
<tr><td>15/07/2025</td><td>Activa</td><td>13.857</td><td>1.000</td><td>0</td><td></td><td></td><td></td></tr>
<tr><td>10/08/2024</td><td>Activa</td><td>50</td><td></td><td></td><td></td><td></td><td></td></tr>
<tr><td>03/07/2025</td><td>Activa</td><td>100</td><td>200</td><td></td><td></td><td></td><td></td></tr>
</tbody>
</table>
<div class="panel-heading">Lecturas de reactiva (últimas 20)</div>
<table class="table">
<tbody>
<tr><td>15/07/2025</td><td>Reactiva</td><td>1.234</td><td></td><td></td><td></td><td></td><td></td></tr>
</tbody>
</table>
<div class="panel-heading">Lecturas de maxímetro (últimas 20)</div>
<table class="table">
<tbody>
<tr><td>12/05/2025</td><td>Maxímetro</td><td>3.5</td><td>10</td><td></td><td></td><td></td><td></td></tr>
<tr><td>12/07/2025</td><td>Maxímetro</td><td>4.844</td><td>140</td><td></td><td></td><td></td><td></td></tr>
</tbody>
</table>
</body></html>
"""

EXPECTED_RESULT = {
    "CUPS": CUPS,
    "Tarifa": "3.0TD",
    "PotContratada": {"P1": 15.5, "P2": 15.5, "P3": 15.5, "P4": 15.5, "P5": 15.5, "P6": 20},
    "ConsumoAnual": {"P1": 1162, "P2": 2340.5},
    "ConsumoMensual": {
        "07/25": {"P1": 13957, "P2": 1200, "P3": 0, "P4": 0, "P5": 0, "P6": 0},
        "08/24": {"P1": 50, "P2": 0, "P3": 0, "P4": 0, "P5": 0, "P6": 0},
    },
    "PotenciaConsumida": {
        "07/25": {"P1": 4.844, "P2": 140, "P3": 0, "P4": 0, "P5": 0, "P6": 0},
        "05/25": {"P1": 3.5, "P2": 10, "P3": 0, "P4": 0, "P5": 0, "P6": 0},
    },
}

LOGIN_PAGE_HTML = """
<html><body><form method="post">
<input type="hidden" name="cmd" value="login">
<input type="text" name="userLogin"><input type="password" name="userPassword">
<button>Iniciar sesión</button>
</form></body></html>
"""


def make_response(
    status: int = 200,
    text: str = "",
    headers: Optional[Dict[str, str]] = None,
    url: Optional[str] = None,
) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response._content = text.encode("utf-8")
    response._content_consumed = True
    response.encoding = "utf-8"
    response.headers = CaseInsensitiveDict(headers or {})
    response.url = url
    return response


def login_responses():
    """The five responses of a successful portal login, in call order."""
    return [
        make_response(headers={"Set-Cookie": "PHPSESSID=anon; path=/; HttpOnly"}),
        make_response(text=PRE_LOGIN_JS),
        make_response(
            302,
            headers={
                "Location": "/inicio",
                "Set-Cookie": (
                    "PHPSESSID=auth; path=/; HttpOnly, "
                    "remember=1; expires=Wed, 21 Oct 2026 07:28:00 GMT; path=/"
                ),
            },
        ),
        make_response(text="<html>inicio</html>", headers={"Set-Cookie": "lang=es; path=/"}),
        make_response(text=POST_LOGIN_JS),
    ]


class SteppingClock:
    """Monotonic clock stand-in: returns the given readings, then repeats the last."""

    def __init__(self, *readings: float) -> None:
        self._readings = list(readings)

    def __call__(self) -> float:
        if len(self._readings) > 1:
            return self._readings.pop(0)
        return self._readings[0]
