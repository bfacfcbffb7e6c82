import ipaddress
from typing import Optional

import requests
from user_agents import parse as parse_ua

from qrsaas.app_logger import get_logger
from qrsaas.config import GEOIP_TIMEOUT_SECONDS, GEOIP_URL

logger = get_logger("enrichment")


def describe_device(ua_str: Optional[str]) -> dict:
    if not ua_str:
        return {}
    ua = parse_ua(ua_str)
    if ua.is_bot:
        device_type = "bot"
    elif ua.is_mobile:
        device_type = "mobile"
    elif ua.is_tablet:
        device_type = "tablet"
    else:
        device_type = "desktop"
    return {
        "device_type": device_type,
        "os": f"{ua.os.family} {ua.os.version_string}".strip(),
        "browser": f"{ua.browser.family} {ua.browser.version_string}".strip(),
    }


def _is_public_ip(ip: str) -> bool:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return address.is_global


def geolocate(ip: Optional[str], url: Optional[str] = None) -> dict:
    """Consulta best-effort de localização; qualquer falha devolve ``{}``."""
    url = url or GEOIP_URL
    if not url or not ip or not _is_public_ip(ip):
        return {}
    try:
        resp = requests.get(url.format(ip=ip), timeout=GEOIP_TIMEOUT_SECONDS)
        if resp.status_code != 200:
            return {}
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.warning("Geolocalização indisponível para %s: %s", ip, exc)
        return {}

    location = {
        "country": data.get("country_name") or data.get("country"),
        "region": data.get("region"),
        "city": data.get("city"),
        "latitude": data.get("latitude"),
        "longitude": data.get("longitude"),
    }
    return {k: v for k, v in location.items() if v is not None}


def enrich(ip: Optional[str], ua_str: Optional[str]) -> dict:
    details = describe_device(ua_str)
    details.update(geolocate(ip))
    return details
