"""Domain registry: which service and agency a government portal belongs to."""

import re
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

DOMAIN_TO_SERVICE_MAP: Dict[str, str] = {
    # ePassport
    "epassport.gov.bd": "svc.epassport",
    # NID (Election Commission)
    "nidw.gov.bd": "svc.nid",
    "services.nidw.gov.bd": "svc.nid",
    # Passport / immigration (DIP)
    "passport.gov.bd": "svc.passport",
    "dip.gov.bd": "svc.passport",
    "visa.gov.bd": "svc.visa",
    # Revenue (NBR)
    "etaxnbr.gov.bd": "svc.etax",
    "nbr.gov.bd": "svc.nbr",
    "customs.gov.bd": "svc.customs",
    # Road transport (BRTA)
    "bsp.brta.gov.bd": "svc.brta",
    "brta.gov.bd": "svc.brta",
    "bdpost.gov.bd": "svc.bdpost",
    "landadministration.gov.bd": "svc.land",
    "land.gov.bd": "svc.land",
    "teletalk.com.bd": "svc.teletalk",
    "bdris.gov.bd": "svc.bdris",
    "police.gov.bd": "svc.police",
}

SERVICE_NAMES: Dict[str, str] = {
    "svc.epassport": "Bangladesh e-Passport",
    "svc.nid": "National ID (NID) Services",
    "svc.passport": "Passport and Immigration Services",
    "svc.visa": "Visa Services",
    "svc.etax": "e-Tax Return Filing",
    "svc.nbr": "National Board of Revenue Services",
    "svc.customs": "Customs Services",
    "svc.brta": "BRTA Driving License and Vehicle Services",
    "svc.bdpost": "Bangladesh Post Office Services",
    "svc.land": "Land Administration Services",
    "svc.teletalk": "Teletalk Services",
    "svc.bdris": "Birth and Death Registration",
    "svc.police": "Police Clearance and Services",
}

_DIP = ("agency.dip", "Department of Immigration and Passports")
_BEC = ("agency.bec", "Bangladesh Election Commission")
_NBR = ("agency.nbr", "National Board of Revenue")
_BRTA = ("agency.brta", "Bangladesh Road Transport Authority")
_MOL = ("agency.mol", "Ministry of Land")

AGENCY_MAP: Dict[str, Tuple[str, str]] = {
    "passport.gov.bd": _DIP,
    "epassport.gov.bd": _DIP,
    "dip.gov.bd": _DIP,
    "visa.gov.bd": _DIP,
    "nidw.gov.bd": _BEC,
    "services.nidw.gov.bd": _BEC,
    "etaxnbr.gov.bd": _NBR,
    "nbr.gov.bd": _NBR,
    "customs.gov.bd": _NBR,
    "bsp.brta.gov.bd": _BRTA,
    "brta.gov.bd": _BRTA,
    "bdpost.gov.bd": ("agency.bpo", "Bangladesh Post Office"),
    "landadministration.gov.bd": _MOL,
    "land.gov.bd": _MOL,
    "teletalk.com.bd": ("agency.tt", "Teletalk Bangladesh Limited"),
    "bdris.gov.bd": ("agency.bdris", "Office of Registrar General, Birth and Death Registration"),
    "police.gov.bd": ("agency.bp", "Bangladesh Police"),
}

_SUFFIX_RE = re.compile(r"\.(gov|com|org)\.bd$", re.IGNORECASE)


def normalize_domain(domain: Optional[str]) -> str:
    """Lowercase and strip a leading ``www.``."""
    if not domain or not isinstance(domain, str):
        return ""
    domain = domain.strip().lower()
    if domain.startswith("www."):
        domain = domain[4:]
    return domain


def get_domain(url: str) -> str:
    """Hostname of a URL (lowercased, ``www.`` kept), or empty string."""
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def get_service_id(domain: Optional[str]) -> Optional[str]:
    """Canonical service id for a known domain, else None."""
    return DOMAIN_TO_SERVICE_MAP.get(normalize_domain(domain))


def derive_service_key(domain: Optional[str]) -> str:
    """
    Derive a service key for a domain outside the fixed map.

    ``bsp.example.gov.bd`` -> ``bsp_example``; empty input -> ``unknown``.
    """
    normalized = normalize_domain(domain)
    if not normalized:
        return "unknown"
    return _SUFFIX_RE.sub("", normalized).replace(".", "_")


def get_service_id_or_derive(domain: Optional[str]) -> str:
    canonical = get_service_id(domain)
    if canonical:
        return canonical
    return f"svc.{derive_service_key(domain)}"


def get_service_key(service_id: Optional[str]) -> str:
    """Strip the ``svc.`` prefix from a service id."""
    if not service_id or not isinstance(service_id, str):
        return "unknown"
    if service_id.startswith("svc."):
        return service_id[4:]
    return service_id


def get_service_name(service_id: str) -> str:
    if service_id in SERVICE_NAMES:
        return SERVICE_NAMES[service_id]
    return get_service_key(service_id).replace("_", " ").title()


def get_agency_for_domain(domain: Optional[str]) -> Tuple[str, str]:
    """
    Resolve the agency owning a domain.

    Returns:
        Tuple of (agency_id, agency_name). Unknown domains get a derived
        ``agency.<slug>`` id named after the domain itself.
    """
    clean = normalize_domain(domain)
    if clean in AGENCY_MAP:
        return AGENCY_MAP[clean]
    slug = re.sub(r"[^a-z0-9]", "_", clean) or "unknown"
    return f"agency.{slug}", clean or "unknown"
