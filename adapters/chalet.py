import logging
import re
from dataclasses import dataclass

import requests
from bs4 import BeautifulSoup

from errors import FetchError
from offers import Offer

from .base import BaseAdapter, RowDetail, VacancyObservation

log = logging.getLogger(__name__)

# Cloudflare answers 406 to clients without a browser user agent.
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/89.0.4389.90 Safari/537.36;"
)
DEFAULT_ROW = 3
REQUEST_TIMEOUT = 30


@dataclass(frozen=True)
class PageTarget:
    url: str
    row: int = DEFAULT_ROW


def parse_cell_text(cell_text: str) -> RowDetail:
    """
    Splits a vacancy table cell into its date and availability text.

    "2021-07-10\\tNO" -> RowDetail("2021-07-10", "NO", is_booked=True)
    """
    parts = [p.strip() for p in re.split(r"[\t\r\n]+", cell_text.strip())]
    parts = [p for p in parts if p]
    label = parts[0] if parts else ""
    value = " ".join(parts[1:])
    return RowDetail(label=label, value=value, is_booked=value == "" or "NO" in value)


def get_table_cells(html: str, starting_row: int) -> list[str]:
    soup = BeautifulSoup(html, "html.parser")
    cells = soup.select(f"table tr:nth-child(n+{starting_row}) td")
    return [td.get_text("\n") for td in cells]


def parse_page(html: str, starting_row: int) -> tuple[bool, list[RowDetail]]:
    details = [parse_cell_text(text) for text in get_table_cells(html, starting_row) if text.strip()]
    has_vacancy = any(not d.is_booked for d in details)
    return has_vacancy, details


class ChaletPageAdapter(BaseAdapter):
    kind = "chalet"

    def __init__(self, session: requests.Session = None):
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT, "Accept": "text/html"})

    def expand(self, target: PageTarget) -> list[Offer]:
        return [Offer(target.url)]

    def check(self, target: PageTarget, offers: list[Offer]) -> list[VacancyObservation]:
        html = self.fetch(target.url)
        has_vacancy, details = parse_page(html, target.row)
        log.debug("%s: %d row(s), vacancy=%s", target.url, len(details), has_vacancy)
        return [VacancyObservation(offer, has_vacancy, details) for offer in offers]

    def fetch(self, url: str) -> str:
        try:
            resp = self.session.get(url, timeout=REQUEST_TIMEOUT)
            resp.raise_for_status()
        except requests.RequestException as e:
            log.error("Error fetching url %s: %s", url, e)
            raise FetchError(url, str(e)) from e
        return resp.text
