import json
import logging
import subprocess
from dataclasses import dataclass, replace
from datetime import date

from errors import SubprocessError
from offers import Offer, park_url

from .base import BaseAdapter, RowDetail, VacancyObservation

log = logging.getLogger(__name__)

CHECKER_SCRIPT = "camping.py"
PYTHON = "python3"


@dataclass(frozen=True)
class CampgroundSearch:
    park_ids: tuple[str, ...]
    start: date
    end: date
    nights: int = 1

    @property
    def date_range(self) -> tuple[date, date]:
        return (self.start, self.end)


def build_command(script: str, park_ids: list[str], start: date, end: date, nights: int = 1) -> list[str]:
    return [
        PYTHON, script,
        "--start-date", start.isoformat(),
        "--end-date", end.isoformat(),
        "--parks", *park_ids,
        "--nights", str(nights),
        "--json-output",
    ]


def build_names_command(script: str, park_ids: list[str], start: date, end: date) -> list[str]:
    return [
        PYTHON, script,
        "--start-date", start.isoformat(),
        "--end-date", end.isoformat(),
        "--parks", *park_ids,
        "--get-park-names",
    ]


def parse_checker_output(stdout: str):
    """Returns the checker's JSON object, or None if stdout is not a JSON object."""
    try:
        parsed = json.loads(stdout)
    except (json.JSONDecodeError, TypeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def run_checker(cmd: list[str]) -> tuple:
    """Returns (exit code, parsed JSON object). Output that is not a JSON object is an error."""
    log.debug("Running %s", " ".join(cmd))
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise SubprocessError(None, str(e)) from e
    parsed = parse_checker_output(proc.stdout)
    if parsed is None:
        raise SubprocessError(proc.returncode, proc.stderr or proc.stdout)
    return proc.returncode, parsed


class CampgroundAdapter(BaseAdapter):
    """
    Asks the external recreation.gov campsite checker which parks have availability.

    The checker exits non-zero when nothing is available but still prints its JSON, so
    the exit code alone cannot tell "no availability" from a crash.
    """

    kind = "campground"

    def __init__(self, script: str = CHECKER_SCRIPT):
        self.script = script

    def expand(self, target: CampgroundSearch) -> list[Offer]:
        return [Offer(park_url(pid), target.date_range) for pid in target.park_ids]

    def check(self, target: CampgroundSearch, offers: list[Offer]) -> list[VacancyObservation]:
        ids_by_url = {park_url(pid): pid for pid in target.park_ids}
        park_ids = [ids_by_url[o.source_url] for o in offers]
        availability = self.lookup(park_ids, target.start, target.end, target.nights)
        names = {}
        available = [pid for pid in park_ids if pid in availability]
        if available:
            try:
                names = self.park_names(available, target.start, target.end)
            except SubprocessError as e:
                log.warning("Could not look up park names, using ids: %s", e)
        observations = []
        for offer, pid in zip(offers, park_ids):
            sites = availability.get(pid)
            details = [RowDetail(label=str(s), value="available", is_booked=False) for s in _as_list(sites)]
            if pid in availability:
                offer = replace(offer, name=names.get(pid) or pid)
            observations.append(VacancyObservation(offer, pid in availability, details))
        return observations

    def find_available(self, park_ids: list[str], start: date, end: date, nights: int = 1) -> list[Offer]:
        """Returns one offer per park with availability, tagged with the searched date range."""
        availability = self.lookup(park_ids, start, end, nights)
        return [Offer(park_url(pid), (start, end)) for pid in park_ids if pid in availability]

    def lookup(self, park_ids: list[str], start: date, end: date, nights: int = 1) -> dict:
        if not park_ids:
            return {}
        returncode, parsed = run_checker(build_command(self.script, park_ids, start, end, nights))
        if returncode != 0:
            log.info("No campground availability for park(s) %s", ", ".join(park_ids))
            return {}
        return {str(pid): sites for pid, sites in parsed.items()}

    def park_names(self, park_ids: list[str], start: date, end: date) -> dict:
        """Returns {park_id: park name} as reported by the checker."""
        if not park_ids:
            return {}
        returncode, parsed = run_checker(build_names_command(self.script, park_ids, start, end))
        if returncode != 0:
            raise SubprocessError(returncode, "park name lookup failed")
        return {str(pid): str(name) for pid, name in parsed.items() if name}


def _as_list(sites) -> list:
    if sites is None:
        return []
    if isinstance(sites, (list, tuple)):
        return list(sites)
    if isinstance(sites, dict):
        return list(sites)
    return [sites]
