import logging
import os
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

import requests
import yaml
from google.auth.exceptions import GoogleAuthError
from gspread.exceptions import GSpreadException

from adapters.campground import CHECKER_SCRIPT, CampgroundSearch
from adapters.chalet import DEFAULT_ROW, PageTarget
from errors import ConfigurationError

log = logging.getLogger(__name__)

CONFIG_FILE = "config.yaml"

# Named ranges read by the spreadsheet-backed deployment.
SHEET_RANGES = {
    "recipients": "Recipients",
    "pages": "ChaletUrls",
    "parks": "ParkIds",
    "start": "StartDate",
    "end": "EndDate",
    "interval": "IntervalSeconds",
}


@dataclass(frozen=True)
class RunConfiguration:
    recipients: tuple[str, ...] = ()
    pages: tuple[PageTarget, ...] = ()
    campgrounds: tuple[CampgroundSearch, ...] = ()
    interval_seconds: Optional[int] = None
    checker_script: str = CHECKER_SCRIPT


def split_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(v).strip() for v in value if str(v).strip()]


def parse_interval(value) -> Optional[int]:
    """Positive whole seconds, or None (run once) when absent or not a number."""
    if value is None or str(value).strip() == "":
        log.info("INTERVAL_SECONDS was not set, not setting interval")
        return None
    try:
        seconds = int(str(value).strip())
    except ValueError:
        log.info("INTERVAL_SECONDS was not a number, not setting interval")
        return None
    return seconds if seconds > 0 else None


def parse_date(value, name: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a YYYY-MM-DD date, got {value!r}")


def build_search(parks, start, end, nights=1) -> Optional[CampgroundSearch]:
    park_ids = split_list(parks)
    if not park_ids:
        return None
    if start in (None, "") or end in (None, ""):
        raise ConfigurationError("Campground parks are configured without a start and end date")
    start_date = parse_date(start, "start date")
    end_date = parse_date(end, "end date")
    if start_date >= end_date:
        raise ConfigurationError(f"Campground start date {start_date} must be before end date {end_date}")
    return CampgroundSearch(tuple(park_ids), start_date, end_date, parse_int(nights or 1, "nights"))


def parse_int(value, name: str) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a whole number, got {value!r}")


def parse_page(entry) -> PageTarget:
    if isinstance(entry, str):
        return PageTarget(entry, DEFAULT_ROW)
    if not isinstance(entry, dict) or not entry.get("url"):
        raise ConfigurationError(f"Page entries need a url, got {entry!r}")
    return PageTarget(str(entry["url"]).strip(), parse_int(entry.get("row", DEFAULT_ROW), "row"))


def load_config(path: str = CONFIG_FILE, environ: dict = None) -> RunConfiguration:
    """
    Reads the optional YAML file, then applies environment overrides.
    Called at the start of every run so edits take effect on the next tick.
    """
    environ = os.environ if environ is None else environ
    raw = {}
    if path and os.path.exists(path):
        with open(path) as f:
            try:
                raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    recipients = split_list(environ.get("RECEIVE_EMAIL_ADDRESS")) or split_list(raw.get("recipients"))

    if environ.get("CHALET_URLS"):
        pages = [PageTarget(url) for url in split_list(environ["CHALET_URLS"])]
    else:
        pages = [parse_page(p) for p in raw.get("pages") or []]

    if environ.get("CAMPGROUND_PARK_IDS"):
        searches = [build_search(
            environ["CAMPGROUND_PARK_IDS"],
            environ.get("CAMPGROUND_START_DATE"),
            environ.get("CAMPGROUND_END_DATE"),
        )]
    else:
        searches = [
            build_search(c.get("parks"), c.get("start"), c.get("end"), c.get("nights", 1))
            for c in raw.get("campgrounds") or []
        ]

    interval = environ.get("INTERVAL_SECONDS") or raw.get("interval_seconds")
    return RunConfiguration(
        recipients=tuple(recipients),
        pages=tuple(pages),
        campgrounds=tuple(s for s in searches if s is not None),
        interval_seconds=parse_interval(interval),
        checker_script=environ.get("CAMPGROUND_CHECKER") or raw.get("checker_script") or CHECKER_SCRIPT,
    )


def _range_values(spreadsheet, name: str) -> list[str]:
    try:
        rows = spreadsheet.values_get(name).get("values", [])
    except (GSpreadException, GoogleAuthError, requests.RequestException) as e:
        raise ConfigurationError(f"Cannot read named range {name}: {e}") from e
    return [str(cell).strip() for row in rows for cell in row if str(cell).strip()]


def load_sheet_config(spreadsheet, checker_script: str = CHECKER_SCRIPT) -> RunConfiguration:
    """Reads every setting from the spreadsheet's named ranges (see SHEET_RANGES)."""
    values = {key: _range_values(spreadsheet, name) for key, name in SHEET_RANGES.items()}
    search = build_search(
        values["parks"],
        values["start"][0] if values["start"] else None,
        values["end"][0] if values["end"] else None,
    )
    return RunConfiguration(
        recipients=tuple(values["recipients"]),
        pages=tuple(PageTarget(url) for url in values["pages"]),
        campgrounds=(search,) if search else (),
        interval_seconds=parse_interval(values["interval"][0] if values["interval"] else None),
        checker_script=checker_script,
    )


def load_creds(environ: dict = None) -> dict:
    environ = os.environ if environ is None else environ
    user = environ.get("SEND_EMAIL_USER")
    if not user:
        raise ConfigurationError("Must set SEND_EMAIL_USER")
    if environ.get("SEND_EMAIL_PASS"):
        return {"user": user, "password": environ["SEND_EMAIL_PASS"]}
    oauth = {
        "client_id": environ.get("GMAIL_CLIENT_ID"),
        "client_secret": environ.get("GMAIL_CLIENT_SECRET"),
        "refresh_token": environ.get("GMAIL_REFRESH_TOKEN"),
    }
    if not all(oauth.values()):
        raise ConfigurationError(
            "Must set SEND_EMAIL_PASS or GMAIL_CLIENT_ID, GMAIL_CLIENT_SECRET and GMAIL_REFRESH_TOKEN"
        )
    return {"user": user, **oauth}
