import argparse
import logging
import os
import sys
import time
from dataclasses import replace
from enum import Enum

import gspread

from adapters.campground import CampgroundAdapter
from adapters.chalet import ChaletPageAdapter
from config import CONFIG_FILE, load_config, load_creds, load_sheet_config
from errors import ConfigurationError, SubprocessError, VacancyWatchError
from ledger import LEDGER_FILE, CsvStore, Ledger, MemoryStore, NotificationRecord, open_sheet_store
from notifier import send_alert
from offers import Offer, dedupe, identity_key

log = logging.getLogger(__name__)


class Phase(Enum):
    IDLE = "Idle"
    LOADING_CONFIG = "LoadingConfig"
    FILTERING = "Filtering"
    SCRAPING = "Scraping"
    AGGREGATING = "Aggregating"
    NOTIFYING = "Notifying"
    RECORDING = "Recording"


def _enter(phase: Phase):
    log.debug("-> %s", phase.value)


def make_adapters(config) -> dict:
    return {
        "chalet": ChaletPageAdapter(),
        "campground": CampgroundAdapter(script=config.checker_script),
    }


def targets_of(config) -> list:
    """(adapter kind, target) pairs in configuration order."""
    return [("chalet", page) for page in config.pages] + [("campground", c) for c in config.campgrounds]


def pending_work(config, ledger: Ledger, adapters: dict) -> list:
    """
    Returns (adapter, target, offers) for every target that still has an offer
    at least one recipient has not been told about. Offers already seen earlier
    in the configuration are dropped.
    """
    seen = set()
    work = []
    for kind, target in targets_of(config):
        adapter = adapters[kind]
        offers = []
        for offer in adapter.expand(target):
            key = identity_key(offer)
            if key in seen:
                continue
            seen.add(key)
            if ledger.notified_everyone(config.recipients, offer):
                log.debug("Already notified everyone about %s, skipping", offer.source_url)
                continue
            offers.append(offer)
        if offers:
            work.append((adapter, target, offers))
    return work


def run(config, ledger: Ledger, adapters: dict, creds: dict, dry_run: bool = False) -> list:
    """
    One check-and-notify cycle. Returns the offers that were (or in dry-run, would be) sent.

    FetchError and DeliveryError propagate and end the run without touching the ledger.
    A failing campground checker only skips that search.
    """
    _enter(Phase.LOADING_CONFIG)
    ledger.refresh()
    recipients = list(config.recipients)
    if not recipients:
        log.info("No emails configured, skipping run")
        return []

    _enter(Phase.FILTERING)
    work = pending_work(config, ledger, adapters)

    _enter(Phase.SCRAPING)
    observations = []
    for adapter, target, offers in work:
        try:
            observations.extend(adapter.check(target, offers))
        except SubprocessError as e:
            log.error("Skipping %s search for %s: %s", adapter.kind, ", ".join(o.source_url for o in offers), e)

    _enter(Phase.AGGREGATING)
    vacant = dedupe([obs.offer for obs in observations if obs.has_vacancy])
    if not vacant:
        log.info("No sites with vacancies. Not sending notification.")
        return []

    if dry_run:
        print(f"[DRY RUN] Would alert {', '.join(recipients)} for {len(vacant)} offer(s):")
        for offer in vacant:
            print(f"  - {offer.source_url}")
        return vacant

    _enter(Phase.NOTIFYING)
    send_alert(creds, recipients, vacant)

    _enter(Phase.RECORDING)
    ledger.record_many([NotificationRecord(r, offer) for offer in vacant for r in recipients])
    return vacant


def run_forever(load_run_config, ledger: Ledger, creds: dict, adapters: dict = None,
                dry_run: bool = False, sleep=time.sleep, max_runs: int = None):
    """
    Runs once, or on a fixed interval when the configuration sets one.

    The delay is armed only after a run has fully finished, so runs never overlap.
    In interval mode a failed run is logged and the next tick starts fresh; in
    once-mode the error propagates to the caller. Unless adapters are passed in,
    they are rebuilt from every reloaded configuration.
    """
    rebuild = adapters is None
    config = load_run_config()
    if rebuild:
        adapters = make_adapters(config)
    if config.interval_seconds is None:
        run(config, ledger, adapters, creds, dry_run=dry_run)
        _enter(Phase.IDLE)
        return

    runs = 0
    while True:
        try:
            run(config, ledger, adapters, creds, dry_run=dry_run)
        except VacancyWatchError as e:
            log.error("Run failed, waiting for next tick: %s", e)
        _enter(Phase.IDLE)
        runs += 1
        if max_runs is not None and runs >= max_runs:
            return
        sleep(config.interval_seconds)
        try:
            config = load_run_config()
        except (ConfigurationError, OSError) as e:
            log.error("Could not reload configuration, keeping previous: %s", e)
            continue
        if rebuild:
            adapters = make_adapters(config)


def open_spreadsheet():
    key = os.environ.get("SPREADSHEET_KEY")
    if not key:
        raise ConfigurationError("Must set SPREADSHEET_KEY")
    client = gspread.service_account(filename=os.environ.get("GOOGLE_SERVICE_ACCOUNT_FILE", "service_account.json"))
    return client.open_by_key(key)


def build_ledger(kind: str, path: str, spreadsheet=None) -> Ledger:
    if kind == "memory":
        return Ledger(MemoryStore())
    if kind == "csv":
        return Ledger(CsvStore(path))
    return Ledger(open_sheet_store(spreadsheet or open_spreadsheet()))


def main(argv=None):
    parser = argparse.ArgumentParser(description="Lodging and campground vacancy notifier")
    parser.add_argument("--config", default=CONFIG_FILE, help="YAML config file (environment variables override it)")
    parser.add_argument("--sheet-config", action="store_true", help="Load settings from spreadsheet named ranges")
    parser.add_argument("--ledger", choices=["memory", "csv", "sheet"], default="csv", help="Where notifications are recorded")
    parser.add_argument("--ledger-path", default=LEDGER_FILE, help="CSV ledger file")
    parser.add_argument("--once", action="store_true", help="Run a single cycle even if an interval is configured")
    parser.add_argument("--dry-run", action="store_true", help="Check sources and print alerts, do not send or record")
    parser.add_argument("--test-notify", action="store_true", help="Send a test notification immediately and exit")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        creds = {} if args.dry_run else load_creds()
        spreadsheet = open_spreadsheet() if args.sheet_config or args.ledger == "sheet" else None
        if args.sheet_config:
            def loader():
                return load_sheet_config(spreadsheet)
        else:
            def loader():
                return load_config(args.config)

        if args.once:
            inner = loader

            def loader():
                config = inner()
                return replace(config, interval_seconds=None)

        if args.test_notify:
            config = loader()
            send_alert(creds, list(config.recipients), [Offer("https://www.recreation.gov")])
            return 0

        ledger = build_ledger(args.ledger, args.ledger_path, spreadsheet)
        run_forever(loader, ledger, creds, dry_run=args.dry_run)
    except VacancyWatchError as e:
        log.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
