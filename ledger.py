import csv
import logging
import os
from dataclasses import dataclass
from datetime import date

import requests
from google.auth.exceptions import GoogleAuthError
from gspread.exceptions import GSpreadException

from errors import LedgerReadError, LedgerWriteError
from offers import Offer, identity_key

log = logging.getLogger(__name__)

HEADER = ["recipient", "sourceUrl", "startDate", "endDate"]
LEDGER_FILE = "notified.csv"
LEDGER_WORKSHEET = "Notified"


@dataclass(frozen=True)
class NotificationRecord:
    recipient: str
    offer: Offer


def record_to_row(record: NotificationRecord) -> list[str]:
    offer = record.offer
    start = offer.start_date.isoformat() if offer.start_date else ""
    end = offer.end_date.isoformat() if offer.end_date else ""
    return [record.recipient, offer.source_url, start, end]


def row_to_record(row: list) -> NotificationRecord:
    cells = [str(c).strip() for c in row] + [""] * (len(HEADER) - len(row))
    recipient, url, start, end = cells[:4]
    if not recipient or not url:
        raise ValueError(f"incomplete ledger row: {row!r}")
    # Half-dated rows would never match a real offer; treat them as malformed.
    if bool(start) != bool(end):
        raise ValueError(f"ledger row has only one of startDate/endDate: {row!r}")
    date_range = (date.fromisoformat(start), date.fromisoformat(end)) if start else None
    return NotificationRecord(recipient, Offer(url, date_range))


# ── Backing stores ─────────────────────────────────────────────────────────────
# A store exposes read_rows() -> data rows without the header, and append_rows(rows).


class MemoryStore:
    def __init__(self, rows: list = None):
        self.rows = [list(r) for r in rows or []]

    def read_rows(self) -> list[list[str]]:
        return [list(r) for r in self.rows]

    def append_rows(self, rows: list[list[str]]):
        self.rows.extend(list(r) for r in rows)


class CsvStore:
    def __init__(self, path: str = LEDGER_FILE):
        self.path = path

    def read_rows(self) -> list[list[str]]:
        try:
            with open(self.path, newline="") as f:
                rows = list(csv.reader(f))
        except FileNotFoundError:
            return []
        except (OSError, csv.Error) as e:
            raise LedgerReadError(f"cannot read {self.path}: {e}") from e
        if rows and rows[0] == HEADER:
            rows = rows[1:]
        return [r for r in rows if any(cell.strip() for cell in r)]

    def append_rows(self, rows: list[list[str]]):
        try:
            new_file = not os.path.exists(self.path) or os.path.getsize(self.path) == 0
            with open(self.path, "a", newline="") as f:
                writer = csv.writer(f)
                if new_file:
                    writer.writerow(HEADER)
                writer.writerows(rows)
        except (OSError, csv.Error) as e:
            raise LedgerWriteError(f"cannot append to {self.path}: {e}") from e


class SheetStore:
    """Ledger rows kept in a gspread worksheet whose first row is the header."""

    def __init__(self, worksheet):
        self.worksheet = worksheet

    def read_rows(self) -> list[list[str]]:
        try:
            values = self.worksheet.get_all_values()
        except (GSpreadException, GoogleAuthError, requests.RequestException) as e:
            raise LedgerReadError(f"cannot read worksheet: {e}") from e
        return [r for r in values[1:] if any(str(cell).strip() for cell in r)]

    def append_rows(self, rows: list[list[str]]):
        try:
            self.worksheet.append_rows(rows, value_input_option="RAW")
        except (GSpreadException, GoogleAuthError, requests.RequestException) as e:
            raise LedgerWriteError(f"cannot append to worksheet: {e}") from e


def open_sheet_store(spreadsheet, worksheet_name: str = LEDGER_WORKSHEET) -> SheetStore:
    return SheetStore(spreadsheet.worksheet(worksheet_name))


# ── Ledger ─────────────────────────────────────────────────────────────────────


class Ledger:
    """
    Authoritative record of which recipients were already told about which offers.

    The whole store is read once per run by refresh(); lookups hit the in-memory index.
    Reads fail open (an unreachable store looks empty) and writes are best-effort,
    because a write only ever happens after an email has already gone out.
    """

    def __init__(self, store):
        self.store = store
        self._index = set()

    def load_all(self) -> list[NotificationRecord]:
        try:
            rows = self.store.read_rows()
        except LedgerReadError as e:
            log.error("Ledger read failed, treating as nothing notified: %s", e)
            return []
        records = []
        for row in rows:
            try:
                records.append(row_to_record(row))
            except ValueError as e:
                log.warning("Skipping unreadable ledger row: %s", e)
        return records

    def refresh(self):
        self._index = {(r.recipient, identity_key(r.offer)) for r in self.load_all()}
        log.debug("Ledger holds %d notification(s)", len(self._index))

    def has_been_notified(self, recipient: str, offer: Offer) -> bool:
        return (recipient, identity_key(offer)) in self._index

    def notified_everyone(self, recipients: list[str], offer: Offer) -> bool:
        return all(self.has_been_notified(r, offer) for r in recipients)

    def record_notified(self, recipient: str, offer: Offer):
        self.record_many([NotificationRecord(recipient, offer)])

    def record_many(self, records: list[NotificationRecord]):
        """Append every record not already in the index. Failures are logged, never raised."""
        fresh = []
        for record in records:
            key = (record.recipient, identity_key(record.offer))
            if key not in self._index:
                self._index.add(key)
                fresh.append(record)
        if not fresh:
            return
        try:
            self.store.append_rows([record_to_row(r) for r in fresh])
        except LedgerWriteError as e:
            log.error("Ledger write failed for %d record(s): %s", len(fresh), e)
