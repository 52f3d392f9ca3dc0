"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the initial storage backend because:
1. Organizers can view and fix member data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (fine for a few hundred members)
- No transactions (wallet linking is add-to-set, so re-running it is safe)
- Limited query capabilities (we filter in Python)

gspread is synchronous; every sheet call runs in a worker thread so a
slow spreadsheet never blocks other conversations.
"""

import asyncio
import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from coperacha.config import get_settings
from coperacha.models.audit import AuditEvent, AuditEventType, AuditSeverity
from coperacha.models.identity import IdentityRecord
from coperacha.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    RecordStoreInterface,
    StorageError,
)


# Column mappings for Users sheet
USER_COLUMNS = [
    "phone",
    "name",
    "email",
    "address",
    "wallets_json",
    "created_at",
]

# Column mappings for Config sheet
CONFIG_COLUMNS = [
    "key",
    "value",
]

EXCHANGE_RATE_KEY = "exchange_rate"

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_users_sheet(self) -> gspread.Worksheet:
        """Get or create the Users worksheet."""
        return self._get_or_create_sheet(
            self._settings.users_sheet_name, USER_COLUMNS, rows=1000
        )

    def get_config_sheet(self) -> gspread.Worksheet:
        """Get or create the Config worksheet."""
        return self._get_or_create_sheet(
            self._settings.config_sheet_name, CONFIG_COLUMNS, rows=20
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsRecordStore(RecordStoreInterface):
    """
    Google Sheets implementation of the identity record store.

    One identity per row. The linked wallet set is JSON-serialized.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._write_lock = asyncio.Lock()

    def _record_to_row(self, record: IdentityRecord) -> list:
        """Convert an IdentityRecord to a spreadsheet row."""
        return [
            record.phone,
            record.name,
            record.email,
            record.address or "",
            json.dumps(record.wallets),
            record.created_at.isoformat(),
        ]

    def _row_to_record(self, row: list) -> IdentityRecord:
        """Convert a spreadsheet row to an IdentityRecord."""
        # Handle missing columns gracefully
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        wallets_json = safe_get(4)
        created_at = safe_get(5)
        return IdentityRecord(
            phone=safe_get(0),
            name=safe_get(1),
            email=safe_get(2),
            address=safe_get(3) or None,
            wallets=json.loads(wallets_json) if wallets_json else [],
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.utcnow(),
        )

    def _load_rows(self) -> list[tuple[int, IdentityRecord]]:
        """Read every identity with its 1-based sheet row number."""
        sheet = self._client.get_users_sheet()
        records = []
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                records.append((idx, self._row_to_record(row)))
            except Exception:
                continue  # Skip malformed rows
        return records

    async def _find(self, predicate) -> Optional[IdentityRecord]:
        try:
            rows = await asyncio.to_thread(self._load_rows)
        except Exception as e:
            raise StorageError(f"Failed to read identities: {e}")
        for _, record in rows:
            if predicate(record):
                return record
        return None

    async def find_by_phone(self, phone: str) -> Optional[IdentityRecord]:
        return await self._find(lambda r: r.phone == phone)

    async def find_by_address(self, address: str) -> Optional[IdentityRecord]:
        address = (address or "").strip().lower()
        return await self._find(lambda r: r.address == address)

    async def find_by_email(self, email: str) -> Optional[IdentityRecord]:
        email = (email or "").strip().lower()
        return await self._find(lambda r: r.email == email)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
        retry_error_callback=None,
    )
    def _append_row(self, row: list) -> None:
        sheet = self._client.get_users_sheet()
        sheet.append_row(row, value_input_option="RAW")

    async def insert(self, record: IdentityRecord) -> IdentityRecord:
        """Insert an identity after checking phone/email/address uniqueness."""
        async with self._write_lock:
            try:
                rows = await asyncio.to_thread(self._load_rows)
            except Exception as e:
                raise StorageError(f"Failed to read identities: {e}")

            for _, existing in rows:
                if existing.phone == record.phone:
                    raise DuplicateError("phone")
                if existing.email == record.email:
                    raise DuplicateError("email")
                if record.address and existing.address == record.address:
                    raise DuplicateError("address")

            try:
                await asyncio.to_thread(self._append_row, self._record_to_row(record))
            except Exception as e:
                raise StorageError(f"Failed to save identity: {e}")
        return record

    def _link_wallet(self, members: set[str], wallet_address: str) -> int:
        sheet = self._client.get_users_sheet()
        wallets_col = USER_COLUMNS.index("wallets_json") + 1
        changed = 0
        for idx, record in self._load_rows():
            if record.address not in members or wallet_address in record.wallets:
                continue
            wallets = record.wallets + [wallet_address]
            sheet.update_cell(idx, wallets_col, json.dumps(wallets))
            changed += 1
        return changed

    async def add_wallet_to_members(
        self,
        member_addresses: list[str],
        wallet_address: str,
    ) -> int:
        members = {a.strip().lower() for a in member_addresses}
        async with self._write_lock:
            try:
                return await asyncio.to_thread(
                    self._link_wallet, members, wallet_address.strip().lower()
                )
            except Exception as e:
                raise StorageError(f"Failed to link wallet {wallet_address}: {e}")

    async def list_wallet_members(self, wallet_address: str) -> list[IdentityRecord]:
        wallet_address = wallet_address.strip().lower()
        try:
            rows = await asyncio.to_thread(self._load_rows)
        except Exception as e:
            raise StorageError(f"Failed to read identities: {e}")
        return [record for _, record in rows if wallet_address in record.wallets]

    def _read_config(self) -> dict[str, tuple[int, str]]:
        sheet = self._client.get_config_sheet()
        values = {}
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
            if row and row[0]:
                values[row[0]] = (idx, row[1] if len(row) > 1 else "")
        return values

    async def get_exchange_rate(self) -> Optional[Decimal]:
        try:
            config = await asyncio.to_thread(self._read_config)
        except Exception as e:
            raise StorageError(f"Failed to read configuration: {e}")
        entry = config.get(EXCHANGE_RATE_KEY)
        if entry is None:
            return None
        try:
            return Decimal(entry[1])
        except (InvalidOperation, ValueError):
            return None

    def _write_config(self, key: str, value: str) -> None:
        sheet = self._client.get_config_sheet()
        config = self._read_config()
        if key in config:
            sheet.update_cell(config[key][0], 2, value)
        else:
            sheet.append_row([key, value], value_input_option="RAW")

    async def set_exchange_rate(self, rate: Decimal) -> None:
        try:
            await asyncio.to_thread(self._write_config, EXCHANGE_RATE_KEY, str(rate))
        except Exception as e:
            raise StorageError(f"Failed to update exchange rate: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=safe_get(0),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=safe_get(6) or None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _append(self, row: list) -> None:
        sheet = self._client.get_audit_sheet()
        sheet.append_row(row, value_input_option="RAW")

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            await asyncio.to_thread(self._append, event.to_sheets_row())
            return True
        except Exception:
            # Don't raise - audit logging should not break the main flow
            return False

    def _load_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception:
                continue  # Skip malformed rows
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        try:
            events = await asyncio.to_thread(self._load_events)
        except Exception as e:
            raise StorageError(f"Failed to get events: {e}")
        matching = [
            e for e in events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(matching, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        try:
            events = await asyncio.to_thread(self._load_events)
        except Exception as e:
            raise StorageError(f"Failed to get events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
