"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets backs the remote document store because:
1. Users can view their own records directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

Each collection is one worksheet. A row holds the document id, the
owner id and the document body as JSON, so the sheet layout does not
change when entity fields do.

TRADEOFFS:
- No transactions (the ledger controller orders its writes instead)
- Limited query capabilities (we filter by owner in Python)
- Only connecting is retried; data reads and writes fail fast and
  surface to the caller
"""

import json
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from smart_finance.config import GoogleSheetsSettings, get_settings
from smart_finance.models.audit import AuditEvent, AuditEventType, AuditSeverity
from smart_finance.services.storage.interface import (
    ACCOUNTS_COLLECTION,
    AuditStorageInterface,
    ConnectionError,
    Document,
    DocumentStoreInterface,
    OWNER_FIELD,
    StorageError,
    TRANSACTIONS_COLLECTION,
)


# Column layout shared by every collection worksheet
DOCUMENT_COLUMNS = [
    "id",
    "owner_id",
    "updated_at",
    "document_json",
]

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

    Handles authentication and maps collection names to worksheets.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

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

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
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

    def get_collection_sheet(self, collection: str) -> gspread.Worksheet:
        """Get or create the worksheet backing a collection."""
        titles = {
            ACCOUNTS_COLLECTION: self._settings.accounts_sheet_name,
            TRANSACTIONS_COLLECTION: self._settings.transactions_sheet_name,
        }
        if collection not in titles:
            raise StorageError(f"Unknown collection: {collection}")
        return self._get_or_create_sheet(titles[collection], DOCUMENT_COLUMNS, rows=1000)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsDocumentStore(DocumentStoreInterface):
    """
    Google Sheets implementation of the remote document store.

    Documents are stored one per row. The owner id is kept in its own
    column so it can be filtered without decoding every document.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _document_to_row(self, document_id: str, document: Document) -> list:
        return [
            document_id,
            str(document.get(OWNER_FIELD, "")),
            datetime.utcnow().isoformat(),
            json.dumps(document, default=str),
        ]

    def _find_row(self, rows: list[list[str]], document_id: str) -> Optional[int]:
        # Sheet rows are 1-indexed and row 1 is the header
        for idx, row in enumerate(rows[1:], start=2):
            if row and row[0] == document_id:
                return idx
        return None

    async def query_by_owner(
        self,
        collection: str,
        owner_id: str,
    ) -> list[tuple[str, Document]]:
        try:
            sheet = self._client.get_collection_sheet(collection)
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to query {collection}: {e}")

        documents = []
        for row in all_rows:
            if len(row) < 4 or not row[0] or row[1] != owner_id:
                continue
            try:
                documents.append((row[0], json.loads(row[3])))
            except json.JSONDecodeError:
                continue  # Skip malformed rows
        return documents

    async def add_document(self, collection: str, document: Document) -> str:
        document_id = uuid4().hex
        try:
            sheet = self._client.get_collection_sheet(collection)
            sheet.append_row(
                self._document_to_row(document_id, document),
                value_input_option="RAW",
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to add document to {collection}: {e}")
        return document_id

    async def set_document(
        self,
        collection: str,
        document_id: str,
        document: Document,
    ) -> None:
        try:
            sheet = self._client.get_collection_sheet(collection)
            new_row = self._document_to_row(document_id, document)
            idx = self._find_row(sheet.get_all_values(), document_id)
            if idx is None:
                sheet.append_row(new_row, value_input_option="RAW")
                return
            sheet.update(
                range_name=f"A{idx}:D{idx}",
                values=[new_row],
                value_input_option="RAW",
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to set document {document_id} in {collection}: {e}")

    async def delete_document(self, collection: str, document_id: str) -> bool:
        try:
            sheet = self._client.get_collection_sheet(collection)
            idx = self._find_row(sheet.get_all_values(), document_id)
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete document {document_id} from {collection}: {e}")


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
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # AuditLogger catches this and logs it locally
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if row and len(row) > 6 and row[6] == str(correlation_id):
                try:
                    events.append(self._row_to_event(row))
                except (ValueError, json.JSONDecodeError):
                    continue

        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except (ValueError, json.JSONDecodeError):
                    continue

        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
