"""Google Sheets client for exporting delivery slips and invoices.

Documents are produced by copying a template spreadsheet (Drive
``files.copy``) and writing cell values into the copy
(``values:batchUpdate``). Credentials are a service account: a signed JWT
assertion is exchanged for a short-lived access token, held in an explicit
``SheetsSession`` that callers refresh themselves.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, date, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests
from authlib.jose import jwt
from authlib.jose.errors import JoseError

from backoffice.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

TOKEN_URL = 'https://oauth2.googleapis.com/token'
DRIVE_COPY_URL = 'https://www.googleapis.com/drive/v3/files/{file_id}/copy'
SHEETS_BATCH_UPDATE_URL = 'https://sheets.googleapis.com/v4/spreadsheets/{spreadsheet_id}/values:batchUpdate'
SPREADSHEET_URL = 'https://docs.google.com/spreadsheets/d/{spreadsheet_id}'
SCOPES = 'https://www.googleapis.com/auth/spreadsheets https://www.googleapis.com/auth/drive.file'

KIND_DELIVERY = 'delivery'
KIND_INVOICE = 'invoice'

# Seconds before expiry at which a session counts as expired
EXPIRY_LEEWAY = 60


@dataclass(frozen=True)
class SheetsSession:
    """Access token for the Google APIs and its expiry (UTC)."""
    access_token: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at - timedelta(seconds=EXPIRY_LEEWAY)


@dataclass(frozen=True)
class ExportedDocument:
    document_id: str
    url: str


def _cell(value: Any) -> Any:
    """Make a value JSON/Sheets friendly."""
    if value is None:
        return ''
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _tax_summary(start_row: int, fields: dict, labels) -> List[dict]:
    ranges = []
    for offset, (label, key) in enumerate(labels):
        ranges.append({'range': f'B{start_row + offset}', 'values': [[label]]})
        ranges.append({'range': f'C{start_row + offset}', 'values': [[_cell(fields.get(key, 0))]]})
    return ranges


def _delivery_layout(fields: dict) -> List[dict]:
    """Cell layout of the delivery slip template."""
    ranges = [
        {'range': 'B3', 'values': [[_cell(fields.get('delivery_number'))]]},
        {'range': 'B4', 'values': [[_cell(fields.get('delivery_date'))]]},
        {'range': 'B5', 'values': [[_cell(fields.get('customer_name'))]]},
        {'range': 'B6', 'values': [[_cell(fields.get('customer_address'))]]},
        {'range': 'B7', 'values': [[_cell(fields.get('invoice_registration_number'))]]},
        {'range': 'B8', 'values': [[_cell(fields.get('invoice_notes'))]]},
    ]
    items = fields.get('items') or []
    items_start = 11
    for index, item in enumerate(items):
        row = items_start + index
        ranges.append({'range': f'A{row}:I{row}', 'values': [[
            _cell(item.get('product_name')),
            _cell(item.get('delivery_date')),
            _cell(item.get('quantity')),
            _cell(item.get('unit')),
            _cell(item.get('unit_price')),
            _cell(item.get('tax_rate')),
            _cell(item.get('subtotal')),
            _cell(item.get('tax_amount')),
            _cell(item.get('amount')),
        ]]})

    summary_start = items_start + len(items) + 2
    ranges.extend(_tax_summary(summary_start, fields, (
        ('8%対象額', 'subtotal_8'),
        ('8%消費税', 'tax_8'),
        ('10%対象額', 'subtotal_10'),
        ('10%消費税', 'tax_10'),
        ('合計税額', 'total_tax'),
        ('合計金額（税込）', 'total_amount'),
    )))
    if fields.get('notes'):
        ranges.append({'range': f'A{summary_start + 8}', 'values': [[fields['notes']]]})
    return ranges


def _invoice_layout(fields: dict) -> List[dict]:
    """Cell layout of the invoice template."""
    ranges = [
        {'range': 'B3', 'values': [[_cell(fields.get('invoice_number'))]]},
        {'range': 'B4', 'values': [[_cell(fields.get('invoice_date'))]]},
        {'range': 'B5', 'values': [[_cell(fields.get('due_date'))]]},
        {'range': 'B6', 'values': [[_cell(fields.get('customer_name'))]]},
        {'range': 'B7', 'values': [[_cell(fields.get('customer_address'))]]},
        {'range': 'B8', 'values': [[_cell(fields.get('billing_address'))]]},
        {'range': 'B9', 'values': [[_cell(fields.get('invoice_registration_number'))]]},
        {'range': 'B10', 'values': [[_cell(fields.get('billing_cycle'))]]},
        {'range': 'B11', 'values': [[_cell(fields.get('billing_day'))]]},
        {'range': 'B12', 'values': [[_cell(fields.get('payment_terms'))]]},
        {'range': 'B13', 'values': [[_cell(fields.get('invoice_notes'))]]},
    ]
    items = fields.get('items') or []
    items_start = 15
    for index, item in enumerate(items):
        row = items_start + index
        ranges.append({'range': f'A{row}:G{row}', 'values': [[
            _cell(item.get('description')),
            _cell(item.get('quantity')),
            _cell(item.get('unit_price')),
            _cell(item.get('tax_rate')),
            _cell(item.get('subtotal')),
            _cell(item.get('tax_amount')),
            _cell(item.get('amount')),
        ]]})

    summary_start = items_start + len(items) + 2
    ranges.extend(_tax_summary(summary_start, fields, (
        ('8%対象額', 'subtotal_8'),
        ('8%消費税', 'tax_8'),
        ('10%対象額', 'subtotal_10'),
        ('10%消費税', 'tax_10'),
        ('小計（税抜）', 'subtotal'),
        ('合計税額', 'total_tax'),
        ('合計金額（税込）', 'total_amount'),
    )))
    if fields.get('notes'):
        ranges.append({'range': f'A{summary_start + 9}', 'values': [[fields['notes']]]})
    return ranges


LAYOUTS = {
    KIND_DELIVERY: _delivery_layout,
    KIND_INVOICE: _invoice_layout,
}


def _error_for_response(response) -> ExternalServiceError:
    """Translate a Google API error response into an ExternalServiceError."""
    status = response.status_code
    try:
        detail = response.json().get('error', {})
        message = detail.get('message') if isinstance(detail, dict) else str(detail)
    except ValueError:
        message = None
    message = message or response.text[:200] or f'HTTP {status}'

    if status == 401:
        code = ExternalServiceError.AUTHENTICATION_FAILED
    elif status == 403:
        code = ExternalServiceError.PERMISSION_DENIED
    elif status == 404:
        code = ExternalServiceError.TEMPLATE_NOT_FOUND
    elif status == 429:
        code = ExternalServiceError.QUOTA_EXCEEDED
    elif status >= 500:
        code = ExternalServiceError.NETWORK_ERROR
    elif status == 400:
        code = ExternalServiceError.INVALID_DATA
    else:
        code = ExternalServiceError.UNKNOWN_ERROR
    return ExternalServiceError(f'Google API error ({status}): {message}', code=code)


class SheetsExporter:
    """Service-account client for the Drive and Sheets REST APIs."""

    def __init__(self, client_email: str, private_key: str, max_retries: int = 3,
                 backoff_seconds: float = 1.0, timeout: int = 10, sleep=time.sleep):
        if not client_email or not private_key:
            raise ValueError("client_email and private_key are required")
        self.client_email = client_email
        self.private_key = private_key
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.timeout = timeout
        self._sleep = sleep

    @classmethod
    def from_config(cls, config) -> Optional['SheetsExporter']:
        """Build from Flask config; None when credentials are not configured."""
        email = config.get('GOOGLE_SHEETS_CLIENT_EMAIL')
        key = config.get('GOOGLE_SHEETS_PRIVATE_KEY')
        if not email or not key:
            logger.info("[SHEETS] Credentials not configured, document export disabled")
            return None
        return cls(
            client_email=email,
            private_key=key,
            max_retries=int(config.get('SHEETS_MAX_RETRIES', 3)),
            backoff_seconds=float(config.get('SHEETS_BACKOFF_SECONDS', 1.0)),
            timeout=int(config.get('SHEETS_TIMEOUT_SECONDS', 10)),
        )

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def _signed_assertion(self, now: datetime) -> str:
        issued = int(now.timestamp())
        claims = {
            'iss': self.client_email,
            'scope': SCOPES,
            'aud': TOKEN_URL,
            'iat': issued,
            'exp': issued + 3600,
        }
        try:
            token = jwt.encode({'alg': 'RS256', 'typ': 'JWT'}, claims, self.private_key)
        except (JoseError, ValueError, TypeError) as e:
            raise ExternalServiceError(
                f'Could not sign service account assertion: {e}',
                code=ExternalServiceError.AUTHENTICATION_FAILED, cause=e
            )
        return token.decode('ascii') if isinstance(token, bytes) else token

    def authorize(self) -> SheetsSession:
        """
        Exchange a signed service-account assertion for an access token.

        Raises:
            ExternalServiceError: AUTHENTICATION_FAILED when Google rejects
            the credentials, NETWORK_ERROR/QUOTA_EXCEEDED after retries
        """
        now = datetime.now(timezone.utc)
        assertion = self._signed_assertion(now)
        try:
            data = self._request('POST', TOKEN_URL, data={
                'grant_type': 'urn:ietf:params:oauth:grant-type:jwt-bearer',
                'assertion': assertion,
            })
        except ExternalServiceError as e:
            if e.code in (ExternalServiceError.NETWORK_ERROR, ExternalServiceError.QUOTA_EXCEEDED):
                raise
            raise ExternalServiceError(
                f'Google rejected the service account credentials: {e.message}',
                code=ExternalServiceError.AUTHENTICATION_FAILED, cause=e
            )

        access_token = data.get('access_token')
        if not access_token:
            raise ExternalServiceError(
                'Token endpoint returned no access token',
                code=ExternalServiceError.AUTHENTICATION_FAILED
            )
        expires_in = int(data.get('expires_in', 3600))
        logger.info(f"[SHEETS] Authorized {self.client_email} (expires in {expires_in}s)")
        return SheetsSession(access_token, now + timedelta(seconds=expires_in))

    def refresh(self, sheets_session: Optional[SheetsSession]) -> SheetsSession:
        """Return `sheets_session` if still valid, else a new one."""
        if sheets_session is not None and not sheets_session.is_expired():
            return sheets_session
        return self.authorize()

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _request(self, method: str, url: str, sheets_session: Optional[SheetsSession] = None,
                 **kwargs) -> Dict[str, Any]:
        """Send a request, retrying 429/5xx/connection failures with exponential backoff."""
        headers = kwargs.pop('headers', {})
        if sheets_session is not None:
            headers['Authorization'] = f'Bearer {sheets_session.access_token}'

        attempt = 0
        while True:
            try:
                response = requests.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
            except requests.RequestException as e:
                error = ExternalServiceError(
                    f'Could not reach Google API: {e}', code=ExternalServiceError.NETWORK_ERROR, cause=e
                )
                retryable = True
            else:
                if response.status_code < 400:
                    return response.json() if response.content else {}
                error = _error_for_response(response)
                retryable = response.status_code == 429 or response.status_code >= 500

            if not retryable or attempt >= self.max_retries:
                logger.error(f"[SHEETS] {method} {url} failed: {error.code} {error.message}")
                raise error

            delay = self.backoff_seconds * (2 ** attempt)
            attempt += 1
            logger.warning(
                f"[SHEETS] {error.code} on {method} {url}, retry {attempt}/{self.max_retries} in {delay:.1f}s"
            )
            self._sleep(delay)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def create_document(self, sheets_session: SheetsSession, template_id: str,
                        field_map: dict, kind: str) -> ExportedDocument:
        """
        Copy `template_id` and fill it with `field_map` using the layout for `kind`.

        Args:
            sheets_session: valid session from authorize()/refresh()
            template_id: Drive file id of the template spreadsheet
            field_map: header fields plus 'items' (see export_service)
            kind: 'delivery' or 'invoice'

        Returns:
            ExportedDocument with the new spreadsheet id and URL
        """
        layout = LAYOUTS.get(kind)
        if layout is None:
            raise ExternalServiceError(f'Unknown document kind: {kind}', code=ExternalServiceError.INVALID_DATA)
        if not template_id:
            raise ExternalServiceError(
                f'No template configured for {kind} documents',
                code=ExternalServiceError.TEMPLATE_NOT_FOUND
            )
        if sheets_session.is_expired():
            raise ExternalServiceError(
                'Sheets session expired; refresh it before exporting',
                code=ExternalServiceError.AUTHENTICATION_FAILED
            )

        copied = self._request(
            'POST', DRIVE_COPY_URL.format(file_id=template_id), sheets_session,
            params={'supportsAllDrives': 'true'},
            json={'name': field_map.get('title') or f'{kind}-{template_id}'},
        )
        document_id = copied.get('id')
        if not document_id:
            raise ExternalServiceError('Drive copy returned no file id', code=ExternalServiceError.UNKNOWN_ERROR)

        self._request(
            'POST', SHEETS_BATCH_UPDATE_URL.format(spreadsheet_id=document_id), sheets_session,
            json={'valueInputOption': 'RAW', 'data': layout(field_map)},
        )

        url = SPREADSHEET_URL.format(spreadsheet_id=document_id)
        logger.info(f"[SHEETS] Created {kind} document {document_id}")
        return ExportedDocument(document_id, url)
