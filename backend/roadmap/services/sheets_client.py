"""
Google Sheets backing store: Features and Votes tabs.
Writes go through the Sheets API (values:append, bearer token); reads use the public
gviz CSV export and need no token.
"""
import csv
import io
import logging
from urllib.parse import quote

import httpx

from roadmap.config import settings
from roadmap.core.errors import ConfigurationError, PersistenceError
from roadmap.schemas.roadmap import Feature, Vote
from roadmap.services.http_client import get_http_client, log_response_error

logger = logging.getLogger(__name__)

FEATURES_HEADER = ["UUID", "Title", "Description", "Timestamp", "IsComplete", "NeedsFeedback", "InProgress", "TargetRelease"]
VOTES_HEADER = ["IdentityHash", "FeatureUUID", "Timestamp", "Comment"]


def _spreadsheet_id() -> str:
    if not settings.spreadsheet_id:
        raise ConfigurationError("Server configuration error: spreadsheet not configured")
    return settings.spreadsheet_id


def _sheet_bool(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def _parse_bool(value: str | None) -> bool:
    return (value or "").strip().upper() == "TRUE"


def _parse_int(value: str | None) -> int | None:
    try:
        return int(float((value or "").strip()))
    except ValueError:
        return None


def feature_to_row(feature: Feature) -> list[str | int]:
    return [
        feature.uuid,
        feature.title,
        feature.description,
        feature.timestamp if feature.timestamp is not None else "",
        _sheet_bool(feature.is_complete),
        _sheet_bool(feature.needs_feedback),
        _sheet_bool(feature.in_progress),
        feature.target_release or "",
    ]


def vote_to_row(vote: Vote) -> list[str | int]:
    return [vote.identity_hash, vote.feature_uuid, vote.timestamp, vote.comment or ""]


def parse_csv(text: str) -> list[list[str]]:
    """Parse CSV export into rows, dropping the header row and blank lines."""
    rows = [row for row in csv.reader(io.StringIO(text)) if any(cell.strip() for cell in row)]
    return rows[1:]


def _cell(row: list[str], index: int) -> str:
    return row[index] if index < len(row) else ""


def parse_features(rows: list[list[str]]) -> list[Feature]:
    """Rows (header already removed, or matching FEATURES_HEADER) to Feature objects; rows without UUID are skipped."""
    if rows and [c.strip() for c in rows[0][: len(FEATURES_HEADER)]] == FEATURES_HEADER:
        rows = rows[1:]
    out: list[Feature] = []
    for row in rows:
        uuid = _cell(row, 0).strip()
        if not uuid:
            continue
        out.append(
            Feature(
                uuid=uuid,
                title=_cell(row, 1),
                description=_cell(row, 2),
                timestamp=_parse_int(_cell(row, 3)),
                is_complete=_parse_bool(_cell(row, 4)),
                needs_feedback=_parse_bool(_cell(row, 5)),
                in_progress=_parse_bool(_cell(row, 6)),
                target_release=_cell(row, 7) or None,
            )
        )
    return out


def parse_votes(rows: list[list[str]]) -> list[Vote]:
    if rows and [c.strip() for c in rows[0][: len(VOTES_HEADER)]] == VOTES_HEADER:
        rows = rows[1:]
    out: list[Vote] = []
    for row in rows:
        identity, feature_uuid = _cell(row, 0).strip(), _cell(row, 1).strip()
        if not identity or not feature_uuid:
            continue
        out.append(
            Vote(
                identity_hash=identity,
                feature_uuid=feature_uuid,
                timestamp=_parse_int(_cell(row, 2)) or 0,
                comment=_cell(row, 3),
            )
        )
    return out


async def fetch_sheet_rows(range_a1: str) -> list[list[str]]:
    """Fetch one tab of the public spreadsheet as CSV (header row removed)."""
    sheet = range_a1.split("!")[0]
    url = f"{settings.google_sheets_export_base}/{_spreadsheet_id()}/gviz/tq?tqx=out:csv&sheet={quote(sheet)}"
    client = get_http_client()
    try:
        r = await client.get(url)
    except httpx.HTTPError as e:
        logger.error("Sheets export %s unreachable: %s", sheet, e)
        raise PersistenceError("Failed to fetch sheet data") from e
    if r.status_code >= 400:
        log_response_error("Sheets export", "GET", url, r)
        raise PersistenceError(f"Failed to fetch sheet data: {r.reason_phrase}")
    return parse_csv(r.text)


async def append_row(range_a1: str, row: list[str | int], access_token: str) -> None:
    url = f"{settings.google_sheets_api_base}/{_spreadsheet_id()}/values/{quote(range_a1)}:append"
    client = get_http_client()
    try:
        r = await client.post(
            url,
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            headers={"Authorization": f"Bearer {access_token}"},
            json={"range": range_a1, "majorDimension": "ROWS", "values": [row]},
        )
    except httpx.HTTPError as e:
        logger.error("Sheets append to %s failed: %s", range_a1, e)
        raise PersistenceError() from e
    if r.status_code >= 400:
        log_response_error("Sheets API", "POST", url, r)
        raise PersistenceError()


async def append_feature(feature: Feature, access_token: str) -> None:
    await append_row(settings.features_range, feature_to_row(feature), access_token)


async def append_vote(vote: Vote, access_token: str) -> None:
    await append_row(settings.votes_range, vote_to_row(vote), access_token)


async def fetch_features() -> list[Feature]:
    return parse_features(await fetch_sheet_rows(settings.features_range))


async def fetch_votes() -> list[Vote]:
    return parse_votes(await fetch_sheet_rows(settings.votes_range))
