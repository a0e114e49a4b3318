"""Lookup table sources.

Loads the user (IP -> user id) and network (CIDR -> class) mappings from
HTTP endpoints, local files and inline configuration. Sources are merged
in that order, so inline entries override fetched ones.

A source that is configured but cannot be read or parsed fails the run.
Individual entries that parse as text but not as addresses are dropped
later, when the tables are built.
"""

import csv
import io
import json
from pathlib import Path

import httpx

from acctflow.classification.tables import ClassificationTables, build_tables
from acctflow.common.config import NetworksSettings, Settings, UsersSettings
from acctflow.common.exceptions import LookupTableError
from acctflow.common.logging import get_logger

logger = get_logger(__name__)

JSON_CONTENT_TYPE = "application/json"
CSV_CONTENT_TYPE = "text/csv"


def parse_json_mapping(body: str, source: str) -> dict[str, str]:
    """Parse a JSON object of string keys to string values.

    Args:
        body: JSON document.
        source: Source name for error reporting.

    Returns:
        Parsed mapping.

    Raises:
        LookupTableError: If the document is not a flat object.
    """
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise LookupTableError(
            f"Invalid JSON in {source}",
            details={"source": source, "line": e.lineno, "column": e.colno},
            cause=e,
        ) from e

    if not isinstance(data, dict):
        raise LookupTableError(
            f"Expected a JSON object in {source}",
            details={"source": source, "type": type(data).__name__},
        )

    result: dict[str, str] = {}
    for key, value in data.items():
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise LookupTableError(
                f"Unsupported value for {key!r} in {source}",
                details={"source": source, "key": key, "value": repr(value)},
            )
        result[key] = str(value)
    return result


def parse_csv_mapping(
    body: str,
    source: str,
    key_field: int,
    value_field: int,
    comma: str = ",",
) -> dict[str, str]:
    """Parse CSV rows into a mapping of one column to another.

    Args:
        body: CSV document.
        source: Source name for error reporting.
        key_field: Column index of the key.
        value_field: Column index of the value.
        comma: Field delimiter.

    Returns:
        Parsed mapping.

    Raises:
        LookupTableError: On malformed CSV or rows missing a column.
    """
    result: dict[str, str] = {}
    reader = csv.reader(io.StringIO(body), delimiter=comma)
    needed = max(key_field, value_field) + 1

    try:
        for row in reader:
            if not row or all(not cell.strip() for cell in row):
                continue
            if len(row) < needed:
                raise LookupTableError(
                    f"Row {reader.line_num} of {source} has {len(row)} fields, need {needed}",
                    details={"source": source, "line": reader.line_num, "row": row},
                )
            result[row[key_field].strip()] = row[value_field].strip()
    except csv.Error as e:
        raise LookupTableError(
            f"Invalid CSV in {source}",
            details={"source": source, "line": reader.line_num},
            cause=e,
        ) from e

    return result


def _parse_body(
    body: str,
    fmt: str,
    source: str,
    key_field: int,
    value_field: int,
    comma: str,
) -> dict[str, str]:
    if fmt == "json":
        return parse_json_mapping(body, source)
    if fmt == "csv":
        return parse_csv_mapping(body, source, key_field, value_field, comma)
    raise LookupTableError(
        f"Unsupported lookup format for {source}",
        details={"source": source, "format": fmt},
    )


async def fetch_mapping(
    url: str,
    key_field: int,
    value_field: int,
    comma: str = ",",
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, str]:
    """Fetch a mapping over HTTP.

    The format is taken from the response Content-Type.

    Raises:
        LookupTableError: On transport errors, non-2xx responses or an
            unsupported content type.
    """
    logger.info("Fetching lookup table", url=url)

    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPError as e:
        raise LookupTableError(
            f"Could not fetch {url}",
            details={"source": url},
            cause=e,
        ) from e

    content_type = response.headers.get("content-type", "")
    logger.info(
        "Lookup table fetched",
        url=url,
        status_code=response.status_code,
        content_type=content_type,
    )

    if JSON_CONTENT_TYPE in content_type:
        fmt = "json"
    elif CSV_CONTENT_TYPE in content_type:
        fmt = "csv"
    else:
        fmt = content_type or "unknown"

    return _parse_body(response.text, fmt, url, key_field, value_field, comma)


def read_mapping(
    path: Path,
    key_field: int,
    value_field: int,
    comma: str = ",",
) -> dict[str, str]:
    """Read a mapping from a .json or .csv file.

    Raises:
        LookupTableError: If the file is unreadable, has an unknown
            extension or is malformed.
    """
    logger.info("Reading lookup table", file=str(path))

    try:
        body = path.read_text(encoding="utf-8")
    except OSError as e:
        raise LookupTableError(
            f"Could not read {path}",
            details={"source": str(path)},
            cause=e,
        ) from e

    fmt = path.suffix.lower().lstrip(".")
    return _parse_body(body, fmt, str(path), key_field, value_field, comma)


async def load_users(
    settings: UsersSettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, str]:
    """Load the IP -> user id mapping from all configured sources."""
    users: dict[str, str] = {}

    if settings.url:
        users.update(await fetch_mapping(
            settings.url,
            key_field=settings.ip_field,
            value_field=settings.id_field,
            comma=settings.comma,
            timeout=settings.timeout,
            transport=transport,
        ))

    if settings.file:
        users.update(read_mapping(
            settings.file,
            key_field=settings.ip_field,
            value_field=settings.id_field,
            comma=settings.comma,
        ))

    users.update(settings.users)
    logger.info("Users loaded", count=len(users))
    return users


async def load_networks(
    settings: NetworksSettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, str]:
    """Load the CIDR -> class mapping from all configured sources."""
    networks: dict[str, str] = {}

    if settings.url:
        networks.update(await fetch_mapping(
            settings.url,
            key_field=settings.cidr_field,
            value_field=settings.class_field,
            comma=settings.comma,
            timeout=settings.timeout,
            transport=transport,
        ))

    if settings.file:
        networks.update(read_mapping(
            settings.file,
            key_field=settings.cidr_field,
            value_field=settings.class_field,
            comma=settings.comma,
        ))

    networks.update(settings.networks)
    logger.info("Networks loaded", count=len(networks))
    return networks


async def load_tables(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ClassificationTables:
    """Load all lookup sources and build the classification tables."""
    users = await load_users(settings.users, transport=transport)
    networks = await load_networks(settings.networks, transport=transport)
    return build_tables(users, networks)
