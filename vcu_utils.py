"""
Utility functions for the VMware Cloud Universal usage report scripts.
"""
import json
import logging
import logging.config
import re
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence, Tuple, Union
import rich.console
from rich.table import Table
import httpx
from openpyxl import Workbook
from openpyxl.worksheet.dimensions import ColumnDimension, DimensionHolder
from openpyxl.utils import get_column_letter


# HTTP Client Configuration
HTTP_TIMEOUT = 60.0  # 60 seconds timeout

# Keys the VMC APIs use to wrap collections
COLLECTION_KEYS = ('content', 'data', 'results')

Column = Tuple[str, str]


def org_log_dir(org_id: Optional[str], root: Union[str, Path] = "output") -> Path:
    """Folder holding the logs of one org; ids are reduced to path-safe characters."""
    folder = re.sub(r'[^A-Za-z0-9._-]', '_', org_id.strip()) if org_id and org_id.strip() else "unknown"
    return Path(root) / folder / "logs"


def setup_logging(
    script_name: str,
    debug: bool = False,
    org_id: Optional[str] = None
) -> logging.Logger:
    """
    Configure the root logger for one report run.

    Console output goes through rich; the rotating file under
    output/<org>/logs/<script>.log always records DEBUG; the httpx,
    httpcore and hpack loggers are held at WARNING.

    Args:
        script_name: Name of the script (without .py extension) for log file naming
        debug: If True, sets console logging level to DEBUG, otherwise INFO
        org_id: Organization the run reports on, resolved from CLI or config
    """
    console_level = "DEBUG" if debug else "INFO"
    file_level = "DEBUG"

    console = rich.console.Console(width=178)

    logs_dir = org_log_dir(org_id)
    logs_dir.mkdir(parents=True, exist_ok=True)

    log_file_path = logs_dir / f"{script_name}.log"

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "verbose": {
                "format": "{asctime} {name} {levelname} (pid: {process}) {message}",
                "style": "{",
            },
            "rich": {
                "format": "{message}",
                "style": "{",
            },
        },
        "handlers": {
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "verbose",
                "maxBytes": 1024 * 1024 * 10,
                "backupCount": 10,
                "filename": str(log_file_path),
                "level": file_level,
            },
            "rich": {
                "class": "rich.logging.RichHandler",
                "formatter": "rich",
                "log_time_format": lambda x: x.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
                "rich_tracebacks": True,
                "level": console_level,
                "console": console,
            },
        },
        "root": {
            "handlers": ["rich", "file"],
            "level": "DEBUG",
        },
        "loggers": {
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "hpack": {"level": "WARNING"},
        },
    }

    logging.config.dictConfig(logging_config)
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.debug(f"Console logging level: {console_level}, File logging level: {file_level}")
    logger.info(f"Logging {org_id or 'unknown org'} run of {script_name} to {log_file_path}")
    return logger


def create_http_client(
    headers: Dict[str, str],
    user_agent: str = 'VCU Usage Report',
    http2: bool = True
) -> httpx.Client:
    """
    Create a configured httpx client with HTTP/2 support and common headers.

    Args:
        headers: Headers sent with every request (auth header included)
        user_agent: User agent string for requests
        http2: Whether to enable HTTP/2 (default: True)

    Returns:
        Configured httpx.Client instance
    """
    client_headers = {
        'Accept-Encoding': 'gzip',
        'User-agent': user_agent,
    }
    client_headers.update(headers)

    return httpx.Client(
        headers=client_headers,
        timeout=HTTP_TIMEOUT,
        follow_redirects=True,
        http2=http2,
    )


def make_request(
    client: httpx.Client,
    method: str,
    url: str,
    logger: logging.Logger,
    parse_json: bool = True,
    **kwargs
) -> Union[Dict[str, Any], List[Any], httpx.Response, None]:
    """
    Make a single HTTP request and log any failure.

    Args:
        client: httpx.Client instance
        method: HTTP method (GET, POST, ...)
        url: Request URL
        logger: Logger instance
        parse_json: Whether to parse response as JSON (default: True)
        **kwargs: Additional arguments to pass to client.request()

    Returns:
        Parsed JSON if parse_json=True, httpx.Response if parse_json=False, or None on failure
    """
    try:
        logger.debug(f"Making {method} request to {url}")
        response = client.request(method=method, url=url, **kwargs)
    except httpx.TimeoutException as e:
        logger.error(f"Request to {url} timed out: {str(e)}")
        return None
    except httpx.HTTPError as e:
        logger.error(f"Request to {url} failed: {str(e)}")
        return None

    logger.debug(f"Response status code: {response.status_code}")

    if response.status_code >= 400:
        error_text = response.text[:500] if response.text else "No response body"
        logger.error(f"Request failed with status {response.status_code}: {error_text}")
        return None

    if not parse_json:
        return response

    try:
        return response.json()
    except ValueError as e:
        logger.error(f"Failed to parse JSON response: {str(e)}")
        logger.debug(f"Response text: {response.text[:500]}")
        return None


def extract_items(payload: Any) -> List[Dict[str, Any]]:
    """Return the list of resources from a collection response."""
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in COLLECTION_KEYS:
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


def format_timestamp(value: Any) -> str:
    """Turn an ISO timestamp like 2023-01-31T00:00:00Z into 2023-01-31 00:00:00."""
    if not value:
        return ''
    return str(value).replace('T', ' ').replace('Z', '')


def print_table(
    title: str,
    columns: Sequence[Column],
    records: List[Dict[str, Any]],
    console: Optional[rich.console.Console] = None
) -> Table:
    """Render records as a rich table. Columns are (record key, header) pairs."""
    table = Table(title=title, show_header=True, header_style="bold")
    for _, header in columns:
        table.add_column(header)
    for record in records:
        table.add_row(*[
            '' if record.get(key) is None else str(record.get(key))
            for key, _ in columns
        ])
    (console or rich.console.Console()).print(table)
    return table


def _cell_value(value: Any) -> Any:
    """Excel cells only hold scalars; nested API values are written as JSON text."""
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False)
    return value


def write_workbook(
    records: List[Dict[str, Any]],
    columns: Sequence[Column],
    filename: Union[str, Path],
    logger: logging.Logger,
    title: str = 'Report'
) -> None:
    """Save records to an Excel workbook, one row per record."""
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = title[:31]

    for col, (_, header) in enumerate(columns, start=1):
        worksheet.cell(row=1, column=col, value=header)

    for row, record in enumerate(records, start=2):
        for col, (key, _) in enumerate(columns, start=1):
            worksheet.cell(row=row, column=col, value=_cell_value(record.get(key)))

    dim_holder = DimensionHolder(worksheet=worksheet)
    for col in range(worksheet.min_column, worksheet.max_column + 1):
        width = 0
        for cell in worksheet[get_column_letter(col)]:
            if cell.value is not None:
                width = max(width, len(str(cell.value)))
        dim_holder[get_column_letter(col)] = ColumnDimension(
            worksheet,
            min=col,
            max=col,
            width=min(width + 2, 50)  # Add padding, max width of 50
        )
    worksheet.column_dimensions = dim_holder

    Path(filename).parent.mkdir(parents=True, exist_ok=True)
    workbook.save(filename)
    logger.info(f"Saved {len(records)} row(s) to {filename}")


def write_json(
    records: List[Dict[str, Any]],
    filename: Union[str, Path],
    logger: logging.Logger
) -> None:
    """Dump records as a JSON array."""
    Path(filename).parent.mkdir(parents=True, exist_ok=True)
    with open(filename, 'w', encoding='utf-8') as f:
        json.dump(records, f, indent=2, ensure_ascii=False)
    logger.info(f"Saved {len(records)} record(s) to {filename}")


def filter_records(
    items: List[Dict[str, Any]],
    name: Optional[str] = None,
    id: Optional[str] = None,
    name_key: str = 'name'
) -> List[Dict[str, Any]]:
    """
    Keep items whose name or id matches (case-insensitive).

    Args:
        items: Raw resources returned by the API
        name: Name to match against item[name_key]
        id: Id to match against item['id']
        name_key: Field holding the resource name

    Returns:
        Matching items, or all items when no filter is given
    """
    if not name and not id:
        return items

    def matches(value: Any, wanted: Optional[str]) -> bool:
        return bool(wanted) and value is not None and str(value).lower() == wanted.lower()

    return [
        item for item in items
        if matches(item.get(name_key), name) or matches(item.get('id'), id)
    ]
