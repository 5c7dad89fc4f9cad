"""Loader for the bulk PID GTFS stop dataset."""

import asyncio
import csv
import io
import logging
import zipfile
from collections.abc import Iterator
from dataclasses import dataclass

import httpx

from pid_board.data.config import BoardConfig
from pid_board.errors import ParseError, UpstreamError

logger = logging.getLogger(__name__)

STOPS_FILENAME = "stops.txt"
REQUIRED_COLUMNS = ["stop_id", "stop_name"]
OPTIONAL_COLUMNS = ["location_type", "parent_station"]


@dataclass
class StopRecord:
    """One raw row of stops.txt."""

    stop_id: str
    stop_name: str
    location_type: str = ""
    parent_station: str = ""

    @property
    def is_station(self) -> bool:
        """Parent station rows (location_type 1) are not boardable points."""
        return self.location_type.strip() == "1"


class StopsDatasetLoader:
    """Downloads the GTFS archive and reads stop records out of stops.txt."""

    def __init__(self, config: BoardConfig, transport: httpx.AsyncBaseTransport | None = None):
        """Initialize the loader.

        Args:
            config: Configuration with the dataset URL and HTTP timeout.
            transport: Optional httpx transport override.
        """
        self._config = config
        self._transport = transport

    async def fetch(self) -> list[StopRecord]:
        """Download and parse the stop dataset.

        Returns:
            All stop records in file order.

        Raises:
            UpstreamError: If the download fails.
            ParseError: If the archive or stops.txt is malformed.
        """
        content = await self.download()
        records = await asyncio.to_thread(parse_stops_archive, content)
        logger.info(f"Parsed {len(records):,} stop records from {self._config.stops_dataset_url}")
        return records

    async def download(self) -> bytes:
        url = self._config.stops_dataset_url
        logger.info(f"Downloading stop dataset from {url}...")
        try:
            async with httpx.AsyncClient(
                timeout=self._config.http_timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise UpstreamError(0, str(e), url) from e

        if response.status_code >= 400:
            raise UpstreamError(response.status_code, response.text, url)
        return response.content


def parse_stops_archive(content: bytes) -> list[StopRecord]:
    """Read stop records from the stops.txt member of a GTFS ZIP archive."""
    try:
        with zipfile.ZipFile(io.BytesIO(content), "r") as zf:
            if STOPS_FILENAME not in zf.namelist():
                raise ParseError(f"{STOPS_FILENAME} not found in GTFS archive")
            with zf.open(STOPS_FILENAME) as f:
                text_file = io.TextIOWrapper(f, encoding="utf-8-sig")
                return list(read_stop_records(text_file))
    except zipfile.BadZipFile as e:
        raise ParseError(f"Invalid GTFS archive: {e}") from e
    except (UnicodeDecodeError, csv.Error) as e:
        raise ParseError(f"Malformed {STOPS_FILENAME}: {e}") from e


def read_stop_records(lines: io.TextIOBase) -> Iterator[StopRecord]:
    """Yield stop records from CSV text using header-driven column lookup."""
    reader = csv.reader(lines)
    header_index = _build_header_index(reader)
    required_width = max(header_index[col] for col in REQUIRED_COLUMNS)

    for row in reader:
        if len(row) <= required_width:
            continue
        yield StopRecord(
            stop_id=row[header_index["stop_id"]],
            stop_name=row[header_index["stop_name"]],
            location_type=_optional_field(row, header_index.get("location_type")),
            parent_station=_optional_field(row, header_index.get("parent_station")),
        )


def _build_header_index(reader: Iterator[list[str]]) -> dict[str, int]:
    """Map known column names to their position in the header row."""
    header = next(reader, None)
    if header is None:
        raise ParseError(f"{STOPS_FILENAME} is empty")

    header_index: dict[str, int] = {}
    for idx, name in enumerate(header):
        cleaned = name.strip()
        if cleaned in REQUIRED_COLUMNS + OPTIONAL_COLUMNS and cleaned not in header_index:
            header_index[cleaned] = idx

    missing = [col for col in REQUIRED_COLUMNS if col not in header_index]
    if missing:
        raise ParseError(f"{STOPS_FILENAME} missing columns: {', '.join(missing)}")
    return header_index


def _optional_field(row: list[str], idx: int | None) -> str:
    if idx is None or idx >= len(row):
        return ""
    return row[idx]
