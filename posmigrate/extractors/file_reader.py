"""CSV/JSON reader for POS export files."""

import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

logger = logging.getLogger(__name__)

# Keys under which JSON exports commonly nest their rows
_JSON_CONTAINER_KEYS = ("data", "records", "items", "results")


def read_export(path: Union[str, Path], encoding: str = "utf-8", delimiter: str = ",") -> List[Dict[str, Any]]:
    """
    Read a POS export into a list of rows.

    CSV values are stripped and empty cells become None; fully empty rows
    are dropped. JSON may be a list of rows or an object wrapping one.

    Raises:
        ValueError: If a JSON file holds no list of rows
    """
    path = Path(path)
    if path.suffix.lower() == ".json":
        rows = _read_json(path, encoding)
    else:
        try:
            rows = _read_csv(path, encoding, delimiter)
        except UnicodeDecodeError:
            logger.warning(f"{encoding} decode failed, trying latin-1 for {path}")
            rows = _read_csv(path, "latin-1", delimiter)

    logger.info(f"Read {len(rows)} rows from {path}")
    return rows


def _read_csv(path: Path, encoding: str, delimiter: str) -> List[Dict[str, Any]]:
    rows = []
    with open(path, "r", encoding=encoding, newline="") as f:
        sample = f.read(8192)
        f.seek(0)

        try:
            delimiter = csv.Sniffer().sniff(sample).delimiter
        except csv.Error:
            pass

        reader = csv.DictReader(f, delimiter=delimiter)
        for row in reader:
            data = {}
            for column, value in row.items():
                if column is None:
                    continue
                if value is not None:
                    value = value.strip() or None
                data[column.strip()] = value

            if all(v is None for v in data.values()):
                continue
            rows.append(data)

    return rows


def _read_json(path: Path, encoding: str) -> List[Dict[str, Any]]:
    with open(path, "r", encoding=encoding) as f:
        data = json.load(f)

    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in _JSON_CONTAINER_KEYS:
            if isinstance(data.get(key), list):
                return data[key]
        return [data]
    raise ValueError(f"Unexpected JSON structure in {path}")
