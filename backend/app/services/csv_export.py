import csv
import json
from io import StringIO
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def records_to_csv(records: Iterable[BaseModel], columns: Optional[List[str]] = None) -> str:
    """Render records as CSV text with every cell quoted.

    List and dict fields are written as JSON text. Returns an empty string
    when there are no records.
    """
    rows: List[Dict[str, Any]] = [record.model_dump() for record in records]
    if not rows:
        return ""
    headers = columns or list(rows[0].keys())
    sio = StringIO()
    writer = csv.writer(sio, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_cell(row.get(column)) for column in headers])
    return sio.getvalue()
