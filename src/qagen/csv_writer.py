"""CSV encoding of generated question/answer pairs."""
from __future__ import annotations

import csv
import io
from typing import Iterable, Sequence, Tuple

CSV_HEADER: Tuple[str, str] = ("Question", "Answer")


def encode_csv(
    rows: Iterable[Tuple[str, str]],
    header: Sequence[str] = CSV_HEADER,
) -> str:
    """Render *rows* as CSV with every field quoted and CRLF line endings."""

    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=",", quoting=csv.QUOTE_ALL, lineterminator="\r\n")
    writer.writerow(header)
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue()


__all__ = ["CSV_HEADER", "encode_csv"]
