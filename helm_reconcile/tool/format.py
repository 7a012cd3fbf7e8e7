"""Library for formatting output."""

from typing import Any, Generator, TextIO
import json
import sys

import yaml

PADDING = 4


def format_columns(
    headers: list[str], rows: list[list[str]]
) -> Generator[str, None, None]:
    """Yield the rows aligned into columns under the headers."""
    data = [headers] + rows
    widths = [max(len(str(row[i])) for row in data) for i in range(len(headers))]
    format_string = "".join([f"{{:{w + PADDING}}}" for w in widths])
    for row in data:
        yield format_string.format(*[str(x) for x in row]).rstrip()


def print_table(data: list[dict[str, Any]], file: TextIO | None = None) -> None:
    """Print the data objects as a table keyed by the first object."""
    file = file or sys.stdout
    if not data:
        return
    keys = list(data[0])
    rows = [[str(row.get(key, "")) for key in keys] for row in data]
    for line in format_columns([key.upper() for key in keys], rows):
        print(line, file=file)


def print_struct(data: Any, output: str, file: TextIO | None = None) -> None:
    """Print the data as json or yaml."""
    file = file or sys.stdout
    if output == "json":
        json.dump(data, sort_keys=False, indent=4, fp=file)
        print(file=file)
    else:
        print(yaml.dump(data, sort_keys=False, explicit_start=True), end="", file=file)
