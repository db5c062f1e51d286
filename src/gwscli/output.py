"""
Rendering of command results, either a plain aligned table or JSON.
"""

from typing import Any, Iterable, List, TextIO
import json
import sys

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .resources import GoogleWorkSpaceResourceBase

def truncate(s: str, max_len: int) -> str:
    if len(s) <= max_len:
        return s
    if max_len <= 3:
        return s[:max_len]
    return s[:max_len - 3] + "..."

def _clean(value: Any) -> str:
    # cells are single line
    return " ".join(str(value if value is not None else "").split())

def _jsonable(obj: Any) -> Any:
    if isinstance(obj, GoogleWorkSpaceResourceBase):
        return obj.to_base()
    raise TypeError(f"{type(obj).__name__} is not JSON serializable")

def write_json(obj: Any, file: TextIO|None = None) -> None:
    out = file if file is not None else sys.stdout
    json.dump(obj, out, ensure_ascii=False, indent=2, default=_jsonable)
    out.write("\n")

def write_table(headers: List[str], rows: Iterable[Iterable[Any]], file: TextIO|None = None) -> None:
    """
    Borderless left aligned columns with a header row, like tabwriter output.
    """
    cells = [[_clean(c) for c in row] for row in rows]
    widths = [max([len(h)] + [len(r[i]) for r in cells if i < len(r)]) for i, h in enumerate(headers)]
    console = Console(file=file if file is not None else sys.stdout, highlight=False)
    # never squeeze columns to the terminal, long rows just run on
    console.width = max(console.width, sum(widths) + 2 * len(widths))
    table = Table(box=None, show_edge=False, pad_edge=False, header_style="bold", padding=(0, 2, 0, 0))
    for h in headers:
        table.add_column(h, no_wrap=True, overflow="ignore")
    for row in cells:
        table.add_row(*[Text(c) for c in row])
    console.print(table)
