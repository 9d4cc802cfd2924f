"""UI layer -- Rich dashboard and output formatters."""

from .dashboard import (
    RunDisplay,
    console,
    print_failures,
    print_final_results,
    print_header,
    print_history,
    print_samples,
    print_server_selection,
)
from .output import (
    FORMATS,
    format_csv,
    format_json,
    format_text_result,
    format_yaml,
    render,
    write_output,
)

__all__ = [
    "FORMATS",
    "RunDisplay",
    "console",
    "format_csv",
    "format_json",
    "format_text_result",
    "format_yaml",
    "print_failures",
    "print_final_results",
    "print_header",
    "print_history",
    "print_samples",
    "print_server_selection",
    "render",
    "write_output",
]
