"""smart-pivot — Cross-tabulate spreadsheet rows into pivot tables."""

__version__ = "0.2.0"

AGGREGATORS: tuple[str, ...] = ("sum", "count", "average", "min", "max", "percentage")

EMPTY_LABEL = "(Empty)"
KEY_SEPARATOR = "::"
TOTAL_KEY = "Total"
