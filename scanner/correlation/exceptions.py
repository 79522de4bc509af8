class AggregationError(Exception):
    """Raised when tool output cannot be normalized."""


class UnmappedSeverity(AggregationError):
    def __init__(self, tool: str, native: str):
        self.tool = tool
        self.native = native
        super().__init__(f"{tool}: no mapping for native severity '{native}'")


class InvalidSeverityMap(AggregationError):
    """The severity mapping file is missing or malformed."""
