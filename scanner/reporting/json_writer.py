from pathlib import Path

from scanner.models import AggregatedReport
from scanner.reporting.exceptions import ReportIOError


def write_json_report(
    report: AggregatedReport,
    output_path: str,
    *,
    include_timing: bool = True,
) -> str:
    """
    Write the canonical JSON report.

    Keys and findings are in a fixed order, so two runs over the same
    inputs differ only in the timing fields.
    """

    out = Path(output_path)

    try:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(report.to_canonical_json(include_timing=include_timing), encoding="utf-8")
    except OSError as exc:
        raise ReportIOError(f"Cannot write JSON report to {out}: {exc}") from exc

    return str(out)
