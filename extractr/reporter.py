"""Human-readable debug summary of an extraction run.

Used by the CLI's interactive mode to show what a template actually
matched: counts, per-field fill rates and a table of sample records.
"""

from typing import Any

import pandas as pd

from config.settings import GlobalConfig, get_config
from extractr.logger import get_logger
from extractr.models import ExtractionResult, Template

log = get_logger(__name__)


class DebugReport:
    """Builds the text summary for one result/template pair.

    Attributes:
        config: GlobalConfig instance; ``debug_sample_size`` caps the table.
    """

    def __init__(self, config: GlobalConfig | None = None) -> None:
        self.config = config or get_config()

    def _result_to_dataframe(self, result: ExtractionResult, template: Template) -> pd.DataFrame:
        return pd.DataFrame(result.data, columns=template.field_names)

    def fill_rates(self, result: ExtractionResult, template: Template) -> dict[str, float]:
        """Share of records with a non-null value, per declared field."""
        df = self._result_to_dataframe(result, template)
        if df.empty:
            return {name: 0.0 for name in template.field_names}
        return {name: float(rate) for name, rate in df.notna().mean().items()}

    def summary_stats(self, result: ExtractionResult, template: Template) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "Template": template.name,
            "Items": len(result.data),
            "Pages": result.pages_extracted,
            "Partial": "yes" if result.partial else "no",
        }
        if result.debug is not None and result.debug.timing is not None:
            stats["Duration"] = f"{result.debug.timing.duration_ms}ms"
        return stats

    def sample_table(self, result: ExtractionResult) -> str:
        samples = result.data[: self.config.debug_sample_size]
        if not samples:
            return "(no records)"
        df = pd.json_normalize(samples)
        with pd.option_context("display.width", 120, "display.max_colwidth", 40):
            return df.to_string(index=False)

    def render(self, result: ExtractionResult, template: Template) -> str:
        lines = [f"{key}: {value}" for key, value in self.summary_stats(result, template).items()]

        lines.append("")
        lines.append("Field fill rates:")
        for name, rate in self.fill_rates(result, template).items():
            lines.append(f"  {name:<20} {rate:6.1%}")

        lines.append("")
        lines.append("Samples:")
        lines.append(self.sample_table(result))

        if result.debug is not None:
            for error in result.debug.errors:
                lines.append(f"ERROR: {error}")
            for warning in result.debug.warnings:
                lines.append(f"WARNING: {warning}")

        log.debug("Debug summary rendered", template=template.name, items=len(result.data))
        return "\n".join(lines)


def render_summary(
    result: ExtractionResult,
    template: Template,
    config: GlobalConfig | None = None,
) -> str:
    return DebugReport(config).render(result, template)
