"""
Deterministic KPI and chart computation over extracted records.

Rationale:
- Pure and synchronous: no model calls, same input -> same output.
- The definitions come from the model, so each one is validated on its own and
  a bad definition is dropped with a warning instead of failing the dashboard.
- Numeric coercion mirrors a leading-number parse: "100" -> 100, "12abc" -> 12,
  "abc" -> NaN. Sums treat NaN as 0; averages divide by parseable values only.
"""

import logging
import math
import re
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd
from pydantic import ValidationError

from .schemas import ChartDefinition, ComputedChart, ComputedKPI, DataRecord, KPIDefinition
from .utils import safe_json

logger = logging.getLogger(__name__)

MAX_CHART_POINTS = 20
UNKNOWN_GROUP = "Unknown"
CHART_MARGIN = {"top": 20, "right": 30, "left": 20, "bottom": 5}

_CHART_COMPONENTS = {
    "bar": "BarChart",
    "line": "LineChart",
    "area": "AreaChart",
    "pie": "PieChart",
}

_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_LEADING_INFINITY = re.compile(r"^\s*([+-]?)Infinity")


def parse_number(value: Any) -> float:
    """Coerce a record value to float; NaN when it has no leading number."""
    if isinstance(value, bool) or value is None:
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        try:
            return float(value)
        except (TypeError, ValueError):
            return math.nan
    match = _LEADING_NUMBER.match(value)
    if match:
        return float(match.group(1))
    match = _LEADING_INFINITY.match(value)
    if match:
        return -math.inf if match.group(1) == "-" else math.inf
    return math.nan


def _column_values(records: List[DataRecord], column: Optional[str]) -> pd.Series:
    return pd.Series([parse_number(r.get(column)) for r in records], dtype="float64")


def _round_half_up(value: float, places: int) -> Decimal:
    quantum = Decimal(1).scaleb(-places)
    # wide precision so very large floats still quantize
    return Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP, context=Context(prec=400))


def _grouped(value: Decimal, places: int) -> str:
    text = f"{value:,.{places}f}"
    if places and "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_value(value: Any, fmt: Optional[str] = None) -> str:
    """
    Display string for a KPI value.

    currency -> $1,235 (no decimals); percent -> value is already in percent
    units, one decimal; anything else -> 1.5M / 2.5K / grouped number.
    """
    try:
        value = float(value)
    except (TypeError, ValueError):
        return "0"
    if math.isnan(value) or math.isinf(value):
        return "0"

    kind = (fmt or "").lower()
    if kind == "currency":
        amount = _round_half_up(abs(value), 0)
        sign = "-" if value < 0 and amount != 0 else ""
        return f"{sign}${amount:,.0f}"
    if kind == "percent":
        return f"{_round_half_up(value, 1):,.1f}%"

    if value >= 1_000_000:
        return f"{_round_half_up(value / 1_000_000, 1):.1f}M"
    if value >= 1_000:
        return f"{_round_half_up(value / 1_000, 1):.1f}K"
    return _grouped(_round_half_up(value, 3), 3)


def compute_kpi(records: List[DataRecord], definition: KPIDefinition) -> Optional[ComputedKPI]:
    """Compute one KPI; None for an unknown calculation kind."""
    calculation = (definition.calculation or "").lower()
    values = _column_values(records, definition.column)
    parseable = values.dropna()

    if calculation == "sum":
        value = float(values.fillna(0).sum())
    elif calculation in ("avg", "average"):
        value = float(parseable.sum() / len(parseable)) if len(parseable) else 0.0
    elif calculation == "count":
        value = float(len(records))
    elif calculation == "max":
        value = float(parseable.max()) if len(parseable) else 0.0
    elif calculation == "min":
        value = float(parseable.min()) if len(parseable) else 0.0
    else:
        logger.warning(f"Unknown calculation type: {definition.calculation}")
        return None

    return ComputedKPI(
        name=definition.name,
        value=value,
        formatted_value=format_value(value, definition.format),
        calculation=definition.calculation,
        column=definition.column,
        format=definition.format,
    )


def _group_key(value: Any) -> str:
    """Group label for a dimension value; falsy values fall into "Unknown"."""
    if value is None or value is False or value == "" or value == 0:
        return UNKNOWN_GROUP
    if isinstance(value, float):
        if math.isnan(value):
            return UNKNOWN_GROUP
        if value.is_integer():
            return str(int(value))
    if value is True:
        return "true"
    return str(value)


def _prepare_chart_data(records: List[DataRecord], definition: ChartDefinition) -> List[Dict[str, Any]]:
    if not definition.measures or not definition.dimensions:
        return [dict(r) for r in records[:MAX_CHART_POINTS]]
    if not records:
        return []

    dimension = definition.dimensions[0]
    measures = list(dict.fromkeys(definition.measures))
    primary = measures[0]

    frame = pd.DataFrame({
        "__group__": [_group_key(r.get(dimension)) for r in records],
        **{f"m{i}": _column_values(records, m).to_numpy() for i, m in enumerate(measures)},
    })
    # sort=False keeps groups in first-appearance order; sum() skips NaN
    sums = frame.groupby("__group__", sort=False).sum()

    points = []
    for key, row in sums.iterrows():
        point: Dict[str, Any] = {dimension: key}
        for i, measure in enumerate(measures):
            point[measure] = float(row[f"m{i}"])
        points.append(point)

    points.sort(key=lambda p: p[primary], reverse=True)
    return points[:MAX_CHART_POINTS]


def _render_config(chart_type: Optional[str], data: List[Dict[str, Any]], definition: ChartDefinition) -> Dict[str, Any]:
    base = {"data": data, "margin": dict(CHART_MARGIN)}
    component = _CHART_COMPONENTS.get((chart_type or "").lower())
    if component is None or not definition.measures or not definition.dimensions:
        return base

    config = {**base, "type": component, "dataKey": definition.measures[0]}
    if component == "PieChart":
        config["nameKey"] = definition.dimensions[0]
    else:
        config["xAxisKey"] = definition.dimensions[0]
    return config


def compute_chart(records: List[DataRecord], definition: ChartDefinition, index: int) -> Optional[ComputedChart]:
    """Compute one chart dataset; None when it yields no data points."""
    data = safe_json(_prepare_chart_data(records, definition))
    if not data:
        logger.warning(f"Chart {definition.title!r} produced no data points, skipping")
        return None

    return ComputedChart(
        id=f"chart_{index}",
        title=definition.title,
        type=definition.type,
        data=data,
        measures=definition.measures,
        dimensions=definition.dimensions,
        render_config=_render_config(definition.type, data, definition),
    )


DefinitionInput = Union[Dict[str, Any], KPIDefinition, ChartDefinition]


def compute_kpis(records: List[DataRecord], definitions: Iterable[DefinitionInput]) -> List[ComputedKPI]:
    kpis = []
    for raw in definitions or []:
        try:
            definition = raw if isinstance(raw, KPIDefinition) else KPIDefinition.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Skipping invalid KPI definition {raw!r}: {e.error_count()} error(s)")
            continue
        try:
            kpi = compute_kpi(records, definition)
        except (TypeError, ValueError, ArithmeticError) as e:
            logger.warning(f"Warning calculating KPI {definition.name}: {e}")
            continue
        if kpi is not None:
            kpis.append(kpi)
    return kpis


def compute_charts(records: List[DataRecord], definitions: Iterable[DefinitionInput]) -> List[ComputedChart]:
    charts = []
    for index, raw in enumerate(definitions or []):
        try:
            definition = raw if isinstance(raw, ChartDefinition) else ChartDefinition.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Skipping invalid chart definition {raw!r}: {e.error_count()} error(s)")
            continue
        try:
            chart = compute_chart(records, definition, index)
        except (TypeError, ValueError, KeyError) as e:
            logger.warning(f"Warning generating chart {definition.title}: {e}")
            continue
        if chart is not None:
            charts.append(chart)
    return charts
