"""
Parsing and applying LLM plan-adjustment responses.

Model output is free text that usually wraps a JSON object. Parsing is
best-effort, so the result is either a PlanAdjustment or an explicit
ParseFailure carrying the raw text; callers decide what to do with each.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from core.week_calculator import calculate_current_week

logger = logging.getLogger(__name__)

# Greedy: first '{' to last '}' so nested objects survive.
JSON_OBJECT_PATTERN = re.compile(r'\{[\s\S]*\}')


@dataclass(frozen=True)
class PlanAdjustment:
    adjusted_weeks: List[Dict[str, Any]]
    summary: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ParseFailure:
    reason: str
    raw_text: str


@dataclass(frozen=True)
class AdjustmentResult:
    plan_updated: bool
    current_week: Optional[int]
    adjustment: Union[PlanAdjustment, ParseFailure, None]
    message: str = ''


def parse_adjustment_response(text: Optional[str]) -> Union[PlanAdjustment, ParseFailure]:
    raw = text or ''
    match = JSON_OBJECT_PATTERN.search(raw)
    if not match:
        return ParseFailure(reason='no JSON object in response', raw_text=raw)

    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        return ParseFailure(reason=f'invalid JSON: {exc.msg}', raw_text=raw)

    if not isinstance(payload, dict):
        return ParseFailure(reason='JSON payload is not an object', raw_text=raw)

    weeks = payload.get('adjusted_weeks')
    if not isinstance(weeks, list):
        return ParseFailure(reason='missing adjusted_weeks list', raw_text=raw)

    bad = [w for w in weeks if not isinstance(w, dict) or not isinstance(w.get('week_number'), int)]
    if bad:
        return ParseFailure(reason='adjusted week without integer week_number', raw_text=raw)

    summary = payload.get('adjustment_summary')
    return PlanAdjustment(
        adjusted_weeks=weeks,
        summary=str(summary) if summary is not None else None,
        payload=payload,
    )


def merge_adjusted_weeks(plan_json: Optional[Dict[str, Any]], adjustment: PlanAdjustment,
                         adjustment_type: str, from_week: int,
                         adjusted_at: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Return a new plan dict with adjusted weeks swapped in by week_number.

    Unknown week numbers are appended; weeks end up sorted. The input plan is
    not modified.
    """
    merged = copy.deepcopy(plan_json or {})
    weeks = list(merged.get('weeks') or [])
    index_by_number = {w.get('week_number'): i for i, w in enumerate(weeks)}

    for adjusted in adjustment.adjusted_weeks:
        idx = index_by_number.get(adjusted['week_number'])
        if idx is None:
            index_by_number[adjusted['week_number']] = len(weeks)
            weeks.append(copy.deepcopy(adjusted))
        else:
            weeks[idx] = copy.deepcopy(adjusted)

    weeks.sort(key=lambda w: w.get('week_number') or 0)
    stamp = (adjusted_at or datetime.now(timezone.utc)).isoformat()

    merged['weeks'] = weeks
    merged['last_adjusted'] = stamp
    merged['adjustment_history'] = list(merged.get('adjustment_history') or []) + [{
        'date': stamp,
        'type': adjustment_type,
        'summary': adjustment.summary,
        'from_week': from_week,
    }]
    return merged


def apply_plan_adjustment(db, user_id: str, response_text: str,
                          adjustment_type: str = 'user_request',
                          reference_date=None) -> AdjustmentResult:
    """Parse a model response and merge it into the user's active plan."""
    plan = db.get_active_plan(user_id)
    if not plan:
        return AdjustmentResult(plan_updated=False, current_week=None, adjustment=None,
                                message='No active training plan found')

    start_date = plan.get('start_date') or (plan.get('created_at') or '')[:10]
    current_week = calculate_current_week(
        start_date, plan['duration_weeks'], reference_date=reference_date
    ).current_week

    adjustment = parse_adjustment_response(response_text)
    if isinstance(adjustment, ParseFailure):
        logger.warning("Plan adjustment for %s not applied: %s", user_id, adjustment.reason)
        return AdjustmentResult(
            plan_updated=False,
            current_week=current_week,
            adjustment=adjustment,
            message='Structured plan update was not possible',
        )

    merged = merge_adjusted_weeks(plan['plan_json'], adjustment, adjustment_type, current_week)
    updated = db.update_plan_json(plan['id'], merged)
    return AdjustmentResult(plan_updated=updated, current_week=current_week, adjustment=adjustment)
