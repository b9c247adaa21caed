"""Target-vs-achievement rows built from a dashboard config and lead records."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime, tzinfo
from decimal import Decimal

from leadflow.crm.schemas import (
    AchievementRow,
    AchievementTotals,
    DashboardConfigUpsert,
    ExternalAchievementUpdate,
    LeadRead,
    MonthlyTarget,
)
from leadflow.crm.statuses import LeadKind


NOT_AVAILABLE = "N/A"


def month_key(value: datetime, tz: tzinfo | None = None) -> str:
    if tz is not None:
        value = value.astimezone(tz)
    return value.strftime("%Y-%m")


def build_report(
    config: DashboardConfigUpsert,
    visible_user_ids: set[uuid.UUID],
    leads: Iterable[LeadRead],
    anchors: Iterable[LeadRead],
    month: str | None = None,
    *,
    tz: tzinfo | None = None,
) -> list[AchievementRow]:
    """One row per ``(anchor, month)`` target in ``config``, sorted by anchor name then month.

    Targets that reference an anchor missing from ``anchors`` are skipped.
    Achieved figures count leads linked to the anchor, owned by a visible
    user, in a tracked status and last touched within that month. The sanction
    and AUM "achieved" values are copied from the config as entered.
    """
    anchors_by_id = {anchor.id: anchor for anchor in anchors if anchor.kind == LeadKind.ANCHOR}
    tracked = set(config.status_to_track)
    candidates = [
        lead
        for lead in leads
        if lead.anchor_id is not None and lead.assigned_to in visible_user_ids and lead.status in tracked
    ]

    rows: list[AchievementRow] = []
    for anchor_id, months in config.targets.items():
        anchor = anchors_by_id.get(anchor_id)
        if anchor is None:
            continue
        for period, target in months.items():
            if month is not None and period != month:
                continue
            subset = [
                lead
                for lead in candidates
                if lead.anchor_id == anchor_id and month_key(lead.last_touched_at, tz) == period
            ]
            rows.append(_build_row(anchor, period, target, subset))

    rows.sort(key=lambda row: (row.anchor_name, row.month, str(row.anchor_id)))
    return rows


def _build_row(anchor: LeadRead, period: str, target: MonthlyTarget, subset: list[LeadRead]) -> AchievementRow:
    first = subset[0] if subset else None
    return AchievementRow(
        anchor_id=anchor.id,
        anchor_name=anchor.name,
        month=period,
        state=(first.state if first and first.state else NOT_AVAILABLE),
        lender=(first.lender if first and first.lender else NOT_AVAILABLE),
        achieved_count=len(subset),
        achieved_deal_value=sum((lead.deal_value or Decimal("0") for lead in subset), Decimal("0")),
        status_count_target=target.status_count_target,
        deal_value_target=target.deal_value_target,
        sanction_value_target=target.sanction_value_target,
        sanction_value_achieved=target.sanction_value_achieved,
        aum_value_target=target.aum_value_target,
        aum_value_achieved=target.aum_value_achieved,
    )


def summarize_rows(rows: Iterable[AchievementRow]) -> AchievementTotals:
    totals = AchievementTotals()
    for row in rows:
        totals.achieved_count += row.achieved_count
        totals.achieved_deal_value += row.achieved_deal_value
        totals.status_count_target += row.status_count_target
        totals.deal_value_target += row.deal_value_target
        totals.sanction_value_achieved += row.sanction_value_achieved
        totals.aum_value_achieved += row.aum_value_achieved
    return totals


def apply_external_achievements(config: DashboardConfigUpsert, update: ExternalAchievementUpdate) -> DashboardConfigUpsert:
    """Return a copy of ``config`` with sanction/AUM achievements set for every selected anchor.

    The imported figures are team-level, so each selected anchor receives the
    same values for ``update.month``; other target fields are left untouched.
    """
    targets = {anchor_id: dict(months) for anchor_id, months in config.targets.items()}
    for anchor_id in config.selected_anchor_ids:
        months = targets.setdefault(anchor_id, {})
        current = months.get(update.month, MonthlyTarget())
        months[update.month] = current.model_copy(
            update={
                "sanction_value_achieved": update.sanction_value_achieved,
                "aum_value_achieved": update.aum_value_achieved,
            }
        )
    return config.model_copy(update={"targets": targets})
