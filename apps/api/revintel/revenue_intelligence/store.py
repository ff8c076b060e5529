from __future__ import annotations

import copy
import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone, tzinfo
from typing import Any, Protocol

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from revintel.crm.models import CRMAccount, CRMOpportunity, CRMOpportunityHistory, RevenueIntelligenceSettingsDocument
from revintel.revenue_intelligence.errors import HistoryUnavailableError, InvalidIdentifierError
from revintel.revenue_intelligence.normalizer import (
    CLOSED_LOST_STAGES,
    DATE_FIELDS,
    UNASSIGNED_OWNER,
    HistorySummary,
    needs_history,
)
from revintel.revenue_intelligence.temporal import is_string_date, parse_instant


SETTINGS_DOCUMENT_ID = "default"
STAGE_CHANGED_EVENT = "stage_changed"


class DealStore(Protocol):
    def coerce_id(self, raw: str) -> Any: ...

    def find_opportunities(
        self,
        start: datetime,
        end_exclusive: datetime,
        *,
        owner_filter: str | None = None,
        include_closed_lost: bool = False,
        tz: tzinfo = timezone.utc,
    ) -> list[dict[str, Any]]: ...

    def get_opportunity(self, opportunity_id: str) -> dict[str, Any] | None: ...

    def find_accounts(self, account_ids: Iterable[str]) -> list[dict[str, Any]]: ...

    def latest_history(
        self, opportunity_ids: Sequence[str], *, tz: tzinfo = timezone.utc
    ) -> dict[str, HistorySummary]: ...

    def find_unnormalized(self, limit: int) -> list[dict[str, Any]]: ...

    def apply_updates(self, updates: Mapping[str, Mapping[str, Any]]) -> int: ...

    def load_settings_document(self) -> Any: ...

    def save_settings_document(self, raw: Mapping[str, Any]) -> None: ...


def _present(value: Any) -> bool:
    return value is not None and value != ""


def _owner_matches(owner: Any, owner_filter: str | None) -> bool:
    if not owner_filter:
        return True
    if owner_filter == UNASSIGNED_OWNER:
        return not owner
    return owner == owner_filter


def _is_unnormalized(doc: Mapping[str, Any]) -> bool:
    return needs_history(doc) or any(is_string_date(doc.get(name)) for name in DATE_FIELDS)


class InMemoryDealStore:
    """Document-list store shaped like the legacy collections.

    Date fields may hold ``datetime``, ``date`` or ISO strings, as they do in
    records written by older clients.
    """

    def __init__(
        self,
        opportunities: Iterable[Mapping[str, Any]] = (),
        accounts: Iterable[Mapping[str, Any]] = (),
        history: Iterable[Mapping[str, Any]] = (),
        settings_document: Mapping[str, Any] | None = None,
    ):
        self.opportunities = [dict(item) for item in opportunities]
        self.accounts = [dict(item) for item in accounts]
        self.history = [dict(item) for item in history]
        self.settings_document = copy.deepcopy(settings_document) if settings_document is not None else None
        self.commits = 0

    def coerce_id(self, raw: str) -> str:
        value = str(raw or "").strip()
        if not value:
            raise InvalidIdentifierError(raw)
        return value

    def find_opportunities(
        self,
        start: datetime,
        end_exclusive: datetime,
        *,
        owner_filter: str | None = None,
        include_closed_lost: bool = False,
        tz: tzinfo = timezone.utc,
    ) -> list[dict[str, Any]]:
        matched: list[dict[str, Any]] = []
        for doc in self.opportunities:
            forecasted = doc.get("forecasted_close_date")
            target = parse_instant(forecasted if _present(forecasted) else doc.get("close_date"), tz)
            if target is None or not (start <= target < end_exclusive):
                continue
            if not include_closed_lost and (doc.get("stage") or "").strip() in CLOSED_LOST_STAGES:
                continue
            if not _owner_matches(doc.get("owner_id"), owner_filter):
                continue
            matched.append(copy.deepcopy(doc))
        return matched

    def get_opportunity(self, opportunity_id: str) -> dict[str, Any] | None:
        for doc in self.opportunities:
            if str(doc.get("id")) == str(opportunity_id):
                return copy.deepcopy(doc)
        return None

    def find_accounts(self, account_ids: Iterable[str]) -> list[dict[str, Any]]:
        wanted = {str(item) for item in account_ids}
        return [copy.deepcopy(doc) for doc in self.accounts if str(doc.get("id")) in wanted]

    def latest_history(
        self, opportunity_ids: Sequence[str], *, tz: tzinfo = timezone.utc
    ) -> dict[str, HistorySummary]:
        wanted = {str(item) for item in opportunity_ids}
        latest: dict[str, datetime] = {}
        latest_stage: dict[str, datetime] = {}
        for event in self.history:
            deal_id = str(event.get("opportunity_id"))
            created_at = parse_instant(event.get("created_at"), tz)
            if deal_id not in wanted or created_at is None:
                continue
            if deal_id not in latest or created_at > latest[deal_id]:
                latest[deal_id] = created_at
            if event.get("event_type") == STAGE_CHANGED_EVENT:
                if deal_id not in latest_stage or created_at > latest_stage[deal_id]:
                    latest_stage[deal_id] = created_at
        return {
            deal_id: HistorySummary(last_history_at=at, last_stage_at=latest_stage.get(deal_id))
            for deal_id, at in latest.items()
        }

    def find_unnormalized(self, limit: int) -> list[dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self.opportunities if _is_unnormalized(doc)][:limit]

    def apply_updates(self, updates: Mapping[str, Mapping[str, Any]]) -> int:
        modified = 0
        for doc in self.opportunities:
            changes = updates.get(str(doc.get("id")))
            if not changes:
                continue
            if any(doc.get(name) != value for name, value in changes.items()):
                doc.update(changes)
                modified += 1
        self.commits += 1
        return modified

    def load_settings_document(self) -> Any:
        return copy.deepcopy(self.settings_document)

    def save_settings_document(self, raw: Mapping[str, Any]) -> None:
        self.settings_document = copy.deepcopy(dict(raw))


def _utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


class SqlDealStore:
    def __init__(self, session: Session):
        self.session = session

    def coerce_id(self, raw: str) -> uuid.UUID:
        try:
            return uuid.UUID(str(raw))
        except (TypeError, ValueError) as exc:
            raise InvalidIdentifierError(raw) from exc

    def find_opportunities(
        self,
        start: datetime,
        end_exclusive: datetime,
        *,
        owner_filter: str | None = None,
        include_closed_lost: bool = False,
        tz: tzinfo = timezone.utc,
    ) -> list[dict[str, Any]]:
        start, end_exclusive = _utc(start), _utc(end_exclusive)
        stmt = select(CRMOpportunity).where(
            or_(
                and_(
                    CRMOpportunity.forecasted_close_date >= start,
                    CRMOpportunity.forecasted_close_date < end_exclusive,
                ),
                and_(
                    CRMOpportunity.forecasted_close_date.is_(None),
                    CRMOpportunity.close_date >= start,
                    CRMOpportunity.close_date < end_exclusive,
                ),
            )
        )
        if not include_closed_lost:
            stmt = stmt.where(
                or_(CRMOpportunity.stage.is_(None), CRMOpportunity.stage.not_in(sorted(CLOSED_LOST_STAGES)))
            )
        if owner_filter == UNASSIGNED_OWNER:
            stmt = stmt.where(or_(CRMOpportunity.owner_id.is_(None), CRMOpportunity.owner_id == ""))
        elif owner_filter:
            stmt = stmt.where(CRMOpportunity.owner_id == owner_filter)

        rows = self.session.scalars(stmt.order_by(CRMOpportunity.created_at, CRMOpportunity.id)).all()
        return [self._to_document(row) for row in rows]

    def get_opportunity(self, opportunity_id: str) -> dict[str, Any] | None:
        row = self.session.get(CRMOpportunity, self.coerce_id(opportunity_id))
        return self._to_document(row) if row is not None else None

    def find_accounts(self, account_ids: Iterable[str]) -> list[dict[str, Any]]:
        ids: list[uuid.UUID] = []
        for raw in account_ids:
            try:
                ids.append(uuid.UUID(str(raw)))
            except ValueError:
                continue
        if not ids:
            return []
        rows = self.session.scalars(select(CRMAccount).where(CRMAccount.id.in_(ids))).all()
        return [{"id": str(row.id), "name": row.name, "created_at": row.created_at} for row in rows]

    def latest_history(
        self, opportunity_ids: Sequence[str], *, tz: tzinfo = timezone.utc
    ) -> dict[str, HistorySummary]:
        ids = [self.coerce_id(item) for item in opportunity_ids]
        if not ids:
            return {}
        stage_changed = case(
            (CRMOpportunityHistory.event_type == STAGE_CHANGED_EVENT, CRMOpportunityHistory.created_at),
            else_=None,
        )
        stmt = (
            select(
                CRMOpportunityHistory.opportunity_id,
                func.max(CRMOpportunityHistory.created_at),
                func.max(stage_changed),
            )
            .where(CRMOpportunityHistory.opportunity_id.in_(ids))
            .group_by(CRMOpportunityHistory.opportunity_id)
        )
        try:
            rows = self.session.execute(stmt).all()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise HistoryUnavailableError(str(exc)) from exc
        return {
            str(opportunity_id): HistorySummary(
                last_history_at=parse_instant(last_at, tz),
                last_stage_at=parse_instant(last_stage_at, tz),
            )
            for opportunity_id, last_at, last_stage_at in rows
        }

    def find_unnormalized(self, limit: int) -> list[dict[str, Any]]:
        # native columns never hold strings, so only missing derived fields qualify
        stmt = (
            select(CRMOpportunity)
            .where(or_(CRMOpportunity.last_activity_at.is_(None), CRMOpportunity.stage_changed_at.is_(None)))
            .order_by(CRMOpportunity.created_at, CRMOpportunity.id)
            .limit(limit)
        )
        return [self._to_document(row) for row in self.session.scalars(stmt).all()]

    def apply_updates(self, updates: Mapping[str, Mapping[str, Any]]) -> int:
        modified = 0
        for opportunity_id, changes in updates.items():
            if not changes:
                continue
            values = {name: _utc(value) if isinstance(value, datetime) else value for name, value in changes.items()}
            # keep updated_at as stored unless it is itself being normalized
            values.setdefault("updated_at", CRMOpportunity.updated_at)
            result = self.session.execute(
                update(CRMOpportunity)
                .where(CRMOpportunity.id == self.coerce_id(opportunity_id))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            modified += result.rowcount or 0
        self.session.commit()
        return modified

    def load_settings_document(self) -> Any:
        row = self.session.get(RevenueIntelligenceSettingsDocument, SETTINGS_DOCUMENT_ID)
        return row.settings if row is not None else None

    def save_settings_document(self, raw: Mapping[str, Any]) -> None:
        row = self.session.get(RevenueIntelligenceSettingsDocument, SETTINGS_DOCUMENT_ID)
        if row is None:
            row = RevenueIntelligenceSettingsDocument(id=SETTINGS_DOCUMENT_ID, settings=dict(raw))
            self.session.add(row)
        else:
            row.settings = dict(raw)
        self.session.commit()

    def _to_document(self, row: CRMOpportunity) -> dict[str, Any]:
        return {
            "id": str(row.id),
            "account_id": str(row.account_id) if row.account_id else None,
            "title": row.title,
            "amount": row.amount,
            "stage": row.stage,
            "owner_id": row.owner_id,
            "close_date": row.close_date,
            "forecasted_close_date": row.forecasted_close_date,
            "last_activity_at": row.last_activity_at,
            "stage_changed_at": row.stage_changed_at,
            "days_in_stage": row.days_in_stage,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }
