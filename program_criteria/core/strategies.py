import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from program_criteria.config import MIN_YEAR_GROUP
from program_criteria.core.models import Resolution, ResolutionSource, SemesterKey
from program_criteria.core.repositories import CriteriaStore
from program_criteria.core.schema import clone_semester

logger = logging.getLogger(__name__)

REVIEW_HINT = "Review and click Save to persist."


@dataclass(frozen=True)
class CascadeContext:
    key: SemesterKey
    previous_program: Optional[str] = None
    min_year_group: int = MIN_YEAR_GROUP


class CascadeStep(Protocol):
    source: ResolutionSource

    def lookup(self, store: CriteriaStore, ctx: CascadeContext) -> Optional[Resolution]: ...


def _prefill(store: CriteriaStore, ctx: CascadeContext, source_key: SemesterKey,
             source: ResolutionSource, message: str) -> Optional[Resolution]:
    data = store.fetch(source_key)
    if not data.has_content:
        logger.debug("%s: nothing at %s", source.value, source_key.describe())
        return None
    return Resolution(
        key=ctx.key,
        data=clone_semester(data),
        source=source,
        message=message,
        source_key=source_key,
    )


class SavedDataStep:
    """The target key's own criteria, shown as-is."""
    source = ResolutionSource.SAVED

    def lookup(self, store: CriteriaStore, ctx: CascadeContext) -> Optional[Resolution]:
        data = store.fetch(ctx.key)
        if not data.has_content:
            return None
        return Resolution(key=ctx.key, data=clone_semester(data), source=self.source)


class SiblingProgramStep:
    """Same year group and semester, the program the user was on before."""
    source = ResolutionSource.SIBLING_PROGRAM

    def lookup(self, store: CriteriaStore, ctx: CascadeContext) -> Optional[Resolution]:
        hint = (ctx.previous_program or "").strip()
        if not hint or hint == ctx.key.program:
            return None
        sem = ctx.key.semester.value
        return _prefill(
            store, ctx,
            SemesterKey(ctx.key.year_group, hint, ctx.key.semester),
            self.source,
            f'Prefilled from program "{hint}" ({sem}). {REVIEW_HINT}',
        )


class PreviousSemesterStep:
    source = ResolutionSource.PREVIOUS_SEMESTER

    def lookup(self, store: CriteriaStore, ctx: CascadeContext) -> Optional[Resolution]:
        prev = ctx.key.semester.previous()
        if prev is None:
            return None
        return _prefill(
            store, ctx,
            SemesterKey(ctx.key.year_group, ctx.key.program, prev),
            self.source,
            f"Prefilled from {prev.value}. {REVIEW_HINT}",
        )


class PreviousYearGroupStep:
    source = ResolutionSource.PREVIOUS_YEAR_GROUP

    def lookup(self, store: CriteriaStore, ctx: CascadeContext) -> Optional[Resolution]:
        prev_yg = ctx.key.year_group - 1
        if prev_yg < ctx.min_year_group:
            return None
        return _prefill(
            store, ctx,
            SemesterKey(prev_yg, ctx.key.program, ctx.key.semester),
            self.source,
            f"Prefilled from YearGroup {prev_yg}, {ctx.key.semester.value}. {REVIEW_HINT}",
        )


def default_steps():
    # Order matters: own data, then lateral, then earlier semester, then earlier cohort
    return [SavedDataStep(), SiblingProgramStep(), PreviousSemesterStep(), PreviousYearGroupStep()]
