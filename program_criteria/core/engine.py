import logging
from typing import List, Optional, Sequence

from program_criteria.config import MIN_YEAR_GROUP
from program_criteria.core.models import Resolution, ResolutionSource, SemesterData, SemesterKey
from program_criteria.core.repositories import CriteriaStore
from program_criteria.core.strategies import CascadeContext, CascadeStep, default_steps

logger = logging.getLogger(__name__)

EMPTY_MESSAGE = "No criteria yet for this selection. Start adding slots and rules."


class CascadeResolver:
    """
    Decides what to show for a (year group, program, semester) selection.

    Steps are tried in order and the first one returning a Resolution wins.
    Store errors are not caught here: a failing fetch aborts the cascade so
    an unreachable store is never mistaken for "nothing saved yet".
    """

    def __init__(self, store: CriteriaStore, steps: Optional[Sequence[CascadeStep]] = None,
                 min_year_group: int = MIN_YEAR_GROUP):
        self.store = store
        self.steps: List[CascadeStep] = list(steps) if steps is not None else default_steps()
        self.min_year_group = min_year_group

    def resolve(self, key: SemesterKey, previous_program: Optional[str] = None) -> Resolution:
        program = (key.program or "").strip()
        if not program:
            raise ValueError("Select a Program to load.")
        if program != key.program:
            key = SemesterKey(key.year_group, program, key.semester)

        ctx = CascadeContext(key=key, previous_program=previous_program, min_year_group=self.min_year_group)
        for step in self.steps:
            logger.debug("Trying %s for %s", step.source.value, key.describe())
            found = step.lookup(self.store, ctx)
            if found is not None:
                logger.info("Resolved %s from %s", key.describe(), found.source.value)
                return found

        logger.info("Nothing to prefill for %s", key.describe())
        return Resolution(key=key, data=SemesterData(), source=ResolutionSource.EMPTY, message=EMPTY_MESSAGE)
