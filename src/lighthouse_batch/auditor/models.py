"""Result types produced by the auditor.

``ScoreRecord`` is the persisted unit; its JSON field names (``url``,
``time``, ``score``) are the on-disk format, so the model uses aliases for
them and is always dumped with ``by_alias=True``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lighthouse_batch.auditor.config import CATEGORIES, SCORE_SCALE


class ScoreRecord(BaseModel):
    """Outcome of one successful (possibly retried) audit.

    Attributes:
        url: Final URL audited, after redirects.
        elapsed_seconds: Wall-clock seconds from browser launch to the end of
            the Lighthouse run of the successful attempt.
        scores: Category name to score in ``[0, 100]``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    url: str = Field(..., min_length=1)
    elapsed_seconds: float = Field(..., alias="time", ge=0)
    scores: dict[str, float] = Field(..., alias="score")

    @field_validator("scores")
    @classmethod
    def check_categories(cls, v: dict[str, float]) -> dict[str, float]:
        """Require every category, each within ``[0, SCORE_SCALE]``."""
        missing = [name for name in CATEGORIES if name not in v]
        if missing:
            raise ValueError(f"missing categories: {', '.join(missing)}")
        for name, value in v.items():
            if not 0 <= value <= SCORE_SCALE:
                raise ValueError(f"score for '{name}' out of range: {value}")
        return {name: v[name] for name in CATEGORIES}

    def to_json_dict(self) -> dict[str, Any]:
        """Return the record in its persisted shape."""
        return self.model_dump(by_alias=True, mode="json")


@dataclass(frozen=True)
class UrlFailure:
    """A URL that exhausted its retries and was left out of the report."""

    url: str
    error: str
    attempts: int


@dataclass
class BatchReport:
    """Ordered successes of one batch plus aggregate timing.

    Attributes:
        records: One :class:`ScoreRecord` per successful URL, in input order.
        total_elapsed_seconds: Wall-clock seconds for the whole batch,
            including time spent on URLs that failed.
        failures: URLs that exhausted their retries.  Kept in memory for the
            caller's summary only; they are not persisted.
    """

    records: list[ScoreRecord] = field(default_factory=list)
    total_elapsed_seconds: float = 0.0
    failures: list[UrlFailure] = field(default_factory=list)

    def to_json_list(self) -> list[dict[str, Any]]:
        """Return the records in their persisted shape."""
        return [record.to_json_dict() for record in self.records]
