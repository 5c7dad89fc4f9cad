from datetime import datetime

from pydantic import BaseModel, Field

from pid_board.models.board import DisplayRow, FilterOption, StopGroup


class StopResult(BaseModel):
    name: str
    primary_id: str | None = None
    stop_ids: list[str] = Field(description="All stop/platform ids merged into this stop")

    @classmethod
    def from_group(cls, group: StopGroup) -> "StopResult":
        return cls(name=group.name, primary_id=group.primary_id, stop_ids=list(group.stop_ids))


class SearchStopsResponse(BaseModel):
    query: str
    stops: list[StopResult]
    count: int = Field(description="Number of stops returned")
    suggestions: list[StopResult] = Field(
        default=[], description="Fuzzy 'did you mean' candidates when nothing matched"
    )
    status: str | None = None


class DepartureBoardResponse(BaseModel):
    """Projected departure board for a set of stop ids."""

    stop_ids: list[str]
    rows: list[DisplayRow]
    count: int = Field(description="Number of rows after filtering")
    status: str | None = Field(default=None, description="Status line (errors are reported here)")
    offline: bool = Field(default=False, description="True when rows come from the offline cache")
    platforms: list[FilterOption] = []
    lines: list[FilterOption] = []
    updated_at: datetime | None = None
