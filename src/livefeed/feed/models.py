"""MatchRecord — the normalized shape of one live event.

Learn: Field names are Pythonic; aliases are the abbreviated upstream
names (ID, NA, CT, ...) so a record serializes back to the wire format
subscribers already consume. Two fields are hub-owned: `source` and
`ingested_at` (sent as `updated_at`). `display_title` is derived and sent
as `match_title`.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_serializer

# Upstream tag for a live event. Every record in a batch carries it.
LIVE_EVENT_TYPE = "EV"

UPDATED_AT_FORMAT = "%Y-%m-%d %H:%M:%S"

# Upstream key → MatchRecord field, for the plain string fields.
UPSTREAM_FIELDS: dict[str, str] = {
    "ID": "id",
    "NA": "name",
    "CT": "country",
    "CC": "league",
    "T1": "team1",
    "T2": "team2",
    "SS": "score",
    "TM": "minute",
    "TU": "source_update_time",
    "type": "record_type",
}


class MatchRecord(BaseModel):
    """Snapshot of one live match at one point in time."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field("", alias="ID")
    name: str = Field("", alias="NA")
    country: str = Field("", alias="CT")
    league: str = Field("", alias="CC")
    team1: str = Field("", alias="T1")
    team2: str = Field("", alias="T2")
    score: str = Field("", alias="SS")
    minute: str = Field("", alias="TM")
    source_update_time: str = Field("", alias="TU")
    record_type: str = Field(LIVE_EVENT_TYPE, alias="type")

    source: str = ""
    ingested_at: datetime = Field(alias="updated_at")

    @computed_field(alias="match_title")
    @property
    def display_title(self) -> str:
        return f"{self.team1} vs {self.team2}"

    @field_serializer("ingested_at")
    def format_ingested_at(self, value: datetime) -> str:
        return value.strftime(UPDATED_AT_FORMAT)

    def to_wire(self) -> dict:
        """Serialize with upstream field names, ready for json.dumps."""
        return self.model_dump(by_alias=True)


def batch_to_wire(batch: list[MatchRecord]) -> list[dict]:
    """A batch goes out as one JSON array, in upstream order."""
    return [record.to_wire() for record in batch]
