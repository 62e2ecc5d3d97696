"""Pydantic models and runtime records shared across the bridge services."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Literal, NamedTuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .utils import path_key, sanitize_folder_name, stable_hash

MediaKind = Literal["movie", "show"]
MEDIA_KINDS: tuple[MediaKind, ...] = ("movie", "show")

SaveReason = Literal["import", "update_user_rating", "toggle_played"]
RefreshMode = Literal["default", "full", "replace"]

_KIND_ALIASES = {
    "movie": "movie",
    "movies": "movie",
    "show": "show",
    "shows": "show",
    "series": "show",
    "tv": "show",
}


def parse_media_kind(value: object) -> MediaKind:
    """Map the various host and provider spellings onto a media kind."""

    lowered = str(value or "").strip().lower()
    kind = _KIND_ALIASES.get(lowered)
    if kind is None:
        raise ValueError(f"Unsupported media kind: {value!r}")
    return kind  # type: ignore[return-value]


def _clean_provider_ids(value: object) -> dict[str, str]:
    if not value:
        return {}
    if not isinstance(value, dict):
        raise TypeError("provider ids must be a mapping")
    cleaned: dict[str, str] = {}
    for key, raw in value.items():
        if raw is None:
            continue
        text = str(raw).strip()
        if text:
            cleaned[str(key)] = text
    return cleaned


def _lookup_provider_id(provider_ids: dict[str, str], name: str) -> str | None:
    wanted = name.casefold()
    for key, value in provider_ids.items():
        if key.casefold() == wanted:
            return value
    return None


class MetadataRecord(BaseModel):
    """A title described by the external metadata provider."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    kind: MediaKind = Field(validation_alias=AliasChoices("kind", "mediaType", "type"))
    title: str = Field(validation_alias=AliasChoices("title", "name"))
    year: int | None = None
    provider_ids: dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("provider_ids", "providerIds"),
    )
    network_tag: str | None = Field(
        default=None, validation_alias=AliasChoices("network_tag", "networkTag")
    )

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> str:
        text = str(value if value is not None else "").strip()
        if not text:
            raise ValueError("metadata records require an id")
        return text

    @field_validator("kind", mode="before")
    @classmethod
    def _parse_kind(cls, value: object) -> str:
        return parse_media_kind(value)

    @field_validator("provider_ids", mode="before")
    @classmethod
    def _parse_provider_ids(cls, value: object) -> dict[str, str]:
        return _clean_provider_ids(value)

    @field_validator("network_tag", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def item_hash(self) -> str:
        """Content-derived identity that survives folder renames."""

        return stable_hash(self.kind, self.id)

    def folder_hash(self, directory: str | os.PathLike[str]) -> str:
        """Identity of this title placed in one specific directory."""

        return stable_hash(self.item_hash, path_key(directory))

    def provider_id(self, name: str) -> str | None:
        value = _lookup_provider_id(self.provider_ids, name)
        if value is None and name.casefold() == "tmdb":
            return self.id
        return value

    def matches(self, local: "LocalRecord") -> bool:
        """Return whether ``local`` is the same title.

        Records match when the media kinds agree and at least one provider id is
        shared. The metadata id doubles as the TMDb id when no explicit ``Tmdb``
        provider entry is present.
        """

        if local.kind != self.kind:
            return False
        for key, value in local.provider_ids.items():
            own = self.provider_id(key)
            if own is not None and own == value:
                return True
        return False

    def folder_name(self) -> str:
        title = sanitize_folder_name(self.title)
        year = f" ({self.year})" if self.year else ""
        return f"{title}{year} [tmdbid-{self.provider_id('tmdb')}]"


class LocalRecord(BaseModel):
    """An item the media host already knows about."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices("id", "Id"))
    kind: MediaKind = Field(validation_alias=AliasChoices("kind", "Type"))
    name: str = Field(default="", validation_alias=AliasChoices("name", "Name"))
    path: str | None = Field(default=None, validation_alias=AliasChoices("path", "Path"))
    genres: tuple[str, ...] = Field(
        default=(), validation_alias=AliasChoices("genres", "Genres")
    )
    provider_ids: dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("provider_ids", "ProviderIds"),
    )

    @field_validator("kind", mode="before")
    @classmethod
    def _parse_kind(cls, value: object) -> str:
        return parse_media_kind(value)

    @field_validator("genres", mode="before")
    @classmethod
    def _parse_genres(cls, value: object) -> tuple[str, ...]:
        if not value:
            return ()
        return tuple(str(genre) for genre in value if genre)

    @field_validator("provider_ids", mode="before")
    @classmethod
    def _parse_provider_ids(cls, value: object) -> dict[str, str]:
        return _clean_provider_ids(value)

    def provider_id(self, name: str) -> str | None:
        return _lookup_provider_id(self.provider_ids, name)

    def to_snapshot(self) -> str:
        """Serialize the record for the ignore marker of a matched directory."""

        return self.model_dump_json(by_alias=False)


class VirtualFolder(BaseModel):
    """A library registered with the media host."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(validation_alias=AliasChoices("name", "Name"))
    locations: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("locations", "Locations")
    )
    item_id: str | None = Field(
        default=None, validation_alias=AliasChoices("item_id", "ItemId")
    )


class UserAccount(BaseModel):
    """A user known to the media host."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices("id", "Id"))
    name: str = Field(default="", validation_alias=AliasChoices("name", "Name"))


class UserItemState(BaseModel):
    """Per-user playback state for a single item."""

    model_config = ConfigDict(populate_by_name=True)

    play_count: int = Field(default=0, alias="PlayCount")
    played: bool = Field(default=False, alias="Played")
    last_played_date: datetime | None = Field(default=None, alias="LastPlayedDate")
    is_favorite: bool = Field(default=False, alias="IsFavorite")

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class DirectoryEntry(NamedTuple):
    """A managed item directory together with the kind of item it holds."""

    directory: str
    kind: MediaKind


class DirectoryRank(NamedTuple):
    """Score assigned to a directory and the play date derived from it."""

    score: int
    played_on: date | None = None


class ManagedEntry(NamedTuple):
    """A metadata record placed in a directory of a managed library.

    ``library`` is empty when the directory lives under the managed root but no
    registered library points at it.
    """

    library: str
    directory: str
    record: MetadataRecord


@dataclass(frozen=True, slots=True)
class MatchPair:
    """A metadata record paired with the local item carrying the same identity."""

    metadata: MetadataRecord
    local: LocalRecord


@dataclass(frozen=True, slots=True)
class ItemFound:
    item: LocalRecord


@dataclass(frozen=True, slots=True)
class ItemNotFound:
    directory: str


@dataclass(frozen=True, slots=True)
class KindMismatch:
    directory: str
    expected: MediaKind
    actual: MediaKind


LookupResult = Union[ItemFound, ItemNotFound, KindMismatch]


@dataclass(slots=True)
class RankingResult:
    """Scores and play dates computed for one user."""

    user_id: str
    strategy: str
    ranks: dict[DirectoryEntry, DirectoryRank] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.ranks)

    def scores(self) -> dict[str, int]:
        return {entry.directory: rank.score for entry, rank in self.ranks.items()}


@dataclass(frozen=True, slots=True)
class SortedItem:
    user_id: str
    item: LocalRecord
    play_count: int


@dataclass(frozen=True, slots=True)
class SkippedItem:
    directory: str
    item: LocalRecord | None = None


@dataclass(slots=True)
class UserOutcome:
    """Disjoint outcome lists produced by one user's update pipeline."""

    successes: list[SortedItem] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    skipped: list[SkippedItem] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class StateUpdate:
    """Outcome reported by a single state store write."""

    success: bool
    message: str = ""


@dataclass(frozen=True, slots=True)
class StateChange:
    """Notification emitted after per-user state was persisted."""

    user_id: str
    item_id: str
    reason: SaveReason
    state: UserItemState
