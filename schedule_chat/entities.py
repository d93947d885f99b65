# schedule_chat/entities.py
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator


# -----------------------
# Catalog
# -----------------------

class Category(str, Enum):
    LECTURE = "lecture"
    TUTORIAL = "tutorial"
    LAB = "lab"
    PROJECT = "project"
    SEMINAR = "seminar"


class Day(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


class WeekParity(str, Enum):
    EVERY = "every"
    ODD = "odd"
    EVEN = "even"


# courseType codes as sent by the planner front-end
CATEGORY_CODES = {
    "W": Category.LECTURE,
    "C": Category.TUTORIAL,
    "L": Category.LAB,
    "P": Category.PROJECT,
    "S": Category.SEMINAR,
}

WEEK_CODES = {
    "": WeekParity.EVERY,
    "TN": WeekParity.ODD,
    "TP": WeekParity.EVEN,
}

DAY_NAMES = {
    "PONIEDZIAŁEK": Day.MONDAY,
    "WTOREK": Day.TUESDAY,
    "ŚRODA": Day.WEDNESDAY,
    "CZWARTEK": Day.THURSDAY,
    "PIĄTEK": Day.FRIDAY,
    "SOBOTA": Day.SATURDAY,
    "NIEDZIELA": Day.SUNDAY,
}


def parse_clock(value: str) -> int:
    """'HH:MM' (24h) -> minutes since midnight."""
    if not isinstance(value, str):
        raise ValueError(f"Expected HH:MM time, got {value!r}")
    parts = value.strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Expected HH:MM time, got {value!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    if hours > 23 or minutes > 59:
        raise ValueError(f"Time out of range: {value!r}")
    return hours * 60 + minutes


class Group(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    group_id: str = Field(alias="groupId", min_length=1)
    course_name: str = Field(alias="courseName")
    category: Category = Field(alias="courseType")
    day: Day
    week: WeekParity = WeekParity.EVERY
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    spots_occupied: int = Field(default=0, alias="spotsOccupied", ge=0)
    spots_total: int = Field(default=0, alias="spotsTotal", ge=0)
    average_rating: Optional[float] = Field(default=None, alias="averageRating")
    is_checked: bool = Field(default=False, alias="isChecked")
    lecturer: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _category_from_code(cls, value):
        if isinstance(value, str) and value.strip().upper() in CATEGORY_CODES:
            return CATEGORY_CODES[value.strip().upper()]
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("week", mode="before")
    @classmethod
    def _week_from_code(cls, value):
        if value is None:
            return WeekParity.EVERY
        if isinstance(value, str) and value.strip().upper() in WEEK_CODES:
            return WEEK_CODES[value.strip().upper()]
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("day", mode="before")
    @classmethod
    def _day_from_name(cls, value):
        if isinstance(value, str):
            key = value.strip().upper()
            if key in DAY_NAMES:
                return DAY_NAMES[key]
            return value.strip().lower()
        return value

    @field_validator("start_time", "end_time")
    @classmethod
    def _valid_clock(cls, value: str) -> str:
        parse_clock(value)
        return value.strip()

    @model_validator(mode="after")
    def _ends_after_start(self):
        if self.end_minutes <= self.start_minutes:
            raise ValueError(f"Group {self.group_id}: endTime must be after startTime")
        return self

    @property
    def start_minutes(self) -> int:
        return parse_clock(self.start_time)

    @property
    def end_minutes(self) -> int:
        return parse_clock(self.end_time)


class Course(BaseModel):
    id: str
    name: str
    groups: list[Group] = Field(default_factory=list)


class Catalog(BaseModel):
    """
    Read-only course catalog for one conversation.
    Group ids are unique across the whole catalog.
    """
    courses: list[Course] = Field(default_factory=list)

    _index: dict[str, tuple[Course, Group]] = PrivateAttr(default_factory=dict)

    @model_validator(mode="after")
    def _build_index(self):
        index: dict[str, tuple[Course, Group]] = {}
        for course in self.courses:
            for group in course.groups:
                if group.group_id in index:
                    raise ValueError(f"Duplicate groupId in catalog: {group.group_id}")
                index[group.group_id] = (course, group)
        self._index = index
        return self

    def locate(self, group_id: str) -> Optional[tuple[Course, Group]]:
        return self._index.get(group_id)

    def find_group(self, group_id: str) -> Optional[Group]:
        hit = self._index.get(group_id)
        return hit[1] if hit else None

    def has_group(self, group_id: str) -> bool:
        return group_id in self._index

    def checked_group_ids(self) -> list[str]:
        return [g.group_id for c in self.courses for g in c.groups if g.is_checked]


# -----------------------
# Structured model reply
# -----------------------

MAX_SUGGESTIONS = 4


class ProposedSchedule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rationale: str
    group_ids: list[str] = Field(alias="groupIds", min_length=1)


class StructuredReply(BaseModel):
    """
    The object the assistant is asked to emit. None on schedule / suggestions means
    "not (yet) present", never "explicitly empty". A JSON null for either key is
    rejected, the model is told to omit them instead.
    """
    reply: str
    schedule: Optional[ProposedSchedule] = None
    suggestions: Optional[Annotated[list[str], Field(max_length=MAX_SUGGESTIONS)]] = None

    @field_validator("schedule", "suggestions", mode="before")
    @classmethod
    def _omitted_not_null(cls, value):
        if value is None:
            raise ValueError("null is not allowed, omit the key")
        return value


class DecodeKind(str, Enum):
    EMPTY = "empty"
    RAW_TEXT = "raw_text"
    REPLY_ONLY = "reply_only"
    STRUCTURED = "structured"


class DecodeOutcome(BaseModel):
    kind: DecodeKind
    value: Optional[StructuredReply] = None


class TurnStatus(str, Enum):
    EMPTY = "empty"
    PARTIAL = "partial"
    FINAL = "final"
    REPLY_ONLY_FALLBACK = "reply-only-fallback"


class DecodedTurn(BaseModel):
    turn_id: str
    status: TurnStatus = TurnStatus.EMPTY
    kind: DecodeKind = DecodeKind.EMPTY
    value: Optional[StructuredReply] = None
    complete: bool = False
    schedule_groups: list[Group] = Field(default_factory=list)
    unknown_group_ids: list[str] = Field(default_factory=list)

    @property
    def reply(self) -> str:
        return self.value.reply if self.value else ""

    @property
    def schedule(self) -> Optional[ProposedSchedule]:
        return self.value.schedule if self.value else None

    @property
    def rationale(self) -> Optional[str]:
        return self.schedule.rationale if self.schedule else None

    @property
    def suggestions(self) -> list[str]:
        if self.value and self.value.suggestions:
            return list(self.value.suggestions)
        return []


# -----------------------
# Resolver output
# -----------------------

class DuplicateCategory(BaseModel):
    course_id: str
    category: Category
    group_ids: list[str]


class ConflictReport(BaseModel):
    conflicts: list[tuple[str, str]] = Field(default_factory=list)
    unknown_group_ids: list[str] = Field(default_factory=list)
    duplicate_categories: list[DuplicateCategory] = Field(default_factory=list)

    @property
    def is_applicable(self) -> bool:
        return not (self.conflicts or self.unknown_group_ids or self.duplicate_categories)

    def conflicts_between(self, a: str, b: str) -> bool:
        return any({a, b} == set(pair) for pair in self.conflicts)
