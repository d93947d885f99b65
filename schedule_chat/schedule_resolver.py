# schedule_chat/schedule_resolver.py
"""
Schedule validity checks for a set of group ids proposed by the assistant.

Two groups conflict when they meet on the same day, their time ranges overlap
(startA < endB and startB < endA; touching ends are fine) and their week parities
can fall on the same week. Independently, a course may contribute at most one group
per category.
"""

import logging
from collections import defaultdict
from itertools import combinations
from typing import Iterable

from schedule_chat.entities import (
    Catalog,
    Category,
    ConflictReport,
    Course,
    DuplicateCategory,
    Group,
    WeekParity,
)

logger = logging.getLogger("schedule_chat")


class ScheduleRejectedException(Exception):
    def __init__(self, report: ConflictReport):
        self.report = report
        super().__init__(
            f"Schedule rejected: {len(report.conflicts)} conflicts, "
            f"{len(report.duplicate_categories)} duplicate categories, "
            f"unknown ids: {report.unknown_group_ids}"
        )


def weeks_overlap(a: WeekParity, b: WeekParity) -> bool:
    if a == WeekParity.EVERY or b == WeekParity.EVERY:
        return True
    return a == b


def times_overlap(a: Group, b: Group) -> bool:
    return a.start_minutes < b.end_minutes and b.start_minutes < a.end_minutes


def groups_conflict(a: Group, b: Group) -> bool:
    return a.day == b.day and times_overlap(a, b) and weeks_overlap(a.week, b.week)


def is_known(group_id: str, catalog: Catalog) -> bool:
    return catalog.has_group(group_id)


def resolve(candidate_group_ids: Iterable[str], catalog: Catalog) -> ConflictReport:
    """
    Checks a candidate selection against the catalog. Repeated ids are counted once.
    The report is empty (is_applicable) only when every id exists, no course has two
    groups of one category and no two groups collide in time.
    """
    resolved: list[tuple[Course, Group]] = []
    unknown: list[str] = []
    seen: set[str] = set()

    for gid in candidate_group_ids:
        if gid in seen:
            continue
        seen.add(gid)
        hit = catalog.locate(gid)
        if hit is None:
            unknown.append(gid)
        else:
            resolved.append(hit)

    by_slot: dict[tuple[str, Category], list[str]] = defaultdict(list)
    for course, group in resolved:
        by_slot[(course.id, group.category)].append(group.group_id)

    duplicates = [
        DuplicateCategory(course_id=course_id, category=category, group_ids=ids)
        for (course_id, category), ids in by_slot.items()
        if len(ids) > 1
    ]

    conflicts: list[tuple[str, str]] = []
    for (_, a), (_, b) in combinations(resolved, 2):
        if groups_conflict(a, b):
            conflicts.append((a.group_id, b.group_id))

    report = ConflictReport(
        conflicts=conflicts,
        unknown_group_ids=unknown,
        duplicate_categories=duplicates,
    )
    if not report.is_applicable:
        logger.debug(f"resolve: {report.model_dump_json()}")
    return report


def apply_schedule(group_ids: Iterable[str], catalog: Catalog) -> Catalog:
    """
    Returns a copy of the catalog where exactly `group_ids` are checked.
    Raises ScheduleRejectedException when the selection does not resolve cleanly.
    """
    group_ids = list(group_ids)
    if not group_ids:
        raise ValueError("apply_schedule: empty selection")
    report = resolve(group_ids, catalog)
    if not report.is_applicable:
        logger.warning(f"apply_schedule: refusing selection {group_ids}")
        raise ScheduleRejectedException(report)

    selected = set(group_ids)
    courses = [
        course.model_copy(
            update={
                "groups": [
                    g.model_copy(update={"is_checked": g.group_id in selected})
                    for g in course.groups
                ]
            }
        )
        for course in catalog.courses
    ]
    updated = Catalog(courses=courses)
    logger.info(f"apply_schedule: {len(selected)} groups checked")
    return updated
