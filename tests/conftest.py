import pytest

from schedule_chat.entities import Catalog


def _group(group_id, course_name, course_type, day, start, end, week=""):
    return {
        "groupId": group_id,
        "courseName": course_name,
        "courseType": course_type,
        "day": day,
        "week": week,
        "startTime": start,
        "endTime": end,
        "spotsOccupied": 10,
        "spotsTotal": 30,
    }


COURSES = [
    {
        "id": "ANALIZA",
        "name": "Analiza matematyczna",
        "groups": [
            _group("G1", "Analiza matematyczna", "W", "PONIEDZIAŁEK", "08:00", "10:00"),
            _group("A-C1", "Analiza matematyczna", "C", "WTOREK", "10:00", "11:30", week="TN"),
            _group("A-C2", "Analiza matematyczna", "C", "WTOREK", "10:00", "11:30", week="TP"),
            _group("A-W2", "Analiza matematyczna", "W", "ŚRODA", "12:00", "14:00"),
        ],
    },
    {
        "id": "FIZYKA",
        "name": "Fizyka",
        "groups": [
            _group("G2", "Fizyka", "W", "WTOREK", "08:00", "10:00"),
            _group("F-L1", "Fizyka", "L", "PONIEDZIAŁEK", "10:00", "12:00"),
            _group("F-L2", "Fizyka", "L", "PONIEDZIAŁEK", "09:00", "11:00"),
            _group("F-C1", "Fizyka", "C", "WTOREK", "10:30", "12:00"),
            _group("F-C2", "Fizyka", "C", "WTOREK", "10:00", "11:30", week="TN"),
        ],
    },
]


@pytest.fixture
def courses_payload():
    return [dict(c, groups=[dict(g) for g in c["groups"]]) for c in COURSES]


@pytest.fixture
def catalog(courses_payload):
    return Catalog.model_validate({"courses": courses_payload})
