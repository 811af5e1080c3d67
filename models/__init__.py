from models.actor import Actor, SYSTEM_ACTOR
from models.course import Course, Discount
from models.session import (
    AttendanceRecord, AttendanceStatus, ClassSession, SessionStatus,
)
from models.batch import Batch, EnrolledStudent, ScheduleSlot, SeatStatus
from models.enrollment import Enrollment, EnrollmentStatus, StatusChange
from models.institute_data import InstituteData

__all__ = [
    "Actor",
    "SYSTEM_ACTOR",
    "Course",
    "Discount",
    "AttendanceRecord",
    "AttendanceStatus",
    "ClassSession",
    "SessionStatus",
    "Batch",
    "EnrolledStudent",
    "ScheduleSlot",
    "SeatStatus",
    "Enrollment",
    "EnrollmentStatus",
    "StatusChange",
    "InstituteData",
]
