from timetabler.models.activity_log import ActivityLog  # noqa: F401
from timetabler.models.school import School  # noqa: F401
from timetabler.models.school_class import SchoolClass  # noqa: F401
from timetabler.models.subject import Subject  # noqa: F401
from timetabler.models.teacher import Teacher  # noqa: F401
from timetabler.models.teacher_assignment import TeacherClassSubject  # noqa: F401
from timetabler.models.timetable import TimetableEntry  # noqa: F401
