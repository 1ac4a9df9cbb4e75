"""
Progress router: tutor-authored progress entries for completed sessions, progress
charts and summaries, and learning goals.
"""
from collections import OrderedDict
from datetime import date
from typing import Iterable, List, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tutormarket.auth_tools import get_current_user, require_roles, tutor_only
from tutormarket.database.database import (
    get_db, Booking, BookingStatus, LearnerProgress, LearningGoal, SkillLevel, UserRole
)
from tutormarket.errors import DuplicateEntry, InvalidTransition, NotAuthorized, NotFound
from tutormarket.logger import logger
from tutormarket.routers.authentication import limiter
from tutormarket.schemas.authentication_schema import DecodedAccessToken
from tutormarket.schemas.booking_schema import CompletedSessionResponse
from tutormarket.schemas.progress_schema import (
    GoalCreate, GoalResponse, ProgressChartResponse, ProgressCreate, ProgressResponse, ProgressSummaryResponse,
    ProgressUpdate
)
from tutormarket.utilities import (
    booking_row_to_dict, bookings_with_names, ensure_can_view_learner, get_tutor_for_user, get_user_by_id, notify, teaches
)

router = APIRouter(prefix='/progress')

DEFAULT_SUBJECT = "General"


def chart_by_subject(entries: Iterable[LearnerProgress]) -> "OrderedDict[str, list]":
    """Entries grouped by subject (sorted), each group ordered by session date, levels on the 1-4 scale."""
    grouped = OrderedDict()
    for entry in sorted(entries, key=lambda e: (e.subject, e.date_of_session, e.created_at)):
        grouped.setdefault(entry.subject, []).append({
            "date_of_session": entry.date_of_session,
            "skill_level": entry.skill_level,
            "level": SkillLevel(entry.skill_level).ordinal,
        })
    return grouped

def trend_of(levels: List[int]) -> str:
    """Direction of the latest session compared to the one before it."""
    if len(levels) < 2 or levels[-1] == levels[-2]:
        return "steady"
    return "improving" if levels[-1] > levels[-2] else "declining"

def summarise(entries: Iterable[LearnerProgress]) -> List[dict]:
    summary = []
    for subject, points in chart_by_subject(entries).items():
        levels = [point["level"] for point in points]
        summary.append({
            "subject": subject,
            "session_count": len(points),
            "latest_level": points[-1]["skill_level"],
            "average_level": round(sum(levels) / len(levels), 2),
            "trend": trend_of(levels),
        })
    return summary

def progress_query(db: Session, current_user: DecodedAccessToken, learner_id: Optional[str]):
    """Entries visible to current_user, for one learner or (for students and tutors) their own."""
    query = db.query(LearnerProgress)
    if learner_id:
        ensure_can_view_learner(db, current_user.sub, current_user.role, learner_id)
        return query.filter(LearnerProgress.learner_id == learner_id)
    if current_user.role == UserRole.TUTOR.value:
        return query.filter(LearnerProgress.tutor_id == get_tutor_for_user(db, current_user.sub).id)
    return query.filter(LearnerProgress.learner_id == current_user.sub)

############################
##### PROGRESS ENTRIES #####
############################

@router.post('', response_model=ProgressResponse)
@limiter.limit("20/minute")
def add_progress(request: Request, data: ProgressCreate, current_user: DecodedAccessToken = Depends(tutor_only), db: Session = Depends(get_db)):
    """
    Record the tutor's assessment of a completed session. One entry per booking.

    Raises:
    - NotFound: booking missing
    - NotAuthorized: the booking belongs to another tutor
    - InvalidTransition: the booking is not completed
    - DuplicateEntry: progress was already recorded for the booking
    """
    booking = db.query(Booking).filter(Booking.id == data.booking_id).first()
    if not booking:
        raise NotFound("Booking not found", details={"booking_id": data.booking_id})
    tutor = get_tutor_for_user(db, current_user.sub)
    if booking.tutor_id != tutor.id:
        raise NotAuthorized("Only the tutor of this session can record its progress")
    if booking.status != BookingStatus.COMPLETED.value:
        raise InvalidTransition("Progress can only be recorded for completed sessions", details={"status": booking.status})
    if booking.progress is not None:
        raise DuplicateEntry("Progress was already recorded for this session", details={"booking_id": booking.id})

    entry = LearnerProgress(
        booking_id=booking.id,
        learner_id=booking.student_id,
        tutor_id=tutor.id,
        subject=booking.subject or DEFAULT_SUBJECT,
        date_of_session=booking.session_date,
        skill_level=data.skill_level.value,
        progress_note=data.progress_note,
        homework_next_action=data.homework_next_action,
    )
    db.add(entry)
    try:
        db.commit()
    except IntegrityError:
        # Another request recorded progress for the same booking first
        db.rollback()
        raise DuplicateEntry("Progress was already recorded for this session", details={"booking_id": booking.id})
    db.refresh(entry)

    notify(
        db, booking.student_id, "New progress update",
        f"{tutor.full_name} recorded your progress in {entry.subject}: {entry.skill_level}",
        type="progress", related_id=entry.id
    )
    return entry

@router.put('/{entry_id}', response_model=ProgressResponse)
def update_progress(entry_id: str, data: ProgressUpdate, current_user: DecodedAccessToken = Depends(tutor_only), db: Session = Depends(get_db)):
    entry = db.query(LearnerProgress).filter(LearnerProgress.id == entry_id).first()
    if not entry:
        raise NotFound("Progress entry not found")
    if entry.tutor_id != get_tutor_for_user(db, current_user.sub).id:
        raise NotAuthorized("Only the authoring tutor can edit this entry")
    # Unset fields stay, an explicit null clears the homework
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(entry, field, value.value if isinstance(value, SkillLevel) else value)
    db.commit()
    db.refresh(entry)
    return entry

@router.get('', response_model=List[ProgressResponse])
def list_progress(learner_id: Optional[str] = None, subject: Optional[str] = None, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    """Progress entries, newest session first, optionally for one learner and one subject."""
    query = progress_query(db, current_user, learner_id)
    if subject:
        query = query.filter(LearnerProgress.subject == subject)
    return query.order_by(LearnerProgress.date_of_session.desc(), LearnerProgress.created_at.desc()).all()

@router.get('/chart/{learner_id}', response_model=ProgressChartResponse)
def progress_chart(learner_id: str, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    entries = progress_query(db, current_user, learner_id).all()
    return {"learner_id": learner_id, "subjects": chart_by_subject(entries)}

@router.get('/summary/{learner_id}', response_model=ProgressSummaryResponse)
def progress_summary(learner_id: str, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    entries = progress_query(db, current_user, learner_id).all()
    return {"learner_id": learner_id, "subjects": summarise(entries)}

@router.get('/sessions', response_model=List[CompletedSessionResponse])
def completed_sessions(current_user: DecodedAccessToken = Depends(tutor_only), db: Session = Depends(get_db)):
    """The tutor's completed sessions and whether progress was recorded for each."""
    tutor = get_tutor_for_user(db, current_user.sub)
    rows = bookings_with_names(db) \
        .outerjoin(LearnerProgress, LearnerProgress.booking_id == Booking.id) \
        .add_columns(LearnerProgress.id) \
        .filter(Booking.tutor_id == tutor.id, Booking.status == BookingStatus.COMPLETED.value) \
        .order_by(Booking.session_date.desc(), Booking.start_time.desc()) \
        .all()
    sessions = []
    for booking, tutor_name, student_name, progress_id in rows:
        data = booking_row_to_dict((booking, tutor_name, student_name))
        data["has_progress"] = progress_id is not None
        sessions.append(data)
    return sessions

############################
###### LEARNING GOALS ######
############################

@router.post('/goals', response_model=GoalResponse)
def create_goal(goal: GoalCreate, current_user: DecodedAccessToken = Depends(tutor_only), db: Session = Depends(get_db)):
    """Set a learning goal for a learner the tutor has sessions with."""
    tutor = get_tutor_for_user(db, current_user.sub)
    get_user_by_id(db, goal.learner_id)
    if not teaches(db, current_user.sub, goal.learner_id):
        raise NotAuthorized("Goals can only be set for your own learners")
    row = LearningGoal(tutor_id=tutor.id, **goal.model_dump())
    db.add(row)
    db.commit()
    db.refresh(row)
    notify(db, goal.learner_id, "New learning goal", f"{tutor.full_name} set a goal in {row.subject}: {row.goal_text}",
           type="goal", related_id=row.id)
    return row

def get_goal_for_actor(db: Session, goal_id: str, current_user: DecodedAccessToken) -> LearningGoal:
    goal = db.query(LearningGoal).filter(LearningGoal.id == goal_id).first()
    if not goal:
        raise NotFound("Learning goal not found")
    if current_user.role != UserRole.ADMIN.value and goal.tutor_id != get_tutor_for_user(db, current_user.sub).id:
        raise NotAuthorized("Only the authoring tutor can change this goal")
    return goal

@router.post('/goals/{goal_id}/toggle', response_model=GoalResponse)
def toggle_goal(goal_id: str, current_user: DecodedAccessToken = Depends(tutor_only), db: Session = Depends(get_db)):
    """Flip the achieved flag; achieved_date follows it."""
    goal = get_goal_for_actor(db, goal_id, current_user)
    goal.is_achieved = not goal.is_achieved
    goal.achieved_date = date.today() if goal.is_achieved else None
    db.commit()
    db.refresh(goal)
    if goal.is_achieved:
        logger.info(f"Learning goal {goal.id} achieved by learner {goal.learner_id}")
    return goal

@router.delete('/goals/{goal_id}')
def delete_goal(goal_id: str, current_user: DecodedAccessToken = Depends(require_roles(UserRole.TUTOR, UserRole.ADMIN)), db: Session = Depends(get_db)):
    goal = get_goal_for_actor(db, goal_id, current_user)
    db.delete(goal)
    db.commit()
    return {"goal_id": goal_id, "message": f"Learning goal {goal_id} deleted"}

@router.get('/goals', response_model=List[GoalResponse])
def list_goals(learner_id: Optional[str] = None, current_user: DecodedAccessToken = Depends(get_current_user), db: Session = Depends(get_db)):
    """Goals of a learner, open goals first. Without learner_id: the caller's own goals (or authored goals for tutors)."""
    query = db.query(LearningGoal)
    if learner_id:
        ensure_can_view_learner(db, current_user.sub, current_user.role, learner_id)
        query = query.filter(LearningGoal.learner_id == learner_id)
    elif current_user.role == UserRole.TUTOR.value:
        query = query.filter(LearningGoal.tutor_id == get_tutor_for_user(db, current_user.sub).id)
    else:
        query = query.filter(LearningGoal.learner_id == current_user.sub)
    return query.order_by(LearningGoal.is_achieved, LearningGoal.target_date, LearningGoal.created_at).all()
