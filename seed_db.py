"""One-time DB setup: create tables and seed demo users and a quiz."""
import uuid
from datetime import datetime, timedelta, timezone

from assessment.core.security import hash_password
from assessment.db.models import RoleEnum, User
from assessment.db.session import Base, get_engine, get_session_factory
from assessment.schemas.quiz import QuizCreate
from assessment.services.catalog import QuizCatalog
from assessment.services.notifications import Notifier

DEMO_COURSE_ID = uuid.UUID("dec0de00-0000-4000-8000-00000000c0de")

# 1. Create all tables
engine = get_engine()
Base.metadata.create_all(bind=engine)
print("✅ All tables created")


def _ensure_user(db, email: str, password: str, full_name: str, role: RoleEnum) -> User:
    user = db.query(User).filter(User.email == email).first()
    if user:
        print(f"  {email} already exists")
        return user
    user = User(
        email=email,
        hashed_password=hash_password(password),
        full_name=full_name,
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    print(f"✅ Created {role.value}: {email} / {password}")
    return user


session_factory = get_session_factory()
with session_factory() as db:
    # 2. Demo accounts
    _ensure_user(db, "admin@example.com", "admin123", "Admin User", RoleEnum.ADMIN)
    instructor = _ensure_user(db, "instructor@example.com", "teach123", "Demo Instructor", RoleEnum.INSTRUCTOR)
    _ensure_user(db, "student@example.com", "student123", "Demo Student", RoleEnum.STUDENT)

    # 3. Demo quiz, open for a week
    catalog = QuizCatalog(db, notifier=Notifier(enabled=False))
    existing, _ = catalog.list_course_quizzes(DEMO_COURSE_ID)
    if existing:
        print("  Demo quiz already exists")
    else:
        now = datetime.now(timezone.utc)
        quiz = catalog.create_quiz(
            QuizCreate(
                course_id=DEMO_COURSE_ID,
                title="Geography warm-up",
                instructions="Answer every question. You have 15 minutes.",
                time_limit_minutes=15,
                attempts_allowed=2,
                start_date=now - timedelta(hours=1),
                end_date=now + timedelta(days=7),
                questions=[
                    {
                        "question_type": "multiple-choice",
                        "text": "What is the capital of France?",
                        "points": 5,
                        "options": [
                            {"text": "Paris", "is_correct": True},
                            {"text": "Lyon"},
                            {"text": "Marseille"},
                        ],
                    },
                    {
                        "question_type": "true-false",
                        "text": "The Nile flows north.",
                        "correct_answer": "true",
                        "points": 2,
                    },
                    {
                        "question_type": "short-answer",
                        "text": "Name the largest ocean.",
                        "correct_answer": "Pacific",
                        "points": 3,
                    },
                ],
            ),
            instructor,
        )
        print(f"✅ Created demo quiz {quiz.id} in course {DEMO_COURSE_ID}")
