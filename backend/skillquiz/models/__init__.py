from skillquiz.models.quiz import OPTION_LABELS, QuizAttempt, QuizQuestion, SkillLevel

__all__ = [
    "OPTION_LABELS",
    "QuizAttempt",
    "QuizQuestion",
    "SkillLevel",
]
