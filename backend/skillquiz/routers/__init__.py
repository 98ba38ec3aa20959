from skillquiz.routers import generation, health, performance, quizzes

__all__ = [
    "generation",
    "health",
    "performance",
    "quizzes",
]
