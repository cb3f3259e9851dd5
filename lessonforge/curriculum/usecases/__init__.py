"""Use case layer for the Curriculum context.

Re-export the entry points the web adapter and workers drive.
"""

from .pipeline import ProcessLessonUseCase, StartProcessingInput
from .quiz import SubmitQuizInput, SubmitQuizUseCase

__all__ = [
    "ProcessLessonUseCase",
    "StartProcessingInput",
    "SubmitQuizInput",
    "SubmitQuizUseCase",
]
