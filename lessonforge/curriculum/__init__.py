"""Curriculum bounded context: lessons, sections, progress and quizzes."""
