"""lessonforge: turn uploaded lesson documents into mastery-gated curricula."""
