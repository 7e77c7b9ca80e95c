"""Text extraction collaborators."""
