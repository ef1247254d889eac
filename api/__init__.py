"""HTTP API for assessments, learning paths and the concept graph."""
