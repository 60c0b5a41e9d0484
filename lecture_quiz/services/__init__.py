"""Application services: persistence, pipeline orchestration, publication and grading."""
