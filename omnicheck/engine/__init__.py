"""Analysis engine backed by jedi, mypy and black."""
