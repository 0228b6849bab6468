"""Application services; framework-agnostic."""
