from .review_graph import build_review_graph

__all__ = ["build_review_graph"]
