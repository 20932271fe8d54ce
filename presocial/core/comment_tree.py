"""
Flat-to-tree comment reconstruction.

The upstream API returns comments as a flat, arbitrarily ordered list where
each comment carries an ancestry path such as ``"0.12.34"``. These helpers
derive parent/depth from the path and rebuild the nested reply structure.
"""
from typing import Iterable, List, Optional, Sequence, Tuple

from presocial.models.dtos import CommentNode, SocialComment


def parse_comment_path(path: str) -> Tuple[Optional[int], int]:
    """
    Derive the parent id and depth from a dot-separated ancestry path.

    The first path element is the synthetic root ``0``, so ``"0.12"`` is a
    top-level comment (depth 1, no parent) and ``"0.12.34"`` is a reply to
    comment 12 (depth 2).
    """
    parts = path.split(".")
    depth = len(parts) - 1
    if len(parts) > 2:
        return int(parts[-2]), depth
    return None, depth


def build_comment_tree(comments: Sequence[SocialComment]) -> List[CommentNode]:
    """
    Build a score-ordered comment tree from a flat comment list.

    A comment whose parent is present becomes one of its replies; every other
    comment is a root, including replies whose parent was not part of the
    fetched window. Roots and every reply list are sorted by descending score
    with ties kept in input order. Inputs are not mutated.

    Args:
        comments: Flat comments in any order.

    Returns:
        List[CommentNode]: Root nodes with nested replies.
    """
    nodes = {}
    for comment in comments:
        nodes[comment.id] = CommentNode(**comment.model_dump(exclude={"replies"}), replies=[])

    roots: List[CommentNode] = []
    placed = set()
    for comment in comments:
        if comment.id in placed:
            continue
        placed.add(comment.id)
        node = nodes[comment.id]
        parent = nodes.get(comment.parent_id) if comment.parent_id is not None else None
        if parent is not None and parent is not node:
            parent.replies.append(node)
        else:
            roots.append(node)

    _sort_by_score(roots)
    return roots


def _sort_by_score(nodes: List[CommentNode]) -> None:
    # list.sort is stable, so equal scores keep their input order.
    stack = [nodes]
    while stack:
        level = stack.pop()
        level.sort(key=lambda node: node.score, reverse=True)
        stack.extend(node.replies for node in level if node.replies)


def count_nodes(tree: Iterable[CommentNode]) -> int:
    """Total number of nodes reachable from ``tree``."""
    total = 0
    stack = list(tree)
    while stack:
        node = stack.pop()
        total += 1
        stack.extend(node.replies)
    return total


def truncate_depth(tree: Sequence[CommentNode], max_depth: int) -> List[CommentNode]:
    """
    Copy of ``tree`` with replies below ``max_depth`` nesting levels removed.

    Roots are level 0. Used when rendering; the full tree is left untouched.
    """
    def _copy(node: CommentNode, level: int) -> CommentNode:
        replies = [_copy(reply, level + 1) for reply in node.replies] if level < max_depth else []
        return node.model_copy(update={"replies": replies})

    return [_copy(node, 0) for node in tree]
