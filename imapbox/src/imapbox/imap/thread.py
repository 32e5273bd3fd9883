"""Flatten THREAD replies into indexed ``{num, next, branch}`` nodes.

What:
  Turn the nested structure returned by ``IMAPClient.thread`` (tuples of
  message ids, RFC 5256) into a flat list of :class:`ThreadNode` records and
  into the ``"<index>.num"`` / ``"<index>.next"`` / ``"<index>.branch"``
  mapping exposed by :meth:`~imapbox.imap.mailbox.Mailbox.get_thread`.

Why:
  Nested tuples are awkward to store or compare and recursion depth is bounded
  by the interpreter, while real conversations can nest deeply. A flat,
  densely indexed form is easy to serialise and to walk.

How:
  A thread tuple is a chain of ids optionally followed by nested sub-threads
  that branch off the last id of the chain. A thread that starts with a
  nested list has no known root and gets a placeholder node (``num`` 0).
  Nodes are visited depth first with an explicit stack; a node's ``next`` is
  its first child and ``branch`` its next sibling, both as node indices, with
  0 meaning "none".

Interfaces:
  :class:`ThreadNode`, :func:`decode`, :func:`flatten`.

Invariants & Safety:
  - Indices are assigned in discovery order, independent of message ids.
  - ``next``/``branch`` always point at other nodes of the same reply.
  - An empty reply yields an empty result.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

_VISIT = 0
_SIBLING = 1

_Branch = Tuple[Sequence[object], int]


@dataclass
class ThreadNode:
    num: int
    next: int = 0
    branch: int = 0


def _split(thread: Sequence[object], offset: int) -> Tuple[int, List[_Branch]]:
    head = thread[offset]
    if isinstance(head, (list, tuple)):
        num, rest = 0, offset
    else:
        num, rest = int(head), offset + 1
    if rest >= len(thread):
        return num, []
    if isinstance(thread[rest], (list, tuple)):
        return num, [(thread[index], 0) for index in range(rest, len(thread))]  # type: ignore[misc]
    return num, [(thread, rest)]


def _walk(reply: Sequence[Sequence[object]]):
    """Yield ``(index, key, value)`` in discovery order."""

    roots: List[_Branch] = [(thread, 0) for thread in reply if len(thread)]
    if not roots:
        return
    counter = 0
    stack: List[tuple] = [(_VISIT, roots, 0)]
    while stack:
        frame = stack.pop()
        if frame[0] == _VISIT:
            _, siblings, position = frame
            thread, offset = siblings[position]
            index = counter
            counter += 1
            num, children = _split(thread, offset)
            yield index, "num", num
            yield index, "next", counter if children else 0
            stack.append((_SIBLING, index, siblings, position))
            if children:
                stack.append((_VISIT, children, 0))
        else:
            _, index, siblings, position = frame
            has_sibling = position + 1 < len(siblings)
            yield index, "branch", counter if has_sibling else 0
            if has_sibling:
                stack.append((_VISIT, siblings, position + 1))


def decode(reply: Sequence[Sequence[object]]) -> List[ThreadNode]:
    nodes: List[ThreadNode] = []
    for index, key, value in _walk(reply):
        if key == "num":
            nodes.append(ThreadNode(num=value))
        else:
            setattr(nodes[index], key, value)
    return nodes


def flatten(reply: Sequence[Sequence[object]]) -> Dict[str, int]:
    """Return the ``"<index>.<field>"`` mapping, keys in discovery order."""

    return {f"{index}.{key}": value for index, key, value in _walk(reply)}
