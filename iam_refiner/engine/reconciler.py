"""
Policy reconciliation against organization allow/deny lists.

Generated statements are merged with the global lists so that every Allow
statement carries the allow-listed actions and loses the deny-listed ones,
and every Deny statement drops allow-listed actions and carries the
deny-listed ones. Deny wins: an action present in both lists is treated as
denied everywhere.

The merge is deterministic and a fixed point: reconciling an already
reconciled document with the same lists returns it unchanged.
"""

import json
import logging
from typing import Callable, Iterable, List, Sequence, Tuple, TypeVar, Union

from ..exceptions import ContentError
from ..models import ActionLists, Effect, PolicyDocument, Statement

logger = logging.getLogger(__name__)

T = TypeVar("T")


def partition(items: Iterable[T], predicate: Callable[[T], bool]) -> Tuple[List[T], List[T]]:
    """
    Split items by predicate, keeping relative order in both halves.

    Returns:
        (matched, unmatched)
    """
    matched: List[T] = []
    unmatched: List[T] = []
    for item in items:
        (matched if predicate(item) else unmatched).append(item)
    return matched, unmatched


def _dedupe(actions: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(actions))


def reconcile_statement(statement: Statement, action_lists: ActionLists) -> Statement:
    """
    Reconcile one statement.

    Allow: ``(actions + allow) - deny``.
    Deny: ``(actions - allow) + deny``, where deny-listed actions are never
    removed even if they are allow-listed too.

    Sid, resources and any other statement keys pass through unchanged.
    The result may have no actions left; it is still returned.
    """
    allow = action_lists.allow_set
    deny = action_lists.deny_set

    if statement.effect == Effect.ALLOW:
        merged = _dedupe(list(statement.actions) + list(action_lists.allow))
        actions = [a for a in merged if a not in deny]
    else:
        kept = [a for a in statement.actions if a not in allow or a in deny]
        actions = _dedupe(kept + list(action_lists.deny))

    return statement.model_copy(update={"actions": actions})


def reconcile_policy(document: PolicyDocument, action_lists: ActionLists) -> PolicyDocument:
    """
    Reconcile a policy document.

    Output statements are the original Allow statements, in their original
    order, followed by the original Deny statements in theirs.
    """
    allowed, denied = partition(document.statements, lambda s: s.effect == Effect.ALLOW)

    statements = [reconcile_statement(s, action_lists) for s in allowed]
    statements += [reconcile_statement(s, action_lists) for s in denied]

    emptied = [s.sid or "<no sid>" for s in statements if not s.actions]
    if emptied:
        logger.info(f"Reconciled statements left without actions: {', '.join(emptied)}")

    return document.model_copy(update={"statements": statements})


def reconcile_policies(
    documents: Sequence[PolicyDocument], action_lists: ActionLists
) -> List[PolicyDocument]:
    """Reconcile every document against the same action-list snapshot."""
    return [reconcile_policy(doc, action_lists) for doc in documents]


def parse_action_list(content: Union[bytes, str], source: str = "action list") -> Tuple[str, ...]:
    """
    Parse a JSON array of action names.

    Raises:
        ContentError: if the content is not a JSON array of strings
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8")

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ContentError(f"{source} is not valid JSON: {e}") from e

    if not isinstance(data, list) or not all(isinstance(a, str) for a in data):
        raise ContentError(f"{source} must be a JSON array of action names")

    return tuple(data)


def parse_policy_documents(content: Union[bytes, str], source: str = "policy blob") -> List[PolicyDocument]:
    """
    Parse a JSON array (or single object) of IAM policy documents.

    Raises:
        ContentError: if the content is not valid policy JSON
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8")

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ContentError(f"{source} is not valid JSON: {e}") from e

    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ContentError(f"{source} must contain policy documents")

    try:
        return [PolicyDocument.model_validate(item) for item in data]
    except ValueError as e:
        raise ContentError(f"{source} contains an invalid policy document: {e}") from e


def serialize_policies(documents: Sequence[PolicyDocument]) -> bytes:
    """Serialize documents as the JSON array stored in the repository."""
    return json.dumps([doc.to_iam() for doc in documents], indent=2).encode("utf-8")
