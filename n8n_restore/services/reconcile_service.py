"""Post-import reconciliation of manifest entries with the ids n8n actually assigned."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from n8n_restore.schemas.manifest import IntendedAction, ResolutionStrategy
from n8n_restore.services.slug_service import normalize_name_key

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from n8n_restore.schemas.manifest import ManifestEntry
    from n8n_restore.schemas.remote import RemoteWorkflow

    MatcherFn = Callable[[ManifestEntry, "ReconcileContext"], "Match | None"]

logger = logging.getLogger(__name__)

NOT_FOUND_WARNING = "workflow not found after import"


@dataclass(frozen=True)
class Match:
    """Outcome of one matcher.

    ``workflow_id`` is None when the matcher found several candidates and
    refuses to pick one; ``warning`` then explains the ambiguity.
    """

    strategy: ResolutionStrategy
    workflow_id: str | None = None
    warning: str | None = None


@dataclass
class ReconcileContext:
    post_ids: set[str]
    by_instance: dict[str, list[str]]
    new_by_name: dict[str, list[str]]

    @classmethod
    def build(
        cls, pre_import: Iterable[RemoteWorkflow], post_import: Iterable[RemoteWorkflow]
    ) -> ReconcileContext:
        pre_ids = {str(w.id) for w in pre_import if w.id}
        post = [w for w in post_import if w.id]
        by_instance: dict[str, list[str]] = {}
        new_by_name: dict[str, list[str]] = {}
        for workflow in post:
            workflow_id = str(workflow.id)
            if workflow.instance_id and workflow.instance_id.strip():
                by_instance.setdefault(workflow.instance_id.strip().lower(), []).append(
                    workflow_id
                )
            if workflow_id not in pre_ids and workflow.name:
                new_by_name.setdefault(normalize_name_key(workflow.name), []).append(workflow_id)
        return cls(
            post_ids={str(w.id) for w in post},
            by_instance=by_instance,
            new_by_name=new_by_name,
        )


def match_assigned_id(entry: ManifestEntry, ctx: ReconcileContext) -> Match | None:
    if entry.assigned_id and entry.assigned_id in ctx.post_ids:
        return Match(ResolutionStrategy.MANIFEST_ID, entry.assigned_id)
    return None


def match_existing_id(entry: ManifestEntry, ctx: ReconcileContext) -> Match | None:
    if entry.sanitization_note is None and entry.existing_id in ctx.post_ids:
        return Match(ResolutionStrategy.EXISTING_WORKFLOW_ID, entry.existing_id)
    return None


def match_original_id(entry: ManifestEntry, ctx: ReconcileContext) -> Match | None:
    if entry.sanitization_note is None and entry.original_id in ctx.post_ids:
        return Match(ResolutionStrategy.ORIGINAL_WORKFLOW_ID, entry.original_id)
    return None


def match_instance_id(entry: ManifestEntry, ctx: ReconcileContext) -> Match | None:
    if not entry.instance_id:
        return None
    candidates = ctx.by_instance.get(entry.instance_id.strip().lower(), [])
    if len(candidates) == 1:
        return Match(ResolutionStrategy.META_INSTANCE, candidates[0])
    if candidates:
        return Match(
            ResolutionStrategy.META_INSTANCE,
            warning=f"Multiple workflows share instanceId {entry.instance_id}",
        )
    return None


def match_new_name(entry: ManifestEntry, ctx: ReconcileContext) -> Match | None:
    candidates = ctx.new_by_name.get(normalize_name_key(entry.name), [])
    if len(candidates) == 1:
        return Match(ResolutionStrategy.NAME_ONLY, candidates[0])
    if candidates:
        return Match(
            ResolutionStrategy.NAME_ONLY,
            warning=f"Multiple workflows share this name ({entry.name})",
        )
    return None


DEFAULT_MATCHERS: tuple[MatcherFn, ...] = (
    match_assigned_id,
    match_existing_id,
    match_original_id,
    match_instance_id,
    match_new_name,
)


@dataclass
class ReconcileResult:
    entries: list[ManifestEntry] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    unresolved: int = 0
    planned: int = 0
    strategies: Counter[str] = field(default_factory=Counter)

    @property
    def resolved(self) -> int:
        return self.created + self.updated


def reconcile_entry(
    entry: ManifestEntry,
    ctx: ReconcileContext,
    matchers: Iterable[MatcherFn] = DEFAULT_MATCHERS,
) -> bool:
    """Fill in the post-import id fields of ``entry``; return whether it resolved."""
    warnings: list[str] = []
    for matcher in matchers:
        match = matcher(entry, ctx)
        if match is None:
            continue
        if match.workflow_id is None:
            if match.warning:
                warnings.append(match.warning)
            continue
        entry.actual_imported_id = match.workflow_id
        entry.id_reconciled = True
        entry.id_resolution_strategy = match.strategy
        entry.id_reconciliation_warning = "; ".join(warnings) or None
        return True

    entry.actual_imported_id = None
    entry.id_reconciled = False
    entry.id_resolution_strategy = ResolutionStrategy.UNRESOLVED
    entry.id_reconciliation_warning = "; ".join(warnings) or NOT_FOUND_WARNING
    return False


def mark_planned(entry: ManifestEntry) -> None:
    entry.actual_imported_id = None
    entry.id_reconciled = None
    entry.id_resolution_strategy = ResolutionStrategy.PLANNED
    entry.id_reconciliation_warning = None


def reconcile_manifest(
    entries: list[ManifestEntry],
    pre_import: Iterable[RemoteWorkflow],
    post_import: Iterable[RemoteWorkflow],
    *,
    dry_run: bool = False,
) -> ReconcileResult:
    """Confirm the id each staged workflow received by trying matchers in order.

    Entries are updated in place; ``created`` counts resolved entries that
    had no existing remote workflow, ``updated`` those that did. In a dry
    run nothing was imported, so entries staged for creation are marked
    ``planned`` instead of being matched.
    """
    ctx = ReconcileContext.build(pre_import, post_import)
    result = ReconcileResult(entries=entries)
    for entry in entries:
        if dry_run and entry.intended_action == IntendedAction.CREATE:
            mark_planned(entry)
            result.planned += 1
            logger.debug("Would create %s", entry.relative_path)
        elif reconcile_entry(entry, ctx):
            result.strategies[str(entry.id_resolution_strategy)] += 1
            if entry.existing_id:
                result.updated += 1
            else:
                result.created += 1
        else:
            result.unresolved += 1
            logger.warning(
                "Could not reconcile %s: %s", entry.relative_path, entry.id_reconciliation_warning
            )

    logger.info(
        "Reconciled %d/%d workflow(s), %d unresolved, %d planned",
        result.resolved,
        len(entries),
        result.unresolved,
        result.planned,
    )
    return result
