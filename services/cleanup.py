import logging
from collections import defaultdict

from constants import DRAFTS_PREFIX
from utils.filenames import draft_id_from_path
from utils.storage import StorageBackendError
from utils.timestamps import hours_ago

logger = logging.getLogger(__name__)


def cleanup_abandoned_drafts(storage, max_age_hours=72, dry_run=False):
    """
    Delete tmp/<draftId>/ uploads whose newest file is older than max_age_hours.

    Submitted drafts have already been moved into orders/, so whatever is
    still under tmp/ past the cutoff belongs to a draft nobody submitted.
    Order data is never touched.

    Returns {"drafts": <drafts removed>, "files": <objects removed>}.
    """
    cutoff = hours_ago(max_age_hours)
    by_draft = defaultdict(list)
    for obj in storage.list(f"{DRAFTS_PREFIX}/"):
        draft_id = draft_id_from_path(obj.key)
        if draft_id:
            by_draft[draft_id].append(obj)

    drafts_removed = 0
    files_removed = 0
    for draft_id, objects in sorted(by_draft.items()):
        newest = max(obj.last_modified for obj in objects)
        if newest >= cutoff:
            continue

        logger.info(f"[Cleanup] Removing abandoned draft {draft_id} ({len(objects)} file(s), last upload {newest.isoformat()})")
        if dry_run:
            drafts_removed += 1
            files_removed += len(objects)
            continue

        removed_here = 0
        for obj in objects:
            try:
                storage.delete(obj.key)
                removed_here += 1
            except StorageBackendError as e:
                logger.warning(f"[Cleanup] Could not delete {obj.key}: {e}")
        files_removed += removed_here
        if removed_here == len(objects):
            drafts_removed += 1

    return {"drafts": drafts_removed, "files": files_removed}
