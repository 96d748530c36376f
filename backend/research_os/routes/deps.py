from fastapi import Query

from ..store import ArchiveState, archive_state_from_params


def archive_state(
    include_archived: bool = Query(False, alias="includeArchived"),
    archived: bool = Query(False),
) -> ArchiveState:
    return archive_state_from_params(include_archived, archived)
