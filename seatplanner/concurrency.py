"""Optimistic concurrency for rooms and seats.

Every write to a room or seat goes through ``cas_update``: a single
conditional UPDATE keyed on the expected version that bumps the version in
the same statement. Nothing here commits; callers wrap their writes in
``unit_of_work`` so a batch lands together or not at all.
"""
import logging

from sqlalchemy import delete, update

from seatplanner.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


def cas_update(db, model, entity_id, expected_version, **values):
    """Apply ``values`` to one row only if its version is still ``expected_version``.

    Returns the refreshed entity. Raises ``ConflictError`` carrying a snapshot
    of the stored entity when the version has moved on, or ``NotFoundError``
    when the row is gone.
    """
    stmt = (
        update(model)
        .where(model.id == entity_id)
        .where(model.version == expected_version)
        .values(version = model.version + 1, **values)
        .execution_options(synchronize_session = False)
    )
    result = db.execute(stmt)

    current = db.get(model, entity_id, populate_existing = True)
    if result.rowcount == 0:
        if current is None:
            raise NotFoundError(f"{_entity_name(model)} {entity_id} not found")
        logger.warning(
            "Version conflict on %s %s: expected %s, stored %s",
            _entity_name(model), entity_id, expected_version, current.version,
        )
        raise ConflictError(current.as_dict(), entity = _entity_name(model).lower())

    return current


def get_or_404(db, model, entity_id):
    entity = db.get(model, entity_id)
    if entity is None:
        raise NotFoundError(f"{_entity_name(model)} {entity_id} not found")
    return entity


def _entity_name(model):
    return model.__name__.replace("DB", "")


def cas_delete(db, model, entity_id, expected_version):
    """Delete one row only if its version is still ``expected_version``."""
    result = db.execute(
        delete(model)
        .where(model.id == entity_id)
        .where(model.version == expected_version)
        .execution_options(synchronize_session = "fetch")
    )
    if result.rowcount == 0:
        current = db.get(model, entity_id, populate_existing = True)
        if current is None:
            raise NotFoundError(f"{_entity_name(model)} {entity_id} not found")
        raise ConflictError(current.as_dict(), entity = _entity_name(model).lower())
