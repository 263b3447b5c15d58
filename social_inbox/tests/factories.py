"""
Row builders shared by service tests
"""
import itertools

from social_inbox.db.models import Interaction

_ids = itertools.count(1)


def make_interaction(db, organization_id, **overrides):
    n = next(_ids)
    values = dict(
        organization_id=organization_id,
        platform="instagram",
        type="comment",
        platform_id=f"item-{n}",
        content=f"Comment number {n}",
        author_name="Fan",
        status="unread",
    )
    values.update(overrides)
    interaction = Interaction(**values)
    db.add(interaction)
    db.commit()
    return interaction
