from __future__ import annotations

from typing import List

import sqlalchemy as sa
from sqlalchemy.orm import Session, sessionmaker

from ..errors import NotFoundError, VersionImmutabilityError
from ..model import Item, Reference
from ..serialize import content_digest, item_from_dict, item_to_dict
from ..store import Published
from .models import PublishedItem


class SqlDefinitionStore:
    """Definition store backed by the registry database."""

    def __init__(self, sessions: sessionmaker[Session]):
        self.sessions = sessions

    def publish(self, item: Item) -> str:
        ref = item.reference
        digest = content_digest(item)

        try:
            with self.sessions() as s, s.begin():
                row = s.get(PublishedItem, (ref.location, ref.version))
                if row is None:
                    s.add(
                        PublishedItem(
                            location=ref.location,
                            version=ref.version,
                            kind=item.kind,
                            digest=digest,
                            document=item_to_dict(item),
                        )
                    )
                    return digest
                stored = row.digest
        except sa.exc.IntegrityError:
            # lost a race with a concurrent publish of the same tag
            with self.sessions() as s:
                stored = s.get(PublishedItem, (ref.location, ref.version)).digest

        if stored != digest:
            raise VersionImmutabilityError(str(ref), stored, digest)
        return digest

    def fetch(self, reference: Reference) -> Published:
        with self.sessions() as s:
            row = s.get(PublishedItem, (reference.location, reference.version))
            if row is None:
                raise NotFoundError(str(reference))
            document, digest = row.document, row.digest
        return Published(item=item_from_dict(document, source="registry"), digest=digest)

    def versions(self, location: str) -> List[str]:
        q = sa.select(PublishedItem.version).where(PublishedItem.location == location).order_by(PublishedItem.version)
        with self.sessions() as s:
            return list(s.scalars(q))

    def __contains__(self, reference: object) -> bool:
        if not isinstance(reference, Reference):
            return False
        with self.sessions() as s:
            return s.get(PublishedItem, (reference.location, reference.version)) is not None
