"""Context-specific relationship ids for owned sub-objects."""

from __future__ import annotations

from polyadmin.dto import ClassMetadata, Entity, OwnedReferenceMetadata
from polyadmin.errors import NotFoundError


class ContextualIdResolver:
    """Picks the id that addresses a (possibly dotted) property's data.

    A Product screen may show ``defaultSku.skuMedia``; that collection belongs
    to the Sku, so lookups must use the sku's id rather than the product's.
    Only relationships declared in the metadata are followed, and nothing is
    fetched.
    """

    def get_context_specific_relationship_id(
        self, metadata: ClassMetadata, entity: Entity, property_name: str
    ) -> str:
        ref = self.owning_reference(metadata, property_name)
        if ref is None:
            return entity.id
        owned_id = entity.value(ref.path)
        if owned_id in (None, ""):
            raise NotFoundError(f"{ref.target_type} owned through '{ref.path}' of", entity.id)
        return str(owned_id)

    @staticmethod
    def owning_reference(
        metadata: ClassMetadata, property_name: str
    ) -> OwnedReferenceMetadata | None:
        """Longest declared owned path that fully owns the rest of ``property_name``."""
        best: OwnedReferenceMetadata | None = None
        for ref in metadata.owned_references:
            prefix = f"{ref.path}."
            if not property_name.startswith(prefix):
                continue
            if property_name[len(prefix) :] not in ref.owned_members:
                continue
            if best is None or len(ref.path) > len(best.path):
                best = ref
        return best
