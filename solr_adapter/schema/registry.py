"""
Entity registry.

Holds the entity schemas a connection works with and resolves relation
targets by name.
"""

from typing import Dict, Iterable, List, Union

from solr_adapter.core.models import EntitySchema
from solr_adapter.schema.type_mappings import TypeMapper


class EntityRegistry:
    """
    In-process schema collaborator.

    Implements the IEntityRegistry interface.
    """

    def __init__(self, entities: Iterable[EntitySchema] = ()):
        """
        Initialize the registry.

        Args:
            entities: Schemas to register up front
        """
        self._entities: Dict[str, EntitySchema] = {}
        for entity in entities:
            self.register(entity)

    def register(self, entity: EntitySchema) -> EntitySchema:
        """
        Register (or replace) a schema under its entity name.

        Field types written as SOLR schema types are normalized first, in
        which case the registered schema is a copy of ``entity``.
        """
        fields = [
            f.model_copy(update={"type": TypeMapper.to_field_type(f.type)})
            for f in entity.fields
        ]
        if any(new.type != old.type for new, old in zip(fields, entity.fields)):
            entity = entity.model_copy(update={"fields": fields})
        self._entities[entity.name] = entity
        return entity

    def get_entity(self, name: str) -> EntitySchema:
        try:
            return self._entities[name]
        except KeyError:
            raise KeyError(f"Entity '{name}' is not registered") from None

    def resolve(self, entity: Union[EntitySchema, str]) -> EntitySchema:
        """Accept either a schema or an entity name."""
        if isinstance(entity, EntitySchema):
            if entity.name not in self._entities:
                return self.register(entity)
            return self._entities[entity.name]
        return self.get_entity(entity)

    def names(self) -> List[str]:
        return list(self._entities)

    def __contains__(self, name: str) -> bool:
        return name in self._entities

    def __len__(self) -> int:
        return len(self._entities)
