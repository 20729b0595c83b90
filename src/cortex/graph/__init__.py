from .association import AssociationGraph
from .entity_graph import EntityGraph

__all__ = ["AssociationGraph", "EntityGraph"]
