"""Alias suggestions for registry records."""

from partnermap.models import AliasSuggestion, Entity, Node, NodeCategory, RecordType
from partnermap.services.similarity import extract_domain

MAX_SUGGESTIONS = 20

# Common alternative names for well-known system categories
CATEGORY_ALIASES: dict[NodeCategory, tuple[str, ...]] = {
    NodeCategory.PMS: ("Property Management", "Hotel System"),
    NodeCategory.CRS: ("Reservation System", "Booking System"),
    NodeCategory.CM: ("Channel Manager", "Distribution"),
    NodeCategory.OTA: ("Online Travel", "Booking Platform"),
}

DOMAIN_CONFIDENCE = 0.8
CATEGORY_CONFIDENCE = 0.7
NODE_WORD_CONFIDENCE = 0.6


def _capitalize(word: str) -> str:
    return word[:1].upper() + word[1:]


def _domain_suggestion(entity: Entity, known: set[str]) -> AliasSuggestion | None:
    domain = extract_domain(entity.website)
    if not domain:
        return None
    label = domain.split(".")[0]
    if not label or label in known:
        return None
    return AliasSuggestion(
        type=RecordType.ENTITY,
        target_id=entity.entity_id,
        target_name=entity.master_entity_name,
        suggested_alias=_capitalize(label),
        source="domain_analysis",
        confidence=DOMAIN_CONFIDENCE,
        reason="Derived from website domain",
    )


def suggest_aliases(
    entities: list[Entity], nodes: list[Node], limit: int = MAX_SUGGESTIONS
) -> list[AliasSuggestion]:
    """Propose aliases, best first.

    Entities get their website's first domain label and the longer words of
    their nodes' names that are not already part of the entity's names.
    Nodes get the stock aliases of their category.
    """
    suggestions: list[AliasSuggestion] = []

    nodes_by_entity: dict[str, list[Node]] = {}
    for node in nodes:
        nodes_by_entity.setdefault(node.entity_id, []).append(node)

    for entity in entities:
        known = {entity.master_entity_name.lower(), *(a.lower() for a in entity.alternate_names)}
        entity_words = set(entity.master_entity_name.lower().split())

        domain_suggestion = _domain_suggestion(entity, known)
        if domain_suggestion:
            suggestions.append(domain_suggestion)
            known.add(domain_suggestion.suggested_alias.lower())

        for node in nodes_by_entity.get(entity.entity_id, []):
            for word in node.node_name.lower().split():
                if len(word) <= 3 or word in entity_words or word in known:
                    continue
                known.add(word)
                suggestions.append(
                    AliasSuggestion(
                        type=RecordType.ENTITY,
                        target_id=entity.entity_id,
                        target_name=entity.master_entity_name,
                        suggested_alias=_capitalize(word),
                        source="node_analysis",
                        confidence=NODE_WORD_CONFIDENCE,
                        reason=f"Found in node name: {node.node_name}",
                    )
                )

    for node in nodes:
        for alias in CATEGORY_ALIASES.get(node.node_category, ()):
            if alias in node.node_aliases:
                continue
            suggestions.append(
                AliasSuggestion(
                    type=RecordType.NODE,
                    target_id=node.node_id,
                    target_name=node.node_name,
                    suggested_alias=alias,
                    source="category_pattern",
                    confidence=CATEGORY_CONFIDENCE,
                    reason=f"Common alias for {node.node_category.value} systems",
                )
            )

    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    return suggestions[:limit]
