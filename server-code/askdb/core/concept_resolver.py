from __future__ import annotations
from typing import Dict, List, Optional, Tuple

from askdb.core.models import CandidateTable, ConceptMatch, SchemaSnapshot

# Business vocabulary -> identifier fragments it may appear as
SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "customer": ("customer", "client", "account", "user", "member", "buyer"),
    "product": ("product", "item", "sku", "goods", "merchandise"),
    "order": ("order", "transaction", "purchase", "sale"),
    "category": ("category", "type", "class", "group", "classification"),
    "revenue": ("revenue", "amount", "total", "price", "value", "sales"),
    "quantity": ("quantity", "qty", "count", "amount", "volume"),
}

# Question words that trigger a suggestion for a concept
TRIGGERS: Dict[str, Tuple[str, ...]] = {
    "customer": ("customer", "client"),
    "product": ("product", "item"),
    "category": ("category", "type"),
}


def expand_concept(concept: str) -> List[str]:
    c = concept.lower().strip()
    terms = [c]
    for synonyms in SYNONYMS.values():
        if any(s in c or c in s for s in synonyms):
            terms.extend(s for s in synonyms if s not in terms)
            break
    return terms


def resolve_concept(snapshot: Optional[SchemaSnapshot], concept: str) -> ConceptMatch:
    """
    Tables whose name or columns look like `concept` (after synonym expansion).
    Table-name hits come first; a table is listed at most once.
    """
    match = ConceptMatch(concept=concept)
    if snapshot is None or not concept.strip():
        return match
    terms = expand_concept(concept)

    seen = set()
    for t in snapshot.tables:
        if any(term in t.name.lower() for term in terms):
            match.candidate_tables.append(CandidateTable(
                table=t.name,
                reason=f'Table name contains "{concept}" concept',
                row_count=t.row_count,
            ))
            seen.add(t.name)

    for t in snapshot.tables:
        if t.name in seen:
            continue
        cols = [c.name for c in t.columns if any(term in c.name.lower() for term in terms)]
        if cols:
            match.candidate_tables.append(CandidateTable(
                table=t.name,
                reason=f'Has columns related to "{concept}": {", ".join(cols)}',
                relevant_columns=cols,
                row_count=t.row_count,
            ))
    return match


def suggest_for_question(snapshot: Optional[SchemaSnapshot], question: str) -> List[ConceptMatch]:
    q = (question or "").lower()
    out: List[ConceptMatch] = []
    for concept, words in TRIGGERS.items():
        if any(w in q for w in words):
            m = resolve_concept(snapshot, concept)
            if m.candidate_tables:
                out.append(m)
    return out


def format_suggestions(matches: List[ConceptMatch]) -> str:
    if not matches:
        return ""
    lines = ["TABLE SUGGESTIONS (tables that may hold the concepts in the question):"]
    for m in matches:
        parts = []
        for c in m.candidate_tables:
            if c.relevant_columns:
                parts.append(f"{c.table} ({', '.join(c.relevant_columns)})")
            else:
                parts.append(c.table)
        lines.append(f"- {m.concept}: {', '.join(parts)}")
    return "\n".join(lines)
