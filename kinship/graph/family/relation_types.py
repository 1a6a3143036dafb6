"""Relation-type vocabulary and the gender constraint each slot implies."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from kinship.graph.models import Gender, MaritalStatus

ELIGIBLE_LIMIT = 200


class GenderConstraint(str, Enum):
    ANY = "any"
    MALE = "male"
    FEMALE = "female"
    OPPOSITE = "opposite"   # opposite of the requesting member


class RelationType(str, Enum):
    FATHER = "father"
    MOTHER = "mother"
    SPOUSE = "spouse"
    SIBLING = "sibling"
    DADA = "dada"
    DADI = "dadi"
    NANA = "nana"
    NANI = "nani"
    KAKA = "kaka"
    KAKI = "kaki"
    BUA = "bua"
    FUFA = "fufa"
    MAMA = "mama"
    MAMI = "mami"
    MAUSI = "mausi"
    MAUSA = "mausa"
    JIJA = "jija"
    SAALA = "saala"
    SAALI = "saali"


@dataclass(frozen=True)
class RelationRule:
    """Candidate filter for one relation slot."""
    gender: GenderConstraint
    marital_statuses: Optional[tuple[MaritalStatus, ...]] = None


RULES = {
    RelationType.FATHER: RelationRule(GenderConstraint.MALE),  # father
    RelationType.MOTHER: RelationRule(GenderConstraint.FEMALE),  # mother
    # Married candidates stay eligible for edge cases in legacy data
    RelationType.SPOUSE: RelationRule(
        GenderConstraint.OPPOSITE,
        (MaritalStatus.SINGLE, MaritalStatus.MARRIED)
    ),
    RelationType.SIBLING: RelationRule(GenderConstraint.ANY),  # brother or sister

    # Paternal
    RelationType.DADA: RelationRule(GenderConstraint.MALE),  # father's father
    RelationType.DADI: RelationRule(GenderConstraint.FEMALE),  # father's mother
    RelationType.KAKA: RelationRule(GenderConstraint.MALE),  # father's brother
    RelationType.KAKI: RelationRule(GenderConstraint.FEMALE),  # father's brother's wife
    RelationType.BUA: RelationRule(GenderConstraint.FEMALE),  # father's sister
    RelationType.FUFA: RelationRule(GenderConstraint.MALE),  # father's sister's husband

    # Maternal
    RelationType.NANA: RelationRule(GenderConstraint.MALE),  # mother's father
    RelationType.NANI: RelationRule(GenderConstraint.FEMALE),  # mother's mother
    RelationType.MAMA: RelationRule(GenderConstraint.MALE),  # mother's brother
    RelationType.MAMI: RelationRule(GenderConstraint.FEMALE),  # mother's brother's wife
    RelationType.MAUSI: RelationRule(GenderConstraint.FEMALE),  # mother's sister
    RelationType.MAUSA: RelationRule(GenderConstraint.MALE),  # mother's sister's husband

    # In-laws
    RelationType.JIJA: RelationRule(GenderConstraint.MALE),  # sister's husband
    RelationType.SAALA: RelationRule(GenderConstraint.MALE),  # wife's brother
    RelationType.SAALI: RelationRule(GenderConstraint.FEMALE),  # wife's sister
}


def parse_relation_type(term: str) -> Optional[RelationType]:
    """Normalize a relation term; None when it is not in the vocabulary."""
    if not term:
        return None
    try:
        return RelationType(term.lower().strip())
    except ValueError:
        return None


def rule_for(term: str) -> Optional[RelationRule]:
    relation = parse_relation_type(term)
    return RULES[relation] if relation else None


def required_gender(term: str, requester_gender: Optional[str] = None) -> Optional[Gender]:
    """Gender a candidate must have for the slot; None means no filter."""
    rule = rule_for(term)
    if not rule:
        return None

    if rule.gender == GenderConstraint.MALE:
        return Gender.MALE
    if rule.gender == GenderConstraint.FEMALE:
        return Gender.FEMALE
    if rule.gender == GenderConstraint.OPPOSITE:
        return Gender.FEMALE if requester_gender == Gender.MALE.value else Gender.MALE
    return None
