"""
Entity schemas for the kinship registry.

Models:
- Member: person node with lineage back-pointers and legacy fields
- Union: marriage / birth-family edge with verification workflow
- Marriage: legacy husband/wife edge kept for unmigrated installations
- FamilyLineageLinks: cached immediate + extended relation references

These are pure data contracts - NO database logic here.
The store validates every document through them before writing.
"""

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from kinship.errors import ValidationError


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"


class MaritalStatus(str, Enum):
    SINGLE = "Single"
    MARRIED = "Married"
    DIVORCED = "Divorced"
    WIDOWED = "Widowed"


class UnionType(str, Enum):
    MARRIAGE = "marriage"
    BIRTH_FAMILY = "birth_family"


class UnionStatus(str, Enum):
    ACTIVE = "Active"
    DIVORCED = "Divorced"
    DECEASED = "Deceased"  # soft-delete marker
    SEPARATED = "Separated"


class VerificationStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class MarriageStatus(str, Enum):
    ACTIVE = "Active"
    DIVORCED = "Divorced"
    WIDOWED = "Widowed"


def compose_full_name(first: str, middle: str = "", last: str = "") -> str:
    """Join the non-empty name parts with single spaces."""
    return " ".join(" ".join(p or "" for p in (first, middle, last)).split())


# =============================================================================
# LINEAGE CACHE
# =============================================================================

class ImmediateRelations(BaseModel):
    father_id: Optional[str] = None
    mother_id: Optional[str] = None
    spouse_id: Optional[str] = None
    siblings_ids: list[str] = Field(default_factory=list)
    children_ids: list[str] = Field(default_factory=list)


class PaternalBranch(BaseModel):
    dada_id: Optional[str] = None
    dadi_id: Optional[str] = None
    kaka_ids: list[str] = Field(default_factory=list)
    kaki_ids: list[str] = Field(default_factory=list)
    bua_ids: list[str] = Field(default_factory=list)
    fufa_ids: list[str] = Field(default_factory=list)


class MaternalBranch(BaseModel):
    nana_id: Optional[str] = None
    nani_id: Optional[str] = None
    mama_ids: list[str] = Field(default_factory=list)
    mami_ids: list[str] = Field(default_factory=list)
    mausi_ids: list[str] = Field(default_factory=list)
    mausa_ids: list[str] = Field(default_factory=list)


class InLawBranch(BaseModel):
    father_in_law_id: Optional[str] = None
    mother_in_law_id: Optional[str] = None
    jija_ids: list[str] = Field(default_factory=list)
    saala_ids: list[str] = Field(default_factory=list)
    saali_ids: list[str] = Field(default_factory=list)


class ExtendedNetwork(BaseModel):
    paternal: PaternalBranch = Field(default_factory=PaternalBranch)
    maternal: MaternalBranch = Field(default_factory=MaternalBranch)
    in_laws: InLawBranch = Field(default_factory=InLawBranch)


class FamilyLineageLinks(BaseModel):
    """Materialized relation view, rewritten by the lineage builder."""

    immediate_relations: ImmediateRelations = Field(default_factory=ImmediateRelations)
    extended_network: ExtendedNetwork = Field(default_factory=ExtendedNetwork)
    refreshed_at: Optional[datetime] = None


class LineageLinks(BaseModel):
    """Back-pointers onto union edges. Derived state, never authoritative."""

    current_union_id: Optional[str] = None
    parental_union_id: Optional[str] = None
    family_lineage_links: FamilyLineageLinks = Field(default_factory=FamilyLineageLinks)


# =============================================================================
# ENTITIES
# =============================================================================

class Member(BaseModel):
    """Person node in the kinship graph."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    first_name: str = Field(min_length=1)
    middle_name: str = ""
    last_name: str = ""
    full_name: str = ""
    gender: Optional[Gender] = None
    marital_status: Optional[MaritalStatus] = None
    lineage_links: LineageLinks = Field(default_factory=LineageLinks)

    # Legacy fields kept during migration windows
    spouse_id: Optional[str] = None
    state: Optional[str] = None
    district: Optional[str] = None
    city: Optional[str] = None      # taluka code
    village: Optional[str] = None

    # Denormalized location names
    state_name: Optional[str] = None
    district_name: Optional[str] = None
    taluka_name: Optional[str] = None
    village_name: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _fill_full_name(self) -> "Member":
        if not self.full_name:
            self.full_name = compose_full_name(self.first_name, self.middle_name, self.last_name)
        return self

    @property
    def composed_name(self) -> str:
        return compose_full_name(self.first_name, self.middle_name, self.last_name)


class Verification(BaseModel):
    is_verified: bool = False
    status: VerificationStatus = VerificationStatus.PENDING
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class UnionMeta(BaseModel):
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    created_by: Optional[str] = None


class Union(BaseModel):
    """Marriage or birth-family edge between a husband and a wife."""

    union_id: str = Field(min_length=1)
    husband_id: str = Field(min_length=1)
    wife_id: str = Field(min_length=1)
    marriage_date: Optional[date] = None
    marriage_place: Optional[str] = None
    union_type: UnionType = UnionType.MARRIAGE
    children_ids: list[str] = Field(default_factory=list)
    status: UnionStatus = UnionStatus.ACTIVE
    verification: Verification = Field(default_factory=Verification)
    meta_data: UnionMeta = Field(default_factory=UnionMeta)

    @field_validator("children_ids")
    @classmethod
    def _unique_children(cls, value: list[str]) -> list[str]:
        if len(set(value)) != len(value):
            raise ValueError("children_ids must not contain duplicates")
        return value

    @model_validator(mode="after")
    def _distinct_parties(self) -> "Union":
        if self.husband_id == self.wife_id:
            raise ValueError("husband_id and wife_id must differ")
        if self.husband_id in self.children_ids or self.wife_id in self.children_ids:
            raise ValueError("a spouse cannot be a child of the same union")
        return self

    @property
    def pair_key(self) -> tuple[str, str]:
        """Unordered pair, normalized for the uniqueness index."""
        return tuple(sorted((self.husband_id, self.wife_id)))

    @property
    def is_live(self) -> bool:
        return self.status != UnionStatus.DECEASED

    def partner_of(self, member_id: str) -> Optional[str]:
        if member_id == self.husband_id:
            return self.wife_id
        if member_id == self.wife_id:
            return self.husband_id
        return None


class Marriage(BaseModel):
    """Legacy marriage edge; husband role is always the male party."""

    id: Optional[int] = None
    husband_id: str = Field(min_length=1)
    wife_id: str = Field(min_length=1)
    marriage_date: Optional[date] = None
    status: MarriageStatus = MarriageStatus.ACTIVE
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _no_self_pairing(self) -> "Marriage":
        if self.husband_id == self.wife_id:
            raise ValueError("husband_id and wife_id must differ")
        return self


def validate_document(model_cls, data: dict):
    """Build a model, surfacing schema violations as the registry's ValidationError."""
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {model_cls.__name__}: {e}") from e
