"""FastAPI backend for the kinship registry."""

from datetime import date
from functools import lru_cache
from typing import Optional, List

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from kinship import errors
from kinship.graph.family.graph import FamilyGraph
from kinship.graph.family.relationships import MemberSummary
from kinship.graph.models import Union

app = FastAPI(title="Kinship Registry API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache
def get_graph() -> FamilyGraph:
    """Shared graph over the configured database; tests override this dependency."""
    return FamilyGraph()


class CreateUnionRequest(BaseModel):
    husband_id: str
    wife_id: str
    marriage_date: Optional[date] = None
    marriage_place: Optional[str] = None
    children_ids: List[str] = []


class AddChildRequest(BaseModel):
    child_id: str


class VerifyRequest(BaseModel):
    action: str
    rejection_reason: Optional[str] = None


# =============================================================================
# ERROR MAPPING
# =============================================================================

STATUS_CODES = {
    errors.NotFound: 404,
    errors.InvalidGenderCombination: 400,
    errors.InvalidAction: 400,
    errors.ValidationError: 400,
    errors.DuplicateUnion: 409,
    errors.DuplicateMarriage: 409,
    errors.AlreadyFinalized: 409,
    errors.ExternalLookupUnavailable: 503,
}


@app.exception_handler(errors.KinshipError)
async def kinship_error_handler(request: Request, exc: errors.KinshipError):
    status_code = STATUS_CODES.get(type(exc), 500)
    if status_code == 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"error": str(exc), "type": type(exc).__name__})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "type": "ValidationError", "detail": jsonable_encoder(exc.errors())},
    )


def _union_out(union: Union) -> dict:
    return union.model_dump(mode="json")


def _with_members(graph: FamilyGraph, unions: List[Union]) -> List[dict]:
    """Unions with husband, wife and children resolved to member summaries."""
    ids = [i for u in unions for i in (u.husband_id, u.wife_id, *u.children_ids)]
    people = graph.store.get_members(ids)

    def summary(member_id):
        member = people.get(member_id)
        return MemberSummary.of(member).model_dump(mode="json") if member else None

    out = []
    for union in unions:
        data = _union_out(union)
        data["husband"] = summary(union.husband_id)
        data["wife"] = summary(union.wife_id)
        data["children"] = [summary(c) for c in union.children_ids if c in people]
        out.append(data)
    return out


# =============================================================================
# UNIONS
# =============================================================================

@app.post("/api/unions", status_code=201)
def create_union(
    req: CreateUnionRequest,
    actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
    graph: FamilyGraph = Depends(get_graph),
):
    union = graph.create_union(
        req.husband_id,
        req.wife_id,
        created_by=actor_id,
        marriage_date=req.marriage_date,
        marriage_place=req.marriage_place,
        children_ids=req.children_ids,
    )
    return _union_out(union)


@app.get("/api/unions/pending")
def pending_unions(graph: FamilyGraph = Depends(get_graph)):
    return _with_members(graph, graph.list_pending())


@app.get("/api/unions/by-member/{member_id}")
def unions_by_member(member_id: str, graph: FamilyGraph = Depends(get_graph)):
    return _with_members(graph, graph.list_by_member(member_id))


@app.get("/api/unions/{union_id}")
def get_union(union_id: str, graph: FamilyGraph = Depends(get_graph)):
    """Union with husband, wife and children resolved to member summaries."""
    return _with_members(graph, [graph.get_union(union_id)])[0]


@app.post("/api/unions/{union_id}/add-child")
def add_child(union_id: str, req: AddChildRequest, graph: FamilyGraph = Depends(get_graph)):
    union = graph.add_child(union_id, req.child_id)
    return {"message": "Child added to union successfully", "union": _union_out(union)}


@app.put("/api/unions/{union_id}/verify")
def verify_union(
    union_id: str,
    req: VerifyRequest,
    actor_id: str = Header(..., alias="X-Actor-Id"),
    graph: FamilyGraph = Depends(get_graph),
):
    union = graph.verify(union_id, req.action, actor_id, req.rejection_reason)
    return {"message": f"Union {req.action}d successfully", "union": _union_out(union)}


@app.delete("/api/unions/{union_id}")
def delete_union(union_id: str, graph: FamilyGraph = Depends(get_graph)):
    graph.soft_delete(union_id)
    return {"message": "Union deleted successfully"}


# =============================================================================
# MEMBERS
# =============================================================================

@app.get("/api/members/eligible-relations")
def eligible_relations(
    relation_type: str = Query(..., alias="type"),
    gender: Optional[str] = None,
    exclude_id: Optional[str] = Query(None, alias="excludeId"),
    graph: FamilyGraph = Depends(get_graph),
):
    candidates = graph.eligible_candidates(relation_type, gender, exclude_id)
    return [c.model_dump(mode="json") for c in candidates]


@app.get("/api/members/{member_id}/family-network")
def family_network(member_id: str, graph: FamilyGraph = Depends(get_graph)):
    return graph.family_network(member_id)
