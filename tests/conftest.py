"""Shared pytest fixtures."""

import pytest

from kinship.graph.family.graph import FamilyGraph
from kinship.graph.models import Member
from kinship.graph.store import KinshipStore


@pytest.fixture
def store(tmp_path):
    """Empty store on a temporary database."""
    return KinshipStore(db_path=str(tmp_path / "kinship.db"))


@pytest.fixture
def graph(store):
    """FamilyGraph over the temporary store."""
    return FamilyGraph(store=store)


@pytest.fixture
def add_member(store):
    """Factory: add_member("Ramesh", "Male", last_name="Patil") -> member id."""
    def _add(first_name, gender=None, **fields):
        return store.add_member(Member(first_name=first_name, gender=gender, **fields))
    return _add


@pytest.fixture
def family(graph, add_member):
    """
    Three generations around Ravi.

        Dada + Dadi        -> Suresh (father), Mahesh (kaka), Geeta (bua)
        Mahesh + Kavita    (kaki)
        Vijay + Geeta      (fufa)
        Nana + Nani        -> Sunita (mother), Anil (mama), Rekha (mausi)
        Anil + Pooja       (mami)
        Prakash + Rekha    (mausa)
        Suresh + Sunita    -> Ravi, Meena (sister), Amit (brother)
        Rohit + Meena      (jija)
        Gopal + Lata       -> Priya (wife), Sanjay (saala), Neha (saali)
        Ravi + Priya       -> Aarav (son)
    """
    ids = {}
    people = [
        ("dada", "Dada", "Male"), ("dadi", "Dadi", "Female"),
        ("father", "Suresh", "Male"), ("kaka", "Mahesh", "Male"), ("bua", "Geeta", "Female"),
        ("kaki", "Kavita", "Female"), ("fufa", "Vijay", "Male"),
        ("nana", "Nana", "Male"), ("nani", "Nani", "Female"),
        ("mother", "Sunita", "Female"), ("mama", "Anil", "Male"), ("mausi", "Rekha", "Female"),
        ("mami", "Pooja", "Female"), ("mausa", "Prakash", "Male"),
        ("ravi", "Ravi", "Male"), ("sister", "Meena", "Female"), ("brother", "Amit", "Male"),
        ("jija", "Rohit", "Male"),
        ("fil", "Gopal", "Male"), ("mil", "Lata", "Female"),
        ("wife", "Priya", "Female"), ("saala", "Sanjay", "Male"), ("saali", "Neha", "Female"),
        ("son", "Aarav", "Male"),
    ]
    for key, name, gender in people:
        ids[key] = add_member(name, gender, last_name="Sharma")

    def pair(husband, wife, *children):
        return graph.create_union(
            ids[husband], ids[wife],
            created_by="admin",
            children_ids=[ids[c] for c in children],
        )

    pair("dada", "dadi", "father", "kaka", "bua")
    pair("kaka", "kaki")
    pair("fufa", "bua")
    pair("nana", "nani", "mother", "mama", "mausi")
    pair("mama", "mami")
    pair("mausa", "mausi")
    pair("father", "mother", "ravi", "sister", "brother")
    pair("jija", "sister")
    pair("fil", "mil", "wife", "saala", "saali")
    pair("ravi", "wife", "son")
    return ids
