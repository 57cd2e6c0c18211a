"""
Tests for department/person resolution.
"""
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from registry_import.resolver import (  # noqa: E402
    METHOD_EXACT,
    METHOD_FIRST_TOKEN,
    EntityResolver,
    NameIndex,
)
from registry_import.stores.base import Department, Person  # noqa: E402


def _resolver(names, fallback="first_token", departments=()):
    people = [Person(id=i + 1, name=n) for i, n in enumerate(names)]
    depts = [Department(id=100 + i, name=n) for i, n in enumerate(departments)]
    return EntityResolver(depts, people, name_fallback=fallback)


# ============================================================================
# NameIndex
# ============================================================================

def test_index_keeps_collisions():
    idx = NameIndex()
    idx.add("ana", 1, "Ana")
    idx.add("ana", 2, "ANA")
    idx.add("ana", 1, "Ana")
    assert [i for i, _ in idx.get("ana")] == [1, 2]
    assert idx.collisions == 1


def test_index_ignores_empty_key():
    idx = NameIndex()
    idx.add("", 1, "")
    assert len(idx) == 0


# ============================================================================
# Departments
# ============================================================================

class TestDepartments:

    def test_accent_and_case_insensitive(self):
        r = _resolver([], departments=["Contábil"])
        res = r.resolve_department("CONTABIL")
        assert res.resolved
        assert res.entity_id == 100

    def test_unknown_department(self):
        r = _resolver([], departments=["Contábil"])
        res = r.resolve_department("Fiscal")
        assert not res.resolved
        assert res.reason == "department not found"

    def test_colliding_departments_do_not_resolve(self):
        r = _resolver([], departments=["Fiscal", "FISCAL"])
        res = r.resolve_department("Fiscal")
        assert not res.resolved
        assert res.candidates == [100, 101]

    def test_registered_department_resolves(self):
        r = _resolver([])
        r.register_department(7, "Pessoal")
        assert r.resolve_department("pessoal").entity_id == 7


# ============================================================================
# Persons
# ============================================================================

class TestPersons:

    def test_exact_full_name(self):
        r = _resolver(["Ana Silva", "Bruna Reis"])
        res = r.resolve_person("ANA  SILVA")
        assert res.entity_id == 1
        assert res.method == METHOD_EXACT

    def test_exact_ignores_accents(self):
        r = _resolver(["José Souza"])
        assert r.resolve_person("jose souza").entity_id == 1

    def test_unique_first_token(self):
        r = _resolver(["Ana Silva", "Bruna Reis"])
        res = r.resolve_person("ANA")
        assert res.entity_id == 1
        assert res.method == METHOD_FIRST_TOKEN

    def test_ambiguous_first_token(self):
        r = _resolver(["Ana Silva", "Ana Souza"])
        res = r.resolve_person("ANA")
        assert not res.resolved
        assert res.reason == "ambiguous first name"
        assert res.candidates == [1, 2]

    def test_ambiguous_full_name(self):
        r = _resolver(["Ana Silva", "ANA SILVA"])
        res = r.resolve_person("Ana Silva")
        assert not res.resolved
        assert res.reason == "ambiguous person name"

    def test_unknown_person(self):
        r = _resolver(["Ana Silva"])
        res = r.resolve_person("Carla")
        assert res.reason == "person not found"

    def test_empty_reference(self):
        r = _resolver(["Ana Silva"])
        assert r.resolve_person("  ").reason == "person not found"

    def test_fallback_disabled(self):
        r = _resolver(["Ana Silva"], fallback="none")
        assert r.resolve_person("ANA").reason == "person not found"
        assert r.resolve_person("ana silva").entity_id == 1

    def test_single_token_fallback(self):
        r = _resolver(["Ana Silva"], fallback="single_token")
        assert r.resolve_person("Ana").entity_id == 1
        assert r.resolve_person("Ana Costa").reason == "person not found"

    def test_first_token_fallback_on_multi_word_reference(self):
        r = _resolver(["Ana Silva"])
        assert r.resolve_person("Ana Costa").entity_id == 1

    def test_deterministic(self):
        r = _resolver(["Ana Silva", "Ana Souza", "Bruna Reis"])
        first = [r.resolve_person(n) for n in ("ANA", "bruna", "Carla")]
        second = [r.resolve_person(n) for n in ("ANA", "bruna", "Carla")]
        assert first == second

    def test_registered_person_resolves(self):
        r = _resolver([])
        r.register_person(9, "Bruna Reis", "Bruna.Reis@Importado.local")
        assert r.resolve_person("bruna reis").entity_id == 9
        assert r.person_by_email("bruna.reis@importado.local") == 9
        assert r.display_name(9) == "Bruna Reis"
        assert "bruna.reis@importado.local" in r.taken_emails()


# ============================================================================
# Suggestions
# ============================================================================

def test_suggest_near_duplicate():
    r = _resolver(["José Souza", "Bruna Reis"])
    assert r.suggest("Jose Sousa") == ["José Souza"]


def test_suggest_nothing_similar():
    r = _resolver(["José Souza"])
    assert r.suggest("Zeca") == []


def test_suggest_without_people():
    assert _resolver([]).suggest("Ana") == []
