"""
Tests for the company master export mapper.
"""
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from registry_import.config import ImportConfig  # noqa: E402
from registry_import.errors import ParseError  # noqa: E402
from registry_import.mappers import MasterMapper  # noqa: E402
from registry_import.tokenizer import tokenize  # noqa: E402

HEADER = ("Id;Código;Nome;CNPJ/CPF;Inscrição estadual;Ativo;Regime federal;"
          "Regime estadual;Regime municipal;CCM;Fiscal;Fiscal Guias;Pessoal")


def _map(text):
    return MasterMapper(ImportConfig()).map(tokenize(text))


def _positional(values):
    cells = [""] * 17
    for idx, value in values.items():
        cells[idx] = value
    return ";".join(cells)


# ============================================================================
# Header layout
# ============================================================================

class TestHeaderLayout:

    def test_fields_are_cleaned(self):
        result = _map(HEADER + "\n1;101;ACME LTDA;12345678000195;ISENTO;Sim;SIMPLES NACIONAL;Normal;ISS;555;ANA;X;\n")
        assert result.has_header is True
        assert len(result.rows) == 1
        row = result.rows[0]
        assert row.code == "101"
        assert row.name == "ACME LTDA"
        assert row.line == 2
        assert row.fields == {
            "legal_name": "ACME LTDA",
            "tax_id": "12.345.678/0001-95",
            "state_registration": "ISENTO",
            "federal_regime": "Simples Nacional",
            "state_regime": "Normal",
            "municipal_regime": "ISS",
            "registration_type": "CNPJ",
        }

    def test_non_imported_columns_left_out(self):
        result = _map(HEADER + "\n1;101;ACME;;;Sim;;;;555;;;\n")
        fields = result.rows[0].fields
        assert "source_id" not in fields
        assert "active" not in fields
        assert "municipal_registration" not in fields

    def test_department_variant_column_rejected(self):
        result = _map(HEADER + "\n1;101;ACME LTDA;;;;;;;;ANA;X;\n")
        row = result.rows[0]
        assert row.responsibilities == {"Fiscal": "ANA", "Pessoal": None}
        assert len(result.rejected_columns) == 1
        rejected = result.rejected_columns[0]
        assert rejected.index == 11
        assert rejected.header == "Fiscal Guias"
        assert rejected.reason == "variant of department 'Fiscal'"
        assert rejected.non_empty == 1

    @pytest.mark.parametrize("header", ["Fiscal_Guias", "Fiscal2", "Contábil-2", "PESSOAL(old)"])
    def test_glued_variant_header_rejected(self, header):
        result = _map(f"Código;Nome;CNPJ;{header}\n101;ACME;;ANA\n")
        assert result.rows[0].responsibilities == {}
        assert [c.header for c in result.rejected_columns] == [header]
        assert result.rejected_columns[0].reason.startswith("variant of department")

    def test_department_inside_longer_word_not_rejected(self):
        result = _map("Código;Nome;CNPJ;Contabilidade\n101;ACME;;ANA\n")
        assert result.rejected_columns == []

    def test_accented_department_header(self):
        result = _map("Código;Nome;CNPJ;CONTABIL;Declarações\n101;ACME;;Carla;Davi\n")
        assert result.rows[0].responsibilities == {"Contábil": "Carla", "Declarações": "Davi"}

    def test_duplicate_department_column_rejected(self):
        result = _map("Código;Nome;Fiscal;Fiscal\n101;ACME;ANA;BRUNA\n")
        assert result.rows[0].responsibilities == {"Fiscal": "ANA"}
        assert result.rejected_columns[0].index == 3
        assert result.rejected_columns[0].reason.startswith("duplicate department column")

    def test_unrelated_column_ignored_silently(self):
        result = _map("Código;Nome;CNPJ;Observação\n101;ACME;;nada\n")
        assert result.rejected_columns == []
        assert result.rows[0].responsibilities == {}

    def test_short_row_leaves_department_absent(self):
        result = _map(HEADER + "\n1;101;ACME\n")
        assert result.rows[0].responsibilities == {}

    def test_header_without_code_column(self):
        with pytest.raises(ParseError):
            _map("Nome;CNPJ;Fiscal;Pessoal\nACME;;ANA;\n")


# ============================================================================
# Headerless layout
# ============================================================================

class TestPositionalLayout:

    def test_columns_by_position(self):
        line = _positional({0: "1", 1: "101", 2: "ACME LTDA", 3: "123.456.789-09",
                            5: "Sim", 6: "LUCRO PRESUMIDO", 14: "BRUNA"})
        result = _map(line)
        assert result.has_header is False
        row = result.rows[0]
        assert row.line == 1
        assert row.fields == {
            "legal_name": "ACME LTDA",
            "tax_id": "123.456.789-09",
            "federal_regime": "Lucro Presumido",
            "registration_type": "CPF",
        }
        assert row.responsibilities["Fiscal"] == "BRUNA"
        assert row.responsibilities["Contábil"] is None
        assert len(row.responsibilities) == 7

    def test_mei_registration_type(self):
        line = _positional({1: "102", 2: "JOAO MEI", 3: "12345678000195", 6: "MEI"})
        row = _map(line).rows[0]
        assert row.fields["registration_type"] == "MEI"


# ============================================================================
# Row handling
# ============================================================================

class TestRows:

    def test_missing_code_is_skipped(self):
        result = _map("Código;Nome;CNPJ\n;Sem Código;\n101;ACME;\n")
        assert [r.code for r in result.rows] == ["101"]
        assert result.skipped == [
            {"line": 2, "code": "", "name": "Sem Código", "reason": "missing company code"}
        ]

    def test_empty_identity_row_ignored(self):
        result = _map("Código;Nome;CNPJ;Fiscal\n;;;ANA\n101;ACME;;\n")
        assert [r.code for r in result.rows] == ["101"]
        assert result.skipped == []

    def test_duplicate_codes_merged(self):
        result = _map("Código;Nome;CNPJ;Fiscal;Pessoal\n101;ACME;;ANA;\n101;;12345678000195;;BRUNA\n")
        assert len(result.rows) == 1
        row = result.rows[0]
        assert row.name == "ACME"
        assert row.fields["tax_id"] == "12.345.678/0001-95"
        assert row.responsibilities == {"Fiscal": "ANA", "Pessoal": "BRUNA"}
        assert row.line == 3
        assert len(result.warnings) == 1
        assert "101" in result.warnings[0]

    def test_empty_input(self):
        result = MasterMapper(ImportConfig()).map([])
        assert result.rows == []
