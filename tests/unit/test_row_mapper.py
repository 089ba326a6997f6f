"""Unit tests for the legacy row → CanonicalOrder mapper."""
import pytest

from conftest import legacy_row
from ordersync.mapping.row_mapper import (
    CLIENT_PLACEHOLDER,
    EQUIPMENT_PLACEHOLDER,
    map_priority,
    map_status,
    row_to_order,
)
from ordersync.models.order import LifecycleStatus, Priority


# ─── map_status ───────────────────────────────────────────────────────────────

class TestMapStatus:
    @pytest.mark.parametrize("situation", [None, "", "Em andamento", "Aguardando peça", "qualquer"])
    def test_done_flag_always_completed(self, situation):
        assert map_status(situation, "S") is LifecycleStatus.COMPLETED

    def test_done_flag_is_trimmed_and_case_insensitive(self):
        assert map_status("Em andamento", " s ") is LifecycleStatus.COMPLETED

    @pytest.mark.parametrize("situation", ["Pronto", "CONCLUÍDO", "concluido", "Entregue ao cliente"])
    def test_completion_text(self, situation):
        assert map_status(situation, "N") is LifecycleStatus.COMPLETED

    @pytest.mark.parametrize("situation", ["Em andamento", "Em execução", "  REPARO  "])
    def test_in_progress_text(self, situation):
        assert map_status(situation, None) is LifecycleStatus.IN_PROGRESS

    @pytest.mark.parametrize("situation", ["Aguardando peça", "Em espera"])
    def test_waiting_text(self, situation):
        assert map_status(situation, "") is LifecycleStatus.WAITING

    @pytest.mark.parametrize("situation", [None, "", "   ", "Em aberto", "Orçamento"])
    def test_everything_else_received(self, situation):
        assert map_status(situation, "N") is LifecycleStatus.RECEIVED

    def test_completion_keyword_wins_over_waiting(self):
        """'Pronto, aguardando retirada' is done, not waiting."""
        assert map_status("Pronto, aguardando retirada", "N") is LifecycleStatus.COMPLETED

    def test_in_progress_wins_over_waiting(self):
        assert map_status("Reparo aguardando peça", None) is LifecycleStatus.IN_PROGRESS


# ─── map_priority ─────────────────────────────────────────────────────────────

class TestMapPriority:
    @pytest.mark.parametrize("code", ["S", "s", "1", "Urgente", "URG"])
    def test_urgent(self, code):
        assert map_priority(code) is Priority.URGENT

    @pytest.mark.parametrize("code", ["Alta", "2"])
    def test_high(self, code):
        assert map_priority(code) is Priority.HIGH

    @pytest.mark.parametrize("code", ["Baixa", "4"])
    def test_low(self, code):
        assert map_priority(code) is Priority.LOW

    @pytest.mark.parametrize("code", [None, "", "3", "Normal", "N", "xyz"])
    def test_default_medium(self, code):
        assert map_priority(code) is Priority.MEDIUM


# ─── row_to_order ─────────────────────────────────────────────────────────────

class TestRowToOrder:
    def test_maps_full_row(self):
        order = row_to_order(legacy_row("42"))
        assert order.external_id == "42"
        assert order.client_name == "Oficina Central"
        assert order.equipment_description == "Compressor — Schulz — CSL 10"
        assert order.serial_number == "SN-9921"
        assert order.accessories_note == "Mangueira"
        assert order.has_prior_defect is True
        assert order.prior_defect_text == "Não liga"
        assert order.priority is Priority.MEDIUM
        assert order.lifecycle_status is LifecycleStatus.RECEIVED

    def test_note_carries_legacy_marker(self):
        order = row_to_order(legacy_row("42"))
        assert order.freeform_note == "[legacy:42] Cliente aguarda orçamento"

    def test_note_is_marker_only_without_service_notes(self):
        order = row_to_order(legacy_row("42", OBS_SERVICO=None))
        assert order.freeform_note == "[legacy:42]"

    @pytest.mark.parametrize("codigo", [None, "", "   "])
    def test_blank_external_id_discarded(self, codigo):
        assert row_to_order(legacy_row(codigo)) is None

    def test_missing_external_id_column_discarded(self):
        row = legacy_row()
        del row["CODIGO"]
        assert row_to_order(row) is None

    def test_external_id_is_trimmed(self):
        assert row_to_order(legacy_row("  42 ")).external_id == "42"

    def test_equipment_skips_blank_parts(self):
        order = row_to_order(legacy_row(MARCA="", MODELO=None))
        assert order.equipment_description == "Compressor"

    def test_equipment_placeholder_when_all_blank(self):
        order = row_to_order(legacy_row(APARELHO=None, MARCA=" ", MODELO=""))
        assert order.equipment_description == EQUIPMENT_PLACEHOLDER

    def test_accessories_include_asset_tag(self):
        order = row_to_order(legacy_row(PATRIMONIO="PT-77"))
        assert order.accessories_note == "Mangueira | Patrimônio: PT-77"

    def test_accessories_none_when_blank(self):
        order = row_to_order(legacy_row(ACESSORIO=None, PATRIMONIO=None))
        assert order.accessories_note is None

    def test_no_defect(self):
        order = row_to_order(legacy_row(DEFEITO="  "))
        assert order.has_prior_defect is False
        assert order.prior_defect_text is None

    def test_blank_serial_is_none(self):
        assert row_to_order(legacy_row(SERIE="")).serial_number is None

    def test_client_falls_back_to_code(self):
        order = row_to_order(legacy_row(NOME_CLIENTE=None))
        assert order.client_name == "117"

    def test_client_placeholder(self):
        order = row_to_order(legacy_row(NOME_CLIENTE="", COD_CLIENTE=None))
        assert order.client_name == CLIENT_PLACEHOLDER

    def test_status_and_priority_derived(self):
        order = row_to_order(legacy_row(PRONTO="S", PRIOR="Alta"))
        assert order.lifecycle_status is LifecycleStatus.COMPLETED
        assert order.priority is Priority.HIGH

    def test_deterministic(self):
        row = legacy_row("42", SITUACAO="Em andamento", PATRIMONIO="PT-1")
        assert row_to_order(row) == row_to_order(dict(row))

    def test_does_not_mutate_row(self):
        row = legacy_row("42")
        snapshot = dict(row)
        row_to_order(row)
        assert row == snapshot

    def test_non_string_values_are_stringified(self):
        order = row_to_order(legacy_row(42, PRIOR=1))
        assert order.external_id == "42"
        assert order.priority is Priority.URGENT
