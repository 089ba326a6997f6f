"""
Legacy row → CanonicalOrder mapper.

Rows come from the legacy store as dicts of column name → string (or None
for NULL columns). Everything here is pure: no I/O, no state, and the same
row always yields the same order.

Legacy columns used:

  CODIGO        order number, the external id (blank → row discarded)
  APARELHO      device type      ┐
  MARCA         brand            ├ joined into the equipment description
  MODELO        model            ┘
  SERIE         serial number
  ACESSORIO     accessories left with the device
  PATRIMONIO    asset tag (appended to the accessories note)
  DEFEITO       reported defect
  OBS_SERVICO   free-text service notes
  SITUACAO      free-text situation ("Em andamento", "Aguardando peça", ...)
  PRONTO        completion flag ("S" when done)
  PRIOR         priority code
  NOME_CLIENTE  client name from the CLIENTES join (COD_CLIENTE as fallback)
"""
from typing import Any, Mapping, Optional

from ordersync.models.order import (
    CanonicalOrder,
    LifecycleStatus,
    Priority,
    legacy_marker,
)

EQUIPMENT_SEPARATOR = " — "
EQUIPMENT_PLACEHOLDER = "Equipamento"
CLIENT_PLACEHOLDER = "Cliente legado"
DONE_FLAG = "S"

# Checked in order: the first group with a matching substring wins.
_STATUS_KEYWORDS = (
    (LifecycleStatus.COMPLETED, ("conclu", "pronto", "entreg")),
    (LifecycleStatus.IN_PROGRESS, ("andamento", "execu", "reparo")),
    (LifecycleStatus.WAITING, ("aguard", "espera")),
)


def _text(value: Any) -> str:
    """Stringify a legacy column value, treating None as blank."""
    if value is None:
        return ""
    return str(value).strip()


def _optional(value: Any) -> Optional[str]:
    return _text(value) or None


def map_status(situation: Any, completion_flag: Any) -> LifecycleStatus:
    """
    Derive the lifecycle status from the SITUACAO text and PRONTO flag.

    The completion flag takes precedence over whatever the text says.
    """
    if _text(completion_flag).upper() == DONE_FLAG:
        return LifecycleStatus.COMPLETED

    text = _text(situation).lower()
    if not text:
        return LifecycleStatus.RECEIVED

    for status, keywords in _STATUS_KEYWORDS:
        if any(k in text for k in keywords):
            return status
    return LifecycleStatus.RECEIVED


def map_priority(code: Any) -> Priority:
    """Map a legacy PRIOR code ("S", "1".."4", "Alta", "Urgente", ...) to a Priority."""
    value = _text(code).lower()
    if not value:
        return Priority.MEDIUM
    if value in ("s", "1") or "urg" in value:
        return Priority.URGENT
    if "alta" in value or value == "2":
        return Priority.HIGH
    if "baixa" in value or value == "4":
        return Priority.LOW
    return Priority.MEDIUM


def build_equipment_description(row: Mapping[str, Any]) -> str:
    parts = [_text(row.get(k)) for k in ("APARELHO", "MARCA", "MODELO")]
    return EQUIPMENT_SEPARATOR.join(p for p in parts if p) or EQUIPMENT_PLACEHOLDER


def build_accessories_note(row: Mapping[str, Any]) -> Optional[str]:
    accessories = _text(row.get("ACESSORIO"))
    asset_tag = _text(row.get("PATRIMONIO"))
    parts = [accessories, f"Patrimônio: {asset_tag}" if asset_tag else ""]
    return " | ".join(p for p in parts if p) or None


def build_note(external_id: str, service_notes: Any) -> str:
    notes = _text(service_notes)
    marker = legacy_marker(external_id)
    return f"{marker} {notes}" if notes else marker


def row_to_order(row: Mapping[str, Any]) -> Optional[CanonicalOrder]:
    """
    Normalize one legacy row into a CanonicalOrder.

    Args:
        row: Dict of legacy column name → value as returned by a LegacyReader.

    Returns:
        The canonical order, or None when the row has no external id
        (such rows are discarded, not an error).
    """
    external_id = _text(row.get("CODIGO"))
    if not external_id:
        return None

    defect = _optional(row.get("DEFEITO"))
    client_name = (
        _text(row.get("NOME_CLIENTE"))
        or _text(row.get("COD_CLIENTE"))
        or CLIENT_PLACEHOLDER
    )

    return CanonicalOrder(
        external_id=external_id,
        client_name=client_name,
        equipment_description=build_equipment_description(row),
        serial_number=_optional(row.get("SERIE")),
        accessories_note=build_accessories_note(row),
        has_prior_defect=defect is not None,
        prior_defect_text=defect,
        freeform_note=build_note(external_id, row.get("OBS_SERVICO")),
        priority=map_priority(row.get("PRIOR")),
        lifecycle_status=map_status(row.get("SITUACAO"), row.get("PRONTO")),
    )
