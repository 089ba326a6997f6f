"""SQL sent to the legacy store (Access/Jet dialect)."""
from datetime import date

CHANGED_ORDERS_SQL = """
SELECT O.*, C.NOME AS NOME_CLIENTE
FROM [ORDEMS] O
LEFT JOIN [CLIENTES] C ON C.CODIGO = O.COD_CLIENTE
WHERE O.[ENTRADA] >= #{since}#
"""


def build_changed_orders_query(since: date) -> str:
    """Orders entered on or after ``since`` joined with their client name."""
    return CHANGED_ORDERS_SQL.format(since=since.strftime("%Y-%m-%d")).strip()
