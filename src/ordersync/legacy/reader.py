"""
Read-only access to the legacy order database.

The legacy system keeps its data in a password-protected Microsoft Access
(.mdb) file. There is no Python driver we can rely on being installed on the
shop PCs, but every Windows box has PowerShell and the Jet/ACE OLE DB
providers, so queries are executed by a short PowerShell script that prints
the result set as JSON.

The engine only depends on the LegacyReader protocol, so tests (and other
stores) can plug in an in-memory reader.
"""
import json
import logging
import os
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

Row = Dict[str, Optional[str]]

DEFAULT_QUERY_TIMEOUT = 15.0


class LegacyStoreError(RuntimeError):
    """Raised when the legacy store is locked, unreachable or rejects the query."""


class LegacyReader(Protocol):
    def is_available(self) -> bool:
        """True if the legacy store exists on this host."""
        ...

    def query(self, sql: str) -> List[Row]:
        """Run a SELECT and return rows as column → string dicts."""
        ...


# Opens the database with Jet 4.0 and falls back to ACE 12.0 (64-bit hosts).
# Here-strings keep the path, password and SQL free of quoting issues.
_SCRIPT_TEMPLATE = """
$ErrorActionPreference = 'Stop'
$pass = @'
{password}
'@
$pass = $pass.Trim()
$src = @'
{db_path}
'@
$src = $src.Trim()
$conn = New-Object System.Data.OleDb.OleDbConnection
$conn.ConnectionString = "Provider=Microsoft.Jet.OLEDB.4.0;Data Source='$src';Jet OLEDB:Database Password='$pass';"
try {{ $conn.Open() }} catch {{
  $conn.ConnectionString = "Provider=Microsoft.ACE.OLEDB.12.0;Data Source='$src';Jet OLEDB:Database Password='$pass';"
  $conn.Open()
}}
$cmd = $conn.CreateCommand()
$cmd.CommandText = @'
{sql}
'@
$reader = $cmd.ExecuteReader()
$rows = [System.Collections.Generic.List[object]]::new()
while ($reader.Read()) {{
  $row = @{{}}
  for ($i = 0; $i -lt $reader.FieldCount; $i++) {{
    $row[$reader.GetName($i)] = if ($reader.IsDBNull($i)) {{ $null }} else {{ $reader.GetValue($i).ToString() }}
  }}
  $rows.Add([PSCustomObject]$row)
}}
$reader.Close()
$conn.Close()
if ($rows.Count -eq 0) {{ Write-Output '[]' }} else {{ $rows | ConvertTo-Json -Depth 2 -Compress }}
"""


def parse_rows(output: str) -> List[Row]:
    """
    Parse the JSON printed by the query script.

    ConvertTo-Json emits a bare object (not a list) for a single row, and the
    script prints "[]" for no rows.

    Raises:
        LegacyStoreError: if the output is not JSON objects.
    """
    text = output.strip()
    if not text or text in ("[]", "null"):
        return []
    try:
        parsed = json.loads(text)
    except ValueError as exc:
        raise LegacyStoreError(f"Unparseable legacy output: {text[:200]!r}") from exc

    rows = parsed if isinstance(parsed, list) else [parsed]
    if not all(isinstance(r, dict) for r in rows):
        raise LegacyStoreError("Legacy output is not a list of records")
    return rows


class PowerShellOleDbReader:
    """
    LegacyReader backed by PowerShell + OLE DB.

    Each query writes a temporary .ps1 file, runs it with a hard timeout and
    deletes it afterwards. The call blocks; the engine runs it in a worker
    thread.
    """

    def __init__(
        self,
        db_path: str,
        password: str,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
        powershell: str = "powershell.exe",
    ):
        self._db_path = db_path
        self._password = password
        self._timeout = timeout
        self._powershell = powershell

    @property
    def db_path(self) -> str:
        return self._db_path

    def is_available(self) -> bool:
        return sys.platform == "win32" and Path(self._db_path).exists()

    def build_script(self, sql: str) -> str:
        return _SCRIPT_TEMPLATE.format(
            password=self._password, db_path=self._db_path, sql=sql.strip()
        ).strip()

    def query(self, sql: str) -> List[Row]:
        """
        Run ``sql`` against the legacy database.

        Raises:
            LegacyStoreError: on provider errors, non-zero exit, timeout or
                unparseable output.
        """
        fd, script_name = tempfile.mkstemp(prefix="ordersync_", suffix=".ps1")
        script_path = Path(script_name)
        try:
            # Windows PowerShell 5 needs the BOM to read the script as UTF-8.
            with os.fdopen(fd, "w", encoding="utf-8-sig") as f:
                f.write(self.build_script(sql))

            try:
                result = subprocess.run(
                    [
                        self._powershell,
                        "-NoProfile",
                        "-NonInteractive",
                        "-ExecutionPolicy",
                        "Bypass",
                        "-File",
                        str(script_path),
                    ],
                    capture_output=True,
                    text=True,
                    encoding="utf-8",
                    timeout=self._timeout,
                )
            except subprocess.TimeoutExpired as exc:
                raise LegacyStoreError(
                    f"Legacy query timed out after {self._timeout:.0f}s"
                ) from exc
            except OSError as exc:
                raise LegacyStoreError(f"Could not start {self._powershell}: {exc}") from exc

            if result.returncode != 0:
                first_line = (result.stderr or result.stdout or "").strip().splitlines()
                raise LegacyStoreError(
                    first_line[0] if first_line else f"exit code {result.returncode}"
                )

            return parse_rows(result.stdout)
        finally:
            script_path.unlink(missing_ok=True)
