import logging
import os
import shutil
import subprocess
from typing import Dict, List, Optional

import pandas as pd

from cdrmotif.io import STATS_COLUMNS, require_columns


class ExternalToolError(RuntimeError):
    """The enrichment-statistics tool is unavailable or failed."""


def check_tool(executable: str) -> str:
    """Return the resolved path of ``executable`` or raise ExternalToolError."""
    path = shutil.which(executable)
    if path is None:
        raise ExternalToolError(f"Required tool '{executable}' was not found on PATH")
    return path


def run_enrichment_tool(
    command: List[str],
    output_path: str,
    column_map: Optional[Dict[str, str]] = None,
    group: Optional[Dict[str, str]] = None,
) -> pd.DataFrame:
    """
    Run the external neighborhood-enrichment tool and load its degree/p-value table.

    Parameters
    ----------
    command : list of str
        Full command line; the first element is checked on PATH beforehand.
    output_path : str
        Tab-separated table written by the tool.
    column_map : dict, optional
        Renames tool columns to ``sequence_id``, ``degree`` and ``p_value``.
    group : dict, optional
        Constant ``species``/``chain``/``epitope`` values for tools that
        process one analysis group per call.

    Returns
    -------
    pd.DataFrame
        Enrichment statistics with the standard columns.
    """
    logger = logging.getLogger(__name__)
    check_tool(command[0])

    logger.debug(" ".join(command))
    result = subprocess.run(command, shell=False, capture_output=True)
    logger.debug(result)

    if result.returncode != 0:
        stderr = result.stderr.decode(errors="replace").strip()
        raise ExternalToolError(f"'{command[0]}' exited with code {result.returncode}: {stderr}")
    if not os.path.exists(output_path):
        raise ExternalToolError(f"'{command[0]}' did not produce {output_path}")

    table = pd.read_csv(output_path, sep="\t")
    if column_map:
        table = table.rename(columns=column_map)
    for col, value in (group or {}).items():
        table[col] = value

    require_columns(table, STATS_COLUMNS, f"output of {command[0]}")
    return table[STATS_COLUMNS]
