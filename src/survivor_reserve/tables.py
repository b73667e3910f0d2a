"""
survivor_reserve/tables.py - Table Input/Output

Optional persistence boundary. The engine itself only sees DataFrames;
this module moves them to and from CSV and Excel files.

Inputs:
- Paired estimates (long: age, sex, parameter, group_value, group_n,
  reference_value, reference_n)
- Smoothed demographic tables (long audit form or wide form)
- Mortality tables (age, qx) per sex, or (age, qx_male, qx_female)

Outputs:
- Charge, reserve and sensitivity tables as CSV files or as one Excel
  workbook with formatted header rows

Every file read is logged with its SHA-256 hash for the audit trail.

Author: Actuarial Pipeline Project
License: MIT
"""

import hashlib
from pathlib import Path
from typing import Dict, Optional, Union
import logging

import pandas as pd
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from .config import LookupPolicy
from .credibility import PAIRED_COLUMNS
from .engine import ValuationResult
from .exceptions import ValidationError
from .mortality import MortalityCalculator, MortalityTable, Sex
from .parameters import DemographicTables

logger = logging.getLogger(__name__)


def hash_file(filepath: Union[str, Path]) -> str:
    """Calculate SHA-256 hash of file."""
    sha256 = hashlib.sha256()
    with open(filepath, 'rb') as f:
        for chunk in iter(lambda: f.read(8192), b''):
            sha256.update(chunk)
    return sha256.hexdigest()


def read_table(filepath: Union[str, Path], sheet_name: Optional[str] = None) -> pd.DataFrame:
    """Read a CSV or Excel file, logging its hash."""
    filepath = Path(filepath)
    file_hash = hash_file(filepath)
    logger.info(f"Loading file: {filepath.name} (SHA-256: {file_hash[:16]}...)")

    suffix = filepath.suffix.lower()
    if suffix in ('.xlsx', '.xls'):
        df = pd.read_excel(filepath, sheet_name=sheet_name or 0)
    elif suffix == '.csv':
        df = pd.read_csv(filepath)
    else:
        raise ValidationError(f"Unsupported file format: {filepath.suffix}")

    df.columns = [str(c).strip().lower() for c in df.columns]
    logger.info(f"Loaded {len(df)} rows")
    return df


# =============================================================================
# INPUTS
# =============================================================================

def load_paired_estimates(filepath: Union[str, Path]) -> pd.DataFrame:
    df = read_table(filepath)
    missing = set(PAIRED_COLUMNS) - set(df.columns)
    if missing:
        raise ValidationError(f"{Path(filepath).name} missing columns: {sorted(missing)}")
    return df[PAIRED_COLUMNS]


def load_demographic_tables(filepath: Union[str, Path],
                            policy: LookupPolicy = LookupPolicy.LENIENT,
                            value_column: str = 'smoothed',
                            **kwargs) -> DemographicTables:
    """Demographic tables from an externally smoothed file."""
    df = read_table(filepath)
    return DemographicTables.from_frame(df, value_column=value_column, policy=policy, **kwargs)


def load_mortality(filepath: Union[str, Path], name: Optional[str] = None) -> MortalityCalculator:
    """
    Mortality basis from a file.

    Accepts either (age, sex, qx) in long form or (age, qx_male, qx_female).
    """
    filepath = Path(filepath)
    name = name or filepath.stem
    df = read_table(filepath)

    tables: Dict[Sex, MortalityTable] = {}
    if 'sex' in df.columns:
        df = df.assign(sex=df['sex'].map(Sex.parse))
        for sex, rows in df.groupby('sex', sort=False):
            tables[sex] = MortalityTable.from_frame(rows, sex, name=name)
    elif {'qx_male', 'qx_female'} <= set(df.columns):
        tables[Sex.MALE] = MortalityTable.from_frame(
            df[['age', 'qx_male']].rename(columns={'qx_male': 'qx'}), Sex.MALE, name=name)
        tables[Sex.FEMALE] = MortalityTable.from_frame(
            df[['age', 'qx_female']].rename(columns={'qx_female': 'qx'}), Sex.FEMALE, name=name)
    else:
        raise ValidationError(
            f"{filepath.name}: expected (age, sex, qx) or (age, qx_male, qx_female)"
        )
    return MortalityCalculator(tables)


# =============================================================================
# OUTPUTS
# =============================================================================

def _result_sheets(result: ValuationResult) -> Dict[str, pd.DataFrame]:
    sheets = {
        'Charges': result.charges,
        'Reserves': result.reserves,
        'Sensitivity': result.sensitivity,
    }
    if result.smoothing_audit is not None:
        sheets['Smoothing Audit'] = result.smoothing_audit
    return sheets


def save_csv(result: ValuationResult, output_dir: Union[str, Path]) -> Dict[str, Path]:
    """Write one CSV per output table."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = {}
    for sheet, df in _result_sheets(result).items():
        path = output_dir / f"{sheet.lower().replace(' ', '_')}.csv"
        df.to_csv(path, index=False)
        paths[sheet] = path
    logger.info(f"Saved {len(paths)} CSV tables to {output_dir}")
    return paths


def save_workbook(result: ValuationResult, filepath: Union[str, Path]) -> Path:
    """Write all output tables into a single formatted Excel workbook."""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    header_font = Font(bold=True, size=11, color="FFFFFF")
    header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")

    with pd.ExcelWriter(filepath, engine='openpyxl') as writer:
        for sheet, df in _result_sheets(result).items():
            df.to_excel(writer, sheet_name=sheet, index=False)
            ws = writer.sheets[sheet]
            for col_idx, column in enumerate(df.columns, start=1):
                cell = ws.cell(row=1, column=col_idx)
                cell.font = header_font
                cell.fill = header_fill
                ws.column_dimensions[get_column_letter(col_idx)].width = max(12, len(str(column)) + 2)

    logger.info(f"Saved workbook: {filepath}")
    return filepath
