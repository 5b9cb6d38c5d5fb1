"""
Budget/Bank Transaction Reconciliation

This system pairs the transactions recorded in a budgeting tool export with
the transactions in a bank export and reports the ones on either side that
have no counterpart.

Standardized Format (one DataFrame per source, RangeIndex = position):
- Date: Calendar date of the transaction (midnight timestamp)
- Payee: Free-text payee/description
- Amount: decimal.Decimal, negative for money leaving the account
- Account: Account name as recorded by the source
- Source: 'budget' or 'bank'
- Pair: Position of the paired row in the other source's frame (<NA> if unpaired)

Matching Rules:
1. Budget transactions are visited in date order; earlier ones claim first
2. A bank transaction is a candidate if it falls in [date, date + window days)
3. Amounts must be exactly equal; the first unclaimed candidate wins
4. Pairing is mutual and permanent for the run
"""

import argparse
import csv
import io
import logging
import os
import re
import sys
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import NamedTuple, Optional

import numpy as np
import pandas as pd

from ledger_reconcile.utils import resolve_output_path, setup_logging

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 4

# Budget rows allocated to this account are unassigned placeholders
UNASSIGNED_ACCOUNT = '[none]'

BANK_INDENT = '\t\t\t\t'

standard_columns = ['Date', 'Payee', 'Amount', 'Account', 'Source', 'Pair']

format_signatures = {
    'budget': ['Date', 'Envelope', 'Account', 'Name', 'Amount'],
    'bank': ['Date', 'Description', 'Amount', 'Transaction Type', 'Account Name'],
}

def standardize_date(date_str):
    """
    Convert various date formats to a midnight pandas Timestamp.

    Args:
        date_str (str, datetime or pd.Timestamp): Date to standardize

    Returns:
        pd.Timestamp: Date with the time of day dropped

    Raises:
        ValueError: If date is null, not a string, or in an invalid format
    """
    if isinstance(date_str, datetime):
        if pd.isna(date_str):
            raise ValueError("Date cannot be null")
        return pd.Timestamp(date_str).normalize()

    if date_str is None:
        raise ValueError("Date cannot be null")

    if not isinstance(date_str, str):
        raise ValueError(f"Date must be a string, got {type(date_str)}")

    # Remove quotes and extra whitespace
    date_str = date_str.strip().strip('"\'')
    if not date_str:
        raise ValueError("Date cannot be empty")

    formats = [
        '%m/%d/%Y',  # US (budget and bank exports)
        '%Y-%m-%d',  # ISO
        '%Y-%m-%d %H:%M:%S',  # ISO with time
        '%m-%d-%Y',  # US with dashes
        '%Y%m%d',    # Compact
        '%m/%d/%y'   # Short year
    ]

    for fmt in formats:
        try:
            dt = datetime.strptime(date_str, fmt)
        except ValueError:
            continue
        if dt.year < 1900 or dt.year > 2100:
            raise ValueError(f"Invalid date year: {dt.year}")
        logger.debug(f"Converted {date_str} using format {fmt}")
        return pd.Timestamp(dt).normalize()

    raise ValueError(f"Invalid date format: {date_str}")

def clean_amount(amount):
    """Clean and standardize amount values.

    Args:
        amount (str, int, float or Decimal): Amount to clean

    Returns:
        Decimal: Cleaned amount

    Raises:
        ValueError: If amount is missing or not numeric
    """
    if amount is None:
        raise ValueError("Invalid amount format: None")
    if isinstance(amount, Decimal):
        if not amount.is_finite():
            raise ValueError(f"Invalid amount format: {amount}")
        return amount
    if isinstance(amount, bool):
        raise ValueError(f"Amount must be string or number, got {type(amount)}")
    if isinstance(amount, (int, float)):
        if pd.isna(amount):
            raise ValueError("Invalid amount format: NaN")
        return Decimal(str(amount))
    if not isinstance(amount, str):
        raise ValueError(f"Amount must be string or number, got {type(amount)}")

    # Remove currency symbols, thousands separators and whitespace
    cleaned = re.sub(r'[$,\s]', '', amount)

    # Handle parentheses for negative numbers
    if cleaned.startswith('(') and cleaned.endswith(')'):
        cleaned = '-' + cleaned[1:-1]

    try:
        result = Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"Invalid amount format: {amount!r}") from None

    if not result.is_finite():
        raise ValueError(f"Invalid amount format: {amount!r}")
    return result

def _check_columns(df, required_columns):
    missing_columns = [col for col in required_columns if col not in df.columns]
    if missing_columns:
        raise ValueError(f"Missing required columns: {missing_columns}")

def _parse_column(df, column, parser):
    """Apply parser to every value of a column, naming the row on failure.

    Row numbers are 1-based positions in the frame as it was received, so
    the index labels must still be the original positions.
    """
    values = []
    for label, value in df[column].items():
        try:
            values.append(parser(value))
        except ValueError as e:
            raise ValueError(f"Row {label + 1}, column '{column}': {str(e)}") from e
    return values

def _text_column(df, column):
    return df[column].fillna('').astype(str).tolist()

def _standardize(result, source):
    """Finish a standardized frame: tag, sort by date (stable), reset positions."""
    result['Date'] = pd.to_datetime(result['Date'])
    result['Source'] = source
    result['Pair'] = pd.array([pd.NA] * len(result), dtype='Int64')
    result = result.sort_values('Date', kind='stable').reset_index(drop=True)
    return result[standard_columns]

def process_budget_format(df):
    """Process budgeting tool export rows into standardized format.

    Rows assigned to the '[none]' account are placeholders for unallocated
    money, not real transactions, and are dropped before parsing.

    Args:
        df (pd.DataFrame): Raw budget export rows

    Returns:
        pd.DataFrame: Standardized transactions sorted by date

    Raises:
        ValueError: If a required column is missing or a date/amount is invalid
    """
    _check_columns(df, ['Date', 'Account', 'Name', 'Amount'])

    df = df.reset_index(drop=True)
    df = df[df['Account'] != UNASSIGNED_ACCOUNT]
    logger.debug(f"Budget rows after dropping unassigned placeholders: {len(df)}")

    result = pd.DataFrame({
        'Date': _parse_column(df, 'Date', standardize_date),
        'Payee': _text_column(df, 'Name'),
        'Amount': _parse_column(df, 'Amount', clean_amount),
        'Account': _text_column(df, 'Account'),
    })

    return _standardize(result, 'budget')

def process_bank_format(df):
    """Process bank export rows into standardized format.

    The bank exports every amount as a positive magnitude and marks outflows
    with a Transaction Type of 'debit'; those are made negative.

    Args:
        df (pd.DataFrame): Raw bank export rows

    Returns:
        pd.DataFrame: Standardized transactions sorted by date

    Raises:
        ValueError: If a required column is missing or a date/amount is invalid
    """
    _check_columns(df, ['Date', 'Description', 'Amount', 'Transaction Type', 'Account Name'])

    df = df.reset_index(drop=True)

    amounts = _parse_column(df, 'Amount', clean_amount)
    is_debit = df['Transaction Type'].fillna('').astype(str).str.strip().str.lower() == 'debit'

    result = pd.DataFrame({
        'Date': _parse_column(df, 'Date', standardize_date),
        'Payee': _text_column(df, 'Description'),
        'Amount': [-abs(amount) if debit else amount for amount, debit in zip(amounts, is_debit)],
        'Account': _text_column(df, 'Account Name'),
    })

    return _standardize(result, 'bank')

def build_date_index(dates):
    """Map each distinct date to the first position it occurs at.

    Later rows sharing a date are reached by scanning forward from the
    recorded position.

    Args:
        dates (pd.Series): Dates of a frame sorted ascending

    Returns:
        pd.Series: Positions indexed by distinct date

    Raises:
        ValueError: If the dates are not sorted
    """
    index = pd.DatetimeIndex(dates)
    if not index.is_monotonic_increasing:
        raise ValueError("Dates must be sorted in ascending order")

    positions = pd.Series(np.arange(len(index)), index=index)
    return positions[~index.duplicated(keep='first')]

def find_window(date_index, start, window_days, length):
    """Find the positions of transactions dated in [start, start + window_days).

    Args:
        date_index (pd.Series): Output of build_date_index
        start (pd.Timestamp): First day of the window
        window_days (int): Window size in days
        length (int): Number of rows in the indexed frame

    Returns:
        tuple or None: (lo, hi) slice bounds, or None if the window is empty
    """
    end = start + pd.Timedelta(days=window_days)
    keys = date_index.index

    first = keys.searchsorted(start, side='left')
    if first == len(keys) or keys[first] >= end:
        return None

    last = keys.searchsorted(end, side='left')
    hi = int(date_index.iloc[last]) if last < len(keys) else length
    return int(date_index.iloc[first]), hi

def pair_transactions(budget_df, bank_df, window_days=DEFAULT_WINDOW_DAYS):
    """Pair budget transactions with bank transactions.

    Both frames must be standardized (sorted by date, RangeIndex). The Pair
    columns are updated in place. Budget rows that already have a pair are
    skipped, so running this twice adds nothing.

    Args:
        budget_df (pd.DataFrame): Standardized budget transactions
        bank_df (pd.DataFrame): Standardized bank transactions
        window_days (int): How many days after a budget date to search

    Returns:
        int: Number of pairs created
    """
    if isinstance(window_days, bool) or not isinstance(window_days, int) or window_days < 1:
        raise ValueError(f"Window size must be a positive number of days, got {window_days!r}")

    date_index = build_date_index(bank_df['Date'])
    bank_amounts = bank_df['Amount'].to_numpy()
    bank_open = bank_df['Pair'].isna().to_numpy(copy=True)
    budget_open = budget_df['Pair'].isna().to_numpy(copy=True)

    paired = 0
    for budget_pos, (date, amount) in enumerate(zip(budget_df['Date'], budget_df['Amount'])):
        if not budget_open[budget_pos]:
            continue

        window = find_window(date_index, date, window_days, len(bank_df))
        if window is None:
            continue
        lo, hi = window

        hits = np.flatnonzero(bank_open[lo:hi] & (bank_amounts[lo:hi] == amount))
        if len(hits) == 0:
            continue

        bank_pos = lo + int(hits[0])
        bank_open[bank_pos] = False
        budget_df.at[budget_pos, 'Pair'] = bank_pos
        bank_df.at[bank_pos, 'Pair'] = budget_pos
        paired += 1
        logger.debug(f"Paired budget row {budget_pos} ({date.date()} {amount}) with bank row {bank_pos}")

    logger.info(f"Paired {paired} of {len(budget_df)} budget transactions")
    return paired

def compute_cutoff(bank_df, start_date=None):
    """Compute the date after which unpaired transactions are reported.

    There is no bank data before the first bank transaction, so nothing
    earlier can be missing from the bank.

    Args:
        bank_df (pd.DataFrame): Standardized bank transactions
        start_date (str or pd.Timestamp, optional): Explicit start date

    Returns:
        pd.Timestamp: The later of start_date and the earliest bank date

    Raises:
        ValueError: If there is neither a start date nor any bank transaction
    """
    candidates = []
    if start_date is not None:
        candidates.append(standardize_date(start_date))
    if not bank_df.empty:
        candidates.append(bank_df['Date'].min())

    if not candidates:
        raise ValueError("Cannot determine a cutoff date: no start date given and the bank file has no transactions")
    return max(candidates)

def collect_unpaired(budget_df, bank_df, cutoff):
    """Collect unpaired transactions dated strictly after cutoff.

    Returns:
        pd.DataFrame: Unpaired rows of both sources sorted by date, budget
        rows first on equal dates
    """
    frames = [
        df[df['Pair'].isna() & (df['Date'] > cutoff)]
        for df in (budget_df, bank_df)
    ]
    frames = [df for df in frames if not df.empty]
    if not frames:
        return budget_df.iloc[0:0].reset_index(drop=True)

    unpaired = pd.concat(frames, ignore_index=True)
    return unpaired.sort_values('Date', kind='stable').reset_index(drop=True)

def format_unpaired_line(row):
    """Format one unpaired transaction; bank lines are pushed right."""
    indent = BANK_INDENT if row['Source'] == 'bank' else ''
    date = row['Date']
    return f"{indent}{date.strftime('%b')} {date.day}: {row['Amount']:f}\t{row['Payee']}"

def format_unpaired_report(unpaired_df):
    """Format the report lines for already collected unpaired transactions."""
    return [format_unpaired_line(row) for _, row in unpaired_df.iterrows()]

def generate_unpaired_report(budget_df, bank_df, cutoff):
    """Generate the report lines for every unpaired transaction after cutoff."""
    return format_unpaired_report(collect_unpaired(budget_df, bank_df, cutoff))

def format_report_summary(budget_df, bank_df):
    """Format a summary of reconciliation results.

    Args:
        budget_df (pd.DataFrame): Matched budget transactions
        bank_df (pd.DataFrame): Matched bank transactions

    Returns:
        str: Formatted summary text
    """
    matched_count = int(budget_df['Pair'].notna().sum())

    summary = [
        f"Budget Transactions: {len(budget_df)}",
        f"Bank Transactions: {len(bank_df)}",
        f"Matched Pairs: {matched_count}",
        f"Unpaired Budget: {len(budget_df) - matched_count}",
        f"Unpaired Bank: {int(bank_df['Pair'].isna().sum())}"
    ]

    return "\n".join(summary)

def save_unpaired_transactions(unpaired_df, output_path):
    """Save unpaired transactions to a CSV file.

    Args:
        unpaired_df (pd.DataFrame): Output of collect_unpaired
        output_path (str or pathlib.Path): Output file or directory

    Returns:
        pathlib.Path: The file written
    """
    result = unpaired_df.copy()
    result['Date'] = pd.to_datetime(result['Date']).dt.strftime('%Y-%m-%d')
    result['Amount'] = result['Amount'].map(lambda amount: f"{amount:f}")
    result = result[['Date', 'Payee', 'Amount', 'Account', 'Source']]

    output_path = resolve_output_path(output_path, 'unpaired_transactions.csv')
    logger.debug(f"Writing unpaired transactions to {output_path}")
    result.to_csv(output_path, index=False, quoting=csv.QUOTE_NONNUMERIC)
    return output_path

def unescape_quoted_fields(text):
    """Rewrite backslash escapes inside quoted CSV fields.

    Inside quotes, \\" becomes the standard doubled quote and \\\\ a single
    backslash. Backslashes in unquoted fields, or before any other
    character, are left alone.

    Args:
        text (str): Raw CSV text

    Returns:
        str: CSV text readable with the default quoting rules
    """
    out = []
    in_quotes = False
    i = 0
    while i < len(text):
        ch = text[i]
        if in_quotes and ch == '\\' and i + 1 < len(text) and text[i + 1] in '"\\':
            out.append('""' if text[i + 1] == '"' else '\\')
            i += 2
            continue
        if ch == '"':
            in_quotes = not in_quotes
        out.append(ch)
        i += 1
    return ''.join(out)

def identify_format(df):
    """Identify the export format of a DataFrame based on its columns.

    Returns:
        str: 'budget' or 'bank'

    Raises:
        ValueError: If format cannot be identified
    """
    columns = [str(col).strip() for col in df.columns]
    logger.debug(f"DataFrame columns: {columns}")

    for format_name, required_cols in format_signatures.items():
        if all(col in columns for col in required_cols):
            logger.debug(f"Identified format: {format_name}")
            return format_name

    raise ValueError(f"Unknown file format: {columns}")

def filter_account(df, account):
    """Keep only the transactions recorded against one account.

    Must run before matching: positions are renumbered.
    """
    result = df[df['Account'] == account].reset_index(drop=True)
    if result.empty:
        logger.warning(f"No transactions found for account {account!r}")
    return result

def import_csv(file_path, expected_format=None):
    """Import a CSV export and standardize it based on its format.

    Args:
        file_path (str or pathlib.Path): Path to the CSV file
        expected_format (str, optional): 'budget' or 'bank'; any other
            detected format is rejected

    Returns:
        pd.DataFrame: Standardized transactions

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If file cannot be read, format is wrong or a row is malformed
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"File not found: {file_path}")

    if os.path.isdir(file_path):
        raise ValueError(f"Path is a directory: {file_path}")

    try:
        logger.debug(f"Reading file: {file_path}")

        if os.path.getsize(file_path) == 0:
            raise ValueError("File is empty")

        encodings = ['utf-8-sig', 'cp1252']
        text = None
        for encoding in encodings:
            try:
                with open(file_path, 'r', encoding=encoding, newline='') as f:
                    text = f.read()
                logger.debug(f"Successfully read file with encoding: {encoding}")
                break
            except UnicodeDecodeError:
                continue

        if text is None:
            raise ValueError("Could not read CSV file with any supported encoding")

        try:
            df = pd.read_csv(
                io.StringIO(unescape_quoted_fields(text)),
                header=0,
                dtype=str,
                keep_default_na=False,
                skipinitialspace=True
            )
        except pd.errors.EmptyDataError:
            raise ValueError("No data") from None

        df.columns = df.columns.str.strip()

        format_type = identify_format(df)
        if expected_format is not None and format_type != expected_format:
            raise ValueError(f"Expected a {expected_format} export but found {format_type} columns")

        if format_type == 'budget':
            result = process_budget_format(df)
        else:
            result = process_bank_format(df)

        logger.info(f"Loaded {len(result)} {format_type} transactions from {file_path}")
        return result

    except ValueError as e:
        raise ValueError(f"Error processing {file_path}: {str(e)}") from e

class ReconcileConfig(NamedTuple):
    budget_file: str
    bank_file: str
    budget_account: str
    start_date: Optional[pd.Timestamp] = None
    window_days: int = DEFAULT_WINDOW_DAYS
    output: Optional[str] = None
    debug: bool = False
    log_level: str = 'warning'

def _window_size(value):
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise argparse.ArgumentTypeError(f"Invalid window size: {value}") from None
    if days < 1:
        raise argparse.ArgumentTypeError(f"Window size must be at least 1 day, got {days}")
    return days

def _start_date(value):
    try:
        return standardize_date(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None

def load_config(argv=None):
    """Build the run configuration from command-line options.

    Options not given on the command line fall back to RECONCILE_*
    environment variables.

    Raises:
        SystemExit: If a required option is missing or a value is invalid
    """
    parser = argparse.ArgumentParser(description='Reconcile a budget export against a bank export')
    parser.add_argument('--budget-file', default=os.getenv('RECONCILE_BUDGET_FILE'),
                        help='Path to the budget export CSV')
    parser.add_argument('--bank-file', default=os.getenv('RECONCILE_BANK_FILE'),
                        help='Path to the bank export CSV')
    parser.add_argument('--budget-account', default=os.getenv('RECONCILE_BUDGET_ACCOUNT'),
                        help='Budget account to reconcile against the bank')
    parser.add_argument('--start-date', type=_start_date, default=os.getenv('RECONCILE_START_DATE'),
                        help='Only report transactions after this date')
    parser.add_argument('--window', type=_window_size,
                        default=os.getenv('RECONCILE_WINDOW', str(DEFAULT_WINDOW_DAYS)),
                        help='Days after a budget date to look for the bank transaction')
    parser.add_argument('--output', default=os.getenv('RECONCILE_OUTPUT'),
                        help='Also write unpaired transactions to this CSV file or directory')
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug logging')
    parser.add_argument('--log-level', default=os.getenv('LOG_LEVEL', 'warning'),
                        help='Log level when --debug is not given')
    args = parser.parse_args(argv)

    missing = [name for name, value in [
        ('--budget-file', args.budget_file),
        ('--bank-file', args.bank_file),
        ('--budget-account', args.budget_account),
    ] if not value]
    if missing:
        parser.error(f"missing required options: {', '.join(missing)}")

    return ReconcileConfig(
        budget_file=args.budget_file,
        bank_file=args.bank_file,
        budget_account=args.budget_account,
        start_date=args.start_date,
        window_days=args.window,
        output=args.output,
        debug=args.debug,
        log_level=args.log_level
    )

def run_reconciliation(config, stream=None):
    """Load both exports, pair them and print the unpaired report.

    Nothing is printed unless every step succeeds.

    Returns:
        pd.DataFrame: The unpaired transactions that were reported
    """
    if stream is None:
        stream = sys.stdout

    logger.info("Starting reconciliation process")

    budget_df = filter_account(import_csv(config.budget_file, 'budget'), config.budget_account)
    bank_df = import_csv(config.bank_file, 'bank')

    cutoff = compute_cutoff(bank_df, config.start_date)
    logger.info(f"Reporting unpaired transactions after {cutoff.date()}")

    pair_transactions(budget_df, bank_df, config.window_days)

    unpaired = collect_unpaired(budget_df, bank_df, cutoff)
    lines = format_unpaired_report(unpaired)

    if config.output:
        save_unpaired_transactions(unpaired, config.output)

    for line in lines:
        print(line, file=stream)

    logger.info(f"Reconciliation summary:\n{format_report_summary(budget_df, bank_df)}")
    return unpaired

def main(argv=None):
    """Main execution function."""
    config = load_config(argv)
    setup_logging(debug=config.debug, log_level=config.log_level)

    try:
        run_reconciliation(config)
    except (OSError, ValueError) as e:
        logger.error(f"Error during reconciliation: {str(e)}")
        return 1
    return 0

if __name__ == '__main__':
    sys.exit(main())
