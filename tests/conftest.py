import logging

import pytest
import pandas as pd

# Sample data for each format
budget_sample_data = {
    'Date': ['01/05/2020', '01/07/2020', '01/09/2020'],
    'Envelope': ['Dining', '', 'Groceries'],
    'Account': ['Checking', '[none]', 'Checking'],
    'Name': ['Coffee Shop', 'Fill envelopes', 'Grocery Store'],
    'Notes': ['', '', ''],
    'Amount': ['-42.00', '1,500.00', '-1,234.56'],  # Negative for money leaving
    'Status': ['', '', ''],
    'Details': ['', '', '']
}

bank_sample_data = {
    'Date': ['1/06/2020', '1/10/2020', '1/03/2020'],
    'Description': ['COFFEE SHOP', 'GROCERY STORE', 'PAYROLL'],
    'Original Description': ['COFFEE SHOP #12', 'GROCERY STORE 0042', 'ACME PAYROLL'],
    'Amount': ['42.00', '1234.56', '2000.00'],  # Positive magnitudes
    'Transaction Type': ['debit', 'debit', 'credit'],
    'Category': ['Coffee Shops', 'Groceries', 'Paycheck'],
    'Account Name': ['CHECKING', 'CHECKING', 'CHECKING'],
    'Labels': ['', '', ''],
    'Notes': ['', '', '']
}

@pytest.fixture
def create_test_df():
    """Helper fixture to create raw export DataFrames"""
    def _create_df(format_name):
        sample_data = {
            'budget': budget_sample_data,
            'bank': bank_sample_data
        }
        if format_name not in sample_data:
            raise ValueError(f"Unknown format: {format_name}")
        return pd.DataFrame(sample_data[format_name])
    return _create_df

@pytest.fixture
def budget_rows():
    """Build raw budget export rows from (date, amount, name[, account]) tuples."""
    def _budget_rows(*rows):
        records = []
        for row in rows:
            date, amount, name = row[:3]
            account = row[3] if len(row) > 3 else 'Checking'
            records.append({
                'Date': date,
                'Envelope': 'Misc',
                'Account': account,
                'Name': name,
                'Notes': '',
                'Amount': amount,
                'Status': '',
                'Details': ''
            })
        return pd.DataFrame(records, columns=list(budget_sample_data))
    return _budget_rows

@pytest.fixture
def bank_rows():
    """Build raw bank export rows from (date, amount, type, description) tuples."""
    def _bank_rows(*rows):
        records = []
        for date, amount, txn_type, description in rows:
            records.append({
                'Date': date,
                'Description': description,
                'Original Description': description,
                'Amount': amount,
                'Transaction Type': txn_type,
                'Category': '',
                'Account Name': 'CHECKING',
                'Labels': '',
                'Notes': ''
            })
        return pd.DataFrame(records, columns=list(bank_sample_data))
    return _bank_rows

@pytest.fixture
def write_csv(tmp_path):
    """Write a DataFrame to a CSV file under tmp_path and return its path."""
    def _write_csv(df, name):
        file_path = tmp_path / name
        df.to_csv(file_path, index=False)
        return file_path
    return _write_csv

@pytest.fixture
def reset_logging():
    """Restore root logger handlers replaced by setup_logging."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
