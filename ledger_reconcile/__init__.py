"""
Ledger Reconcile - A tool for reconciling a budget export against a bank export.

This package provides functionality to:
- Read the budgeting tool and bank CSV exports
- Standardize both into a common transaction format
- Pair transactions that describe the same real-world event
- Report the transactions on either side without a counterpart

The standardized format includes:
- Date: Date of the transaction
- Payee: Transaction description
- Amount: Decimal amount (negative for money leaving the account)
- Account: Account name from the source
- Source: 'budget' or 'bank'
- Pair: Position of the paired transaction in the other source
"""

from .reconcile import (
    standardize_date,
    clean_amount,
    process_budget_format,
    process_bank_format,
    build_date_index,
    find_window,
    pair_transactions,
    compute_cutoff,
    collect_unpaired,
    format_unpaired_line,
    format_unpaired_report,
    generate_unpaired_report,
    format_report_summary,
    save_unpaired_transactions,
    identify_format,
    filter_account,
    import_csv,
    ReconcileConfig,
    load_config,
    run_reconciliation,
    main
)

__all__ = [
    'standardize_date',
    'clean_amount',
    'process_budget_format',
    'process_bank_format',
    'build_date_index',
    'find_window',
    'pair_transactions',
    'compute_cutoff',
    'collect_unpaired',
    'format_unpaired_line',
    'format_unpaired_report',
    'generate_unpaired_report',
    'format_report_summary',
    'save_unpaired_transactions',
    'identify_format',
    'filter_account',
    'import_csv',
    'ReconcileConfig',
    'load_config',
    'run_reconciliation',
    'main'
]
