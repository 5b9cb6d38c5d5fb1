from setuptools import setup, find_packages

setup(
    name="ledger_reconcile",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pandas",
        "numpy",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "ledger-reconcile=ledger_reconcile.reconcile:main",
        ],
    },
    author="Price Hatfield",
    description="A tool for reconciling a budget export against a bank export",
    python_requires=">=3.8",
)
