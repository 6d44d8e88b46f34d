from setuptools import setup


setup(
    name="settings-import",
    version="0.3.0",
    description="Import bills, subscriptions and debts from a spreadsheet Settings sheet",
    packages=["settings_import"],
    install_requires=[
        "pandas",
        "openpyxl",
        "streamlit",
        "requests",
    ],
    entry_points={
        "console_scripts": [
            "settings-import=settings_import.cli:main",
        ]
    },
)
