from setuptools import setup


setup(
    name="ncm-dashboard",
    version="0.1.0",
    description="Spreadsheet import and data grid dashboard for NCM tariff classification records",
    packages=["ncm_dashboard"],
    python_requires=">=3.9",
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "streamlit",
        "requests",
        "sqlalchemy>=1.4",
        "python-dotenv",
        "beautifulsoup4",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "all": ["xlrd"],
    },
    entry_points={
        "console_scripts": [
            "ncm-dashboard=ncm_dashboard.cli:main",
        ]
    },
)
