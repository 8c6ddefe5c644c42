from setuptools import setup


setup(
    name="lossrun-doctor",
    version="0.1.0",
    description="Local loss-run canonicalizer: turns messy workers' compensation spreadsheets into typed claim records",
    packages=["lossrun_doctor"],
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "lossrun-doctor=lossrun_doctor.cli:main",
        ]
    },
)
